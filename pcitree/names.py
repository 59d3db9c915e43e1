#
# Python pcitree library
# pci.ids database reader and name formatting
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

from typing import Dict, Optional, Tuple

VendorDict = Dict[int, str]
DeviceDict = Dict[Tuple[int, int], str]
SubsysDict = Dict[Tuple[int, int, int, int], str]
ClassDict = Dict[int, str]
SubclassDict = Dict[Tuple[int, int], str]
ProgIfDict = Dict[Tuple[int, int, int], str]


class PciIdsDatabase:
    """
    Lookup tables parsed from a pci.ids text file.

    Layout of the file:
      vvvv  Vendor
      \\tdddd  Device
      \\t\\tssss tttt  Subsystem
      C bb  Base class
      \\tss  Subclass
      \\t\\tpp  Programming interface
    """

    def __init__(self, path: str):
        self.path = str(path)
        self.vendors: VendorDict = {}
        self.devices: DeviceDict = {}
        self.subsystems: SubsysDict = {}
        self.classes: ClassDict = {}
        self.subclasses: SubclassDict = {}
        self.prog_ifs: ProgIfDict = {}
        self._parse()
        if not self.vendors or not self.classes:
            raise ValueError(f"Corrupt or empty text database: {self.path}")

    def _parse(self) -> None:
        in_classes = False
        cur_vendor: Optional[int] = None
        cur_device: Optional[int] = None
        cur_base: Optional[int] = None
        cur_sub: Optional[int] = None

        with open(self.path, "r", encoding="utf-8", errors="replace") as f:
            for raw in f:
                line = raw.rstrip("\n")
                if not line.strip() or line.startswith("#"):
                    continue

                if line.startswith("C "):
                    in_classes = True
                    parts = line.split(None, 2)  # ['C', '02', 'Network controller']
                    cur_base = int(parts[1], 16)
                    cur_sub = None
                    if len(parts) > 2:
                        self.classes[cur_base] = parts[2]
                    continue

                tok = line.strip().split(None, 1)
                name = tok[1] if len(tok) > 1 else ""

                if not in_classes:
                    if line[0] != "\t":
                        if len(tok[0]) != 4:
                            cur_vendor = cur_device = None
                            continue
                        cur_vendor, cur_device = int(tok[0], 16), None
                        if name:
                            self.vendors[cur_vendor] = name
                        continue

                    if cur_vendor is None:
                        continue

                    if line.startswith("\t\t"):
                        # "ssss tttt  name"
                        sub = line.strip().split(None, 2)
                        if len(sub) < 3 or cur_device is None:
                            continue
                        key = (cur_vendor, cur_device, int(sub[0], 16), int(sub[1], 16))
                        self.subsystems[key] = sub[2]
                        continue

                    cur_device = int(tok[0], 16)
                    if name:
                        self.devices[(cur_vendor, cur_device)] = name
                    continue

                if cur_base is None:
                    continue
                if line.startswith("\t\t"):
                    if cur_sub is not None and name:
                        self.prog_ifs[(cur_base, cur_sub, int(tok[0], 16))] = name
                    continue
                cur_sub = int(tok[0], 16)
                if name:
                    self.subclasses[(cur_base, cur_sub)] = name

    # ----- lookups -----
    def get_vendor_name(self, vendor_id: int) -> Optional[str]:
        return self.vendors.get(vendor_id & 0xFFFF)

    def get_device_name(self, vendor_id: int, device_id: int) -> Optional[str]:
        return self.devices.get((vendor_id & 0xFFFF, device_id & 0xFFFF))

    def get_subsystem_name(
        self, vendor_id: int, device_id: int, subvendor_id: int, subdevice_id: int
    ) -> Optional[str]:
        key = (
            vendor_id & 0xFFFF,
            device_id & 0xFFFF,
            subvendor_id & 0xFFFF,
            subdevice_id & 0xFFFF,
        )
        return self.subsystems.get(key)

    def get_class_name(
        self, base: int, subclass: Optional[int] = None, prog_if: Optional[int] = None
    ) -> Optional[str]:
        base &= 0xFF
        if subclass is None:
            return self.classes.get(base)
        sub = subclass & 0xFF
        if prog_if is not None:
            name = self.prog_ifs.get((base, sub, prog_if & 0xFF))
            if name is not None:
                return name
        return self.subclasses.get((base, sub))

    def close(self) -> None:
        # nothing to release
        pass


class Names:
    """Turn numeric ids into the strings the listing and tree print."""

    def __init__(self, db: Optional[PciIdsDatabase], numeric: bool = False):
        self.db = db
        self.numeric = numeric or db is None

    def _lookup_vendor(self, vendor_id: int) -> Optional[str]:
        if self.numeric:
            return None
        return self.db.get_vendor_name(vendor_id)

    def vendor(self, vendor_id: int) -> str:
        if self.numeric:
            return f"{vendor_id:04x}"
        return self._lookup_vendor(vendor_id) or f"Vendor {vendor_id:04x}"

    def device(self, vendor_id: int, device_id: int) -> str:
        if self.numeric:
            return f"{device_id:04x}"
        return self.db.get_device_name(vendor_id, device_id) or f"Device {device_id:04x}"

    def device_full(self, vendor_id: int, device_id: int) -> str:
        if self.numeric:
            return f"{vendor_id:04x}:{device_id:04x}"
        vname = self.db.get_vendor_name(vendor_id)
        dname = self.db.get_device_name(vendor_id, device_id)
        if vname and dname:
            return f"{vname} {dname}"
        if vname:
            return f"{vname} Device {device_id:04x}"
        if dname:
            return f"Vendor {vendor_id:04x} {dname}"
        return f"Device [{vendor_id:04x}:{device_id:04x}]"

    def class_name(self, class16: int) -> str:
        if self.numeric:
            return f"Class {class16:04x}"
        base = (class16 >> 8) & 0xFF
        sub = class16 & 0xFF
        return (
            self.db.get_class_name(base, sub)
            or self.db.get_class_name(base)
            or f"Class {class16:04x}"
        )

    def subsystem_vendor(self, subvendor_id: int) -> str:
        return self.vendor(subvendor_id)

    def subsystem_device(
        self, vendor_id: int, device_id: int, subvendor_id: int, subdevice_id: int
    ) -> str:
        if self.numeric:
            return f"{subdevice_id:04x}"
        name = self.db.get_subsystem_name(vendor_id, device_id, subvendor_id, subdevice_id)
        return name or f"Device {subdevice_id:04x}"

    def subsystem_full(
        self, vendor_id: int, device_id: int, subvendor_id: int, subdevice_id: int
    ) -> str:
        if self.numeric:
            return f"{subvendor_id:04x}:{subdevice_id:04x}"
        vname = self.db.get_vendor_name(subvendor_id)
        sname = self.db.get_subsystem_name(
            vendor_id, device_id, subvendor_id, subdevice_id
        )
        if vname and sname:
            return f"{vname} {sname}"
        if vname:
            return f"{vname} Device {subdevice_id:04x}"
        if sname:
            return f"Vendor {subvendor_id:04x} {sname}"
        return f"Device [{subvendor_id:04x}:{subdevice_id:04x}]"
