#
# Python pcitree library
# /sys/bus/pci/devices enumeration
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set, Tuple

from .exceptions import EnumerationError
from .filter import DeviceFilter
from .log import get_logger
from .procfs import read_config_block
from .records import CONFIG_SIZE_SHORT, NUM_BASE_ADDRESSES, RawRecord

log = get_logger(__name__)

SYSFS_DEVICES_DEFAULT = "/sys/bus/pci/devices"

ROM_RESOURCE_INDEX = 6

# Low bits of the kernel resource flags that mirror the BAR attribute bits.
REGION_FLAG_MASK = 0x0F


def _read_int(p: Path, base: int) -> Optional[int]:
    try:
        s = p.read_text(encoding="ascii", errors="ignore").strip()
        return int(s, base)
    except (OSError, ValueError):
        return None


def _read_hex(p: Path) -> Optional[int]:
    return _read_int(p, 16)


@dataclass(frozen=True)
class ResourceEntry:
    index: int
    start: int
    end: int
    flags: int

    @property
    def is_unused(self) -> bool:
        return self.start == 0 and self.end == 0

    @property
    def size(self) -> int:
        # sysfs 'end' is inclusive; an unused slot is all zeros
        if self.is_unused:
            return 0
        return (self.end - self.start) + 1

    @property
    def region_value(self) -> int:
        """The value /proc/bus/pci/devices would report for this slot."""
        if self.is_unused:
            return 0
        return self.start | (self.flags & REGION_FLAG_MASK)


def parse_pci_resource_file(path: Path) -> List[ResourceEntry]:
    """
    Parse /sys/bus/pci/devices/0000:BB:DD.F/resource and return entries for:
    BAR0..5, the ROM, and possible bridge windows (ordering is the kernel's).
    A missing file yields an empty list.
    """
    entries: List[ResourceEntry] = []
    try:
        lines = path.read_text().split("\n")
    except FileNotFoundError:
        return entries
    for idx, line in enumerate(lines):
        if not line.strip():
            continue
        try:
            s, e, fl = (int(tok, 16) for tok in line.strip().split()[:3])
        except ValueError:
            raise EnumerationError(
                f"Malformed resource entry {idx} in {path}: {line.strip()!r}",
                path=str(path),
            ) from None
        entries.append(ResourceEntry(index=idx, start=s, end=e, flags=fl))
    return entries


def _split_bdf(name: str) -> Optional[Tuple[int, int, int, int]]:
    # "dddd:bb:ss.f"
    try:
        dom_s, bus_s, devfn_s = name.split(":")
        slot_s, func_s = devfn_s.split(".")
        return int(dom_s, 16), int(bus_s, 16), int(slot_s, 16), int(func_s, 16)
    except ValueError:
        return None


class SysfsEnumerator:
    def __init__(self, root: str = SYSFS_DEVICES_DEFAULT):
        self.root = Path(root)

    def _entries(self) -> List[Path]:
        try:
            return sorted(self.root.iterdir())
        except OSError as e:
            raise EnumerationError(
                f"Unable to open {self.root}: {e.strerror or e}", path=str(self.root)
            ) from e

    def scan(
        self,
        config_size: int = CONFIG_SIZE_SHORT,
        device_filter: Optional[DeviceFilter] = None,
    ) -> List[RawRecord]:
        records: List[RawRecord] = []
        seen: Set[Tuple[int, int]] = set()

        for d in self._entries():
            bdf = _split_bdf(d.name)
            if bdf is None:  # skip non-BDF entries
                continue
            dom, bus, slot, func = bdf
            if dom != 0:
                log.debug("domain_skipped", device=d.name)
                continue
            devfn = ((slot & 0x1F) << 3) | (func & 0x07)

            vendor = _read_hex(d / "vendor")
            device = _read_hex(d / "device")
            if vendor is None or device is None:
                log.warning("device_ids_unreadable", device=d.name)
                continue
            vendor &= 0xFFFF
            device &= 0xFFFF

            if device_filter is not None and not device_filter.matches(
                bus, devfn, vendor, device
            ):
                continue
            if (bus, devfn) in seen:
                log.warning("duplicate_device", device=d.name)
                continue
            seen.add((bus, devfn))

            resources = {r.index: r for r in parse_pci_resource_file(d / "resource")}
            bases = tuple(
                resources[i].region_value if i in resources else 0
                for i in range(NUM_BASE_ADDRESSES)
            )
            rom = resources.get(ROM_RESOURCE_INDEX)

            records.append(
                RawRecord(
                    bus=bus,
                    devfn=devfn,
                    vendor_id=vendor,
                    device_id=device,
                    config=read_config_block(d / "config", config_size),
                    irq=_read_int(d / "irq", 10) or 0,
                    base_addr=bases,
                    rom_base_addr=rom.region_value if rom is not None else 0,
                )
            )

        log.debug("sysfs_scan_done", root=str(self.root), devices=len(records))
        return records
