#
# Python pcitree library
# /proc/bus/pci enumeration
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Set, Tuple

from .exceptions import EnumerationError, ShortReadError
from .filter import DeviceFilter
from .log import get_logger
from .records import CONFIG_SIZE_SHORT, NUM_BASE_ADDRESSES, RawRecord

log = get_logger(__name__)

PROC_BUS_PCI_DEFAULT = "/proc/bus/pci"

# bbdf vendev irq base0..base5 rom
_DEVICES_FIELDS = 3 + NUM_BASE_ADDRESSES + 1


def read_config_block(path: Path, size: int) -> bytes:
    """Read exactly `size` bytes of configuration space or fail the run."""
    try:
        with open(path, "rb") as f:
            data = f.read(size)
    except OSError as e:
        raise EnumerationError(
            f"Unable to read {path}: {e.strerror or e}", path=str(path)
        ) from e
    if len(data) != size:
        raise ShortReadError(str(path), len(data), size)
    return data


def parse_devices_line(line: str) -> Optional[Tuple[int, ...]]:
    """
    Split one line of /proc/bus/pci/devices into its leading hex fields.

    Newer kernels append resource sizes and a driver name; only the first
    ten columns are used. Missing trailing columns read as zero.
    """
    values = []
    for tok in line.split()[:_DEVICES_FIELDS]:
        try:
            values.append(int(tok, 16))
        except ValueError:
            break
    if len(values) < 2:
        return None
    values.extend([0] * (_DEVICES_FIELDS - len(values)))
    return tuple(values)


class ProcBusEnumerator:
    def __init__(self, root: str = PROC_BUS_PCI_DEFAULT):
        self.root = Path(root)

    def config_path(self, bus: int, devfn: int) -> Path:
        return self.root / f"{bus:02x}" / f"{(devfn >> 3) & 0x1F:02x}.{devfn & 7:x}"

    def _device_lines(self) -> List[str]:
        path = self.root / "devices"
        try:
            return path.read_text(encoding="ascii", errors="replace").splitlines()
        except OSError as e:
            raise EnumerationError(
                f"Unable to open {path}: {e.strerror or e}", path=str(path)
            ) from e

    def scan(
        self,
        config_size: int = CONFIG_SIZE_SHORT,
        device_filter: Optional[DeviceFilter] = None,
    ) -> List[RawRecord]:
        records: List[RawRecord] = []
        seen: Set[Tuple[int, int]] = set()

        for lineno, line in enumerate(self._device_lines(), 1):
            fields = parse_devices_line(line)
            if fields is None:
                if line.strip():
                    log.warning("devices_line_unparsable", line=lineno, text=line)
                continue
            bbdf, vendev, irq = fields[0], fields[1], fields[2]
            bus = (bbdf >> 8) & 0xFF
            devfn = bbdf & 0xFF
            vendor = (vendev >> 16) & 0xFFFF
            device = vendev & 0xFFFF

            if device_filter is not None and not device_filter.matches(
                bus, devfn, vendor, device
            ):
                continue
            if (bus, devfn) in seen:
                log.warning("duplicate_device", bus=bus, devfn=devfn, line=lineno)
                continue
            seen.add((bus, devfn))

            records.append(
                RawRecord(
                    bus=bus,
                    devfn=devfn,
                    vendor_id=vendor,
                    device_id=device,
                    config=read_config_block(self.config_path(bus, devfn), config_size),
                    irq=irq,
                    base_addr=tuple(fields[3 : 3 + NUM_BASE_ADDRESSES]),
                    rom_base_addr=fields[3 + NUM_BASE_ADDRESSES],
                )
            )

        log.debug("proc_scan_done", root=str(self.root), devices=len(records))
        return records
