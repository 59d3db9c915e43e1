#
# Python pcitree library
# Raw device records
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Tuple

CONFIG_SIZE_SHORT = 64
CONFIG_SIZE_FULL = 256
NUM_BASE_ADDRESSES = 6


@dataclass(frozen=True, slots=True)
class PciAddress:
    bus: int
    device: int
    function: int

    @classmethod
    def from_devfn(cls, bus: int, devfn: int) -> "PciAddress":
        return cls(bus & 0xFF, (devfn >> 3) & 0x1F, devfn & 0x07)

    @property
    def devfn(self) -> int:
        return (self.device << 3) | self.function

    def __str__(self) -> str:
        return f"{self.bus:02x}:{self.device:02x}.{self.function:x}"


@dataclass(frozen=True)
class RawRecord:
    """One device as reported by the enumeration source.

    `base_addr` and `rom_base_addr` are the values the OS assigned; the
    registers inside `config` are what the device itself decodes. They can
    legitimately differ when the host relocates a window.
    """

    bus: int
    devfn: int
    vendor_id: int
    device_id: int
    config: bytes
    irq: int = 0
    base_addr: Tuple[int, ...] = (0,) * NUM_BASE_ADDRESSES
    rom_base_addr: int = 0

    def __post_init__(self) -> None:
        if len(self.config) < CONFIG_SIZE_SHORT:
            raise ValueError(
                f"{self.address}: configuration block is {len(self.config)} bytes, "
                f"need at least {CONFIG_SIZE_SHORT}"
            )
        if len(self.base_addr) != NUM_BASE_ADDRESSES:
            raise ValueError(
                f"{self.address}: expected {NUM_BASE_ADDRESSES} base addresses"
            )

    @property
    def slot(self) -> int:
        return (self.devfn >> 3) & 0x1F

    @property
    def func(self) -> int:
        return self.devfn & 0x07

    @property
    def address(self) -> PciAddress:
        return PciAddress.from_devfn(self.bus, self.devfn)

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.bus, self.devfn)


def sort_records(records: Iterable[RawRecord]) -> List[RawRecord]:
    """Order by (bus, devfn); stable, so re-sorting is a no-op."""
    return sorted(records, key=lambda r: r.sort_key)
