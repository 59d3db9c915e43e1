#
# Python pcitree library
# Device selection filter
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .exceptions import FilterSyntaxError


def _field(text: str, limit: int, message: str) -> Optional[int]:
    """Parse one hex field; empty or '*' means "any"."""
    if text in ("", "*"):
        return None
    try:
        value = int(text, 16)
    except ValueError:
        raise FilterSyntaxError(message) from None
    if not 0 <= value <= limit:
        raise FilterSyntaxError(message)
    return value


@dataclass
class DeviceFilter:
    """Matches devices on any combination of bus/slot/func/vendor/device.

    A field left at None matches everything.
    """

    bus: Optional[int] = None
    slot: Optional[int] = None
    func: Optional[int] = None
    vendor: Optional[int] = None
    device: Optional[int] = None

    def parse_slot(self, text: str) -> "DeviceFilter":
        """Apply a ``[[bus]:][slot][.[func]]`` expression."""
        mid = text
        if ":" in text:
            bus_s, mid = text.split(":", 1)
            self.bus = _field(bus_s, 0xFF, "Invalid bus number")
        slot_s, dot, func_s = mid.partition(".")
        self.slot = _field(slot_s, 0x1F, "Invalid slot number")
        if dot:
            self.func = _field(func_s, 0x07, "Invalid function number")
        return self

    def parse_id(self, text: str) -> "DeviceFilter":
        """Apply a ``[vendor]:[device]`` expression."""
        if ":" not in text:
            raise FilterSyntaxError("':' expected")
        vendor_s, device_s = text.split(":", 1)
        self.vendor = _field(vendor_s, 0xFFFF, "Invalid vendor ID")
        self.device = _field(device_s, 0xFFFF, "Invalid device ID")
        return self

    def matches(self, bus: int, devfn: int, vendor: int, device: int) -> bool:
        if self.bus is not None and self.bus != bus:
            return False
        if self.slot is not None and self.slot != (devfn >> 3) & 0x1F:
            return False
        if self.func is not None and self.func != devfn & 0x07:
            return False
        if self.vendor is not None and self.vendor != vendor:
            return False
        if self.device is not None and self.device != device:
            return False
        return True
