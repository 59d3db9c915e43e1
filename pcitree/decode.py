#
# Python pcitree library
# Configuration space decoder
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
"""
Turn raw configuration bytes into typed header fields.

Everything here is a pure function of a `RawRecord` (or its `config` bytes):
  - u8/u16/u32: little-endian register reads
  - decode_common: the 16-byte common header plus interrupt registers
  - decode_header: the layout selected by the header type (0, 1 or 2), or a
    mismatch annotation when header type and class code disagree
  - decode_bars / decode_rom / decode_bridge_windows: resource geometry
  - bridge_bus_numbers: the (primary, secondary, subordinate) triple the
    topology builder needs
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from . import regs
from .log import get_logger
from .records import CONFIG_SIZE_FULL, RawRecord
from .regs import (
    Bist,
    BridgeControl,
    CardbusBridgeControl,
    Command,
    HeaderType,
    MemType,
    Status,
)

log = get_logger(__name__)

_UNASSIGNED = (0, 0xFFFFFFFF, 0xFFFFFFFFFFFFFFFF)

IO_WINDOW_GRANULARITY = 0x1000
MEMORY_WINDOW_GRANULARITY = 0x100000


# =========================
# Register access
# =========================


def _check(cfg: bytes, pos: int, size: int) -> None:
    if pos < 0 or pos + size > len(cfg):
        raise IndexError(
            f"config offset 0x{pos:02x} (+{size}) outside {len(cfg)}-byte block"
        )


def u8(cfg: bytes, pos: int) -> int:
    _check(cfg, pos, 1)
    return cfg[pos]


def u16(cfg: bytes, pos: int) -> int:
    _check(cfg, pos, 2)
    return struct.unpack_from("<H", cfg, pos)[0]


def u32(cfg: bytes, pos: int) -> int:
    _check(cfg, pos, 4)
    return struct.unpack_from("<I", cfg, pos)[0]


# =========================
# Common header
# =========================


@dataclass(frozen=True)
class CommonHeader:
    vendor_id: int
    device_id: int
    command: Command
    status: Status
    revision: int
    prog_if: int
    class_code: int  # 16-bit base:sub
    cache_line: int
    latency: int
    header_type: int
    bist: int
    interrupt_line: int
    interrupt_pin: int

    @property
    def layout(self) -> int:
        return self.header_type & regs.HEADER_TYPE_LAYOUT_MASK

    @property
    def multifunction(self) -> bool:
        return bool(self.header_type & regs.HEADER_TYPE_MULTIFUNCTION)

    @property
    def base_class(self) -> int:
        return (self.class_code >> 8) & 0xFF

    @property
    def devsel(self) -> str:
        sel = self.status & regs.STATUS_DEVSEL_MASK
        if sel == regs.STATUS_DEVSEL_SLOW:
            return "slow"
        if sel == regs.STATUS_DEVSEL_MEDIUM:
            return "medium"
        if sel == regs.STATUS_DEVSEL_FAST:
            return "fast"
        return "??"

    @property
    def bist_capable(self) -> bool:
        return bool(self.bist & Bist.CAPABLE)

    @property
    def bist_running(self) -> bool:
        return bool(self.bist & Bist.START)

    @property
    def bist_code(self) -> int:
        return self.bist & regs.BIST_CODE_MASK


def decode_common(cfg: bytes) -> CommonHeader:
    return CommonHeader(
        vendor_id=u16(cfg, regs.VENDOR_ID),
        device_id=u16(cfg, regs.DEVICE_ID),
        command=Command(u16(cfg, regs.COMMAND)),
        status=Status(u16(cfg, regs.STATUS)),
        revision=u8(cfg, regs.REVISION_ID),
        prog_if=u8(cfg, regs.CLASS_PROG),
        class_code=u16(cfg, regs.CLASS_DEVICE),
        cache_line=u8(cfg, regs.CACHE_LINE_SIZE),
        latency=u8(cfg, regs.LATENCY_TIMER),
        header_type=u8(cfg, regs.HEADER_TYPE),
        bist=u8(cfg, regs.BIST),
        interrupt_line=u8(cfg, regs.INTERRUPT_LINE),
        interrupt_pin=u8(cfg, regs.INTERRUPT_PIN),
    )


# =========================
# Base address registers
# =========================

_MEM_TYPE_NAMES = {
    MemType.BITS_32: "32-bit",
    MemType.LOW_1M: "low-1M 32-bit",
    MemType.BITS_64: "64-bit",
    MemType.RESERVED: "???",
}


@dataclass(frozen=True)
class BaseAddress:
    index: int
    is_io: bool
    address: int
    mem_type: MemType = MemType.BITS_32
    prefetchable: bool = False
    high_unknown: bool = False  # 64-bit BAR in the last slot of its set

    @property
    def is_64bit(self) -> bool:
        return not self.is_io and self.mem_type == MemType.BITS_64

    @property
    def width(self) -> str:
        return _MEM_TYPE_NAMES[self.mem_type]

    def encode_flags(self) -> int:
        """Attribute bits as they would appear in the low nibble of the BAR."""
        if self.is_io:
            return regs.BASE_ADDRESS_SPACE_IO
        flags = int(self.mem_type)
        if self.prefetchable:
            flags |= regs.BASE_ADDRESS_MEM_PREFETCH
        return flags

    def format_address(self) -> str:
        if self.is_io:
            return f"{self.address:04x}"
        low = self.address & 0xFFFFFFFF
        if self.high_unknown:
            return f"????????{low:08x}"
        if self.is_64bit:
            return f"{self.address >> 32:08x}{low:08x}"
        return f"{self.address:08x}"

    def __str__(self) -> str:
        if self.is_io:
            return f"I/O ports at {self.format_address()}"
        pf = "" if self.prefetchable else "non-"
        return f"Memory at {self.format_address()} ({self.width}, {pf}prefetchable)"


def decode_bars(
    record: RawRecord, count: int, bus_centric: bool = False
) -> Tuple[BaseAddress, ...]:
    """
    Decode the first `count` base address registers.

    Type and flags always come from the register. The address comes from the
    register in bus-centric mode, else from the OS-assigned value. Unassigned
    entries, and entries whose address space is switched off in the command
    register, are dropped but still consume their slot(s).
    """
    cfg = record.config
    cmd = Command(u16(cfg, regs.COMMAND))
    out = []
    i = 0
    while i < count:
        index = i
        flg = u32(cfg, regs.BASE_ADDRESS_0 + 4 * i)
        pos = flg if bus_centric else record.base_addr[i]
        i += 1

        is_io = bool(flg & regs.BASE_ADDRESS_SPACE_IO)
        mem_type = MemType(flg & regs.BASE_ADDRESS_MEM_TYPE_MASK)
        high = 0
        high_unknown = False
        if not is_io and mem_type == MemType.BITS_64:
            if i < count:
                high = u32(cfg, regs.BASE_ADDRESS_0 + 4 * i)
                i += 1
            else:
                high_unknown = True

        if pos in _UNASSIGNED:
            continue
        if not cmd & (Command.IO if is_io else Command.MEMORY):
            continue

        if is_io:
            out.append(
                BaseAddress(
                    index=index,
                    is_io=True,
                    address=pos & regs.BASE_ADDRESS_IO_MASK,
                )
            )
            continue

        address = pos & regs.BASE_ADDRESS_MEM_MASK
        if bus_centric and mem_type == MemType.BITS_64 and not high_unknown:
            address |= high << 32
        out.append(
            BaseAddress(
                index=index,
                is_io=False,
                address=address,
                mem_type=mem_type,
                prefetchable=bool(flg & regs.BASE_ADDRESS_MEM_PREFETCH),
                high_unknown=high_unknown,
            )
        )
    return tuple(out)


@dataclass(frozen=True)
class ExpansionRom:
    address: int

    def __str__(self) -> str:
        return f"Expansion ROM at {self.address:08x}"


def decode_rom(
    record: RawRecord, offset: int, bus_centric: bool = False
) -> Optional[ExpansionRom]:
    """The ROM window, shown only while its decode enable bit is set."""
    value = u32(record.config, offset) if bus_centric else record.rom_base_addr
    if value in _UNASSIGNED or not value & regs.ROM_ADDRESS_ENABLE:
        return None
    return ExpansionRom(address=value & regs.ROM_ADDRESS_MASK)


# =========================
# Bridge windows
# =========================


class WindowKind(enum.Enum):
    IO = "I/O"
    MEMORY = "memory"
    PREFETCHABLE = "prefetchable memory"


_WINDOW_LABELS = {
    WindowKind.IO: "I/O behind bridge",
    WindowKind.MEMORY: "Memory behind bridge",
    WindowKind.PREFETCHABLE: "Prefetchable memory behind bridge",
}


@dataclass(frozen=True)
class BridgeWindow:
    kind: WindowKind
    base_reg: int
    limit_reg: int
    range_type: Optional[int] = None
    base: int = 0
    limit: int = 0  # inclusive, granularity already applied
    anomaly: Optional[str] = None

    @property
    def wide(self) -> bool:
        """32-bit I/O or 64-bit prefetchable addressing."""
        if self.kind is WindowKind.IO:
            return self.range_type == regs.IO_RANGE_TYPE_32
        if self.kind is WindowKind.PREFETCHABLE:
            return self.range_type == regs.PREF_RANGE_TYPE_64
        return False

    @property
    def present(self) -> bool:
        return self.anomaly is None and self.base > 0

    def __str__(self) -> str:
        if self.anomaly is not None:
            return f"!!! {self.anomaly}"
        digits = 16 if (self.kind is WindowKind.PREFETCHABLE and self.wide) else 8
        return (
            f"{_WINDOW_LABELS[self.kind]}: "
            f"{self.base:0{digits}x}-{self.limit:0{digits}x}"
        )


def _range_type(
    kind: WindowKind, base_reg: int, limit_reg: int, valid: Tuple[int, ...]
) -> Tuple[Optional[int], Optional[str]]:
    rtype = base_reg & 0x0F
    if rtype != (limit_reg & 0x0F) or rtype not in valid:
        return None, f"Unknown {kind.value} range types {base_reg:x}/{limit_reg:x}"
    return rtype, None


def _io_window(cfg: bytes) -> BridgeWindow:
    base_reg = u8(cfg, regs.IO_BASE)
    limit_reg = u8(cfg, regs.IO_LIMIT)
    rtype, anomaly = _range_type(
        WindowKind.IO,
        base_reg,
        limit_reg,
        (regs.IO_RANGE_TYPE_16, regs.IO_RANGE_TYPE_32),
    )
    if anomaly:
        return BridgeWindow(WindowKind.IO, base_reg, limit_reg, anomaly=anomaly)
    base = (base_reg & regs.IO_RANGE_MASK) << 8
    limit = (limit_reg & regs.IO_RANGE_MASK) << 8
    if rtype == regs.IO_RANGE_TYPE_32:
        base |= u16(cfg, regs.IO_BASE_UPPER16) << 16
        limit |= u16(cfg, regs.IO_LIMIT_UPPER16) << 16
    return BridgeWindow(
        WindowKind.IO,
        base_reg,
        limit_reg,
        range_type=rtype,
        base=base,
        limit=limit + IO_WINDOW_GRANULARITY - 1,
    )


def _memory_window(cfg: bytes) -> BridgeWindow:
    base_reg = u16(cfg, regs.MEMORY_BASE)
    limit_reg = u16(cfg, regs.MEMORY_LIMIT)
    rtype, anomaly = _range_type(WindowKind.MEMORY, base_reg, limit_reg, (0,))
    if anomaly:
        return BridgeWindow(WindowKind.MEMORY, base_reg, limit_reg, anomaly=anomaly)
    base = (base_reg & regs.MEMORY_RANGE_MASK) << 16
    limit = (limit_reg & regs.MEMORY_RANGE_MASK) << 16
    return BridgeWindow(
        WindowKind.MEMORY,
        base_reg,
        limit_reg,
        range_type=rtype,
        base=base,
        limit=limit + MEMORY_WINDOW_GRANULARITY - 1,
    )


def _prefetch_window(cfg: bytes) -> BridgeWindow:
    base_reg = u16(cfg, regs.PREF_MEMORY_BASE)
    limit_reg = u16(cfg, regs.PREF_MEMORY_LIMIT)
    rtype, anomaly = _range_type(
        WindowKind.PREFETCHABLE,
        base_reg,
        limit_reg,
        (regs.PREF_RANGE_TYPE_32, regs.PREF_RANGE_TYPE_64),
    )
    if anomaly:
        return BridgeWindow(
            WindowKind.PREFETCHABLE, base_reg, limit_reg, anomaly=anomaly
        )
    base = (base_reg & regs.PREF_RANGE_MASK) << 16
    limit = (limit_reg & regs.PREF_RANGE_MASK) << 16
    if rtype == regs.PREF_RANGE_TYPE_64:
        base |= u32(cfg, regs.PREF_BASE_UPPER32) << 32
        limit |= u32(cfg, regs.PREF_LIMIT_UPPER32) << 32
    return BridgeWindow(
        WindowKind.PREFETCHABLE,
        base_reg,
        limit_reg,
        range_type=rtype,
        base=base,
        limit=limit + MEMORY_WINDOW_GRANULARITY - 1,
    )


def decode_bridge_windows(
    cfg: bytes,
) -> Tuple[BridgeWindow, BridgeWindow, BridgeWindow]:
    """(I/O, memory, prefetchable memory) windows of a type 1 header."""
    return _io_window(cfg), _memory_window(cfg), _prefetch_window(cfg)


@dataclass(frozen=True)
class CardbusWindow:
    kind: WindowKind
    index: int
    base: int
    limit: int
    enabled: bool = True
    prefetchable: bool = False

    def __str__(self) -> str:
        disabled = "" if self.enabled else " [disabled]"
        if self.kind is WindowKind.IO:
            return f"I/O window {self.index}: {self.base:08x}-{self.limit:08x}{disabled}"
        pf = " (prefetchable)" if self.prefetchable else ""
        return (
            f"Memory window {self.index}: "
            f"{self.base:08x}-{self.limit:08x}{disabled}{pf}"
        )


def decode_cardbus_windows(
    cfg: bytes,
) -> Tuple[Tuple[CardbusWindow, ...], Tuple[CardbusWindow, ...]]:
    cmd = Command(u16(cfg, regs.COMMAND))
    brc = CardbusBridgeControl(u16(cfg, regs.CB_BRIDGE_CONTROL))

    mem = []
    for i in range(2):
        p = 8 * i
        base = u32(cfg, regs.CB_MEMORY_BASE_0 + p)
        limit = u32(cfg, regs.CB_MEMORY_LIMIT_0 + p)
        if limit > base:
            mem.append(
                CardbusWindow(
                    WindowKind.MEMORY,
                    i,
                    base,
                    limit,
                    enabled=bool(cmd & Command.MEMORY),
                    prefetchable=bool(brc & (CardbusBridgeControl.PREFETCH_MEM0 << i)),
                )
            )

    io = []
    for i in range(2):
        p = 8 * i
        base = u32(cfg, regs.CB_IO_BASE_0 + p)
        limit = u32(cfg, regs.CB_IO_LIMIT_0 + p)
        if not base & regs.IO_RANGE_TYPE_32:
            base &= 0xFFFF
            limit &= 0xFFFF
        base &= regs.CB_IO_RANGE_MASK
        if not base:
            continue
        limit = (limit & regs.CB_IO_RANGE_MASK) + 3
        io.append(
            CardbusWindow(
                WindowKind.IO, i, base, limit, enabled=bool(cmd & Command.IO)
            )
        )
    return tuple(mem), tuple(io)


# =========================
# Header layouts
# =========================


@dataclass(frozen=True)
class BusNumbers:
    primary: int
    secondary: int
    subordinate: int
    latency: int

    def __str__(self) -> str:
        return (
            f"Bus: primary={self.primary:02x}, secondary={self.secondary:02x}, "
            f"subordinate={self.subordinate:02x}, sec-latency={self.latency}"
        )


@dataclass(frozen=True)
class DeviceLayout:
    bars: Tuple[BaseAddress, ...]
    rom: Optional[ExpansionRom]
    subsystem_vendor: int
    subsystem_id: int
    min_gnt: int
    max_lat: int


@dataclass(frozen=True)
class BridgeLayout:
    bars: Tuple[BaseAddress, ...]
    buses: BusNumbers
    io_window: BridgeWindow
    memory_window: BridgeWindow
    prefetch_window: BridgeWindow
    sec_status: Status
    bridge_control: BridgeControl
    rom: Optional[ExpansionRom]

    @property
    def windows(self) -> Tuple[BridgeWindow, BridgeWindow, BridgeWindow]:
        return self.io_window, self.memory_window, self.prefetch_window


@dataclass(frozen=True)
class CardbusLayout:
    bars: Tuple[BaseAddress, ...]
    buses: BusNumbers
    memory_windows: Tuple[CardbusWindow, ...]
    io_windows: Tuple[CardbusWindow, ...]
    sec_status: Status
    bridge_control: CardbusBridgeControl
    # Registers past offset 0x40; None when only 64 bytes were read.
    subsystem_vendor: Optional[int] = None
    subsystem_id: Optional[int] = None
    legacy_base: Optional[int] = None


Layout = Union[DeviceLayout, BridgeLayout, CardbusLayout]


@dataclass(frozen=True)
class HeaderDecode:
    common: CommonHeader
    layout: Optional[Layout] = None
    mismatch: Optional[str] = None

    @property
    def subsystem(self) -> Optional[Tuple[int, int]]:
        lay = self.layout
        if isinstance(lay, DeviceLayout):
            return lay.subsystem_vendor, lay.subsystem_id
        if isinstance(lay, CardbusLayout) and lay.subsystem_vendor is not None:
            return lay.subsystem_vendor, lay.subsystem_id or 0
        return None


def header_mismatch(common: CommonHeader) -> Optional[str]:
    ht = common.layout
    cls = common.class_code
    if ht == HeaderType.NORMAL:
        ok = cls != regs.CLASS_BRIDGE_PCI
    elif ht == HeaderType.BRIDGE:
        ok = cls == regs.CLASS_BRIDGE_PCI
    elif ht == HeaderType.CARDBUS:
        ok = common.base_class == regs.BASE_CLASS_BRIDGE
    else:
        return f"Unknown header type {ht:02x}"
    if ok:
        return None
    return f"Header type {ht:02x} doesn't match class code {cls:04x}"


def _decode_normal(record: RawRecord, bus_centric: bool) -> DeviceLayout:
    cfg = record.config
    return DeviceLayout(
        bars=decode_bars(record, 6, bus_centric),
        rom=decode_rom(record, regs.ROM_ADDRESS, bus_centric),
        subsystem_vendor=u16(cfg, regs.SUBSYSTEM_VENDOR_ID),
        subsystem_id=u16(cfg, regs.SUBSYSTEM_ID),
        min_gnt=u8(cfg, regs.MIN_GNT),
        max_lat=u8(cfg, regs.MAX_LAT),
    )


def _decode_bridge(record: RawRecord, bus_centric: bool) -> BridgeLayout:
    cfg = record.config
    io_window, memory_window, prefetch_window = decode_bridge_windows(cfg)
    return BridgeLayout(
        bars=decode_bars(record, 2, bus_centric),
        buses=BusNumbers(
            primary=u8(cfg, regs.PRIMARY_BUS),
            secondary=u8(cfg, regs.SECONDARY_BUS),
            subordinate=u8(cfg, regs.SUBORDINATE_BUS),
            latency=u8(cfg, regs.SEC_LATENCY_TIMER),
        ),
        io_window=io_window,
        memory_window=memory_window,
        prefetch_window=prefetch_window,
        sec_status=Status(u16(cfg, regs.SEC_STATUS)),
        bridge_control=BridgeControl(u16(cfg, regs.BRIDGE_CONTROL)),
        rom=decode_rom(record, regs.ROM_ADDRESS1, bus_centric),
    )


def _decode_cardbus(record: RawRecord, bus_centric: bool) -> CardbusLayout:
    cfg = record.config
    memory_windows, io_windows = decode_cardbus_windows(cfg)
    subsystem_vendor = subsystem_id = legacy_base = None
    if len(cfg) >= CONFIG_SIZE_FULL:
        subsystem_vendor = u16(cfg, regs.CB_SUBSYSTEM_VENDOR_ID)
        subsystem_id = u16(cfg, regs.CB_SUBSYSTEM_ID)
        legacy_base = u16(cfg, regs.CB_LEGACY_MODE_BASE)
    return CardbusLayout(
        bars=decode_bars(record, 1, bus_centric),
        buses=BusNumbers(
            primary=u8(cfg, regs.CB_PRIMARY_BUS),
            secondary=u8(cfg, regs.CB_CARD_BUS),
            subordinate=u8(cfg, regs.CB_SUBORDINATE_BUS),
            latency=u8(cfg, regs.CB_LATENCY_TIMER),
        ),
        memory_windows=memory_windows,
        io_windows=io_windows,
        sec_status=Status(u16(cfg, regs.CB_SEC_STATUS)),
        bridge_control=CardbusBridgeControl(u16(cfg, regs.CB_BRIDGE_CONTROL)),
        subsystem_vendor=subsystem_vendor,
        subsystem_id=subsystem_id,
        legacy_base=legacy_base,
    )


_LAYOUT_DECODERS = {
    HeaderType.NORMAL: _decode_normal,
    HeaderType.BRIDGE: _decode_bridge,
    HeaderType.CARDBUS: _decode_cardbus,
}


def decode_header(record: RawRecord, bus_centric: bool = False) -> HeaderDecode:
    common = decode_common(record.config)
    mismatch = header_mismatch(common)
    if mismatch is not None:
        log.debug("header_mismatch", address=str(record.address), detail=mismatch)
        return HeaderDecode(common=common, mismatch=mismatch)
    decoder = _LAYOUT_DECODERS[HeaderType(common.layout)]
    return HeaderDecode(common=common, layout=decoder(record, bus_centric))


def bridge_bus_numbers(cfg: bytes) -> Optional[Tuple[HeaderType, int, int, int]]:
    """(header type, primary, secondary, subordinate) if this is a topology bridge."""
    cls = u16(cfg, regs.CLASS_DEVICE)
    ht = u8(cfg, regs.HEADER_TYPE) & regs.HEADER_TYPE_LAYOUT_MASK
    if ht == HeaderType.BRIDGE and cls == regs.CLASS_BRIDGE_PCI:
        return (
            HeaderType.BRIDGE,
            u8(cfg, regs.PRIMARY_BUS),
            u8(cfg, regs.SECONDARY_BUS),
            u8(cfg, regs.SUBORDINATE_BUS),
        )
    if ht == HeaderType.CARDBUS and cls == regs.CLASS_BRIDGE_PCI:
        return (
            HeaderType.CARDBUS,
            u8(cfg, regs.CB_PRIMARY_BUS),
            u8(cfg, regs.CB_CARD_BUS),
            u8(cfg, regs.CB_SUBORDINATE_BUS),
        )
    return None
