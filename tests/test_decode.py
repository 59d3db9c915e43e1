# tests/test_decode.py
from __future__ import annotations
import pytest

from pcitree.decode import (
    BaseAddress,
    BridgeLayout,
    CardbusLayout,
    DeviceLayout,
    WindowKind,
    bridge_bus_numbers,
    decode_bars,
    decode_bridge_windows,
    decode_common,
    decode_header,
    decode_rom,
    u8,
    u16,
    u32,
)
from pcitree.regs import Command, HeaderType, MemType


def test_register_reads_are_little_endian():
    cfg = bytes(range(64))
    assert u8(cfg, 0x10) == 0x10
    assert u16(cfg, 0x10) == 0x1110
    assert u32(cfg, 0x10) == 0x13121110
    assert u32(cfg, 60) == 0x3F3E3D3C


def test_register_read_past_end_raises():
    cfg = bytes(64)
    with pytest.raises(IndexError):
        u32(cfg, 62)
    with pytest.raises(IndexError):
        u8(cfg, 64)


def test_decode_common(make_config):
    cfg = make_config(
        0x10DE, 0x1DB6, 0x0300, 0x80, revision=0xA1, prog_if=0x00, status=0x0200
    )
    cfg.u8(0x0C, 0x10).u8(0x0D, 0x40).u8(0x0F, 0x85).u8(0x3C, 11).u8(0x3D, 1)
    common = decode_common(cfg.build())
    assert common.vendor_id == 0x10DE
    assert common.device_id == 0x1DB6
    assert common.class_code == 0x0300
    assert common.base_class == 0x03
    assert common.revision == 0xA1
    assert common.layout == 0
    assert common.multifunction
    assert common.devsel == "medium"
    assert common.cache_line == 0x10
    assert common.latency == 0x40
    assert common.bist_capable and not common.bist_running
    assert common.bist_code == 5
    assert (common.interrupt_line, common.interrupt_pin) == (11, 1)


def test_memory_bar_32bit_non_prefetchable(make_config, make_record):
    cfg = make_config(command=Command.MEMORY).u32(0x10, 0xFEBFF000)
    bars = decode_bars(make_record(0, 3, 0, cfg), 6, bus_centric=True)
    assert len(bars) == 1
    assert str(bars[0]) == "Memory at febff000 (32-bit, non-prefetchable)"

    # Host view takes the address from the OS value, the type from the register.
    rec = make_record(0, 3, 0, cfg, bases=(0xFEBFF000, 0, 0, 0, 0, 0))
    assert str(decode_bars(rec, 6)[0]) == "Memory at febff000 (32-bit, non-prefetchable)"


@pytest.mark.parametrize(
    "register, flags",
    [
        (0xFE000000, 0x0),
        (0xFE000002, 0x2),
        (0xFE000008, 0x8),
        (0xFE00000C, 0xC),
        (0x0000D001, 0x1),
    ],
)
def test_bar_flags_round_trip(make_config, make_record, register, flags):
    cfg = make_config(command=Command.IO | Command.MEMORY).u32(0x10, register)
    (bar,) = decode_bars(make_record(0, 1, 0, cfg), 6, bus_centric=True)
    assert bar.encode_flags() == flags
    assert bar.encode_flags() == register & (0x1 if register & 1 else 0xF)


def test_io_bar(make_config, make_record):
    cfg = make_config(command=Command.IO).u32(0x14, 0xE001)
    (bar,) = decode_bars(make_record(0, 1, 0, cfg), 6, bus_centric=True)
    assert bar.index == 1
    assert bar.is_io
    assert str(bar) == "I/O ports at e000"


def test_64bit_bar_combines_high_half_in_bus_view(make_config, make_record):
    cfg = make_config(command=Command.MEMORY)
    cfg.u32(0x10, 0x0000000C).u32(0x14, 0x00000001).u32(0x18, 0xFD000000)
    bars = decode_bars(make_record(0, 1, 0, cfg), 6, bus_centric=True)
    assert [b.index for b in bars] == [0, 2]
    assert bars[0].address == 0x100000000
    assert bars[0].mem_type == MemType.BITS_64
    assert str(bars[0]) == "Memory at 0000000100000000 (64-bit, prefetchable)"


def test_64bit_bar_in_last_slot_has_unknown_high_half(make_config, make_record):
    cfg = make_config(command=Command.MEMORY).u32(0x24, 0xF000000C)
    (bar,) = decode_bars(make_record(0, 1, 0, cfg), 6, bus_centric=True)
    assert bar.index == 5
    assert bar.high_unknown
    assert str(bar) == "Memory at ????????f0000000 (64-bit, prefetchable)"

    # A type 1 header only has two BARs, so slot 1 is already the last one.
    br = make_config(0x8086, 0x244E, 0x0604, 1, command=Command.MEMORY)
    br.u32(0x14, 0xF000000C)
    (bar,) = decode_bars(make_record(0, 1, 0, br), 2, bus_centric=True)
    assert bar.high_unknown


def test_unassigned_64bit_bar_still_consumes_high_register(make_config, make_record):
    cfg = make_config(command=Command.IO | Command.MEMORY)
    cfg.u32(0x10, 0x00000004).u32(0x14, 0x00000001).u32(0x18, 0x0000D001)
    # OS value for slot 1 would look like a valid BAR if it were not skipped.
    rec = make_record(0, 1, 0, cfg, bases=(0, 0x12340000, 0xD001, 0, 0, 0))
    bars = decode_bars(rec, 6)
    assert [(b.index, b.is_io) for b in bars] == [(2, True)]


def test_all_ones_bar_is_omitted(make_config, make_record):
    cfg = make_config(command=Command.MEMORY).u32(0x10, 0xFFFFFFFF)
    assert decode_bars(make_record(0, 1, 0, cfg), 6, bus_centric=True) == ()


def test_disabled_bar_is_omitted(make_config, make_record):
    cfg = make_config(command=0).u32(0x10, 0xFEBFF000).u32(0x14, 0xC001)
    assert decode_bars(make_record(0, 1, 0, cfg), 6, bus_centric=True) == ()

    rec = make_record(0, 1, 0, cfg, bases=(0xFEBFF000, 0xC001, 0, 0, 0, 0))
    assert decode_bars(rec, 6) == ()


def test_disabled_64bit_bar_still_consumes_high_register(make_config, make_record):
    # Memory decode off, I/O decode on.  The high dword reads like an I/O BAR.
    cfg = make_config(command=Command.IO)
    cfg.u32(0x10, 0xFEBF000C).u32(0x14, 0x0000C001).u32(0x18, 0x0000D001)
    bars = decode_bars(make_record(0, 1, 0, cfg), 6, bus_centric=True)
    assert [(b.index, b.is_io) for b in bars] == [(2, True)]
    assert str(bars[0]) == "I/O ports at d000"


def test_low_1m_bar():
    bar = BaseAddress(index=0, is_io=False, address=0xC8000, mem_type=MemType.LOW_1M)
    assert str(bar) == "Memory at 000c8000 (low-1M 32-bit, non-prefetchable)"
    assert bar.encode_flags() == 0x2


def test_rom(make_config, make_record):
    cfg = make_config().u32(0x30, 0xFE000001)
    rom = decode_rom(make_record(0, 1, 0, cfg), 0x30, bus_centric=True)
    assert str(rom) == "Expansion ROM at fe000000"

    # The host view wins over the register in the default view.
    cfg = make_config().u32(0x30, 0xFE000000)
    rec = make_record(0, 1, 0, cfg, rom=0xFE0007FF)
    assert str(decode_rom(rec, 0x30)) == "Expansion ROM at fe000000"
    assert decode_rom(rec, 0x30, bus_centric=True) is None

    assert decode_rom(make_record(0, 1, 0, make_config()), 0x30) is None


def test_rom_without_enable_bit_is_omitted(make_config, make_record):
    cfg = make_config().u32(0x30, 0xFE000000)
    assert decode_rom(make_record(0, 1, 0, cfg, rom=0xFE000000), 0x30) is None


def _window_bridge(make_bridge_config, **regs):
    cfg = make_bridge_config(0, 1, 1)
    for width, pos, value in regs.values():
        getattr(cfg, width)(pos, value)
    return cfg.build()


def test_window_range_type_mismatch(make_bridge_config):
    # I/O base says 16-bit, limit says 32-bit.
    cfg = _window_bridge(
        make_bridge_config,
        io_base=("u8", 0x1C, 0x00),
        io_limit=("u8", 0x1D, 0x01),
    )
    io, mem, pref = decode_bridge_windows(cfg)
    assert io.anomaly == "Unknown I/O range types 0/1"
    assert not io.present
    assert str(io) == "!!! Unknown I/O range types 0/1"


def test_memory_window_rejects_non_zero_type(make_bridge_config):
    cfg = _window_bridge(
        make_bridge_config,
        mem_base=("u16", 0x20, 0xFD01),
        mem_limit=("u16", 0x22, 0xFE01),
    )
    _, mem, _ = decode_bridge_windows(cfg)
    assert mem.anomaly == "Unknown memory range types fd01/fe01"


def test_prefetch_window_invalid_type(make_bridge_config):
    cfg = _window_bridge(
        make_bridge_config,
        pref_base=("u16", 0x24, 0xE002),
        pref_limit=("u16", 0x26, 0xE7F2),
    )
    _, _, pref = decode_bridge_windows(cfg)
    assert pref.anomaly == "Unknown prefetchable memory range types e002/e7f2"


def test_well_formed_windows(make_bridge_config):
    cfg = _window_bridge(
        make_bridge_config,
        io_base=("u8", 0x1C, 0x11),
        io_limit=("u8", 0x1D, 0x21),
        io_base_hi=("u16", 0x30, 0x0001),
        io_limit_hi=("u16", 0x32, 0x0001),
        mem_base=("u16", 0x20, 0xFD00),
        mem_limit=("u16", 0x22, 0xFE00),
        pref_base=("u16", 0x24, 0x0001),
        pref_limit=("u16", 0x26, 0x00F1),
        pref_base_hi=("u32", 0x28, 0x00000040),
        pref_limit_hi=("u32", 0x2C, 0x00000040),
    )
    io, mem, pref = decode_bridge_windows(cfg)
    assert io.kind is WindowKind.IO and io.wide
    assert (io.base, io.limit) == (0x11000, 0x12FFF)
    assert str(io) == "I/O behind bridge: 00011000-00012fff"
    assert str(mem) == "Memory behind bridge: fd000000-fe0fffff"
    assert pref.wide
    assert str(pref) == (
        "Prefetchable memory behind bridge: 0000004000000000-0000004000ffffff"
    )
    assert all(w.present for w in (io, mem, pref))


def test_zero_base_window_is_not_present(make_bridge_config):
    io, mem, pref = decode_bridge_windows(make_bridge_config(0, 1, 1).build())
    assert io.anomaly is None and not io.present
    assert mem.anomaly is None and not mem.present
    assert pref.anomaly is None and not pref.present


def test_decode_header_normal(make_config, make_record):
    cfg = make_config(0x10DE, 0x1DB6, 0x0300, command=Command.MEMORY)
    cfg.u32(0x10, 0xFD000000).u16(0x2C, 0x1043).u16(0x2E, 0x0200)
    cfg.u8(0x3E, 0x05).u8(0x3F, 0x10)
    hdr = decode_header(make_record(1, 0, 0, cfg), bus_centric=True)
    assert hdr.mismatch is None
    assert isinstance(hdr.layout, DeviceLayout)
    assert hdr.subsystem == (0x1043, 0x0200)
    assert (hdr.layout.min_gnt, hdr.layout.max_lat) == (5, 0x10)
    assert len(hdr.layout.bars) == 1


def test_decode_header_bridge(make_bridge_config, make_record):
    cfg = make_bridge_config(0, 2, 4).u8(0x1B, 0x40).u32(0x38, 0xFC000001)
    hdr = decode_header(make_record(0, 1, 0, cfg), bus_centric=True)
    lay = hdr.layout
    assert isinstance(lay, BridgeLayout)
    assert str(lay.buses) == "Bus: primary=00, secondary=02, subordinate=04, sec-latency=64"
    assert str(lay.rom) == "Expansion ROM at fc000000"
    assert hdr.subsystem is None


@pytest.mark.parametrize(
    "header_type, class16, message",
    [
        (0x00, 0x0604, "Header type 00 doesn't match class code 0604"),
        (0x01, 0x0300, "Header type 01 doesn't match class code 0300"),
        (0x02, 0x0300, "Header type 02 doesn't match class code 0300"),
        (0x05, 0x0300, "Unknown header type 05"),
    ],
)
def test_header_mismatch(make_config, make_record, header_type, class16, message):
    cfg = make_config(0x8086, 0x1234, class16, header_type)
    hdr = decode_header(make_record(0, 1, 0, cfg))
    assert hdr.mismatch == message
    assert hdr.layout is None


def test_multifunction_bit_ignored_for_layout(make_bridge_config, make_record):
    cfg = make_bridge_config(0, 1, 1, header_type=0x81)
    assert isinstance(decode_header(make_record(0, 1, 0, cfg)).layout, BridgeLayout)


def test_cardbus_header(make_bridge_config, make_record):
    cfg = make_bridge_config(
        0, 2, 5, header_type=2, class16=0x0607, command=Command.IO | Command.MEMORY
    )
    cfg.u32(0x1C, 0x10000000).u32(0x20, 0x10FFF000)  # memory window 0
    cfg.u32(0x2C, 0x00001000).u32(0x30, 0x000010FF)  # I/O window 0, 16-bit
    cfg.u16(0x3E, 0x0100)  # window 0 prefetchable
    cfg.u16(0x40, 0x1043).u16(0x42, 0x0200).u16(0x44, 0x03E0)

    hdr = decode_header(make_record(0, 1, 0, cfg))
    lay = hdr.layout
    assert isinstance(lay, CardbusLayout)
    assert (lay.buses.primary, lay.buses.secondary, lay.buses.subordinate) == (0, 2, 5)
    assert [str(w) for w in lay.memory_windows] == [
        "Memory window 0: 10000000-10fff000 (prefetchable)"
    ]
    assert [str(w) for w in lay.io_windows] == ["I/O window 0: 00001000-000010ff"]
    assert hdr.subsystem == (0x1043, 0x0200)
    assert lay.legacy_base == 0x03E0


def test_cardbus_short_block_has_no_extended_fields(make_bridge_config, make_record):
    cfg = make_bridge_config(0, 2, 2, header_type=2, class16=0x0607, size=64)
    lay = decode_header(make_record(0, 1, 0, cfg)).layout
    assert lay.subsystem_vendor is None
    assert lay.legacy_base is None


def test_bridge_bus_numbers(make_config, make_bridge_config):
    assert bridge_bus_numbers(make_bridge_config(0, 1, 3).build()) == (
        HeaderType.BRIDGE,
        0,
        1,
        3,
    )
    cb = make_bridge_config(1, 4, 7, header_type=2).build()
    assert bridge_bus_numbers(cb) == (HeaderType.CARDBUS, 1, 4, 7)
    # Only class 0x0604 makes a topology bridge, whatever the header type.
    cb_class = make_bridge_config(1, 4, 7, header_type=2, class16=0x0607).build()
    assert bridge_bus_numbers(cb_class) is None
    assert bridge_bus_numbers(make_config().build()) is None
    wrong_class = make_bridge_config(0, 1, 1, class16=0x0680).build()
    assert bridge_bus_numbers(wrong_class) is None
