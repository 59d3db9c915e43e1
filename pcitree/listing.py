#
# Python pcitree library
# Flat per-device listing
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
"""
lspci-style paragraphs for each device.

Every function returns lines without trailing newlines; `show()` strings
the per-device paragraphs together in record order.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from . import regs
from .decode import (
    BaseAddress,
    BridgeLayout,
    CardbusLayout,
    CommonHeader,
    DeviceLayout,
    ExpansionRom,
    HeaderDecode,
    decode_common,
    decode_header,
    u16,
)
from .names import Names
from .options import DisplayOptions
from .records import CONFIG_SIZE_FULL, RawRecord
from .regs import (
    BridgeControl,
    CardbusBridgeControl,
    Command,
    HeaderType,
    Status,
    flag_char,
)


def _has_subsystem(sv: Optional[int]) -> bool:
    return bool(sv) and sv != 0xFFFF


def terse_line(
    rec: RawRecord,
    names: Names,
    opts: DisplayOptions,
    common: Optional[CommonHeader] = None,
) -> str:
    common = common or decode_common(rec.config)
    line = (
        f"{rec.address} {names.class_name(common.class_code)}: "
        f"{names.device_full(rec.vendor_id, rec.device_id)}"
    )
    if common.revision:
        line += f" (rev {common.revision:02x})"
    if opts.verbosity and common.prog_if:
        line += f" (prog-if {common.prog_if:02x})"
    return line


def _bar_lines(bars: Sequence[BaseAddress], opts: DisplayOptions) -> List[str]:
    out = []
    for bar in bars:
        lead = f"\tRegion {bar.index}: " if opts.verbosity > 1 else "\t"
        out.append(f"{lead}{bar}")
    return out


def _rom_lines(rom: Optional[ExpansionRom]) -> List[str]:
    return [] if rom is None else [f"\t{rom}"]


def _normal_lines(layout: DeviceLayout, opts: DisplayOptions) -> List[str]:
    return _bar_lines(layout.bars, opts) + _rom_lines(layout.rom)


def _bridge_lines(layout: BridgeLayout, opts: DisplayOptions) -> List[str]:
    out = _bar_lines(layout.bars, opts)
    out.append(f"\t{layout.buses}")
    for window in layout.windows:
        if window.anomaly is not None or window.present:
            out.append(f"\t{window}")
    if layout.sec_status & Status.SIG_SYSTEM_ERROR:
        out.append("\tSecondary status: SERR")
    out.extend(_rom_lines(layout.rom))
    if opts.verbosity > 1:
        brc = layout.bridge_control
        out.append(
            "\tBridgeCtl: "
            f"Parity{flag_char(brc, BridgeControl.PARITY)} "
            f"SERR{flag_char(brc, BridgeControl.SERR)} "
            f"NoISA{flag_char(brc, BridgeControl.NO_ISA)} "
            f"VGA{flag_char(brc, BridgeControl.VGA)} "
            f"MAbort{flag_char(brc, BridgeControl.MASTER_ABORT)} "
            f">Reset{flag_char(brc, BridgeControl.BUS_RESET)} "
            f"FastB2B{flag_char(brc, BridgeControl.FAST_BACK)}"
        )
    return out


def _cardbus_lines(layout: CardbusLayout, opts: DisplayOptions) -> List[str]:
    out = _bar_lines(layout.bars, opts)
    out.append(f"\t{layout.buses}")
    out.extend(f"\t{w}" for w in layout.memory_windows)
    out.extend(f"\t{w}" for w in layout.io_windows)
    if layout.sec_status & Status.SIG_SYSTEM_ERROR:
        out.append("\tSecondary status: SERR")
    if opts.verbosity > 1:
        brc = layout.bridge_control
        out.append(
            "\tBridgeCtl: "
            f"Parity{flag_char(brc, CardbusBridgeControl.PARITY)} "
            f"SERR{flag_char(brc, CardbusBridgeControl.SERR)} "
            f"ISA{flag_char(brc, CardbusBridgeControl.ISA)} "
            f"VGA{flag_char(brc, CardbusBridgeControl.VGA)} "
            f"MAbort{flag_char(brc, CardbusBridgeControl.MASTER_ABORT)} "
            f">Reset{flag_char(brc, CardbusBridgeControl.CB_RESET)} "
            f"16bInt{flag_char(brc, CardbusBridgeControl.INT_16BIT)} "
            f"PostWrite{flag_char(brc, CardbusBridgeControl.POST_WRITES)}"
        )
    if layout.legacy_base:
        out.append(f"\t16-bit legacy interface ports at {layout.legacy_base:04x}")
    return out


def _control_line(cmd: Command) -> str:
    return (
        "\tControl: "
        f"I/O{flag_char(cmd, Command.IO)} "
        f"Mem{flag_char(cmd, Command.MEMORY)} "
        f"BusMaster{flag_char(cmd, Command.MASTER)} "
        f"SpecCycle{flag_char(cmd, Command.SPECIAL)} "
        f"MemWINV{flag_char(cmd, Command.INVALIDATE)} "
        f"VGASnoop{flag_char(cmd, Command.VGA_PALETTE)} "
        f"ParErr{flag_char(cmd, Command.PARITY)} "
        f"Stepping{flag_char(cmd, Command.WAIT)} "
        f"SERR{flag_char(cmd, Command.SERR)} "
        f"FastB2B{flag_char(cmd, Command.FAST_BACK)}"
    )


def _status_line(common: CommonHeader) -> str:
    st = common.status
    return (
        "\tStatus: "
        f"66Mhz{flag_char(st, Status.MHZ_66)} "
        f"UDF{flag_char(st, Status.UDF)} "
        f"FastB2B{flag_char(st, Status.FAST_BACK)} "
        f"ParErr{flag_char(st, Status.PARITY)} "
        f"DEVSEL={common.devsel} "
        f">TAbort{flag_char(st, Status.SIG_TARGET_ABORT)} "
        f"<TAbort{flag_char(st, Status.REC_TARGET_ABORT)} "
        f"<MAbort{flag_char(st, Status.REC_MASTER_ABORT)} "
        f">SERR{flag_char(st, Status.SIG_SYSTEM_ERROR)} "
        f"<PERR{flag_char(st, Status.DETECTED_PARITY)}"
    )


def _flags_line(rec: RawRecord, common: CommonHeader, int_pin: int, irq: int) -> str:
    cmd = common.command
    st = common.status
    parts = []
    if cmd & Command.MASTER:
        parts.append("bus master")
    if cmd & Command.VGA_PALETTE:
        parts.append("VGA palette snoop")
    if cmd & Command.WAIT:
        parts.append("stepping")
    if cmd & Command.FAST_BACK:
        parts.append("fast Back2Back")
    if st & Status.MHZ_66:
        parts.append("66Mhz")
    if st & Status.UDF:
        parts.append("user-definable features")
    parts.append(f"{common.devsel} devsel")
    if cmd & Command.MASTER:
        parts.append(f"latency {common.latency}")
    if int_pin:
        parts.append(f"IRQ {irq}" if rec.irq else "IRQ ?")
    return "\tFlags: " + ", ".join(parts)


def verbose_lines(rec: RawRecord, names: Names, opts: DisplayOptions) -> List[str]:
    hdr: HeaderDecode = decode_header(rec, opts.bus_centric)
    common = hdr.common
    out = [terse_line(rec, names, opts, common)]
    if hdr.mismatch is not None:
        out.append(f"\t!!! {hdr.mismatch}")
        return out

    layout = hdr.layout
    int_pin = common.interrupt_pin
    min_gnt = max_lat = 0
    if isinstance(layout, DeviceLayout):
        min_gnt, max_lat = layout.min_gnt, layout.max_lat
    elif isinstance(layout, BridgeLayout):
        int_pin = 0
    irq = common.interrupt_line if opts.bus_centric else rec.irq

    sub = hdr.subsystem
    if sub is not None and _has_subsystem(sub[0]):
        sv, sd = sub
        out.append(
            f"\tSubsystem: {names.subsystem_full(rec.vendor_id, rec.device_id, sv, sd)}"
        )

    if opts.verbosity > 1:
        out.append(_control_line(common.command))
        out.append(_status_line(common))
        if common.command & Command.MASTER:
            lat = ""
            if min_gnt:
                lat += f"{min_gnt} min, "
            if max_lat:
                lat += f"{max_lat} max, "
            lat += f"{common.latency} set"
            if common.cache_line:
                lat += f", cache line size {common.cache_line:02x}"
            out.append(f"\tLatency: {lat}")
        if int_pin:
            pin = chr(ord("A") + int_pin - 1)
            out.append(f"\tInterrupt: pin {pin} routed to IRQ {irq}")
    else:
        out.append(_flags_line(rec, common, int_pin, irq))

    if common.bist_capable:
        if common.bist_running:
            out.append("\tBIST is running")
        else:
            out.append(f"\tBIST result: {common.bist_code:02x}")

    if isinstance(layout, DeviceLayout):
        out.extend(_normal_lines(layout, opts))
    elif isinstance(layout, BridgeLayout):
        out.extend(_bridge_lines(layout, opts))
    elif isinstance(layout, CardbusLayout):
        out.extend(_cardbus_lines(layout, opts))
    return out


def machine_lines(rec: RawRecord, names: Names, opts: DisplayOptions) -> List[str]:
    common = decode_common(rec.config)
    sv = sd = 0
    # Machine output skips the class/header consistency check.
    if common.layout == HeaderType.NORMAL:
        sv = u16(rec.config, regs.SUBSYSTEM_VENDOR_ID)
        sd = u16(rec.config, regs.SUBSYSTEM_ID)
    elif common.layout == HeaderType.CARDBUS and len(rec.config) >= CONFIG_SIZE_FULL:
        sv = u16(rec.config, regs.CB_SUBSYSTEM_VENDOR_ID)
        sd = u16(rec.config, regs.CB_SUBSYSTEM_ID)

    cls = names.class_name(common.class_code)
    vendor = names.vendor(rec.vendor_id)
    device = names.device(rec.vendor_id, rec.device_id)

    if opts.verbosity:
        out = [
            f"Device:\t{rec.address}",
            f"Class:\t{cls}",
            f"Vendor:\t{vendor}",
            f"Device:\t{device}",
        ]
        if _has_subsystem(sv):
            out.append(f"SVendor:\t{names.subsystem_vendor(sv)}")
            out.append(
                f"SDevice:\t{names.subsystem_device(rec.vendor_id, rec.device_id, sv, sd)}"
            )
        if common.revision:
            out.append(f"Rev:\t{common.revision:02x}")
        if common.prog_if:
            out.append(f"ProgIf:\t{common.prog_if:02x}")
        return out

    line = f'{rec.address} "{cls}" "{vendor}" "{device}"'
    if common.revision:
        line += f" -r{common.revision:02x}"
    if common.prog_if:
        line += f" -p{common.prog_if:02x}"
    if _has_subsystem(sv):
        line += (
            f' "{names.subsystem_vendor(sv)}"'
            f' "{names.subsystem_device(rec.vendor_id, rec.device_id, sv, sd)}"'
        )
    else:
        line += ' "" ""'
    return [line]


def hex_dump_lines(rec: RawRecord, depth: int) -> List[str]:
    cfg = rec.config
    out = []
    for off in range(0, min(depth, len(cfg)), 16):
        row = " ".join(f"{b:02x}" for b in cfg[off : off + 16])
        out.append(f"{off:02x}: {row}")
    return out


def show_device(rec: RawRecord, names: Names, opts: DisplayOptions) -> List[str]:
    if opts.machine_readable:
        out = machine_lines(rec, names, opts)
    elif opts.verbosity:
        out = verbose_lines(rec, names, opts)
    else:
        out = [terse_line(rec, names, opts)]
    if opts.hex_dump_depth:
        out.extend(hex_dump_lines(rec, opts.hex_dump_depth))
    if opts.verbosity or opts.hex_dump_depth:
        out.append("")
    return out


def show(records: Iterable[RawRecord], names: Names, opts: DisplayOptions) -> List[str]:
    out: List[str] = []
    for rec in records:
        out.extend(show_device(rec, names, opts))
    return out
