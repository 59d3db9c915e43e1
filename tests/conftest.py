# tests/conftest.py
from __future__ import annotations
import struct
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import pytest

from pcitree.log import setup_logging
from pcitree.records import RawRecord

MINIMAL_PCI_IDS = """\
# Minimal pci.ids for tests
1043  ASUSTeK Computer Inc.
8086  Intel Corporation
\t1237  440FX - 82441FX PMC
\t244e  82801 PCI Bridge
beef
\tbabe  Device Without Vendor Name
10de  NVIDIA Corporation
\t1db6  GV100GL [Tesla V100 PCIe 32GB]
\t\t1043 0200  Example Board
\t\tbaad
C 02  Network controller
\t00  Ethernet controller
C 03  Display controller
\t00  VGA compatible controller
\t\t00  VGA controller
\t\t02
C 04
\t01
C 06  Bridge
\t00  Host bridge
\t04  PCI bridge
\t\t00  Normal decode
\t07  CardBus bridge
"""


@pytest.fixture(autouse=True)
def _logging():
    # structlog's default config prints to stdout, which would pollute
    # captured listing output.
    setup_logging("WARNING")


@pytest.fixture
def pci_ids_text(tmp_path: Path) -> Path:
    p = tmp_path / "pci.ids"
    p.write_text(MINIMAL_PCI_IDS, encoding="utf-8")
    return p


# ---------- configuration space builders ----------


class ConfigBuilder:
    def __init__(self, size: int = 256):
        self.data = bytearray(size)

    def u8(self, pos: int, value: int) -> "ConfigBuilder":
        self.data[pos] = value & 0xFF
        return self

    def u16(self, pos: int, value: int) -> "ConfigBuilder":
        struct.pack_into("<H", self.data, pos, value & 0xFFFF)
        return self

    def u32(self, pos: int, value: int) -> "ConfigBuilder":
        struct.pack_into("<I", self.data, pos, value & 0xFFFFFFFF)
        return self

    def build(self) -> bytes:
        return bytes(self.data)


def _make_config(
    vendor: int = 0x8086,
    device: int = 0x1237,
    class16: int = 0x0600,
    header_type: int = 0,
    *,
    revision: int = 0,
    prog_if: int = 0,
    command: int = 0,
    status: int = 0,
    size: int = 256,
) -> ConfigBuilder:
    b = ConfigBuilder(size)
    b.u16(0x00, vendor).u16(0x02, device).u16(0x04, command).u16(0x06, status)
    b.u8(0x08, revision).u8(0x09, prog_if).u16(0x0A, class16).u8(0x0E, header_type)
    return b


def _make_bridge_config(
    primary: int,
    secondary: int,
    subordinate: int,
    *,
    header_type: int = 1,
    class16: int = 0x0604,
    vendor: int = 0x8086,
    device: int = 0x244E,
    command: int = 0,
    size: int = 256,
) -> ConfigBuilder:
    # Type 1 and CardBus headers keep the bus triple at the same offsets.
    b = _make_config(vendor, device, class16, header_type, command=command, size=size)
    b.u8(0x18, primary).u8(0x19, secondary).u8(0x1A, subordinate)
    return b


def _make_record(
    bus: int,
    slot: int,
    func: int,
    config: Union[ConfigBuilder, bytes],
    *,
    irq: int = 0,
    bases: Optional[Sequence[int]] = None,
    rom: int = 0,
) -> RawRecord:
    cfg = config.build() if isinstance(config, ConfigBuilder) else bytes(config)
    vendor, device = struct.unpack_from("<HH", cfg, 0)
    return RawRecord(
        bus=bus,
        devfn=(slot << 3) | func,
        vendor_id=vendor,
        device_id=device,
        config=cfg,
        irq=irq,
        base_addr=tuple(bases) if bases is not None else (0,) * 6,
        rom_base_addr=rom,
    )


@pytest.fixture
def make_config():
    return _make_config


@pytest.fixture
def make_bridge_config():
    return _make_bridge_config


@pytest.fixture
def make_record():
    return _make_record


# ---------- a small example machine ----------
#
#   00:00.0  host bridge
#   00:07.0  PCI bridge, buses 01..01, with I/O, memory and 64-bit prefetch windows
#   01:00.0  GPU with 32-bit, 64-bit prefetchable and I/O BARs plus a ROM


def example_system() -> List[Dict]:
    host = _make_config(
        0x8086, 0x1237, 0x0600, revision=0x02, command=0x0006, status=0x0280
    )

    bridge = _make_bridge_config(0, 1, 1, command=0x0007)
    bridge.u8(0x1B, 32).u8(0x1C, 0xD0).u8(0x1D, 0xD0)
    bridge.u16(0x20, 0xFD00).u16(0x22, 0xFE00)
    bridge.u16(0x24, 0xE001).u16(0x26, 0xE7F1)
    bridge.u16(0x3E, 0x0008)

    gpu = _make_config(
        0x10DE, 0x1DB6, 0x0300, revision=0xA1, command=0x0007, status=0x0010
    )
    gpu.u32(0x10, 0xFD000000).u32(0x14, 0xE000000C).u32(0x18, 0x00000000)
    gpu.u32(0x24, 0x0000D001)
    gpu.u16(0x2C, 0x1043).u16(0x2E, 0x0200)
    gpu.u32(0x30, 0xFE000001)
    gpu.u8(0x3C, 0x0B).u8(0x3D, 0x01)

    return [
        dict(
            bus=0x00,
            devfn=0x00,
            irq=0,
            bases=(0,) * 6,
            rom=0,
            config=host.build(),
            resources=[],
        ),
        dict(
            bus=0x00,
            devfn=0x38,
            irq=0,
            bases=(0,) * 6,
            rom=0,
            config=bridge.build(),
            resources=[],
        ),
        dict(
            bus=0x01,
            devfn=0x00,
            irq=16,
            bases=(0xFD000000, 0xE000000C, 0, 0, 0, 0xD001),
            rom=0xFE000001,
            config=gpu.build(),
            # (index, start, end, flags) as the kernel reports them in sysfs
            resources=[
                (0, 0xFD000000, 0xFDFFFFFF, 0x00040200),
                (1, 0xE0000000, 0xEFFFFFFF, 0x0014220C),
                (5, 0x0000D000, 0x0000D07F, 0x00040101),
                (6, 0xFE000000, 0xFE07FFFF, 0x00046201),
            ],
            driver="nvidia",
        ),
    ]


def _devices_line(dev: Dict) -> str:
    cfg = dev["config"]
    vendor, device = struct.unpack_from("<HH", cfg, 0)
    cols = [
        f"{dev['bus']:02x}{dev['devfn']:02x}",
        f"{vendor:04x}{device:04x}",
        f"{dev['irq']:x}",
    ]
    cols += [f"{v:16x}" for v in dev["bases"]]
    cols.append(f"{dev['rom']:16x}")
    # Newer kernels append resource sizes and the bound driver.
    cols += [f"{0:16x}"] * 7
    if dev.get("driver"):
        cols.append(dev["driver"])
    return "\t".join(cols)


@pytest.fixture
def fake_procfs(tmp_path: Path) -> Path:
    """Build a fake /proc/bus/pci directory for `example_system()`."""
    root = tmp_path / "proc_bus_pci"
    root.mkdir()
    lines = []
    for dev in example_system():
        lines.append(_devices_line(dev))
        bus_dir = root / f"{dev['bus']:02x}"
        bus_dir.mkdir(exist_ok=True)
        slot, func = dev["devfn"] >> 3, dev["devfn"] & 7
        (bus_dir / f"{slot:02x}.{func:x}").write_bytes(dev["config"])
    (root / "devices").write_text("\n".join(lines) + "\n", encoding="ascii")
    return root


def write_hex_file(p: Path, value: int) -> None:
    p.write_text(f"0x{value:04x}\n", encoding="ascii")


def make_device_dir(root: Path, bdf: str, dev: Dict) -> Path:
    d = root / bdf
    d.mkdir(parents=True, exist_ok=True)
    cfg = dev["config"]
    vendor, device = struct.unpack_from("<HH", cfg, 0)
    write_hex_file(d / "vendor", vendor)
    write_hex_file(d / "device", device)
    (d / "irq").write_text(f"{dev['irq']}\n", encoding="ascii")
    (d / "config").write_bytes(cfg)
    table = {idx: (s, e, fl) for idx, s, e, fl in dev["resources"]}
    rows = []
    for idx in range(13):
        s, e, fl = table.get(idx, (0, 0, 0))
        rows.append(f"0x{s:016x} 0x{e:016x} 0x{fl:016x}")
    (d / "resource").write_text("\n".join(rows) + "\n", encoding="ascii")
    return d


@pytest.fixture
def system_devices() -> List[Dict]:
    return example_system()


@pytest.fixture
def add_device_dir():
    return make_device_dir


@pytest.fixture
def fake_sysfs(tmp_path: Path) -> Path:
    """
    Build a fake /sys/bus/pci/devices tree describing the same machine as
    `fake_procfs`, plus entries the enumerator has to skip.
    """
    root = tmp_path / "devices"
    root.mkdir()
    for dev in example_system():
        slot, func = dev["devfn"] >> 3, dev["devfn"] & 7
        make_device_dir(root, f"0000:{dev['bus']:02x}:{slot:02x}.{func:x}", dev)

    # Device with corrupt ids
    bad = root / "0000:00:1f.0"
    bad.mkdir()
    (bad / "vendor").write_text("0xbogusvendor")
    (bad / "device").write_text("0xbogusdevice")

    # Dummy to exercise non-bdf check
    (root / "dummy").mkdir()
    return root
