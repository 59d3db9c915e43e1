#
# Python pcitree library
# ASCII tree renderer
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Set

from .topology import HOST, Bridge, Bus, Topology

if TYPE_CHECKING:
    from .names import Names


def continuation(line: str) -> str:
    """Blank out a printed line, keeping vertical connectors for later lines."""
    return "".join("|" if c in "+|" else " " for c in line)


class _TreeWriter:
    # Every method takes the text to the left of what it draws and returns
    # the continuation form of the last line it emitted.

    def __init__(self, topo: Topology, names: Optional["Names"]) -> None:
        self.topo = topo
        self.names = names
        self.lines: List[str] = []
        self._path: Set[int] = set()

    def emit(self, line: str) -> str:
        self.lines.append(line)
        return continuation(line)

    def bridge(self, bridge: Bridge, prefix: str) -> str:
        buses = self.topo.buses_of(bridge)
        if bridge.index == HOST:
            prefix += "-"
        if len(buses) == 1:
            if bridge.index == HOST:
                prefix += f"[{buses[0].number:02x}]-"
            return self.bus(buses[0], prefix)

        col = len(prefix)
        cont = prefix
        for n, bus in enumerate(buses):
            glyph = "\\-" if n == len(buses) - 1 else "+-"
            cont = self.bus(bus, f"{cont[:col]}{glyph}[{bus.number:02x}]-")
        return cont

    def bus(self, bus: Bus, prefix: str) -> str:
        devices = bus.devices
        if not devices:
            return self.emit(prefix)
        if len(devices) == 1:
            return self.device(devices[0], prefix + "-")

        col = len(prefix)
        cont = prefix
        for n, ri in enumerate(devices):
            glyph = "\\-" if n == len(devices) - 1 else "+-"
            cont = self.device(ri, cont[:col] + glyph)
        return cont

    def device(self, ri: int, prefix: str) -> str:
        rec = self.topo.records[ri]
        line = f"{prefix}{rec.slot:02x}.{rec.func:x}"

        bridge = self.topo.bridge_for(ri)
        if bridge is not None and bridge.index not in self._path:
            if bridge.secondary == bridge.subordinate:
                line += f"-[{bridge.secondary:02x}]-"
            else:
                line += f"-[{bridge.secondary:02x}-{bridge.subordinate:02x}]-"
            self._path.add(bridge.index)
            try:
                return self.bridge(bridge, line)
            finally:
                self._path.discard(bridge.index)

        if self.names is not None:
            line += "  " + self.names.device_full(rec.vendor_id, rec.device_id)
        return self.emit(line)


def render_tree(topo: Topology, names: Optional["Names"] = None) -> List[str]:
    """
    Draw the forest as lspci -t does, one string per output line.

    `names` switches on detail mode: leaf devices get their full name
    appended after two spaces.
    """
    writer = _TreeWriter(topo, names)
    writer.bridge(topo.host, "")
    return writer.lines
