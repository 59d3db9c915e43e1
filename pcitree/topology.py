#
# Python pcitree library
# Bus/bridge topology builder
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
"""
Rebuild the bridge forest implied by a flat list of device records.

Nodes live in two arenas (`Topology.bridges`, `Topology.buses`) and refer to
each other and to `Topology.records` by index. Bridge 0 is the synthetic host
bridge: it claims every bus number and has no device of its own.

Bad input (cycles, duplicate secondary buses, buses nobody declares) never
raises. Each such case is recorded in `Topology.anomalies` and logged, and
the affected node is attached at the closest sensible level.
"""

from __future__ import annotations

import bisect
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .decode import bridge_bus_numbers
from .log import get_logger
from .records import RawRecord, sort_records
from .regs import HeaderType

log = get_logger(__name__)

HOST = 0
HOST_SENTINEL = 0xFFFFFFFF


@dataclass
class Bridge:
    index: int
    primary: int
    secondary: int
    subordinate: int
    device: Optional[int] = None  # record index; None for the host bridge
    header_type: Optional[HeaderType] = None
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    buses: List[int] = field(default_factory=list)  # ascending bus number

    @property
    def span(self) -> int:
        return self.subordinate - self.secondary

    def covers(self, bus: int) -> bool:
        return self.secondary <= bus <= self.subordinate


@dataclass
class Bus:
    index: int
    number: int
    bridge: int
    devices: List[int] = field(default_factory=list)  # record indices, sorted


@dataclass
class Topology:
    records: List[RawRecord]
    bridges: List[Bridge] = field(default_factory=list)
    buses: List[Bus] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)
    _device_bridge: Dict[int, int] = field(default_factory=dict, repr=False)
    _record_bus: Dict[int, int] = field(default_factory=dict, repr=False)

    @property
    def host(self) -> Bridge:
        return self.bridges[HOST]

    def bridge_for(self, record_index: int) -> Optional[Bridge]:
        """The bridge implemented by this record, if it is one."""
        bi = self._device_bridge.get(record_index)
        return None if bi is None else self.bridges[bi]

    def bus_of(self, record_index: int) -> Bus:
        return self.buses[self._record_bus[record_index]]

    def buses_of(self, bridge: Bridge) -> List[Bus]:
        return [self.buses[i] for i in bridge.buses]

    def children_of(self, bridge: Bridge) -> List[Bridge]:
        return [self.bridges[i] for i in bridge.children]

    def device_name(self, bridge: Bridge) -> str:
        if bridge.device is None:
            return "host bridge"
        return str(self.records[bridge.device].address)

    def to_dict(self) -> Dict[str, Any]:
        bridges = []
        for b in self.bridges:
            bridges.append(
                {
                    "index": b.index,
                    "device": None
                    if b.device is None
                    else str(self.records[b.device].address),
                    "primary": b.primary,
                    "secondary": b.secondary,
                    "subordinate": b.subordinate,
                    "parent": b.parent,
                    "children": list(b.children),
                    "buses": list(b.buses),
                }
            )
        buses = [
            {
                "index": u.index,
                "number": u.number,
                "bridge": u.bridge,
                "devices": [str(self.records[i].address) for i in u.devices],
            }
            for u in self.buses
        ]
        return {
            "version": 1,
            "bridges": bridges,
            "buses": buses,
            "anomalies": list(self.anomalies),
        }

    # ----- construction helpers -----

    def _note(self, text: str) -> None:
        log.warning("topology_anomaly", detail=text)
        self.anomalies.append(text)

    def _add_bus(self, bridge_index: int, number: int) -> Bus:
        bus = Bus(index=len(self.buses), number=number, bridge=bridge_index)
        self.buses.append(bus)
        owner = self.bridges[bridge_index]
        numbers = [self.buses[i].number for i in owner.buses]
        owner.buses.insert(bisect.bisect_right(numbers, number), bus.index)
        return bus

    def _find_bus(self, bridge: Bridge, number: int) -> Optional[Bus]:
        for i in bridge.buses:
            if self.buses[i].number == number:
                return self.buses[i]
        return None


def _tightest(
    bridges: Iterable[Bridge], bus: int, exclude: Optional[int] = None
) -> Optional[Bridge]:
    best: Optional[Bridge] = None
    for cand in bridges:
        if cand.index == exclude or not cand.covers(bus):
            continue
        if best is None or cand.span < best.span:
            best = cand
    return best


def _link_parents(topo: Topology) -> None:
    for b in topo.bridges[1:]:
        parent = _tightest(topo.bridges, b.primary, exclude=b.index)
        # The host claims every bus number, so there is always a parent.
        assert parent is not None
        b.parent = parent.index

    for b in topo.bridges[1:]:
        seen = set()
        cur = b.index
        while cur != HOST and cur not in seen:
            seen.add(cur)
            cur = topo.bridges[cur].parent
        if cur != HOST:
            topo.bridges[cur].parent = HOST
            topo._note(
                f"Bridge {topo.device_name(topo.bridges[cur])} is part of a "
                f"bus number cycle, attached to the host bridge"
            )

    for b in topo.bridges[1:]:
        topo.bridges[b.parent].children.append(b.index)


def _place(topo: Topology, ri: int) -> None:
    rec = topo.records[ri]
    own = topo._device_bridge.get(ri)
    cur = topo.host
    while True:
        bus = topo._find_bus(cur, rec.bus)
        if bus is not None:
            break
        child = _tightest(topo.children_of(cur), rec.bus, exclude=own)
        if child is None:
            bus = topo._add_bus(cur.index, rec.bus)
            if cur.index != HOST:
                topo._note(
                    f"No bridge declares bus {rec.bus:02x} for {rec.address}, "
                    f"attached below {topo.device_name(cur)}"
                )
            break
        cur = child
    bus.devices.append(ri)
    topo._record_bus[ri] = bus.index


def build_topology(records: Iterable[RawRecord]) -> Topology:
    topo = Topology(records=sort_records(records))
    topo.bridges.append(
        Bridge(
            index=HOST,
            primary=HOST_SENTINEL,
            secondary=0,
            subordinate=HOST_SENTINEL,
        )
    )

    for ri, rec in enumerate(topo.records):
        nums = bridge_bus_numbers(rec.config)
        if nums is None:
            continue
        header_type, primary, secondary, subordinate = nums
        bridge = Bridge(
            index=len(topo.bridges),
            primary=primary,
            secondary=secondary,
            subordinate=subordinate,
            device=ri,
            header_type=header_type,
        )
        log.debug(
            "bridge_found",
            address=str(rec.address),
            primary=primary,
            secondary=secondary,
            subordinate=subordinate,
        )
        topo.bridges.append(bridge)
        topo._device_bridge[ri] = bridge.index

    _link_parents(topo)

    declared: Dict[int, Bridge] = {}
    for b in topo.bridges:
        first = declared.setdefault(b.secondary, b)
        if first is not b:
            topo._note(
                f"Bus {b.secondary:02x} is declared by both "
                f"{topo.device_name(first)} and {topo.device_name(b)}"
            )
        topo._add_bus(b.index, b.secondary)

    for ri in range(len(topo.records)):
        _place(topo, ri)

    return topo


def dumps_topology(topo: Topology) -> str:
    """Serialize the forest as compact, key-sorted JSON."""
    return json.dumps(topo.to_dict(), separators=(",", ":"), sort_keys=True)
