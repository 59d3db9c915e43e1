#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# Python pcitree library
# lspci-compatible command line
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence

from . import __version__
from .discovery import open_ids_db
from .exceptions import FilterSyntaxError, PciTreeError
from .filter import DeviceFilter
from .listing import show
from .log import get_logger, setup_logging
from .names import Names
from .options import MAX_VERBOSITY, DisplayOptions
from .procfs import PROC_BUS_PCI_DEFAULT, ProcBusEnumerator
from .records import CONFIG_SIZE_FULL, CONFIG_SIZE_SHORT, sort_records
from .sysfs import SysfsEnumerator
from .topology import build_topology
from .tree import render_tree

log = get_logger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ProgramArgs:
    verbose: int = 0
    numeric: bool = False
    bus_centric: bool = False
    hex_dump: int = 0  # number of -x switches
    slot: Optional[str] = None
    ids: Optional[str] = None
    tree: bool = False
    machine: bool = False
    db_path: Optional[str] = None
    proc_path: str = PROC_BUS_PCI_DEFAULT
    sysfs_path: Optional[str] = None
    log_level: Optional[str] = None


def build_options(args: ProgramArgs) -> DisplayOptions:
    if args.hex_dump > 1:
        depth = CONFIG_SIZE_FULL
    elif args.hex_dump == 1:
        depth = CONFIG_SIZE_SHORT
    else:
        depth = 0
    return DisplayOptions(
        verbosity=min(args.verbose, MAX_VERBOSITY),
        bus_centric=args.bus_centric,
        hex_dump_depth=depth,
        tree_mode=args.tree,
        machine_readable=args.machine,
        numeric_ids=args.numeric,
    )


def build_filter(args: ProgramArgs) -> DeviceFilter:
    device_filter = DeviceFilter()
    if args.slot is not None:
        try:
            device_filter.parse_slot(args.slot)
        except FilterSyntaxError as e:
            raise FilterSyntaxError(f"-s: {e}") from None
    if args.ids is not None:
        try:
            device_filter.parse_id(args.ids)
        except FilterSyntaxError as e:
            raise FilterSyntaxError(f"-d: {e}") from None
    return device_filter


def render(args: ProgramArgs) -> List[str]:
    opts = build_options(args)
    device_filter = build_filter(args)

    db = None if opts.numeric_ids else open_ids_db(args.db_path)
    try:
        names = Names(db, numeric=opts.numeric_ids)

        if args.sysfs_path:
            source = SysfsEnumerator(args.sysfs_path)
        else:
            source = ProcBusEnumerator(args.proc_path)
        records = sort_records(source.scan(opts.config_size, device_filter))
        log.debug("devices_selected", count=len(records))

        if opts.tree_mode:
            topo = build_topology(records)
            lines = render_tree(topo, names if opts.verbosity else None)
            lines.extend(f"!!! {text}" for text in topo.anomalies)
        else:
            lines = show(records, names, opts)
    finally:
        if db is not None:
            db.close()
    return lines


def run(args: ProgramArgs) -> None:
    setup_logging(args.log_level)
    for line in render(args):
        print(line)


def make_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="lspci", description="List PCI devices and the bus tree behind them"
    )
    ap.add_argument(
        "-v", dest="verbose", action="count", default=0, help="be verbose (-vv: very)"
    )
    ap.add_argument("-n", dest="numeric", action="store_true", help="show numeric IDs")
    ap.add_argument(
        "-b",
        dest="bus_centric",
        action="store_true",
        help="bus-centric view (PCI addresses and IRQs instead of those seen by the CPU)",
    )
    ap.add_argument(
        "-x",
        dest="hex_dump",
        action="count",
        default=0,
        help="show hex-dump of config space (-xx shows full 256 bytes)",
    )
    ap.add_argument(
        "-s",
        dest="slot",
        metavar="[[<bus>]:][<slot>][.[<func>]]",
        help="show only devices in selected slots",
    )
    ap.add_argument(
        "-d",
        dest="ids",
        metavar="[<vendor>]:[<device>]",
        help="show only selected devices",
    )
    ap.add_argument("-t", dest="tree", action="store_true", help="show bus tree")
    ap.add_argument(
        "-m", dest="machine", action="store_true", help="produce machine-readable output"
    )
    ap.add_argument(
        "-i", dest="db_path", metavar="<file>", default=None, help="path to pci.ids"
    )
    ap.add_argument(
        "-p",
        dest="proc_path",
        metavar="<dir>",
        default=PROC_BUS_PCI_DEFAULT,
        help=f"use specified bus directory instead of {PROC_BUS_PCI_DEFAULT}",
    )
    ap.add_argument(
        "--sysfs",
        dest="sysfs_path",
        metavar="<dir>",
        default=None,
        help="enumerate from a /sys/bus/pci/devices directory instead",
    )
    ap.add_argument(
        "--log-level",
        dest="log_level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="diagnostic log level (default: $PCITREE_LOG_LEVEL or WARNING)",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    ns = make_parser().parse_args(argv)
    try:
        run(ProgramArgs(**vars(ns)))
    except PciTreeError as e:
        print(f"lspci: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
