"""
pcitree: PCI configuration decoding, bus topology and lspci-style output.

Public API:
    - Enumeration sources:
        ProcBusEnumerator, SysfsEnumerator, RawRecord, PciAddress
    - Decoding:
        decode_header, decode_bars, decode_bridge_windows
    - Topology / rendering:
        build_topology, dumps_topology, render_tree
    - Names:
        PciIdsDatabase, Names, open_ids_db
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover
    __version__ = version("pcitree")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0.dev0"

# Public API re-exports
from .decode import decode_bars, decode_bridge_windows, decode_header
from .discovery import open_ids_db
from .exceptions import (
    ConfigurationError,
    EnumerationError,
    FilterSyntaxError,
    IdsDatabaseNotFound,
    PciTreeError,
    ShortReadError,
)
from .filter import DeviceFilter
from .names import Names, PciIdsDatabase
from .options import DisplayOptions
from .procfs import ProcBusEnumerator
from .records import PciAddress, RawRecord, sort_records
from .sysfs import SysfsEnumerator
from .topology import Topology, build_topology, dumps_topology
from .tree import render_tree

__all__ = [
    "__version__",
    # Sources
    "ProcBusEnumerator",
    "SysfsEnumerator",
    "RawRecord",
    "PciAddress",
    "sort_records",
    "DeviceFilter",
    # Decoding
    "decode_header",
    "decode_bars",
    "decode_bridge_windows",
    # Topology
    "Topology",
    "build_topology",
    "dumps_topology",
    "render_tree",
    # Names
    "PciIdsDatabase",
    "Names",
    "open_ids_db",
    "DisplayOptions",
    # Errors
    "PciTreeError",
    "EnumerationError",
    "ShortReadError",
    "FilterSyntaxError",
    "IdsDatabaseNotFound",
    "ConfigurationError",
]
