#
# Python pcitree library
# Display options
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

from dataclasses import dataclass

from .records import CONFIG_SIZE_FULL, CONFIG_SIZE_SHORT

HEX_DUMP_DEPTHS = (0, CONFIG_SIZE_SHORT, CONFIG_SIZE_FULL)
MAX_VERBOSITY = 2


@dataclass(frozen=True)
class DisplayOptions:
    verbosity: int = 0
    bus_centric: bool = False
    hex_dump_depth: int = 0
    tree_mode: bool = False
    machine_readable: bool = False
    numeric_ids: bool = False

    def __post_init__(self) -> None:
        if self.hex_dump_depth not in HEX_DUMP_DEPTHS:
            raise ValueError(
                f"hex_dump_depth must be one of {HEX_DUMP_DEPTHS}, "
                f"not {self.hex_dump_depth}"
            )
        if not 0 <= self.verbosity <= MAX_VERBOSITY:
            raise ValueError(f"verbosity must be 0..{MAX_VERBOSITY}")

    @property
    def config_size(self) -> int:
        """Bytes of configuration space each device needs to have read."""
        if self.hex_dump_depth == CONFIG_SIZE_FULL:
            return CONFIG_SIZE_FULL
        return CONFIG_SIZE_SHORT
