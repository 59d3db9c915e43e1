#
# Python pcitree library
# Exception hierarchy
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
"""Exceptions raised for conditions that abort a run.

Decode mismatches and topology inconsistencies are not exceptions; they are
reported inline as anomaly strings and decoding carries on.
"""

from __future__ import annotations

from typing import Optional


class PciTreeError(Exception):
    """Base exception for all pcitree errors."""


class EnumerationError(PciTreeError):
    """The device list or a configuration block could not be read."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class ShortReadError(EnumerationError):
    """Fewer configuration bytes were available than requested."""

    def __init__(self, path: str, got: int, wanted: int) -> None:
        self.got = got
        self.wanted = wanted
        super().__init__(
            f"Only {got} bytes of config space available to you", path=path
        )


class FilterSyntaxError(PciTreeError, ValueError):
    """A -s or -d selection expression could not be parsed."""


class IdsDatabaseNotFound(PciTreeError, FileNotFoundError):
    """No usable pci.ids database was found."""


class ConfigurationError(PciTreeError, ValueError):
    """A setting from the command line or environment has an invalid value."""
