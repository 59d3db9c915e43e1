#
# Python pcitree library
# pci.ids database discovery
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .exceptions import IdsDatabaseNotFound
from .log import get_logger
from .names import PciIdsDatabase

log = get_logger(__name__)

IDS_ENV = "PCITREE_IDS"
NO_SYSTEM_ENV = "PCITREE_NO_SYSTEM"
SYSTEM_IDS_PATHS = ("/usr/share/hwdata/pci.ids", "/usr/share/misc/pci.ids")


@dataclass(frozen=True)
class Candidate:
    """Represents a potential DB source in the discovery order."""

    kind: str  # "path", "env", "system"
    ref: str  # path, for debugging
    opener: Callable[[], PciIdsDatabase]  # returns an opened DB instance, or raises


def _open_text(p: str) -> PciIdsDatabase:
    if not Path(p).is_file():
        raise FileNotFoundError(p)
    return PciIdsDatabase(p)


def _resolve_candidates(
    *,
    explicit_path: Optional[str],
    env_path: Optional[str],
    system_paths: Sequence[str],
    allow_system: bool,
) -> List[Candidate]:
    """
    Build an ordered list of candidates. Pure function -> easy to unit test:
    an explicit path is the only candidate; otherwise the environment
    override comes first, then the system paths unless disabled.
    """
    if explicit_path:
        p = str(explicit_path)
        return [Candidate("path", p, lambda: _open_text(p))]

    cands: List[Candidate] = []
    if env_path:
        cands.append(Candidate("env", env_path, lambda p=env_path: _open_text(p)))
    if allow_system:
        for sp in system_paths:
            cands.append(Candidate("system", sp, lambda p=sp: _open_text(p)))
    return cands


def open_ids_db(path: Optional[str] = None) -> PciIdsDatabase:
    cands = _resolve_candidates(
        explicit_path=path,
        env_path=os.getenv(IDS_ENV),
        system_paths=SYSTEM_IDS_PATHS,
        allow_system=os.getenv(NO_SYSTEM_ENV) != "1",
    )

    last_err: Optional[Exception] = None
    for c in cands:
        try:
            db = c.opener()
        except (OSError, ValueError) as e:
            log.debug("ids_candidate_rejected", kind=c.kind, ref=c.ref, error=str(e))
            last_err = e
            continue
        log.debug("ids_database_opened", kind=c.kind, ref=c.ref)
        return db

    raise IdsDatabaseNotFound(
        "No PCI ID database found. "
        f"Pass -i, set {IDS_ENV}, or install hwdata."
    ) from last_err
