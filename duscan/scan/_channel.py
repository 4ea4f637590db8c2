# Messages posted by the walker thread onto a session's queue.  The relay
# thread is the only reader; the walker is the only writer.

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

from duscan.models.scan import ScanError, ScanSnapshot


@dataclass(slots=True, frozen=True)
class Discovered:
    """*count* immediate subdirectories were found under *path*."""

    path: str
    count: int


@dataclass(slots=True, frozen=True)
class Processed:
    """The directory at *path* and its whole subtree are finished."""

    path: str


@dataclass(slots=True, frozen=True)
class Finished:
    snapshot: ScanSnapshot


@dataclass(slots=True, frozen=True)
class Cancelled:
    path: str


@dataclass(slots=True, frozen=True)
class Failed:
    error: ScanError


WalkerMessage: TypeAlias = Discovered | Processed | Finished | Cancelled | Failed
