from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from result import Result

from duscan.models.enums import NodeKind


@dataclass(slots=True)
class ScanNode:
    path: str
    name: str
    kind: NodeKind
    size_bytes: int
    children: list[ScanNode] = field(default_factory=list)

    @classmethod
    def file(cls, path: str, name: str, size_bytes: int) -> ScanNode:
        # Import here to avoid circular import at module level.
        from duscan.services.tree import LEAF_CHILDREN

        return cls(
            path=path,
            name=name,
            kind=NodeKind.FILE,
            size_bytes=size_bytes,
            children=LEAF_CHILDREN,  # type: ignore[arg-type]  # immutable sentinel
        )

    @classmethod
    def directory(cls, path: str, name: str) -> ScanNode:
        return cls(
            path=path,
            name=name,
            kind=NodeKind.DIRECTORY,
            size_bytes=0,
            children=[],
        )


@dataclass(slots=True)
class ProgressEstimate:
    """Running, deliberately pessimistic guess at how many directories a scan holds.

    ``estimated_total`` never shrinks, so the derived percentage can stall but
    never jumps backwards. It is an approximation that depends on discovery
    order, not an exact count.
    """

    discovered: int = 0
    processed: int = 0
    estimated_total: int = 1

    def apply(self, discovered: int, processed: int) -> None:
        self.discovered += discovered
        self.processed += processed
        self.estimated_total = max(self.estimated_total, self.discovered + self.discovered // 10)

    def percentage(self, cap: int = 95) -> int:
        return max(0, min(self.processed * 100 // self.estimated_total, cap))


@dataclass(slots=True, frozen=True)
class ProgressUpdate:
    message: str
    percentage: int
    terminal: bool = False


ProgressCallback = Callable[[ProgressUpdate], None]


@dataclass(slots=True)
class ScanStats:
    files: int = 0
    directories: int = 0
    access_errors: int = 0
    sparse_files: int = 0


@dataclass(slots=True, frozen=True)
class ScanSnapshot:
    root: ScanNode
    stats: ScanStats


class ScanErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    NOT_DIRECTORY = "not_directory"
    ROOT_STAT_FAILED = "root_stat_failed"
    ROOT_UNREADABLE = "root_unreadable"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


@dataclass(slots=True, frozen=True)
class ScanError:
    code: ScanErrorCode
    path: str
    message: str

    @property
    def cancelled(self) -> bool:
        return self.code is ScanErrorCode.CANCELLED


ScanResult = Result[ScanSnapshot, ScanError]
