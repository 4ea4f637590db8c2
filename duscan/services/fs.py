from __future__ import annotations

import os
import stat as statmod
from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True, frozen=True)
class StatResult:
    """The slice of ``lstat`` the scanner cares about.

    ``size`` is whatever the platform reported and is not trusted: callers
    normalize it. ``blocks`` counts 512-byte units and is ``None`` where the
    platform has no ``st_blocks`` (Windows).
    """

    size: int | float
    is_dir: bool
    is_symlink: bool = False
    blocks: int | None = None


@dataclass(slots=True, frozen=True)
class DirEntry:
    path: str
    name: str
    is_dir: bool
    # None when the entry vanished or could not be stat'ed after listing.
    stat: StatResult | None


class FileSystem(Protocol):
    def expanduser(self, path: str) -> str: ...

    def exists(self, path: str) -> bool: ...

    def absolute(self, path: str) -> str: ...

    def stat(self, path: str, follow_symlinks: bool = False) -> StatResult: ...

    def scandir(self, path: str) -> list[DirEntry]: ...

    def read_text(self, path: str) -> str: ...


def _to_stat_result(st: os.stat_result) -> StatResult:
    return StatResult(
        size=st.st_size,
        is_dir=statmod.S_ISDIR(st.st_mode),
        is_symlink=statmod.S_ISLNK(st.st_mode),
        blocks=getattr(st, "st_blocks", None),
    )


class OsFileSystem:
    """FileSystem backed by the real OS.

    Listings never follow symlinks; ``stat`` only does when asked to.
    """

    def expanduser(self, path: str) -> str:
        return os.path.expanduser(path)

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def absolute(self, path: str) -> str:
        return os.path.abspath(path)

    def stat(self, path: str, follow_symlinks: bool = False) -> StatResult:
        return _to_stat_result(os.stat(path, follow_symlinks=follow_symlinks))

    def scandir(self, path: str) -> list[DirEntry]:
        # Listing errors propagate as OSError; per-entry errors are folded
        # into the entry so one bad child does not lose its siblings.
        entries: list[DirEntry] = []
        with os.scandir(path) as it:
            for entry in it:
                try:
                    st: StatResult | None = _to_stat_result(entry.stat(follow_symlinks=False))
                except OSError:
                    st = None
                try:
                    is_dir = entry.is_dir(follow_symlinks=False)
                except OSError:
                    is_dir = False
                entries.append(DirEntry(path=entry.path, name=entry.name, is_dir=is_dir, stat=st))
        return entries

    def read_text(self, path: str) -> str:
        with open(path, encoding="utf-8") as f:
            return f.read()


DEFAULT_FS: FileSystem = OsFileSystem()
