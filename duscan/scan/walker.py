# Depth-first directory walker.
#
# The walk is recursive in shape but driven by an explicit stack of frames,
# so arbitrarily deep trees never hit the interpreter recursion limit.  Each
# frame owns one directory node and an iterator over its listing:
#   * entering a directory (pre-order) lists it and posts Discovered,
#   * exhausting a frame (post-order) sums its children into size_bytes,
#     hands the node to the parent frame and posts Processed.
#
# Cancellation is cooperative: the Event is checked before entering every
# directory and before every entry.  A set flag raises ScanCancelled, which
# unwinds the whole walk, so no partial tree ever escapes.

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from duscan.models.scan import ScanNode, ScanStats
from duscan.scan._channel import Discovered, Processed, WalkerMessage
from duscan.services.fs import DirEntry, FileSystem
from duscan.services.sizing import SizeResolver, normalize_size

logger = logging.getLogger(__name__)


class ScanCancelled(Exception):
    """Raised inside the walker when the session's cancel flag is observed."""


@dataclass(slots=True)
class _Frame:
    node: ScanNode
    entries: Iterator[DirEntry]


def node_name(path: str) -> str:
    stripped = path.rstrip(os.sep)
    return os.path.basename(stripped) or path


class TreeWalker:
    """Walk one directory tree for one scan session.

    Not reusable across sessions: ``stats`` accumulates for the lifetime of
    the instance.
    """

    def __init__(
        self,
        fs: FileSystem,
        resolver: SizeResolver,
        cancelled: threading.Event,
        post: Callable[[WalkerMessage], None] | None = None,
    ) -> None:
        self._fs = fs
        self._resolver = resolver
        self._cancelled = cancelled
        self._post = post or (lambda message: None)
        self.stats = ScanStats()

    def walk(self, path: str) -> ScanNode:
        """Return the fully sized tree under *path*.

        Raises ``ScanCancelled`` if cancellation is observed, and ``OSError``
        if *path* itself cannot be listed.  Failures below the root are
        contained in the entry or subtree where they happen.
        """
        stack = [self._enter(path, node_name(path), is_root=True)]
        while True:
            frame = stack[-1]
            entry = next(frame.entries, None)
            if entry is None:
                stack.pop()
                node = frame.node
                node.size_bytes = sum(child.size_bytes for child in node.children)
                if not stack:
                    return node
                stack[-1].node.children.append(node)
                self._post(Processed(node.path))
                continue

            self._check_cancelled()
            if entry.is_dir:
                stack.append(self._enter(entry.path, entry.name))
            else:
                self._add_file(frame.node, entry)

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise ScanCancelled

    def _enter(self, path: str, name: str, is_root: bool = False) -> _Frame:
        self._check_cancelled()
        node = ScanNode.directory(path, name)
        self.stats.directories += 1
        try:
            entries = self._fs.scandir(path)
        except OSError as exc:
            if is_root:
                raise
            # An unreadable subdirectory still shows up, just empty.
            logger.debug("Cannot list %s: %s", path, exc)
            self.stats.access_errors += 1
            entries = []

        subdirs = sum(1 for entry in entries if entry.is_dir)
        if subdirs:
            self._post(Discovered(path, subdirs))
        return _Frame(node, iter(entries))

    def _add_file(self, parent: ScanNode, entry: DirEntry) -> None:
        st = entry.stat
        if st is None:
            logger.debug("Skipping %s: metadata unavailable", entry.path)
            self.stats.access_errors += 1
            return

        logical = normalize_size(st.size)
        size = normalize_size(self._resolver.resolve(entry.path, logical, st.blocks))
        if size < logical:
            self.stats.sparse_files += 1
        self.stats.files += 1
        parent.children.append(ScanNode.file(entry.path, entry.name, size))
