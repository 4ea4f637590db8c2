# Size resolution for single files.
#
# Logical sizes from stat are trusted up to a threshold (10 GiB by default).
# Above it, files are often sparse (VM images, databases, core dumps), so the
# real allocation is asked from an external `du -k` probe, falling back to the
# stat block count.  Every failure path degrades to a best-effort size; nothing
# here raises to the caller.

from __future__ import annotations

import logging
import math
import subprocess
from typing import Callable, TypeAlias

from duscan.services.formatting import format_bytes

logger = logging.getLogger(__name__)

GIB = 1024 * 1024 * 1024
LARGE_FILE_THRESHOLD = 10 * GIB
PROBE_TIMEOUT_SECONDS = 5.0
BLOCK_SIZE = 512

# Returns allocated bytes for *path*, or None when the probe could not tell.
DiskUsageProbe: TypeAlias = Callable[[str], int | None]


def normalize_size(value: object) -> int:
    """Coerce a reported size into a non-negative int; garbage becomes 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float):
        if not math.isfinite(value) or value < 0:
            return 0
        return int(value)
    return max(0, value)


def parse_du_output(output: bytes) -> int | None:
    """Parse raw ``du -k`` output (``<kib>\\t<path>``) into bytes.

    Only the leading count is decoded; the echoed path may be in any encoding.
    """
    fields = output.split()
    if not fields:
        return None
    try:
        kib = int(fields[0])
    except ValueError:
        return None
    if kib < 0:
        return None
    return kib * 1024


def du_probe(path: str, timeout: float = PROBE_TIMEOUT_SECONDS) -> int | None:
    """Ask ``du -k`` how many bytes *path* occupies on disk.

    ``subprocess.run`` kills the child when the timeout expires, so a hung
    ``du`` on a stale network mount never outlives the call.
    """
    try:
        completed = subprocess.run(
            ["du", "-k", path],
            capture_output=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.debug("du timed out after %.1fs for %s", timeout, path)
        return None
    except OSError as exc:
        logger.debug("du unavailable for %s: %s", path, exc)
        return None
    if completed.returncode != 0:
        stderr = completed.stderr.decode(errors="replace").strip()
        logger.debug("du exited with %d for %s: %s", completed.returncode, path, stderr)
        return None
    return parse_du_output(completed.stdout)


class SizeResolver:
    """Decide how many bytes a file actually consumes."""

    def __init__(
        self,
        probe: DiskUsageProbe | None = None,
        threshold: int = LARGE_FILE_THRESHOLD,
        timeout: float = PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self._probe = probe if probe is not None else lambda path: du_probe(path, timeout)
        self._threshold = threshold

    def needs_probe(self, logical_size: int) -> bool:
        return logical_size > self._threshold

    def resolve(self, path: str, logical_size: int | float, blocks: int | None = None) -> int:
        size = normalize_size(logical_size)
        if not self.needs_probe(size):
            return size

        probed = self._run_probe(path)
        if probed is not None and 0 < probed < size:
            logger.info(
                "Sparse file detected: %s, logical %s, allocated %s",
                path,
                format_bytes(size),
                format_bytes(probed),
            )
            return probed

        if blocks is not None and blocks > 0:
            allocated = blocks * BLOCK_SIZE
            if allocated < size:
                logger.info(
                    "Using block count for %s: %s instead of %s",
                    path,
                    format_bytes(allocated),
                    format_bytes(size),
                )
                return allocated
        return size

    def _run_probe(self, path: str) -> int | None:
        try:
            value = self._probe(path)
        except Exception:  # noqa: BLE001
            # Broad catch is intentional: an injected probe may fail in any
            # way, and sizing must degrade instead of aborting the scan.
            logger.debug("Disk-usage probe failed for %s", path, exc_info=True)
            return None
        if value is None or isinstance(value, bool) or not isinstance(value, int):
            return None
        return value
