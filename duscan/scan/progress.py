from __future__ import annotations

import time
from collections.abc import Callable

from duscan.models.scan import ProgressCallback, ProgressEstimate, ProgressUpdate

PROGRESS_INTERVAL_SECONDS = 0.2
# Percentage ceiling while the scan is still running; only completion reports 100.
RUNNING_CAP = 95


class ProgressAggregator:
    """Turn walker deltas into throttled percentage updates for a consumer.

    The first (``start``) and last (``complete``/``cancelled``/``failed``)
    emissions bypass the throttle.  Everything in between is emitted at most
    once per *interval* seconds; intermediate states are coalesced.  After the
    terminal emission every call is a no-op, so the consumer sees exactly one
    terminal update and it is always the last one.
    """

    def __init__(
        self,
        callback: ProgressCallback | None,
        estimate: ProgressEstimate | None = None,
        interval: float = PROGRESS_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._callback = callback
        self.estimate = estimate if estimate is not None else ProgressEstimate()
        self._interval = interval
        self._clock = clock
        self._last_emit: float | None = None
        self._last_percentage = 0
        self._closed = False

    def start(self, path: str) -> None:
        self._emit(f"Scanning {path}", 0, terminal=False)

    def update(self, discovered: int, processed: int, message: str) -> None:
        if self._closed:
            return
        self.estimate.apply(discovered, processed)
        now = self._clock()
        if self._last_emit is not None and now - self._last_emit < self._interval:
            return
        # The total estimate can grow faster than processed, never show a regression.
        percentage = max(self._last_percentage, self.estimate.percentage(RUNNING_CAP))
        self._emit(message, percentage, terminal=False)

    def complete(self, message: str = "Scan complete") -> None:
        self._emit(message, 100, terminal=True)

    def cancelled(self, message: str = "Scan cancelled") -> None:
        self._emit(message, self._last_percentage, terminal=True)

    def failed(self, message: str) -> None:
        self._emit(message, self._last_percentage, terminal=True)

    def _emit(self, message: str, percentage: int, terminal: bool) -> None:
        if self._closed:
            return
        self._closed = terminal
        self._last_emit = self._clock()
        self._last_percentage = percentage
        if self._callback is not None:
            self._callback(ProgressUpdate(message=message, percentage=percentage, terminal=terminal))
