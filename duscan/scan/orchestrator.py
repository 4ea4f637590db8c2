# Scan lifecycle: one session, two threads, one queue.
#
#   caller ──start()──▶ ScanOrchestrator ──▶ ScanHandle (returned immediately)
#                          │
#                          ├─ walker thread: resolve_root → TreeWalker.walk,
#                          │  posts Discovered/Processed, then exactly one of
#                          │  Finished/Cancelled/Failed onto session.messages.
#                          │
#                          └─ relay thread: drains session.messages into the
#                             ProgressAggregator (throttled consumer callback)
#                             and resolves the handle's Future on the terminal
#                             message.
#
# The walker only reads session.cancelled and writes the queue; the relay is
# the only thread touching the estimate and the consumer callback.  Nothing is
# module-level, so sequential or overlapping scans never share counters.
#
# Starting a scan while another one is in flight cancels the older scan and
# waits for its walker to exit before the new session starts.  A cancel()
# issued during that wait applies to the new session.

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field

from result import Err, Ok

from duscan.config.schema import AppConfig
from duscan.models.scan import (
    ProgressCallback,
    ProgressEstimate,
    ScanError,
    ScanErrorCode,
    ScanResult,
    ScanSnapshot,
)
from duscan.scan._channel import Cancelled, Discovered, Failed, Finished, Processed, WalkerMessage
from duscan.scan.progress import PROGRESS_INTERVAL_SECONDS, ProgressAggregator
from duscan.scan.walker import ScanCancelled, TreeWalker, node_name
from duscan.services.fs import DEFAULT_FS, FileSystem
from duscan.services.sizing import SizeResolver

logger = logging.getLogger(__name__)


def resolve_root(path: str, fs: FileSystem) -> str | ScanError:
    """Validate and resolve a scan root path.

    Returns the resolved absolute path, or a ``ScanError`` on failure.
    """
    expanded = fs.expanduser(path)
    if not fs.exists(expanded):
        return ScanError(
            code=ScanErrorCode.NOT_FOUND,
            path=expanded,
            message="Path does not exist",
        )

    resolved = fs.absolute(expanded)
    try:
        # The root is the one path whose symlink is followed: the user picked it.
        root_stat = fs.stat(resolved, follow_symlinks=True)
    except OSError as exc:
        return ScanError(
            code=ScanErrorCode.ROOT_STAT_FAILED,
            path=resolved,
            message=f"Cannot stat root: {exc}",
        )
    if not root_stat.is_dir:
        return ScanError(
            code=ScanErrorCode.NOT_DIRECTORY,
            path=resolved,
            message="Path is not a directory",
        )
    return resolved


@dataclass(slots=True)
class ScanSession:
    """Everything one scan owns.  Created per request, never reused."""

    root_path: str
    progress: ProgressAggregator
    cancelled: threading.Event = field(default_factory=threading.Event)
    messages: queue.Queue[WalkerMessage] = field(default_factory=queue.Queue)

    @property
    def estimate(self) -> ProgressEstimate:
        return self.progress.estimate

    def cancel(self) -> None:
        self.cancelled.set()

    def post(self, message: WalkerMessage) -> None:
        self.messages.put(message)


class ScanHandle:
    """Caller-side view of a running scan."""

    def __init__(self, session: ScanSession, future: Future[ScanResult], worker: threading.Thread) -> None:
        self._session = session
        self._future = future
        self._worker = worker

    @property
    def path(self) -> str:
        return self._session.root_path

    @property
    def session(self) -> ScanSession:
        return self._session

    def cancel(self) -> None:
        """Request cooperative cancellation.  Returns without waiting."""
        self._session.cancel()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> ScanResult:
        return self._future.result(timeout=timeout)

    def join(self, timeout: float | None = None) -> ScanResult:
        """Wait for the result and for the walker thread to exit."""
        outcome = self._future.result(timeout=timeout)
        self._worker.join(timeout=timeout)
        return outcome


class ScanOrchestrator:
    def __init__(
        self,
        fs: FileSystem = DEFAULT_FS,
        resolver: SizeResolver | None = None,
        progress_interval: float = PROGRESS_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fs = fs
        self._resolver = resolver if resolver is not None else SizeResolver()
        self._progress_interval = progress_interval
        self._clock = clock
        # _start_lock serializes start(); _state_lock guards the fields below
        # so cancel() never waits behind a start() that is draining a prior scan.
        self._start_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._active: ScanHandle | None = None
        # Set while start() is replacing the active scan.  A cancel() that
        # lands in that window is held here and applied to the new session.
        self._starting = False
        self._cancel_pending = False

    @classmethod
    def from_config(cls, config: AppConfig, fs: FileSystem = DEFAULT_FS) -> ScanOrchestrator:
        resolver = SizeResolver(
            threshold=config.large_file_threshold_bytes,
            timeout=config.probe_timeout_ms / 1000.0,
        )
        return cls(fs=fs, resolver=resolver, progress_interval=config.progress_interval_ms / 1000.0)

    @property
    def active(self) -> ScanHandle | None:
        with self._state_lock:
            return self._running()

    def _running(self) -> ScanHandle | None:
        handle = self._active
        if handle is None or handle.done():
            return None
        return handle

    def start(self, path: str, progress_callback: ProgressCallback | None = None) -> ScanHandle:
        """Begin scanning *path* in the background and return its handle.

        Must not be called from inside *progress_callback* of a running scan.
        """
        with self._start_lock:
            with self._state_lock:
                self._starting = True
                self._cancel_pending = False
                previous = self._running()
            try:
                if previous is not None:
                    logger.info("Cancelling in-flight scan of %s", previous.path)
                    previous.cancel()
                    previous.join()

                session = ScanSession(
                    root_path=path,
                    progress=ProgressAggregator(
                        progress_callback,
                        interval=self._progress_interval,
                        clock=self._clock,
                    ),
                )
                future: Future[ScanResult] = Future()
                worker = threading.Thread(target=self._work, args=(session,), name="duscan-walker", daemon=True)
                relay = threading.Thread(target=self._relay, args=(session, future), name="duscan-relay", daemon=True)
                handle = ScanHandle(session, future, worker)
                with self._state_lock:
                    self._active = handle
                    if self._cancel_pending:
                        logger.info("Applying cancellation requested during start of %s", path)
                        session.cancel()
                    # From here on cancel() reaches the new handle directly.
                    self._starting = False
                    self._cancel_pending = False
            finally:
                with self._state_lock:
                    self._starting = False
                    self._cancel_pending = False

            logger.debug("Starting scan of %s", path)
            relay.start()
            worker.start()
            return handle

    def scan(self, path: str, progress_callback: ProgressCallback | None = None) -> ScanResult:
        """Scan *path* and block until the outcome is known."""
        return self.start(path, progress_callback).result()

    def cancel(self) -> bool:
        """Ask the active scan to stop.  Returns whether a scan was running.

        While ``start`` is still replacing a previous scan, the request is
        kept and the new scan starts out cancelled.
        """
        with self._state_lock:
            if self._starting:
                self._cancel_pending = True
                logger.info("Cancellation requested while a scan is starting")
                return True
            handle = self._running()
        if handle is None:
            return False
        logger.info("Cancellation requested for %s", handle.path)
        handle.cancel()
        return True

    def _work(self, session: ScanSession) -> None:
        walker = TreeWalker(self._fs, self._resolver, session.cancelled, session.post)
        try:
            resolved = resolve_root(session.root_path, self._fs)
            if isinstance(resolved, ScanError):
                session.post(Failed(resolved))
                return
            try:
                root = walker.walk(resolved)
            except OSError as exc:
                session.post(
                    Failed(
                        ScanError(
                            code=ScanErrorCode.ROOT_UNREADABLE,
                            path=resolved,
                            message=f"Cannot read root: {exc}",
                        )
                    )
                )
                return
            session.post(Finished(ScanSnapshot(root=root, stats=walker.stats)))
        except ScanCancelled:
            session.post(Cancelled(session.root_path))
        except Exception as exc:  # noqa: BLE001
            # Anything reaching here is a bug or resource exhaustion, not a
            # filesystem error (those are contained inside the walker).
            logger.exception("Scan of %s crashed", session.root_path)
            session.post(
                Failed(
                    ScanError(
                        code=ScanErrorCode.INTERNAL,
                        path=session.root_path,
                        message=f"Scan failed: {exc}",
                    )
                )
            )

    def _relay(self, session: ScanSession, future: Future[ScanResult]) -> None:
        progress = session.progress
        terminal_seen = False
        try:
            progress.start(session.root_path)
            while True:
                message = session.messages.get()
                terminal_seen = _is_terminal(message)
                outcome = self._dispatch(progress, message)
                if outcome is not None:
                    future.set_result(outcome)
                    return
        except Exception as exc:  # noqa: BLE001
            # The consumer callback raised.  Stop the walker, wait for its
            # terminal message so it has exited, then report the failure.
            logger.exception("Progress consumer failed during scan of %s", session.root_path)
            session.cancel()
            if not terminal_seen:
                self._drain(session)
            future.set_result(
                Err(
                    ScanError(
                        code=ScanErrorCode.INTERNAL,
                        path=session.root_path,
                        message=f"Progress consumer failed: {exc}",
                    )
                )
            )

    @staticmethod
    def _dispatch(progress: ProgressAggregator, message: WalkerMessage) -> ScanResult | None:
        if isinstance(message, Discovered):
            progress.update(message.count, 0, f"Scanning {node_name(message.path)}")
            return None
        if isinstance(message, Processed):
            progress.update(0, 1, f"Scanned {node_name(message.path)}")
            return None
        if isinstance(message, Finished):
            progress.complete(f"Scan complete: {message.snapshot.root.path}")
            return Ok(message.snapshot)
        if isinstance(message, Cancelled):
            progress.cancelled(f"Scan cancelled: {message.path}")
            return Err(
                ScanError(
                    code=ScanErrorCode.CANCELLED,
                    path=message.path,
                    message="Scan cancelled",
                )
            )
        progress.failed(message.error.message)
        return Err(message.error)

    @staticmethod
    def _drain(session: ScanSession) -> None:
        while not _is_terminal(session.messages.get()):
            pass


def _is_terminal(message: WalkerMessage) -> bool:
    return isinstance(message, (Finished, Cancelled, Failed))
