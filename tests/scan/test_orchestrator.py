from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest
from result import Err, Ok

from duscan.config.schema import AppConfig
from duscan.models.scan import ProgressUpdate, ScanErrorCode
from duscan.scan import ScanHandle, ScanOrchestrator, resolve_root
from duscan.services.fs import StatResult
from duscan.services.sizing import GIB, SizeResolver
from tests.factories import assert_sizes_consistent, find_node
from tests.fs_mock import MemoryFileSystem

_WAIT = 10.0


def _write_file(path: Path, size: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)


def _orchestrator(fs: MemoryFileSystem, probe_value: int | None = None) -> ScanOrchestrator:
    return ScanOrchestrator(fs=fs, resolver=SizeResolver(probe=lambda path: probe_value))


class _Gate:
    """Blocks the walker when it lists *path* until released."""

    def __init__(self, fs: MemoryFileSystem, path: str) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()
        self._path = path
        fs.on_list = self._on_list

    def _on_list(self, path: str) -> None:
        if path == self._path:
            self.entered.set()
            self.release.wait(_WAIT)


class TestResolveRoot:
    def test_stat_oserror_returns_root_stat_failed(self) -> None:
        class _FailStatFS(MemoryFileSystem):
            def stat(self, path: str, follow_symlinks: bool = False) -> StatResult:
                raise OSError("Permission denied")

        fs = _FailStatFS()
        fs.add_dir("/root")
        result = resolve_root("/root", fs)
        assert not isinstance(result, str)
        assert result.code is ScanErrorCode.ROOT_STAT_FAILED

    def test_file_path_returns_not_directory(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/root/file.txt", size=10)
        result = resolve_root("/root/file.txt", fs)
        assert not isinstance(result, str)
        assert result.code is ScanErrorCode.NOT_DIRECTORY

    def test_valid_dir_returns_path(self) -> None:
        fs = MemoryFileSystem()
        fs.add_dir("/root")
        assert resolve_root("/root", fs) == "/root"

    def test_home_expanded(self) -> None:
        fs = MemoryFileSystem()
        fs.add_dir("/mock/home/data")
        assert resolve_root("~/data", fs) == "/mock/home/data"


class TestScan:
    def test_scenario_on_disk(self, tmp_path: Path) -> None:
        _write_file(tmp_path / "f1", 100)
        _write_file(tmp_path / "A" / "f2", 200)
        _write_file(tmp_path / "A" / "f3", 50)
        (tmp_path / "B").mkdir()

        result = ScanOrchestrator().scan(str(tmp_path))

        assert isinstance(result, Ok)
        snapshot = result.unwrap()
        root = snapshot.root
        assert root.path == str(tmp_path)
        assert root.size_bytes == 350
        assert len(root.children) == 3
        a = find_node(root, str(tmp_path / "A"))
        b = find_node(root, str(tmp_path / "B"))
        assert a is not None and a.size_bytes == 250 and len(a.children) == 2
        assert b is not None and b.size_bytes == 0 and b.children == []
        assert snapshot.stats.files == 3
        assert_sizes_consistent(root)

    def test_missing_path_returns_error(self, tmp_path: Path) -> None:
        result = ScanOrchestrator().scan(str(tmp_path / "does-not-exist"))

        assert isinstance(result, Err)
        error = result.unwrap_err()
        assert error.code is ScanErrorCode.NOT_FOUND
        assert "does not exist" in error.message.lower()

    def test_file_root_returns_error(self, tmp_path: Path) -> None:
        _write_file(tmp_path / "plain.txt", 5)
        result = ScanOrchestrator().scan(str(tmp_path / "plain.txt"))
        assert isinstance(result, Err)
        assert result.unwrap_err().code is ScanErrorCode.NOT_DIRECTORY

    def test_unreadable_root_returns_error(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/r/a", size=1)
        fs.fail_listing("/r")
        result = _orchestrator(fs).scan("/r")
        assert isinstance(result, Err)
        assert result.unwrap_err().code is ScanErrorCode.ROOT_UNREADABLE

    def test_block_fallback_for_huge_file(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/r/huge.bin", size=15 * GIB, blocks=5 * GIB // 512)
        result = _orchestrator(fs, probe_value=None).scan("/r")
        assert result.unwrap().root.size_bytes == 5 * GIB

    def test_sparse_file_through_probe(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/r/vm.img", size=20 * GIB)
        fs.add_file("/r/small.bin", size=10)
        result = _orchestrator(fs, probe_value=2 * GIB).scan("/r")
        snapshot = result.unwrap()
        assert snapshot.root.size_bytes == 2 * GIB + 10
        assert snapshot.stats.sparse_files == 1

    def test_symlinked_root_is_followed(self, tmp_path: Path) -> None:
        real = tmp_path / "real"
        _write_file(real / "data.bin", 100)
        (real / "inner").mkdir()
        link = tmp_path / "link"
        try:
            os.symlink(real, link, target_is_directory=True)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")

        result = ScanOrchestrator().scan(str(link))

        assert isinstance(result, Ok)
        root = result.unwrap().root
        assert root.path == str(link)
        assert root.size_bytes == 100
        assert {child.name for child in root.children} == {"data.bin", "inner"}

    def test_dangling_symlink_root_fails_stat(self, tmp_path: Path) -> None:
        link = tmp_path / "dangling"
        try:
            os.symlink(tmp_path / "gone", link, target_is_directory=True)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")

        result = ScanOrchestrator().scan(str(link))
        assert isinstance(result, Err)
        assert result.unwrap_err().code is ScanErrorCode.ROOT_STAT_FAILED

    def test_from_config(self, tmp_path: Path) -> None:
        _write_file(tmp_path / "a.bin", 64)
        config = AppConfig(progress_interval_ms=50, probe_timeout_ms=1000)
        result = ScanOrchestrator.from_config(config).scan(str(tmp_path))
        assert result.unwrap().root.size_bytes == 64


class TestProgressStream:
    def test_bounds_and_single_terminal(self) -> None:
        fs = MemoryFileSystem()
        for idx in range(30):
            fs.add_file(f"/r/d{idx}/sub/f", size=idx)
        updates: list[ProgressUpdate] = []
        result = _orchestrator(fs).scan("/r", updates.append)

        assert isinstance(result, Ok)
        assert updates[0].percentage == 0
        assert updates[-1].terminal
        assert updates[-1].percentage == 100
        assert sum(1 for u in updates if u.terminal) == 1
        assert all(0 <= u.percentage <= 95 for u in updates[:-1])
        assert all(u.message for u in updates)

    def test_error_terminal_not_complete(self, tmp_path: Path) -> None:
        updates: list[ProgressUpdate] = []
        ScanOrchestrator().scan(str(tmp_path / "missing"), updates.append)
        assert updates[-1].terminal
        assert updates[-1].percentage != 100

    def test_sessions_do_not_share_counters(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/one/a/f", size=1)
        fs.add_file("/one/b/f", size=1)
        fs.add_file("/two/c/f", size=1)
        orchestrator = _orchestrator(fs)

        first = orchestrator.start("/one")
        first.result(_WAIT)
        second = orchestrator.start("/two")
        second.result(_WAIT)

        assert first.session is not second.session
        assert first.session.estimate.processed == 2
        assert second.session.estimate.processed == 1


class TestCancellation:
    def test_cancel_mid_scan(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/r/a/f", size=1)
        fs.add_file("/r/b/f", size=1)
        gate = _Gate(fs, "/r/a")
        updates: list[ProgressUpdate] = []
        orchestrator = _orchestrator(fs)

        handle = orchestrator.start("/r", updates.append)
        assert gate.entered.wait(_WAIT)
        assert orchestrator.cancel() is True
        gate.release.set()

        result = handle.result(_WAIT)
        assert isinstance(result, Err)
        assert result.unwrap_err().code is ScanErrorCode.CANCELLED
        assert result.unwrap_err().cancelled
        assert "/r/b" not in fs.listed
        assert updates[-1].terminal
        assert all(u.percentage < 100 for u in updates)

    def test_handle_cancel(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/r/a/f", size=1)
        gate = _Gate(fs, "/r/a")
        handle = _orchestrator(fs).start("/r")
        assert gate.entered.wait(_WAIT)
        handle.cancel()
        gate.release.set()
        assert handle.join(_WAIT).unwrap_err().code is ScanErrorCode.CANCELLED

    def test_cancel_without_scan(self) -> None:
        orchestrator = ScanOrchestrator(fs=MemoryFileSystem())
        assert orchestrator.cancel() is False
        assert orchestrator.active is None

    def test_new_scan_cancels_previous(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/r/a/f", size=1)
        fs.add_file("/other/g", size=3)
        gate = _Gate(fs, "/r/a")
        orchestrator = _orchestrator(fs)

        first = orchestrator.start("/r")
        assert gate.entered.wait(_WAIT)
        timer = threading.Timer(0.2, gate.release.set)
        timer.start()
        second = orchestrator.start("/other")

        assert first.done()
        assert first.result().unwrap_err().code is ScanErrorCode.CANCELLED
        assert second.result(_WAIT).unwrap().root.size_bytes == 3
        timer.join()

    def test_cancel_during_restart_reaches_new_scan(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/r/a/f", size=1)
        fs.add_file("/other/g", size=3)
        gate = _Gate(fs, "/r/a")
        orchestrator = _orchestrator(fs)

        first = orchestrator.start("/r")
        assert gate.entered.wait(_WAIT)

        started: list[ScanHandle] = []
        restart = threading.Thread(target=lambda: started.append(orchestrator.start("/other")))
        restart.start()
        # start() cancels the old session before it waits on it.
        assert first.session.cancelled.wait(_WAIT)
        assert orchestrator.cancel() is True
        gate.release.set()
        restart.join(_WAIT)

        assert first.result(_WAIT).unwrap_err().code is ScanErrorCode.CANCELLED
        second = started[0]
        assert second.result(_WAIT).unwrap_err().code is ScanErrorCode.CANCELLED
        assert "/other" not in fs.listed

    def test_cancel_before_start_does_not_leak(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/r/f", size=2)
        orchestrator = _orchestrator(fs)
        assert orchestrator.cancel() is False
        assert orchestrator.scan("/r").unwrap().root.size_bytes == 2


class TestFatalErrors:
    def test_walker_crash_reported_as_internal(self) -> None:
        class _CrashingFS(MemoryFileSystem):
            def scandir(self, path: str) -> list:  # type: ignore[type-arg]
                if path == "/r/boom":
                    raise RuntimeError("disk exploded")
                return super().scandir(path)

        fs = _CrashingFS()
        fs.add_file("/r/boom/f", size=1)
        result = _orchestrator(fs).scan("/r")
        assert isinstance(result, Err)
        error = result.unwrap_err()
        assert error.code is ScanErrorCode.INTERNAL
        assert "disk exploded" in error.message

    def test_consumer_failure_reported_as_internal(self) -> None:
        fs = MemoryFileSystem()
        fs.add_file("/r/a/f", size=1)

        def explode(update: ProgressUpdate) -> None:
            if update.terminal:
                raise ValueError("consumer broke")

        result = _orchestrator(fs).scan("/r", explode)
        assert isinstance(result, Err)
        assert "consumer broke" in result.unwrap_err().message

    @pytest.mark.parametrize("fail_on_start", [True, False])
    def test_consumer_failure_does_not_hang(self, fail_on_start: bool) -> None:
        fs = MemoryFileSystem()
        for idx in range(20):
            fs.add_file(f"/r/d{idx}/f", size=1)

        def explode(update: ProgressUpdate) -> None:
            if fail_on_start or update.percentage > 0:
                raise ValueError("consumer broke")

        handle = _orchestrator(fs).start("/r", explode)
        result = handle.join(_WAIT)
        assert result.unwrap_err().code is ScanErrorCode.INTERNAL
