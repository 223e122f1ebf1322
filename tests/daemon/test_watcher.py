"""Tests for the workspace watcher.

Tests cover:
- Filtering raw watchfiles events
- Sliding-window debounce decisions
- Flush behavior, including re-queue when a full pass is running
- Start/stop lifecycle against a real directory
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from watchfiles import Change

from coderecall.config.models import CodeRecallConfig, IndexingConfig
from coderecall.core.errors import IndexingError
from coderecall.daemon.watcher import DEBOUNCE_WINDOW_SEC, MAX_DEBOUNCE_WAIT_SEC, WorkspaceWatcher
from coderecall.index.models import UpdateSummary


@pytest.fixture
def fake_indexer() -> MagicMock:
    indexer = MagicMock()
    indexer.config = CodeRecallConfig(indexing=IndexingConfig(respect_gitignore=False))
    indexer.on_files_changed = AsyncMock(return_value=UpdateSummary(computed_files=1))
    return indexer


@pytest.fixture
def watcher(tmp_path: Path, fake_indexer: MagicMock) -> WorkspaceWatcher:
    return WorkspaceWatcher(fake_indexer, tmp_path)


def test_debounce_defaults() -> None:
    assert DEBOUNCE_WINDOW_SEC < MAX_DEBOUNCE_WAIT_SEC


class TestHandleChanges:
    """Raw events to queued relative paths."""

    def test_given_mixed_events_when_handled_then_only_indexable_queued(
        self, watcher: WorkspaceWatcher, tmp_path: Path
    ) -> None:
        # Given
        changes = {
            (Change.modified, str(tmp_path / "src" / "a.ts")),
            (Change.added, str(tmp_path / "node_modules" / "x" / "index.ts")),
            (Change.added, str(tmp_path / ".git" / "HEAD")),
            (Change.modified, str(tmp_path / "notes.txt")),
            (Change.deleted, "/somewhere/else/b.ts"),
        }

        # When
        queued = watcher.handle_changes(changes)

        # Then
        assert queued == 1
        assert watcher.pending == ["src/a.ts"]

    def test_deleted_files_are_queued(self, watcher: WorkspaceWatcher, tmp_path: Path) -> None:
        watcher.handle_changes([(Change.deleted, str(tmp_path / "gone.py"))])
        assert watcher.pending == ["gone.py"]


class TestShouldFlush:
    def test_empty_queue_never_flushes(self, watcher: WorkspaceWatcher) -> None:
        assert not watcher._should_flush()

    def test_recent_change_waits_for_quiet_period(self, tmp_path: Path, fake_indexer: MagicMock) -> None:
        watcher = WorkspaceWatcher(fake_indexer, tmp_path, debounce_window=60.0, max_debounce_wait=120.0)
        watcher.queue_paths(["a.ts"])
        assert not watcher._should_flush()

    def test_quiet_period_elapsed_flushes(self, tmp_path: Path, fake_indexer: MagicMock) -> None:
        watcher = WorkspaceWatcher(fake_indexer, tmp_path, debounce_window=0.0)
        watcher.queue_paths(["a.ts"])
        assert watcher._should_flush()

    def test_max_wait_bounds_continuous_changes(self, tmp_path: Path, fake_indexer: MagicMock) -> None:
        # Given
        watcher = WorkspaceWatcher(fake_indexer, tmp_path, debounce_window=60.0, max_debounce_wait=0.05)
        watcher.queue_paths(["a.ts"])

        # When
        time.sleep(0.06)
        watcher.queue_paths(["b.ts"])

        # Then
        assert watcher._should_flush()


class TestFlush:
    """Handing queued paths to the indexer."""

    @pytest.mark.asyncio
    async def test_given_pending_when_flushed_then_indexer_called_and_queue_cleared(
        self, tmp_path: Path, fake_indexer: MagicMock
    ) -> None:
        # Given
        updates: list[UpdateSummary] = []
        watcher = WorkspaceWatcher(fake_indexer, tmp_path, on_update=updates.append)
        watcher.queue_paths(["b.ts", "a.ts"])

        # When
        summary = await watcher.flush()

        # Then
        fake_indexer.on_files_changed.assert_awaited_once_with(tmp_path.resolve(), ["a.ts", "b.ts"])
        assert summary is not None and summary.computed_files == 1
        assert updates == [summary]
        assert watcher.pending == []

    @pytest.mark.asyncio
    async def test_given_nothing_pending_when_flushed_then_no_call(
        self, watcher: WorkspaceWatcher, fake_indexer: MagicMock
    ) -> None:
        assert await watcher.flush() is None
        fake_indexer.on_files_changed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_given_full_pass_running_when_flushed_then_paths_requeued(
        self, watcher: WorkspaceWatcher, fake_indexer: MagicMock
    ) -> None:
        # Given
        fake_indexer.on_files_changed.side_effect = IndexingError.already_indexing("/ws")
        watcher.queue_paths(["a.ts"])

        # When
        result = await watcher.flush()

        # Then
        assert result is None
        assert watcher.pending == ["a.ts"]
        assert watcher.last_error is None

    @pytest.mark.asyncio
    async def test_given_indexing_error_when_flushed_then_recorded(
        self, watcher: WorkspaceWatcher, fake_indexer: MagicMock
    ) -> None:
        fake_indexer.on_files_changed.side_effect = IndexingError.vector_index_failed("disk full")
        watcher.queue_paths(["a.ts"])

        assert await watcher.flush() is None
        assert watcher.last_error is not None and "disk full" in watcher.last_error
        assert watcher.pending == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_given_running_watcher_when_paths_queued_then_debounced_flush(
        self, tmp_path: Path, fake_indexer: MagicMock
    ) -> None:
        # Given
        watcher = WorkspaceWatcher(fake_indexer, tmp_path, debounce_window=0.05)
        await watcher.start()
        await watcher.start()

        # When
        watcher.queue_paths(["a.ts"])
        for _ in range(100):
            if fake_indexer.on_files_changed.await_count:
                break
            await asyncio.sleep(0.05)
        await watcher.stop()

        # Then
        fake_indexer.on_files_changed.assert_awaited_once_with(tmp_path.resolve(), ["a.ts"])

    @pytest.mark.asyncio
    async def test_stop_flushes_remaining_paths(self, tmp_path: Path, fake_indexer: MagicMock) -> None:
        watcher = WorkspaceWatcher(fake_indexer, tmp_path, debounce_window=60.0, max_debounce_wait=120.0)
        await watcher.start()
        watcher.queue_paths(["late.ts"])

        await watcher.stop()

        fake_indexer.on_files_changed.assert_awaited_once_with(tmp_path.resolve(), ["late.ts"])
