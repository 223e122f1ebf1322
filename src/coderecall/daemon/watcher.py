"""Workspace watcher: feeds filesystem changes to incremental indexing.

Design:
- watchfiles ``awatch`` monitors the workspace recursively
- Changes are filtered through the workspace ExcludeMatcher
- Sliding-window debounce batches bursts of changes
- Each flush calls ``CodebaseIndexer.on_files_changed`` with relative paths
- A flush rejected with ALREADY_INDEXING re-queues its paths
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from watchfiles import Change, awatch

from coderecall.core.errors import CodeRecallError, ErrorCode
from coderecall.index._internal.ignore import ExcludeMatcher

if TYPE_CHECKING:
    from coderecall.index.models import UpdateSummary
    from coderecall.index.ops import CodebaseIndexer

logger = structlog.get_logger()

DEBOUNCE_WINDOW_SEC = 0.5  # Quiet period before a flush
MAX_DEBOUNCE_WAIT_SEC = 2.0  # Upper bound on delay under continuous changes
_TICK_SEC = 0.1


@dataclass
class WorkspaceWatcher:
    """
    Async watcher with sliding-window debouncing.

    Usage::

        watcher = WorkspaceWatcher(indexer, Path("~/src/project").expanduser())
        await watcher.start()
        ...
        await watcher.stop()
    """

    indexer: CodebaseIndexer
    workspace: Path
    debounce_window: float = DEBOUNCE_WINDOW_SEC
    max_debounce_wait: float = MAX_DEBOUNCE_WAIT_SEC
    on_update: Callable[[UpdateSummary], None] | None = None

    _matcher: ExcludeMatcher = field(init=False)
    _watch_task: asyncio.Task[None] | None = field(default=None, init=False)
    _debounce_task: asyncio.Task[None] | None = field(default=None, init=False)
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _pending: set[str] = field(default_factory=set, init=False)
    _first_change_time: float = field(default=0.0, init=False)
    _last_change_time: float = field(default=0.0, init=False)
    _flush_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    last_error: str | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.workspace = self.workspace.resolve()
        cfg = self.indexer.config.indexing
        self._matcher = ExcludeMatcher(
            self.workspace,
            include_extensions=cfg.include_extensions,
            exclude_patterns=cfg.exclude_patterns,
            respect_gitignore=cfg.respect_gitignore,
        )

    @property
    def pending(self) -> list[str]:
        return sorted(self._pending)

    async def start(self) -> None:
        """Start watching. No-op when already running."""
        if self._watch_task is not None:
            return
        self._stop_event.clear()
        self._watch_task = asyncio.create_task(self._watch_loop())
        self._debounce_task = asyncio.create_task(self._debounce_loop())
        logger.info(
            "watcher.started",
            workspace=str(self.workspace),
            debounce_window=self.debounce_window,
        )

    async def stop(self) -> None:
        """Stop watching and flush whatever is still queued."""
        self._stop_event.set()
        for task in (self._debounce_task, self._watch_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._debounce_task = None
        self._watch_task = None

        if self._pending:
            await self.flush()
        logger.info("watcher.stopped", workspace=str(self.workspace))

    def queue_paths(self, paths: Iterable[str]) -> None:
        """Queue workspace-relative paths for the next flush."""
        now = time.monotonic()
        added = False
        for rel in paths:
            if not self._pending:
                self._first_change_time = now
            self._pending.add(rel)
            added = True
        if added:
            self._last_change_time = now

    def handle_changes(self, changes: Iterable[tuple[Change, str]]) -> int:
        """Filter raw watchfiles events and queue indexable ones. Returns the count queued."""
        queued = 0
        for change_type, path_str in changes:
            rel = self._matcher.relativize(Path(path_str))
            if rel is None or not self._matcher.is_included(rel):
                continue
            self.queue_paths([rel])
            queued += 1
            logger.debug("watcher.path_queued", path=rel, change_type=change_type.name)
        return queued

    def _should_flush(self) -> bool:
        if not self._pending:
            return False
        now = time.monotonic()
        return (
            now - self._last_change_time >= self.debounce_window
            or now - self._first_change_time >= self.max_debounce_wait
        )

    async def flush(self) -> UpdateSummary | None:
        """Send queued paths to the indexer."""
        async with self._flush_lock:
            if not self._pending:
                return None
            paths = sorted(self._pending)
            self._pending.clear()
            self._first_change_time = 0.0
            self._last_change_time = 0.0

            logger.info("watcher.changes_detected", count=len(paths))
            try:
                summary = await self.indexer.on_files_changed(self.workspace, paths)
            except CodeRecallError as e:
                if e.code == ErrorCode.ALREADY_INDEXING:
                    # A full pass is running; try again after it
                    logger.info("watcher.requeued", count=len(paths))
                    self.queue_paths(paths)
                    return None
                self.last_error = str(e)
                logger.error("watcher.reindex_failed", error=str(e), code=e.code)
                return None

            self.last_error = None
            if self.on_update is not None:
                self.on_update(summary)
            return summary

    async def _debounce_loop(self) -> None:
        while not self._stop_event.is_set():
            await asyncio.sleep(_TICK_SEC)
            if self._should_flush():
                await self.flush()

    async def _watch_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                async for changes in awatch(
                    self.workspace,
                    stop_event=self._stop_event,
                    ignore_permission_denied=True,
                ):
                    self.handle_changes(changes)
            except OSError as e:
                if self._stop_event.is_set():
                    return
                logger.error("watcher.error", error=str(e))
                await asyncio.sleep(1.0)
