"""High-level orchestration of the indexing engine.

This module implements the CodebaseIndexer, the entry point for all index
operations. It enforces two serialization rules:

- Re-entrancy guard: only ONE reconciliation per workspace at a time. A
  second call fails fast with ALREADY_INDEXING instead of queueing.
- Embedding mutex: only ONE embedding-heavy phase process-wide, granted in
  FIFO order across workspaces. It bounds memory and CPU; it does not
  protect correctness.

A reconciliation pass is: scan -> diff -> (mutex) update -> bookkeeping.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog
from sqlalchemy.exc import SQLAlchemyError

from coderecall.config.constants import QUERY_MAX_CHARS, RETRIEVE_MAX_TOP_K
from coderecall.config.models import CodeRecallConfig
from coderecall.core.errors import CodeRecallError, ErrorCode, IndexingError
from coderecall.core.logging import clear_request_id, set_request_id
from coderecall.index._internal.concurrency import CancellationToken, FifoMutex
from coderecall.index._internal.db.backend import SqliteVectorBackend, VectorStoreBackend
from coderecall.index._internal.db.cache import VectorCache
from coderecall.index._internal.discovery.scanner import scan_workspace, stat_paths
from coderecall.index._internal.ignore import ExcludeMatcher
from coderecall.index._internal.indexing.chunking import ChunkSource, LineChunker
from coderecall.index._internal.indexing.embeddings import (
    DownloadProgressCallback,
    EmbeddingsProvider,
    create_embeddings_provider,
)
from coderecall.index._internal.indexing.vector_store import VectorStore
from coderecall.index._internal.progress import ProgressReporter
from coderecall.index._internal.state.changes import compute_refresh_plan
from coderecall.index.models import (
    DetailedStats,
    FileRecord,
    IndexStats,
    IndexStatus,
    IndexTag,
    ProgressCallback,
    RefreshPlan,
    RetrievalResult,
    UpdateSummary,
)

log = structlog.get_logger()

# Progress milestones of one reconciliation pass
_SCAN_DONE = 0.1
_WAITING = 0.15
_UPDATE_START = 0.2


def workspace_key(path: str | Path) -> str:
    """Canonical workspace identity: the resolved absolute path."""
    return str(Path(path).expanduser().resolve())


@contextmanager
def _vector_index_errors() -> Iterator[None]:
    """Surface untyped storage faults as VECTOR_INDEX_FAILED."""
    try:
        yield
    except CodeRecallError:
        raise
    except Exception as e:
        raise IndexingError.wrap(e, ErrorCode.VECTOR_INDEX_FAILED) from e


class CodebaseIndexer:
    """
    Owns all indexing state for the process.

    STATE:
    - _indexing: workspaces with a reconciliation in flight
    - _file_records: last successfully indexed FileRecord table per workspace
    - _mutex: the embedding-phase FIFO mutex

    Usage::

        indexer = CodebaseIndexer(load_config())
        summary = await indexer.index_workspace("~/src/project", on_progress=print)
        hits = await indexer.retrieve("parse config file", "~/src/project", top_k=5)
        await indexer.dispose()

    Switching the embedding model (``set_embeddings_provider``) changes the
    partition every read and write goes to. Until the workspace is indexed
    under the new model, retrieval returns nothing for it. The old partition
    is left in place.
    """

    def __init__(
        self,
        config: CodeRecallConfig | None = None,
        *,
        embeddings: EmbeddingsProvider | None = None,
        backend: VectorStoreBackend | None = None,
        chunk_source: ChunkSource | None = None,
        data_dir: Path | None = None,
    ) -> None:
        self.config = config or CodeRecallConfig()
        self.data_dir = data_dir or self.config.storage.data_path
        self._embeddings = embeddings
        self._backend = backend
        self._chunk_source: ChunkSource = chunk_source or LineChunker()
        self._download_callback: DownloadProgressCallback | None = None

        self._mutex = FifoMutex()
        self._indexing: set[str] = set()
        self._file_records: dict[str, dict[str, FileRecord]] = {}
        self._store: VectorStore | None = None

    # Component lifecycle

    def _get_embeddings(self) -> EmbeddingsProvider:
        if self._embeddings is None:
            self._embeddings = create_embeddings_provider(
                self.config.embeddings,
                on_download_progress=self._forward_download_progress,
            )
        return self._embeddings

    def _get_backend(self) -> VectorStoreBackend:
        if self._backend is None:
            storage = self.config.storage
            try:
                self._backend = SqliteVectorBackend(
                    self.data_dir / "vectors.db",
                    busy_timeout_ms=storage.busy_timeout_ms,
                    max_retries=storage.max_retries,
                )
            except OSError as e:
                raise IndexingError.init_failed("vector_store", str(e)) from e
        return self._backend

    def _get_store(self) -> VectorStore:
        if self._store is None:
            embeddings = self._get_embeddings()
            backend = self._get_backend()
            storage = self.config.storage
            try:
                cache = VectorCache(
                    self.data_dir / "cache",
                    embeddings.embedding_id,
                    busy_timeout_ms=storage.busy_timeout_ms,
                    max_retries=storage.max_retries,
                )
            except (SQLAlchemyError, OSError) as e:
                raise IndexingError.init_failed("cache", str(e)) from e
            self._store = VectorStore(backend, cache, embeddings, self.config.indexing)
        return self._store

    @property
    def embedding_id(self) -> str:
        return self._get_embeddings().embedding_id

    def set_embeddings_provider(self, provider: EmbeddingsProvider) -> None:
        """Swap the active model. Later calls use the partition of the new id."""
        old_id = self._embeddings.embedding_id if self._embeddings is not None else None
        self._embeddings = provider
        if self._store is not None:
            self._store.cache.dispose()
            self._store = None
        log.info("indexer.embeddings_swapped", old=old_id, new=provider.embedding_id)

    def set_model_download_progress_callback(self, callback: DownloadProgressCallback | None) -> None:
        self._download_callback = callback

    def _forward_download_progress(self, status: str, file: str | None, progress: float | None) -> None:
        if self._download_callback is not None:
            self._download_callback(status, file, progress)

    async def dispose(self) -> None:
        """Release database handles and HTTP clients."""
        if self._store is not None:
            self._store.cache.dispose()
            self._store = None
        if self._backend is not None:
            self._backend.close()
            self._backend = None
        aclose = getattr(self._embeddings, "aclose", None)
        if aclose is not None:
            await aclose()
        self._file_records.clear()

    # Helpers

    def _resolve_workspace(self, path: str | Path) -> Path:
        root = Path(path).expanduser().resolve()
        if not root.is_dir():
            raise IndexingError.workspace_not_found(str(path))
        return root

    def _tag(self, key: str, branch: str | None = None) -> IndexTag:
        return IndexTag(directory=key, embedding_id=self.embedding_id, branch=branch)

    def _matcher(self, root: Path) -> ExcludeMatcher:
        cfg = self.config.indexing
        return ExcludeMatcher(
            root,
            include_extensions=cfg.include_extensions,
            exclude_patterns=cfg.exclude_patterns,
            respect_gitignore=cfg.respect_gitignore,
        )

    def _begin(self, key: str) -> None:
        if key in self._indexing:
            raise IndexingError.already_indexing(key)
        self._indexing.add(key)

    def _forget_unwritten(self, key: str, plan: RefreshPlan) -> None:
        """Drop records of files an interrupted update may have half-written.

        Their rows can already reflect content that was never recorded, so
        the next pass must recompute them whatever their hash is then.
        """
        records = self._file_records.get(key)
        if not records:
            return
        for item in (*plan.compute, *plan.reuse):
            records.pop(item.path, None)
        log.debug("indexer.records_invalidated", workspace=key, files=len(plan.compute) + len(plan.reuse))

    # Write path

    async def index_workspace(
        self,
        path: str | Path,
        *,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
        branch: str | None = None,
    ) -> UpdateSummary:
        """
        Reconcile the workspace index with the filesystem.

        Flow:
        1. Scan and hash indexable files
        2. Diff against the FileRecord table of the last successful pass
        3. Nothing to write and the partition exists: report 1.0 and return
        4. Acquire the embedding mutex (FIFO) and run the store update
        5. Replace the FileRecord table; files of failed batches are left
           out so the next pass recomputes them

        Raises:
            IndexingError: WORKSPACE_NOT_FOUND, ALREADY_INDEXING, CANCELLED,
                INIT_FAILED or VECTOR_INDEX_FAILED.
        """
        root = self._resolve_workspace(path)
        key = str(root)
        self._begin(key)
        request_id = set_request_id()
        token = token or CancellationToken()
        reporter = ProgressReporter(on_progress)
        started = time.perf_counter()
        log.info("indexer.started", workspace=key, request_id=request_id)

        try:
            reporter.report(0.0, "Scanning files")
            scan = await scan_workspace(
                self._matcher(root),
                max_file_size=self.config.indexing.max_file_size,
                token=token,
            )
            token.raise_if_cancelled("diff")

            tag = self._tag(key, branch)
            store = self._get_store()
            plan = compute_refresh_plan(self._file_records.get(key, {}), scan.records)
            reporter.report(
                _SCAN_DONE,
                "Computing changes",
                indexed_count=0,
                total_count=len(scan.records),
            )
            log.debug(
                "indexer.plan",
                workspace=key,
                compute=len(plan.compute),
                delete=len(plan.delete),
                reuse=len(plan.reuse),
            )

            if not plan.has_pending_writes and await store.has_index(tag):
                self._file_records[key] = {r.path: r for r in scan.records}
                reporter.done("Index up to date")
                log.info("indexer.up_to_date", workspace=key, files=len(scan.records))
                return UpdateSummary(
                    reused_files=len(plan.reuse),
                    skipped=True,
                    duration_s=time.perf_counter() - started,
                )

            if self._mutex.locked:
                depth = self._mutex.waiting + 1
                reporter.report(_WAITING, f"Waiting for {depth} indexing task(s) ahead in queue")
                log.info("indexer.queued", workspace=key, ahead=depth)

            try:
                async with self._mutex:
                    summary = await store.update(
                        tag,
                        plan,
                        self._chunk_source,
                        on_progress=reporter.scaled(_UPDATE_START, 1.0),
                        token=token,
                    )
            except BaseException:
                self._forget_unwritten(key, plan)
                raise

            failed = set(summary.failed_paths)
            self._file_records[key] = {r.path: r for r in scan.records if r.path not in failed}
            await store.cache.cleanup_expired(self.config.storage.cache_max_age_days)
            log.info("indexer.completed", workspace=key, **summary.to_dict())
            return summary
        except CodeRecallError:
            raise
        except Exception as e:
            log.error("indexer.failed", workspace=key, error=str(e), error_type=type(e).__name__)
            raise IndexingError.wrap(e, ErrorCode.VECTOR_INDEX_FAILED) from e
        finally:
            self._indexing.discard(key)
            clear_request_id()

    async def on_files_changed(
        self,
        path: str | Path,
        changed_paths: Iterable[str | Path],
        *,
        token: CancellationToken | None = None,
        branch: str | None = None,
    ) -> UpdateSummary:
        """
        Incremental update for a set of changed files.

        Only the named paths are hashed. Missing or unreadable ones count as
        deletions. Paths may be absolute or workspace-relative; paths outside
        the workspace or not indexable are ignored.
        """
        root = self._resolve_workspace(path)
        key = str(root)
        matcher = self._matcher(root)

        scope: set[str] = set()
        for changed in changed_paths:
            candidate = Path(changed)
            rel = matcher.relativize(candidate) if candidate.is_absolute() else candidate.as_posix()
            if rel is not None and matcher.is_included(rel):
                scope.add(rel)
        if not scope:
            return UpdateSummary(skipped=True)

        self._begin(key)
        token = token or CancellationToken()
        try:
            scan = await stat_paths(matcher, scope, max_file_size=self.config.indexing.max_file_size)
            previous = self._file_records.setdefault(key, {})
            plan: RefreshPlan = compute_refresh_plan(previous, scan.records, scope=scope)
            if not plan.has_pending_writes:
                return UpdateSummary(reused_files=len(plan.reuse), skipped=True)

            try:
                async with self._mutex:
                    summary = await self._get_store().update(
                        self._tag(key, branch), plan, self._chunk_source, token=token
                    )
            except BaseException:
                self._forget_unwritten(key, plan)
                raise

            failed = set(summary.failed_paths)
            for rel in scope:
                previous.pop(rel, None)
            for record in scan.records:
                if record.path not in failed:
                    previous[record.path] = record
            log.info("indexer.files_changed", workspace=key, paths=len(scope), **summary.to_dict())
            return summary
        except CodeRecallError:
            raise
        except Exception as e:
            raise IndexingError.wrap(e, ErrorCode.VECTOR_INDEX_FAILED) from e
        finally:
            self._indexing.discard(key)

    async def delete_workspace_index(self, path: str | Path, *, branch: str | None = None) -> None:
        """Drop the workspace partition for the active model. Idempotent."""
        key = workspace_key(path)
        with _vector_index_errors():
            await self._get_store().delete_index(self._tag(key, branch))
        self._file_records.pop(key, None)

    # Read path

    async def retrieve(
        self,
        query: str,
        workspace: str | Path,
        top_k: int = 10,
        *,
        branch: str | None = None,
    ) -> list[RetrievalResult]:
        """Nearest chunks for ``query``, ascending by distance.

        Raises:
            IndexingError: QUERY_TOO_LONG, or RETRIEVE_FAILED wrapping any
                other fault.
        """
        if len(query) > QUERY_MAX_CHARS:
            raise IndexingError.query_too_long(len(query), QUERY_MAX_CHARS)
        top_k = min(top_k, RETRIEVE_MAX_TOP_K)
        if top_k <= 0:
            return []

        key = workspace_key(workspace)
        try:
            store = self._get_store()
            vectors = await self._get_embeddings().embed([query])
            results = await store.retrieve(vectors[0], top_k, [self._tag(key, branch)])
        except CodeRecallError:
            raise
        except Exception as e:
            log.error("indexer.retrieve_failed", workspace=key, error=str(e))
            raise IndexingError.retrieve_failed(str(e)) from e
        log.debug("indexer.retrieved", workspace=key, top_k=top_k, results=len(results))
        return results

    async def has_index(self, path: str | Path, *, branch: str | None = None) -> bool:
        with _vector_index_errors():
            return await self._get_store().has_index(self._tag(workspace_key(path), branch))

    async def get_index_status(self, path: str | Path, *, branch: str | None = None) -> IndexStatus:
        key = workspace_key(path)
        file_count = len(self._file_records.get(key, {}))
        with _vector_index_errors():
            store = self._get_store()
            tag = self._tag(key, branch)
            has_index = await store.has_index(tag)
            if not file_count and has_index:
                # Fresh process: fall back to what the partition holds
                file_count = (await store.get_stats(tag)).unique_files or 0
        return IndexStatus(
            is_indexing=key in self._indexing,
            has_index=has_index,
            file_count=file_count,
            queued_tasks=self._mutex.waiting,
        )

    async def get_index_stats(self, path: str | Path, *, branch: str | None = None) -> IndexStats:
        with _vector_index_errors():
            return await self._get_store().get_stats(self._tag(workspace_key(path), branch))

    async def get_detailed_stats(self, path: str | Path, *, branch: str | None = None) -> DetailedStats:
        key = workspace_key(path)
        with _vector_index_errors():
            stats = await self._get_store().get_detailed_stats(self._tag(key, branch))
        stats.tracked_files = len(self._file_records.get(key, {}))
        return stats
