"""Partitioned vector store: the write path and nearest-neighbour reads.

Every (workspace, embedding model, branch) triple maps to one backend
table. ``update()`` applies a RefreshPlan in three steps:

1. delete: drop rows (and cache entries) of removed files
2. reuse: re-chunk unchanged files and restore their rows from the cache;
   any chunk missing from the cache moves the file to the compute set
3. compute: file-batches are chunked, looked up in the cache, and the
   misses embedded in sub-batches, ``concurrency`` sub-batches at a time

Each window of sub-batches is written in one backend transaction, in
issue order, before the next window starts. A failing file-batch is
logged and counted; only cancellation or a provider that cannot load
aborts the update. Cancellation is checked
between items and before every batch and window.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import time
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from coderecall.config.constants import (
    APPROX_BYTES_PER_ROW,
    PARTITION_NAME_MAX,
    PARTITION_PREFIX,
    PLACEHOLDER_ROW_ID,
)
from coderecall.config.models import IndexingConfig
from coderecall.core.errors import ErrorCode, IndexingError
from coderecall.index._internal.concurrency import CancellationToken
from coderecall.index._internal.db.backend import ROW_COLUMNS, VectorStoreBackend
from coderecall.index._internal.db.cache import VectorCache
from coderecall.index._internal.discovery.scanner import read_text
from coderecall.index._internal.indexing.chunking import ChunkSource
from coderecall.index._internal.indexing.embeddings import EmbeddingsProvider
from coderecall.index._internal.progress import ProgressReporter
from coderecall.index.models import (
    CodeChunk,
    DetailedStats,
    FileChangeItem,
    IndexStats,
    IndexTag,
    ProgressCallback,
    RefreshPlan,
    RetrievalResult,
    UpdateSummary,
    VectorIndexRow,
)

log = structlog.get_logger()

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")

# Errors that end the update instead of failing one file-batch
_FATAL_CODES = frozenset({ErrorCode.CANCELLED, ErrorCode.INIT_FAILED})


def table_name(tag: IndexTag) -> str:
    """Deterministic, length-bounded partition name for a tag."""
    dir_hash = hashlib.sha256(tag.directory.encode()).hexdigest()[:16]
    model_hash = hashlib.sha256(tag.embedding_id.encode()).hexdigest()[:12]
    parts = [dir_hash]
    if tag.branch:
        parts.append(_UNSAFE.sub("_", tag.branch)[-20:])
    parts.append(model_hash)
    return (PARTITION_PREFIX + "_".join(parts))[:PARTITION_NAME_MAX]


def new_row(chunk: CodeChunk, vector: list[float]) -> VectorIndexRow:
    return VectorIndexRow(
        uuid=uuid.uuid4().hex,
        path=chunk.filepath,
        cache_key=chunk.digest,
        vector=vector,
        start_line=chunk.start_line,
        end_line=chunk.end_line,
        contents=chunk.content,
        language=chunk.language,
    )


@dataclass
class _FileBatch:
    """Chunks collected for one file-batch."""

    chunks: list[CodeChunk] = field(default_factory=list)
    readable: list[FileChangeItem] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)


class VectorStore:
    """Vector partitions for one embedding model."""

    def __init__(
        self,
        backend: VectorStoreBackend,
        cache: VectorCache,
        embeddings: EmbeddingsProvider,
        config: IndexingConfig | None = None,
    ) -> None:
        self._backend = backend
        self._cache = cache
        self._embeddings = embeddings
        self._config = config or IndexingConfig()

    @property
    def cache(self) -> VectorCache:
        return self._cache

    @property
    def embedding_id(self) -> str:
        return self._embeddings.embedding_id

    # Partition lifecycle

    async def has_index(self, tag: IndexTag) -> bool:
        return await asyncio.to_thread(self._backend.table_exists, table_name(tag))

    async def delete_index(self, tag: IndexTag) -> None:
        name = table_name(tag)
        await asyncio.to_thread(self._backend.drop_table, name)
        log.info("vector_store.partition_dropped", table=name, directory=tag.directory)

    def _missing_columns(self, name: str) -> set[str]:
        """Row columns absent from an existing partition."""
        try:
            return set(ROW_COLUMNS) - self._backend.table_columns(name)
        except Exception as e:  # noqa: BLE001
            log.warning("vector_store.schema_check_failed", table=name, error=str(e))
            return {"<unknown>"}

    def _open_partition(self, name: str) -> None:
        backend = self._backend
        if backend.table_exists(name):
            missing = self._missing_columns(name)
            if not missing:
                return
            # Drop and recreate: indexed content is lost and recomputed
            log.warning("vector_store.schema_rebuild", table=name, missing=sorted(missing))
            backend.drop_table(name)

        if backend.supports_empty_tables:
            backend.create_table(name)
        else:
            placeholder = VectorIndexRow(
                uuid=PLACEHOLDER_ROW_ID,
                path="",
                cache_key="",
                vector=[0.0] * self._embeddings.dimensions,
                start_line=0,
                end_line=0,
                contents="",
                language="",
            )
            backend.create_table(name, [placeholder])
            backend.delete_rows(name, uuids=[PLACEHOLDER_ROW_ID])
        log.debug("vector_store.partition_created", table=name)

    # Write path

    async def update(
        self,
        tag: IndexTag,
        plan: RefreshPlan,
        chunk_source: ChunkSource,
        on_progress: ProgressCallback | ProgressReporter | None = None,
        token: CancellationToken | None = None,
        concurrency: int | None = None,
    ) -> UpdateSummary:
        """Apply ``plan`` to the partition for ``tag``.

        Raises:
            IndexingError: CANCELLED when ``token`` is cancelled, INIT_FAILED
                when the embeddings provider cannot load. Batches committed
                before that point stay in place.
        """
        token = token or CancellationToken()
        reporter = (
            on_progress if isinstance(on_progress, ProgressReporter) else ProgressReporter(on_progress)
        )
        window = max(1, concurrency or self._config.concurrency)
        root = Path(tag.directory)
        name = table_name(tag)
        summary = UpdateSummary()
        started = time.perf_counter()

        total = len(plan.delete) + len(plan.reuse) + len(plan.compute)
        processed = 0

        def report(description: str, done: float, current_file: str | None = None) -> None:
            reporter.report(
                done / total if total else 0.0,
                description,
                current_file=current_file,
                indexed_count=int(done),
                total_count=total,
            )

        token.raise_if_cancelled("update")
        await asyncio.to_thread(self._open_partition, name)

        # 1. Deletions
        report("Removing deleted files", processed)
        for item in plan.delete:
            token.raise_if_cancelled("delete")
            await asyncio.to_thread(self._backend.delete_rows, name, paths=[item.path])
            await self._cache.delete_cache(item.path, item.content_hash)
            processed += 1
            summary.deleted_files += 1

        # 2. Reuse from cache
        report("Restoring cached vectors", processed)
        recompute: list[FileChangeItem] = []
        present = await asyncio.to_thread(self._indexed_paths, name) if plan.reuse else set()
        for item in plan.reuse:
            token.raise_if_cancelled("reuse")
            if item.path in present:
                processed += 1
                summary.reused_files += 1
                continue
            rows = await self._restore_from_cache(root, item, chunk_source)
            if rows is None:
                recompute.append(item)
                continue
            await asyncio.to_thread(self._backend.replace_rows, name, [item.path], rows)
            processed += 1
            summary.reused_files += 1
            summary.rows_written += len(rows)
            summary.cache_hits += len(rows)
            report("Restoring cached vectors", processed, item.path)

        if recompute:
            summary.reclassified_files = len(recompute)
            log.info("vector_store.reuse_cache_miss", table=name, files=len(recompute))

        # 3. Compute
        compute = [*plan.compute, *recompute]
        batch_size = self._config.file_batch_size
        total_batches = (len(compute) + batch_size - 1) // batch_size
        for batch_no, start in enumerate(range(0, len(compute), batch_size), start=1):
            token.raise_if_cancelled("compute")
            batch = compute[start : start + batch_size]
            label = f"Indexing files ({start + 1}-{start + len(batch)}/{len(compute)})"
            report(label, processed, batch[0].path)

            def on_fraction(frac: float, base: int = processed, n: int = len(batch), label: str = label) -> None:
                report(label, base + n * frac)

            try:
                await self._compute_batch(name, root, batch, chunk_source, token, window, summary, on_fraction)
            except IndexingError as e:
                if e.code in _FATAL_CODES:
                    raise
                self._record_failure(summary, batch, batch_no, total_batches, e)
            except Exception as e:  # noqa: BLE001
                self._record_failure(summary, batch, batch_no, total_batches, e)
            processed += len(batch)

        summary.duration_s = time.perf_counter() - started
        if summary.failed_batches:
            log.warning(
                "vector_store.update_partial",
                table=name,
                failed_batches=summary.failed_batches,
                failed_files=len(summary.failed_paths),
            )
        log.info("vector_store.update_done", table=name, **summary.to_dict())
        reporter.done()
        return summary

    def _indexed_paths(self, name: str) -> set[str]:
        """Paths that already have rows. Empty when the backend cannot tell."""
        try:
            return set(self._backend.value_counts(name, "path"))
        except NotImplementedError:
            return set()

    def _record_failure(
        self,
        summary: UpdateSummary,
        batch: list[FileChangeItem],
        batch_no: int,
        total_batches: int,
        error: BaseException,
    ) -> None:
        summary.failed_batches += 1
        summary.failed_paths.extend(item.path for item in batch)
        log.error(
            "vector_store.batch_failed",
            batch=batch_no,
            total_batches=total_batches,
            files=len(batch),
            error=str(error),
            error_type=type(error).__name__,
        )

    async def _restore_from_cache(
        self, root: Path, item: FileChangeItem, chunk_source: ChunkSource
    ) -> list[VectorIndexRow] | None:
        """Fresh rows for every chunk of the file, or None on any cache miss."""
        try:
            content = await asyncio.to_thread(read_text, root / item.path)
        except OSError as e:
            log.warning("vector_store.read_failed", path=item.path, error=str(e))
            return None
        chunks = list(chunk_source.chunk(item.path, content, self._config.max_chunk_size))
        if not chunks:
            return []
        vectors = await self._cache.get_vectors(c.digest for c in chunks)
        if any(c.digest not in vectors for c in chunks):
            return None
        return [new_row(c, vectors[c.digest]) for c in chunks]

    async def _iter_chunks(
        self,
        root: Path,
        items: Sequence[FileChangeItem],
        chunk_source: ChunkSource,
        collected: _FileBatch,
    ) -> AsyncIterator[CodeChunk]:
        for item in items:
            try:
                content = await asyncio.to_thread(read_text, root / item.path)
            except OSError as e:
                log.warning("vector_store.read_failed", path=item.path, error=str(e))
                collected.unreadable.append(item.path)
                continue
            collected.readable.append(item)
            for chunk in chunk_source.chunk(item.path, content, self._config.max_chunk_size):
                yield chunk

    async def _compute_batch(
        self,
        name: str,
        root: Path,
        batch: list[FileChangeItem],
        chunk_source: ChunkSource,
        token: CancellationToken,
        window: int,
        summary: UpdateSummary,
        on_fraction: Callable[[float], None],
    ) -> None:
        collected = _FileBatch()
        async with aclosing(self._iter_chunks(root, batch, chunk_source, collected)) as stream:
            async for chunk in stream:
                collected.chunks.append(chunk)

        paths = [item.path for item in collected.readable]
        source_hashes = {item.path: item.content_hash for item in collected.readable}
        summary.failed_paths.extend(collected.unreadable)

        cached = await self._cache.get_vectors(c.digest for c in collected.chunks)
        hit_rows = [new_row(c, cached[c.digest]) for c in collected.chunks if c.digest in cached]
        misses = [c for c in collected.chunks if c.digest not in cached]
        summary.cache_hits += len(hit_rows)
        # Cache entries of every chunk carry this path and its current file hash
        await self._cache.save_vectors(hit_rows, source_hashes)

        sub_size = self._config.embedding_batch_size
        sub_batches = [misses[i : i + sub_size] for i in range(0, len(misses), sub_size)]

        # First write replaces any rows left by earlier runs for these paths
        pending_replace = True
        if not sub_batches:
            await asyncio.to_thread(self._backend.replace_rows, name, paths, hit_rows)
            summary.rows_written += len(hit_rows)
            pending_replace = False

        for w_start in range(0, len(sub_batches), window):
            token.raise_if_cancelled("embed")
            group = sub_batches[w_start : w_start + window]
            results = await asyncio.gather(*(self._embed_sub_batch(sb) for sb in group))

            rows: list[VectorIndexRow] = [row for sub in results for row in sub]
            if pending_replace:
                await asyncio.to_thread(self._backend.replace_rows, name, paths, hit_rows + rows)
                summary.rows_written += len(hit_rows) + len(rows)
                pending_replace = False
            else:
                await asyncio.to_thread(self._backend.add_rows, name, rows)
                summary.rows_written += len(rows)
            await self._cache.save_vectors(rows, source_hashes)
            summary.embedded_chunks += len(rows)
            on_fraction(min(1.0, (w_start + len(group)) / len(sub_batches)))

        summary.computed_files += len(collected.readable)

    async def _embed_sub_batch(self, chunks: list[CodeChunk]) -> list[VectorIndexRow]:
        vectors = await self._embeddings.embed([c.content for c in chunks])
        if len(vectors) != len(chunks):
            raise ValueError(f"embedding provider returned {len(vectors)} vectors for {len(chunks)} chunks")
        return [new_row(c, list(v)) for c, v in zip(chunks, vectors, strict=True)]

    # Read path

    async def retrieve(
        self,
        query_vector: Sequence[float],
        top_k: int,
        tags: Sequence[IndexTag],
    ) -> list[RetrievalResult]:
        """Nearest rows across ``tags``, ascending by distance."""
        if top_k <= 0:
            return []
        results: list[RetrievalResult] = []
        for tag in tags:
            name = table_name(tag)
            if not await asyncio.to_thread(self._backend.table_exists, name):
                continue
            missing = await asyncio.to_thread(self._missing_columns, name)
            if missing:
                log.warning("vector_store.partition_skipped", table=name, missing=sorted(missing))
                continue
            hits = await asyncio.to_thread(self._backend.search, name, list(query_vector), top_k)
            results.extend(
                RetrievalResult(
                    filepath=hit.row.path,
                    content=hit.row.contents,
                    start_line=hit.row.start_line,
                    end_line=hit.row.end_line,
                    score=hit.distance,
                    language=hit.row.language,
                )
                for hit in hits
            )
        results.sort(key=lambda r: r.score)
        return results[:top_k]

    # Statistics

    def _stats_sync(self, name: str) -> IndexStats:
        if not self._backend.table_exists(name):
            return IndexStats(total_chunks=0, unique_files=0, languages={})
        stats = IndexStats(total_chunks=self._backend.count_rows(name))
        missing = self._missing_columns(name)
        if missing:
            log.warning("vector_store.stats_partial", table=name, missing=sorted(missing))
            return stats
        try:
            stats.unique_files = len(self._backend.value_counts(name, "path"))
            stats.languages = self._backend.value_counts(name, "language")
        except NotImplementedError:
            log.debug("vector_store.stats_partial", table=name)
        return stats

    async def get_stats(self, tag: IndexTag) -> IndexStats:
        return await asyncio.to_thread(self._stats_sync, table_name(tag))

    async def get_detailed_stats(self, tag: IndexTag) -> DetailedStats:
        name = table_name(tag)
        base = await asyncio.to_thread(self._stats_sync, name)
        cache_stats = await self._cache.get_stats()
        avg = 0.0
        if base.unique_files:
            avg = round(base.total_chunks / base.unique_files, 1)
        return DetailedStats(
            total_chunks=base.total_chunks,
            unique_files=base.unique_files,
            languages=base.languages,
            embedding_id=self.embedding_id,
            table_name=name,
            avg_chunks_per_file=avg,
            approx_db_bytes=base.total_chunks * APPROX_BYTES_PER_ROW,
            cache_entries=cache_stats.entries,
            cache_bytes=cache_stats.size_bytes,
        )
