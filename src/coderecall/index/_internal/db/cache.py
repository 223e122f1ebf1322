"""Persistent vector cache keyed by (chunk digest, embedding id).

One SQLite file per embedding id lives under ``<data_dir>/cache/``. Each
entry also remembers the path and file hash it was computed for, so that
deleting a file can drop its entries without touching other files that
share identical chunks.

Cache faults never abort indexing: every public method logs the failure
and degrades to a miss (or a no-op for writes).
"""

import asyncio
import hashlib
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import numpy as np
import structlog
from sqlalchemy import Column, LargeBinary, delete, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, SQLModel, select

from coderecall.index._internal.db.database import Database
from coderecall.index.models import VectorIndexRow

T = TypeVar("T")

log = structlog.get_logger()

_CACHE_FAULTS = (SQLAlchemyError, OSError, ValueError)

# SQLite caps bound parameters; keep IN lists well below it
_IN_CHUNK = 500


class CachedVectorEntry(SQLModel, table=True):
    """Previously computed vector for one chunk of one file."""

    __tablename__ = "cached_vectors"

    id: int | None = Field(default=None, primary_key=True)
    cache_key: str = Field(index=True)
    embedding_id: str = Field(index=True)
    path: str = Field(index=True)
    source_hash: str = ""
    uuid: str
    vector: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    start_line: int
    end_line: int
    contents: str
    language: str
    created_at: float = Field(default_factory=time.time, index=True)


@dataclass(frozen=True, slots=True)
class CacheStats:
    entries: int
    size_bytes: int


def cache_file_name(embedding_id: str) -> str:
    return f"{hashlib.sha256(embedding_id.encode()).hexdigest()[:16]}.db"


def encode_vector(vector: Iterable[float]) -> bytes:
    return np.asarray(list(vector), dtype=np.float32).tobytes()


def decode_vector(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype=np.float32).tolist()


def _entry_to_row(entry: CachedVectorEntry) -> VectorIndexRow:
    return VectorIndexRow(
        uuid=entry.uuid,
        path=entry.path,
        cache_key=entry.cache_key,
        vector=decode_vector(entry.vector),
        start_line=entry.start_line,
        end_line=entry.end_line,
        contents=entry.contents,
        language=entry.language,
    )


def _chunks(items: list[T], size: int) -> Iterable[list[T]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class VectorCache:
    """Cache of computed vectors for a single embedding model."""

    def __init__(
        self,
        cache_dir: Path,
        embedding_id: str,
        *,
        busy_timeout_ms: int = 30000,
        max_retries: int = 3,
    ) -> None:
        self.embedding_id = embedding_id
        self.db_path = cache_dir / cache_file_name(embedding_id)
        self._db = Database(self.db_path, busy_timeout_ms=busy_timeout_ms, max_retries=max_retries)
        SQLModel.metadata.create_all(self._db.engine, tables=[CachedVectorEntry.__table__])  # type: ignore[attr-defined]

    # Sync implementations, run in worker threads

    def _get(self, digest: str) -> list[VectorIndexRow]:
        with self._db.session() as session:
            stmt = (
                select(CachedVectorEntry)
                .where(CachedVectorEntry.cache_key == digest)
                .where(CachedVectorEntry.embedding_id == self.embedding_id)
                .order_by(CachedVectorEntry.id)  # type: ignore[arg-type]
            )
            return [_entry_to_row(e) for e in session.exec(stmt)]

    def _get_many(self, digests: list[str]) -> dict[str, list[float]]:
        found: dict[str, list[float]] = {}
        with self._db.session() as session:
            for part in _chunks(digests, _IN_CHUNK):
                stmt = (
                    select(CachedVectorEntry.cache_key, CachedVectorEntry.vector)
                    .where(CachedVectorEntry.cache_key.in_(part))  # type: ignore[attr-defined]
                    .where(CachedVectorEntry.embedding_id == self.embedding_id)
                )
                for key, blob in session.exec(stmt):
                    found.setdefault(key, decode_vector(blob))
        return found

    def _save(self, rows: list[VectorIndexRow], source_hashes: Mapping[str, str]) -> int:
        with self._db.session() as session:
            keys_by_path: dict[str, set[str]] = {}
            for r in rows:
                keys_by_path.setdefault(r.path, set()).add(r.cache_key)
            for path, keys in keys_by_path.items():
                for part in _chunks(sorted(keys), _IN_CHUNK):
                    session.execute(  # type: ignore[deprecated]
                        delete(CachedVectorEntry)
                        .where(CachedVectorEntry.embedding_id == self.embedding_id)
                        .where(CachedVectorEntry.path == path)
                        .where(CachedVectorEntry.cache_key.in_(part))  # type: ignore[attr-defined]
                    )
            now = time.time()
            seen: set[tuple[str, str]] = set()
            for row in rows:
                key = (row.path, row.cache_key)
                if key in seen:
                    continue
                seen.add(key)
                session.add(
                    CachedVectorEntry(
                        cache_key=row.cache_key,
                        embedding_id=self.embedding_id,
                        path=row.path,
                        source_hash=source_hashes.get(row.path, ""),
                        uuid=row.uuid,
                        vector=encode_vector(row.vector),
                        start_line=row.start_line,
                        end_line=row.end_line,
                        contents=row.contents,
                        language=row.language,
                        created_at=now,
                    )
                )
            session.commit()
            return len(seen)

    def _delete(self, path: str, digest: str) -> int:
        with self._db.session() as session:
            stmt = (
                delete(CachedVectorEntry)
                .where(CachedVectorEntry.embedding_id == self.embedding_id)
                .where(CachedVectorEntry.path == path)
                .where(or_(CachedVectorEntry.source_hash == digest, CachedVectorEntry.cache_key == digest))
            )
            result = session.execute(stmt)  # type: ignore[deprecated]
            session.commit()
            return int(result.rowcount or 0)

    def _clear(self) -> int:
        with self._db.session() as session:
            result = session.execute(  # type: ignore[deprecated]
                delete(CachedVectorEntry).where(CachedVectorEntry.embedding_id == self.embedding_id)
            )
            session.commit()
            return int(result.rowcount or 0)

    def _stats(self) -> CacheStats:
        with self._db.session() as session:
            count = session.exec(
                select(func.count())
                .select_from(CachedVectorEntry)
                .where(CachedVectorEntry.embedding_id == self.embedding_id)
            ).one()
        return CacheStats(entries=int(count), size_bytes=self._db.size_bytes())

    def _cleanup(self, cutoff: float) -> int:
        with self._db.session() as session:
            result = session.execute(  # type: ignore[deprecated]
                delete(CachedVectorEntry)
                .where(CachedVectorEntry.embedding_id == self.embedding_id)
                .where(CachedVectorEntry.created_at < cutoff)
            )
            session.commit()
            return int(result.rowcount or 0)

    # Public async API

    async def get_cached_vectors(self, digest: str) -> list[VectorIndexRow]:
        """Rows previously saved under ``digest`` for this model; empty on miss."""
        try:
            return await asyncio.to_thread(self._get, digest)
        except _CACHE_FAULTS as e:
            log.warning("vector_cache.read_failed", digest=digest, error=str(e))
            return []

    async def get_vectors(self, digests: Iterable[str]) -> dict[str, list[float]]:
        """Batch lookup: digest -> vector for every hit."""
        unique = list(dict.fromkeys(digests))
        if not unique:
            return {}
        try:
            return await asyncio.to_thread(self._get_many, unique)
        except _CACHE_FAULTS as e:
            log.warning("vector_cache.read_failed", digests=len(unique), error=str(e))
            return {}

    async def save_vectors(
        self,
        rows: list[VectorIndexRow],
        source_hashes: Mapping[str, str] | None = None,
    ) -> int:
        """Store rows keyed by ``(row.cache_key, embedding_id)``.

        ``source_hashes`` maps a row path to the content hash of the file it
        came from, used later by ``delete_cache``.
        """
        if not rows:
            return 0
        try:
            return await asyncio.to_thread(self._save, rows, dict(source_hashes or {}))
        except _CACHE_FAULTS as e:
            log.warning("vector_cache.write_failed", rows=len(rows), error=str(e))
            return 0

    async def delete_cache(self, path: str, digest: str) -> int:
        """Drop entries of ``path`` computed from file hash or chunk digest ``digest``."""
        try:
            return await asyncio.to_thread(self._delete, path, digest)
        except _CACHE_FAULTS as e:
            log.warning("vector_cache.delete_failed", path=path, error=str(e))
            return 0

    async def clear(self) -> int:
        try:
            removed = await asyncio.to_thread(self._clear)
        except _CACHE_FAULTS as e:
            log.warning("vector_cache.clear_failed", error=str(e))
            return 0
        log.info("vector_cache.cleared", embedding_id=self.embedding_id, removed=removed)
        return removed

    async def get_stats(self) -> CacheStats:
        try:
            return await asyncio.to_thread(self._stats)
        except _CACHE_FAULTS as e:
            log.warning("vector_cache.stats_failed", error=str(e))
            return CacheStats(entries=0, size_bytes=0)

    async def cleanup_expired(self, max_age_days: int = 30) -> int:
        """Remove entries older than ``max_age_days``."""
        cutoff = time.time() - max_age_days * 86400
        try:
            removed = await asyncio.to_thread(self._cleanup, cutoff)
        except _CACHE_FAULTS as e:
            log.warning("vector_cache.cleanup_failed", error=str(e))
            return 0
        if removed:
            log.info("vector_cache.expired_removed", removed=removed, max_age_days=max_age_days)
        return removed

    def dispose(self) -> None:
        self._db.dispose()
