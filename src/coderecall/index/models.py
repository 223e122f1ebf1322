"""Value types exchanged between the indexing components.

Everything here is passed by value: the scanner produces FileRecords, the
change detector turns them into a RefreshPlan, chunk sources yield
CodeChunks, and the vector store persists VectorIndexRows.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


@dataclass(frozen=True, slots=True)
class FileRecord:
    """One scanned file. ``path`` is workspace-relative with ``/`` separators."""

    path: str
    content_hash: str
    mtime: float


@dataclass(frozen=True, slots=True)
class IndexTag:
    """Logical partition identifier: one workspace under one embedding model."""

    directory: str
    embedding_id: str
    branch: str | None = None


@dataclass(frozen=True, slots=True)
class CodeChunk:
    filepath: str
    content: str
    start_line: int
    end_line: int
    language: str
    digest: str


@dataclass(slots=True)
class VectorIndexRow:
    """Unit of storage in the vector store."""

    uuid: str
    path: str
    cache_key: str
    vector: list[float]
    start_line: int
    end_line: int
    contents: str
    language: str


@dataclass(frozen=True, slots=True)
class FileChangeItem:
    """A file scheduled for work, with the content hash observed at scan time."""

    path: str
    content_hash: str


@dataclass(slots=True)
class RefreshPlan:
    compute: list[FileChangeItem] = field(default_factory=list)
    delete: list[FileChangeItem] = field(default_factory=list)
    reuse: list[FileChangeItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.compute or self.delete or self.reuse)

    @property
    def has_pending_writes(self) -> bool:
        """True when something must be embedded or removed."""
        return bool(self.compute or self.delete)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "compute": [i.path for i in self.compute],
            "delete": [i.path for i in self.delete],
            "reuse": [i.path for i in self.reuse],
        }


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    """One search hit. ``score`` is a distance: lower is more similar."""

    filepath: str
    content: str
    start_line: int
    end_line: int
    score: float
    language: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "filepath": self.filepath,
            "content": self.content,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "score": self.score,
            "language": self.language,
        }


@dataclass(frozen=True, slots=True)
class IndexProgressEvent:
    progress: float
    description: str
    current_file: str | None = None
    indexed_count: int | None = None
    total_count: int | None = None


ProgressCallback = Callable[[IndexProgressEvent], None]


@dataclass(frozen=True, slots=True)
class IndexStatus:
    is_indexing: bool
    has_index: bool
    file_count: int
    queued_tasks: int

    @property
    def state(self) -> IndexerState:
        return IndexerState.INDEXING if self.is_indexing else IndexerState.NOT_INDEXING

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_indexing": self.is_indexing,
            "has_index": self.has_index,
            "file_count": self.file_count,
            "queued_tasks": self.queued_tasks,
        }


@dataclass(slots=True)
class IndexStats:
    """Partition statistics.

    ``unique_files`` and ``languages`` are None when the backend could not
    provide them.
    """

    total_chunks: int = 0
    unique_files: int | None = None
    languages: dict[str, int] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "unique_files": self.unique_files,
            "languages": self.languages,
        }


@dataclass(slots=True)
class DetailedStats(IndexStats):
    embedding_id: str = ""
    table_name: str = ""
    avg_chunks_per_file: float = 0.0
    approx_db_bytes: int = 0
    cache_entries: int = 0
    cache_bytes: int = 0
    tracked_files: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = IndexStats.to_dict(self)
        data.update(
            {
                "embedding_id": self.embedding_id,
                "table_name": self.table_name,
                "avg_chunks_per_file": self.avg_chunks_per_file,
                "approx_db_bytes": self.approx_db_bytes,
                "cache_entries": self.cache_entries,
                "cache_bytes": self.cache_bytes,
                "tracked_files": self.tracked_files,
            }
        )
        return data


@dataclass(slots=True)
class UpdateSummary:
    """Outcome of one vector store update."""

    deleted_files: int = 0
    reused_files: int = 0
    computed_files: int = 0
    reclassified_files: int = 0
    cache_hits: int = 0
    embedded_chunks: int = 0
    rows_written: int = 0
    failed_batches: int = 0
    failed_paths: list[str] = field(default_factory=list)
    skipped: bool = False
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failed_batches == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted_files": self.deleted_files,
            "reused_files": self.reused_files,
            "computed_files": self.computed_files,
            "reclassified_files": self.reclassified_files,
            "cache_hits": self.cache_hits,
            "embedded_chunks": self.embedded_chunks,
            "rows_written": self.rows_written,
            "failed_batches": self.failed_batches,
            "failed_files": len(self.failed_paths),
            "skipped": self.skipped,
            "duration_s": round(self.duration_s, 3),
        }


class IndexerState(StrEnum):
    NOT_INDEXING = "not_indexing"
    INDEXING = "indexing"
