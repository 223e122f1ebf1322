"""Index module - semantic code indexing and retrieval.

This module provides:
- Change detection: content-hash diff of a workspace against the last pass
- Vector cache: embeddings keyed by chunk digest and embedding model
- Vector store: one partition per (workspace, branch, embedding model)
- Orchestration: per-workspace re-entrancy guard and a FIFO embedding mutex

Public API is in `coderecall.index.ops`:
- CodebaseIndexer: High-level orchestration

Internal implementations are in `coderecall.index._internal/`.
"""

from coderecall.index._internal.concurrency import CancellationToken
from coderecall.index._internal.indexing.chunking import ChunkSource, LineChunker
from coderecall.index._internal.indexing.embeddings import EmbeddingsProvider
from coderecall.index.models import (
    CodeChunk,
    DetailedStats,
    FileChangeItem,
    FileRecord,
    IndexerState,
    IndexProgressEvent,
    IndexStats,
    IndexStatus,
    IndexTag,
    RefreshPlan,
    RetrievalResult,
    UpdateSummary,
    VectorIndexRow,
)
from coderecall.index.ops import CodebaseIndexer

__all__ = [
    # Public API (ops.py)
    "CodebaseIndexer",
    "CancellationToken",
    # Collaborator protocols
    "ChunkSource",
    "EmbeddingsProvider",
    "LineChunker",
    # Models
    "CodeChunk",
    "DetailedStats",
    "FileChangeItem",
    "FileRecord",
    "IndexerState",
    "IndexProgressEvent",
    "IndexStats",
    "IndexStatus",
    "IndexTag",
    "RefreshPlan",
    "RetrievalResult",
    "UpdateSummary",
    "VectorIndexRow",
]
