"""Storage layer: SQLite plumbing, vector backends and the vector cache."""

from coderecall.index._internal.db.backend import (
    ROW_COLUMNS,
    SearchHit,
    SqliteVectorBackend,
    VectorStoreBackend,
)
from coderecall.index._internal.db.cache import CachedVectorEntry, CacheStats, VectorCache
from coderecall.index._internal.db.database import Database

__all__ = [
    "Database",
    # Vector backends
    "ROW_COLUMNS",
    "SearchHit",
    "SqliteVectorBackend",
    "VectorStoreBackend",
    # Cache
    "CachedVectorEntry",
    "CacheStats",
    "VectorCache",
]
