"""Vector storage backends.

``VectorStoreBackend`` is the narrow surface the vector store needs: table
lifecycle, schema introspection, row insertion, delete-by-filter and
nearest-neighbour search. All methods are synchronous; callers run them
in worker threads.

``SqliteVectorBackend`` keeps one table per partition inside a single
SQLite file. Vectors are float32 blobs and search is an exact cosine scan
with numpy, which is adequate for single-workspace row counts.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import numpy as np
import structlog
from sqlalchemy import (
    Column,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    delete,
    func,
    inspect,
    select,
)

from coderecall.index._internal.db.database import Database
from coderecall.index.models import VectorIndexRow

log = structlog.get_logger()

ROW_COLUMNS: tuple[str, ...] = (
    "uuid",
    "path",
    "cache_key",
    "vector",
    "start_line",
    "end_line",
    "contents",
    "language",
)
"""Columns every partition must have. A table missing any of them is rebuilt."""

_IN_CHUNK = 500


@dataclass(frozen=True, slots=True)
class SearchHit:
    row: VectorIndexRow
    distance: float


@runtime_checkable
class VectorStoreBackend(Protocol):
    """Operations a storage engine must provide to host vector partitions."""

    supports_empty_tables: bool
    """False when a table can only be created together with at least one row."""

    def table_names(self) -> list[str]: ...

    def table_exists(self, name: str) -> bool: ...

    def table_columns(self, name: str) -> set[str]: ...

    def create_table(self, name: str, seed_rows: Sequence[VectorIndexRow] = ()) -> None: ...

    def drop_table(self, name: str) -> None: ...

    def add_rows(self, name: str, rows: Sequence[VectorIndexRow]) -> int: ...

    def delete_rows(
        self,
        name: str,
        *,
        paths: Iterable[str] | None = None,
        uuids: Iterable[str] | None = None,
    ) -> int: ...

    def replace_rows(self, name: str, paths: Iterable[str], rows: Sequence[VectorIndexRow]) -> int:
        """Atomically delete rows of ``paths`` and insert ``rows``."""
        ...

    def search(self, name: str, vector: Sequence[float], limit: int) -> list[SearchHit]: ...

    def count_rows(self, name: str) -> int: ...

    def value_counts(self, name: str, column: str) -> dict[str, int]:
        """Histogram of a column. May raise NotImplementedError."""
        ...

    def close(self) -> None: ...


def cosine_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """1 - cosine similarity of each matrix row against ``query``.

    Zero-norm vectors get distance 1.0.
    """
    matrix = matrix.astype(np.float64, copy=False)
    query = query.astype(np.float64, copy=False)
    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    sims = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denom > 0
    sims[nonzero] = (matrix[nonzero] @ query) / denom[nonzero]
    return 1.0 - sims


class SqliteVectorBackend:
    """Partitions as SQLite tables in ``<data_dir>/vectors.db``."""

    supports_empty_tables = True

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 30000, max_retries: int = 3) -> None:
        self._db = Database(db_path, busy_timeout_ms=busy_timeout_ms, max_retries=max_retries)
        self._metadata = MetaData()

    @property
    def db_path(self) -> Path:
        return self._db.db_path

    def _table(self, name: str) -> Table:
        existing = self._metadata.tables.get(name)
        if existing is not None:
            return existing
        return Table(
            name,
            self._metadata,
            Column("uuid", String, primary_key=True),
            Column("path", Text, nullable=False),
            Column("cache_key", String, nullable=False),
            Column("vector", LargeBinary, nullable=False),
            Column("start_line", Integer, nullable=False),
            Column("end_line", Integer, nullable=False),
            Column("contents", Text, nullable=False),
            Column("language", String, nullable=False),
            Index(f"ix_{name}_path", "path"),
        )

    def table_names(self) -> list[str]:
        return inspect(self._db.engine).get_table_names()

    def table_exists(self, name: str) -> bool:
        return inspect(self._db.engine).has_table(name)

    def table_columns(self, name: str) -> set[str]:
        return {col["name"] for col in inspect(self._db.engine).get_columns(name)}

    def create_table(self, name: str, seed_rows: Sequence[VectorIndexRow] = ()) -> None:
        table = self._table(name)

        def _create(conn: Any) -> None:
            table.create(conn, checkfirst=True)
            if seed_rows:
                conn.execute(table.insert(), [_row_to_params(r) for r in seed_rows])

        self._db.run_in_transaction(_create)

    def drop_table(self, name: str) -> None:
        if name in self._metadata.tables:
            self._metadata.remove(self._metadata.tables[name])
        if not self.table_exists(name):
            return
        # Reflect so tables with an outdated schema drop cleanly
        table = Table(name, MetaData(), autoload_with=self._db.engine)

        def _drop(conn: Any) -> None:
            table.drop(conn, checkfirst=True)

        self._db.run_in_transaction(_drop)

    def add_rows(self, name: str, rows: Sequence[VectorIndexRow]) -> int:
        if not rows:
            return 0
        table = self._table(name)

        def _add(conn: Any) -> int:
            conn.execute(table.insert(), [_row_to_params(r) for r in rows])
            return len(rows)

        return self._db.run_in_transaction(_add)

    def delete_rows(
        self,
        name: str,
        *,
        paths: Iterable[str] | None = None,
        uuids: Iterable[str] | None = None,
    ) -> int:
        table = self._table(name)
        path_list = sorted(set(paths or ()))
        uuid_list = sorted(set(uuids or ()))

        def _delete(conn: Any) -> int:
            return _delete_in(conn, table, path_list, uuid_list)

        return self._db.run_in_transaction(_delete)

    def replace_rows(self, name: str, paths: Iterable[str], rows: Sequence[VectorIndexRow]) -> int:
        table = self._table(name)
        path_list = sorted(set(paths))

        def _replace(conn: Any) -> int:
            _delete_in(conn, table, path_list, [])
            if rows:
                conn.execute(table.insert(), [_row_to_params(r) for r in rows])
            return len(rows)

        return self._db.run_in_transaction(_replace)

    def search(self, name: str, vector: Sequence[float], limit: int) -> list[SearchHit]:
        if limit <= 0:
            return []
        table = self._table(name)
        query = np.asarray(vector, dtype=np.float32)
        with self._db.connect() as conn:
            candidates = conn.execute(select(table.c.uuid, table.c.vector)).all()
            if not candidates:
                return []
            dims = query.shape[0]
            keep = [(uid, blob) for uid, blob in candidates if len(blob) == dims * 4]
            if len(keep) != len(candidates):
                log.warning(
                    "sqlite_backend.dimension_mismatch",
                    table=name,
                    skipped=len(candidates) - len(keep),
                )
            if not keep:
                return []
            matrix = np.vstack([np.frombuffer(blob, dtype=np.float32) for _, blob in keep])
            distances = cosine_distances(matrix, query)
            order = np.argsort(distances, kind="stable")[:limit]
            chosen = {keep[i][0]: float(distances[i]) for i in order}
            rows = conn.execute(select(table).where(table.c.uuid.in_(list(chosen)))).mappings().all()

        by_id = {row["uuid"]: _row_from_mapping(row) for row in rows}
        hits = [SearchHit(row=by_id[uid], distance=dist) for uid, dist in chosen.items() if uid in by_id]
        hits.sort(key=lambda h: h.distance)
        return hits

    def count_rows(self, name: str) -> int:
        table = self._table(name)
        with self._db.connect() as conn:
            return int(conn.execute(select(func.count()).select_from(table)).scalar_one())

    def value_counts(self, name: str, column: str) -> dict[str, int]:
        table = self._table(name)
        col = table.c[column]
        with self._db.connect() as conn:
            result = conn.execute(select(col, func.count()).group_by(col)).all()
        return {str(value): int(count) for value, count in result}

    def size_bytes(self) -> int:
        return self._db.size_bytes()

    def close(self) -> None:
        self._db.dispose()


def _delete_in(conn: Any, table: Table, paths: list[str], uuids: list[str]) -> int:
    removed = 0
    for i in range(0, len(paths), _IN_CHUNK):
        result = conn.execute(delete(table).where(table.c.path.in_(paths[i : i + _IN_CHUNK])))
        removed += result.rowcount or 0
    for i in range(0, len(uuids), _IN_CHUNK):
        result = conn.execute(delete(table).where(table.c.uuid.in_(uuids[i : i + _IN_CHUNK])))
        removed += result.rowcount or 0
    return removed


def _row_to_params(row: VectorIndexRow) -> dict[str, Any]:
    return {
        "uuid": row.uuid,
        "path": row.path,
        "cache_key": row.cache_key,
        "vector": np.asarray(row.vector, dtype=np.float32).tobytes(),
        "start_line": row.start_line,
        "end_line": row.end_line,
        "contents": row.contents,
        "language": row.language,
    }


def _row_from_mapping(row: Any) -> VectorIndexRow:
    return VectorIndexRow(
        uuid=row["uuid"],
        path=row["path"],
        cache_key=row["cache_key"],
        vector=np.frombuffer(row["vector"], dtype=np.float32).tolist(),
        start_line=row["start_line"],
        end_line=row["end_line"],
        contents=row["contents"],
        language=row["language"],
    )
