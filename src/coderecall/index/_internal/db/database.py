"""SQLite engine management shared by the vector backend and the cache.

Every database file gets WAL mode and a busy timeout. Writes go through
``transaction()``, which retries with exponential backoff when SQLite
reports the database as locked.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, create_engine

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

T = TypeVar("T")

logger = structlog.get_logger()

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 0.1
DEFAULT_RETRY_MAX_DELAY = 2.0
DEFAULT_BUSY_TIMEOUT_MS = 30000


def _is_database_locked_error(error: Exception) -> bool:
    error_str = str(error).lower()
    return "database is locked" in error_str or "database is busy" in error_str


class Database:
    """SQLite connection manager with WAL mode and locked-database retry."""

    def __init__(
        self,
        db_path: Path,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY,
    ) -> None:
        self.db_path = db_path
        self._max_retries = max_retries
        self._busy_timeout_ms = busy_timeout_ms
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = self._create_engine()

    def _create_engine(self) -> Engine:
        engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        busy_timeout_ms = self._busy_timeout_ms

        def _configure_pragmas(dbapi_conn: Any, _connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

        event.listen(engine, "connect", _configure_pragmas)
        return engine

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session for low-volume operations."""
        with Session(self.engine) as session:
            yield session

    @contextmanager
    def connect(self) -> Generator[Connection, None, None]:
        """Read-only Core connection."""
        with self.engine.connect() as conn:
            yield conn

    def run_in_transaction(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(conn, *args, **kwargs)`` in one transaction, retrying on lock.

        The whole callable is re-run on retry, so it must not have side
        effects outside the connection.
        """
        attempt = 0
        while True:
            try:
                with self.engine.begin() as conn:
                    return fn(conn, *args, **kwargs)
            except OperationalError as e:
                if not _is_database_locked_error(e) or attempt >= self._max_retries:
                    raise
                delay = min(self._retry_base_delay * (2**attempt), self._retry_max_delay)
                logger.warning(
                    "sqlite_busy_retry",
                    db=self.db_path.name,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                    delay_sec=delay,
                )
                time.sleep(delay)
                attempt += 1

    def size_bytes(self) -> int:
        """On-disk size including WAL and shared-memory files."""
        total = 0
        for suffix in ("", "-wal", "-shm"):
            path = self.db_path.with_name(self.db_path.name + suffix)
            if path.exists():
                total += path.stat().st_size
        return total

    def dispose(self) -> None:
        self.engine.dispose()
