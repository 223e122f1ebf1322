"""Shared fixtures for index tests."""

from __future__ import annotations

import asyncio
import hashlib
import math
from collections.abc import Awaitable, Callable, Generator, Sequence
from pathlib import Path

import pytest

from coderecall.config.models import CodeRecallConfig, IndexingConfig, StorageConfig
from coderecall.index._internal.db.backend import SqliteVectorBackend
from coderecall.index._internal.db.cache import VectorCache
from coderecall.index.models import VectorIndexRow
from coderecall.index.ops import CodebaseIndexer

DIMS = 16


def fake_vector(text: str, dims: int = DIMS) -> list[float]:
    """Deterministic unit vector derived from the text hash."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    raw = [(digest[i % len(digest)] / 255.0) - 0.5 for i in range(dims)]
    norm = math.sqrt(sum(v * v for v in raw)) or 1.0
    return [v / norm for v in raw]


class FakeEmbeddingsProvider:
    """Hash-based embeddings with a call log and optional hooks.

    ``before_embed`` runs inside every call before vectors are produced;
    tests use it to block, cancel or record ordering. ``fail_when`` makes a
    call raise when it returns True for the batch texts.
    """

    def __init__(self, embedding_id: str = "fake:hash-v1", dimensions: int = DIMS) -> None:
        self.embedding_id = embedding_id
        self.dimensions = dimensions
        self.calls: list[list[str]] = []
        self.before_embed: Callable[[list[str]], Awaitable[None]] | None = None
        self.fail_when: Callable[[list[str]], bool] | None = None

    @property
    def embedded_texts(self) -> list[str]:
        return [t for call in self.calls for t in call]

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        batch = list(texts)
        self.calls.append(batch)
        if self.before_embed is not None:
            await self.before_embed(batch)
        if self.fail_when is not None and self.fail_when(batch):
            raise RuntimeError("embedding backend unavailable")
        return [fake_vector(t, self.dimensions) for t in batch]


class SeedOnlyBackend(SqliteVectorBackend):
    """SQLite backend that pretends tables need a seed row to be created."""

    supports_empty_tables = False

    def __init__(self, db_path: Path) -> None:
        super().__init__(db_path)
        self.seeded: list[list[str]] = []

    def create_table(self, name: str, seed_rows: Sequence[VectorIndexRow] = ()) -> None:
        if not seed_rows:
            raise ValueError("cannot create a table without rows")
        self.seeded.append([r.uuid for r in seed_rows])
        super().create_table(name, seed_rows)


def make_row(path: str, content: str, *, digest: str | None = None, start: int = 1) -> VectorIndexRow:
    return VectorIndexRow(
        uuid=hashlib.sha256(f"{path}:{content}:{start}".encode()).hexdigest()[:32],
        path=path,
        cache_key=digest or hashlib.sha256(content.encode()).hexdigest(),
        vector=fake_vector(content),
        start_line=start,
        end_line=start + content.count("\n"),
        contents=content,
        language="typescript",
    )


def write_files(root: Path, files: dict[str, str]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "ws"
    path.mkdir()
    return path


@pytest.fixture
def fake_embeddings() -> FakeEmbeddingsProvider:
    return FakeEmbeddingsProvider()


@pytest.fixture
def config(data_dir: Path) -> CodeRecallConfig:
    return CodeRecallConfig(
        indexing=IndexingConfig(respect_gitignore=False),
        storage=StorageConfig(data_dir=str(data_dir)),
    )


@pytest.fixture
def backend(data_dir: Path) -> Generator[SqliteVectorBackend, None, None]:
    backend = SqliteVectorBackend(data_dir / "vectors.db")
    yield backend
    backend.close()


@pytest.fixture
def cache(data_dir: Path, fake_embeddings: FakeEmbeddingsProvider) -> Generator[VectorCache, None, None]:
    cache = VectorCache(data_dir / "cache", fake_embeddings.embedding_id)
    yield cache
    cache.dispose()


@pytest.fixture
def indexer(
    config: CodeRecallConfig, fake_embeddings: FakeEmbeddingsProvider
) -> Generator[CodebaseIndexer, None, None]:
    indexer = CodebaseIndexer(config, embeddings=fake_embeddings)
    yield indexer
    asyncio.run(indexer.dispose())
