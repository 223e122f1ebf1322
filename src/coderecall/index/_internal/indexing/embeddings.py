"""Embedding providers.

Model: BAAI/bge-small-en-v1.5 by default (384-dim, ONNX via fastembed).
Vectors are L2-normalized float lists so cosine distance reduces to
``1 - dot``. The model loads lazily on first use in a worker thread.

``embedding_id`` identifies the model and its output space. Vectors are
only ever reused (cache) or compared (search) under the same id.
"""

from __future__ import annotations

import asyncio
import gc
import os
import threading
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np
import structlog

from coderecall.core.errors import IndexingError

if TYPE_CHECKING:
    from coderecall.config.models import EmbeddingsConfig

log = structlog.get_logger()

DEFAULT_MODEL = "BAAI/bge-small-en-v1.5"
MAX_LENGTH = 512

DownloadProgressCallback = Callable[[str, str | None, float | None], None]
"""(status, file, progress). Status is one of initiate, download, progress, done."""

_KNOWN_DIMS: dict[str, int] = {
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-small-en": 384,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "jinaai/jina-embeddings-v2-small-en": 512,
    "nomic-ai/nomic-embed-text-v1.5": 768,
}


@runtime_checkable
class EmbeddingsProvider(Protocol):
    """Text to fixed-dimension vectors."""

    @property
    def embedding_id(self) -> str: ...

    @property
    def dimensions(self) -> int: ...

    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


def _detect_providers() -> list[str]:
    """Detect ONNX Runtime execution providers (GPU-aware)."""
    try:
        import onnxruntime as ort

        available = ort.get_available_providers()
        if "CUDAExecutionProvider" in available:
            return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    except ImportError:
        pass
    return ["CPUExecutionProvider"]


def l2_normalize(matrix: np.ndarray) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms = np.where(norms > 0, norms, 1.0)
    return matrix / norms


class FastEmbedProvider:
    """Local ONNX embeddings through fastembed."""

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        *,
        threads: int | None = None,
        on_download_progress: DownloadProgressCallback | None = None,
    ) -> None:
        self._model_name = model_name
        self._threads = threads or max(1, (os.cpu_count() or 2) // 2)
        self._model: Any = None
        self._dims: int | None = _KNOWN_DIMS.get(model_name)
        self._lock = threading.Lock()
        self._on_download_progress = on_download_progress

    @property
    def embedding_id(self) -> str:
        return f"fastembed:{self._model_name}"

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        if self._dims is None:
            self._dims = self._lookup_dims()
        return self._dims

    def _notify(self, status: str, file: str | None = None, progress: float | None = None) -> None:
        if self._on_download_progress is not None:
            self._on_download_progress(status, file, progress)

    def _lookup_dims(self) -> int:
        from fastembed import TextEmbedding

        for desc in TextEmbedding.list_supported_models():
            if desc.get("model") == self._model_name:
                return int(desc["dim"])
        raise IndexingError.init_failed("embeddings", f"unknown fastembed model {self._model_name}")

    def _ensure_model(self) -> None:
        """Lazy-load the embedding model."""
        with self._lock:
            if self._model is not None:
                return

            from fastembed import TextEmbedding

            # Free memory before loading the ONNX model
            gc.collect()
            providers = _detect_providers()
            self._notify("initiate", self._model_name, 0.0)
            try:
                self._model = TextEmbedding(
                    model_name=self._model_name,
                    providers=providers,
                    threads=self._threads,
                    max_length=MAX_LENGTH,
                )
            except (ValueError, OSError, RuntimeError) as e:
                raise IndexingError.init_failed("embeddings", str(e)) from e
            self._notify("done", self._model_name, 1.0)
            log.info(
                "embeddings.model_loaded",
                model=self._model_name,
                providers=providers,
                threads=self._threads,
            )

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        self._ensure_model()
        vecs = list(self._model.embed(texts, batch_size=len(texts)))
        matrix = l2_normalize(np.array(vecs, dtype=np.float32))
        if self._dims is None:
            self._dims = int(matrix.shape[1])
        return matrix.tolist()

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._embed_sync, list(texts))


def create_embeddings_provider(
    config: EmbeddingsConfig,
    *,
    on_download_progress: DownloadProgressCallback | None = None,
) -> EmbeddingsProvider:
    """Build the provider selected by config."""
    if config.provider == "api":
        from coderecall.index._internal.indexing.api_embeddings import ApiEmbeddingsProvider

        if not config.api_key:
            raise IndexingError.init_failed("embeddings", "api provider requires embeddings.api_key")
        return ApiEmbeddingsProvider(
            name=config.api_name,
            base_url=config.api_base_url,
            api_key=config.api_key,
            model=config.api_model,
            dimensions=config.api_dimensions,
            batch_size=config.api_batch_size,
            timeout=config.api_timeout_sec,
        )
    return FastEmbedProvider(config.model_name, on_download_progress=on_download_progress)
