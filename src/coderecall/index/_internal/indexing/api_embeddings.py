"""OpenAI-compatible HTTP embeddings (``POST /v1/embeddings``).

Dimensions start from a guess based on the model name and are corrected
from the first response.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
import structlog

log = structlog.get_logger()

DEFAULT_BATCH_SIZE = 100


def default_dimensions(model: str) -> int:
    lower = model.lower()
    if "text-embedding-3-large" in lower:
        return 3072
    if "text-embedding-3-small" in lower or "text-embedding-ada" in lower:
        return 1536
    if "bge-large" in lower:
        return 1024
    if "bge-base" in lower:
        return 768
    if "bge-small" in lower:
        return 384
    return 1536


def embeddings_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.endswith("/v1"):
        return base + "/embeddings"
    return base + "/v1/embeddings"


class EmbeddingsApiError(RuntimeError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Embedding API error ({status_code}): {body[:500]}")
        self.status_code = status_code


class ApiEmbeddingsProvider:
    """Remote embeddings over an OpenAI-compatible endpoint."""

    def __init__(
        self,
        *,
        name: str,
        base_url: str,
        api_key: str,
        model: str,
        dimensions: int | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._name = name
        self._url = embeddings_url(base_url)
        self._api_key = api_key
        self._model = model
        self._dimensions = dimensions or default_dimensions(model)
        self._batch_size = max(1, batch_size)
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def embedding_id(self) -> str:
        return f"api:{self._name}:{self._model}"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        results: list[list[float]] = []
        for i in range(0, len(texts), self._batch_size):
            results.extend(await self._embed_batch(list(texts[i : i + self._batch_size])))
        return results

    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        response = await self._get_client().post(self._url, json={"model": self._model, "input": texts})
        if response.status_code >= 400:
            raise EmbeddingsApiError(response.status_code, response.text)

        payload: dict[str, Any] = response.json()
        items = sorted(payload.get("data", []), key=lambda item: item["index"])
        if len(items) != len(texts):
            raise EmbeddingsApiError(
                response.status_code, f"expected {len(texts)} embeddings, got {len(items)}"
            )
        vectors = [[float(x) for x in item["embedding"]] for item in items]
        if vectors and len(vectors[0]) != self._dimensions:
            log.debug(
                "api_embeddings.dimensions_updated",
                model=self._model,
                old=self._dimensions,
                new=len(vectors[0]),
            )
            self._dimensions = len(vectors[0])
        return vectors

    async def test(self) -> tuple[bool, str | None]:
        """Probe connectivity. Returns (ok, error message)."""
        try:
            vectors = await self.embed(["test"])
        except (httpx.HTTPError, EmbeddingsApiError, ValueError, KeyError) as e:
            return False, str(e)
        if not vectors or not vectors[0]:
            return False, "empty embedding result"
        return True, None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
