"""Tests for the OpenAI-compatible embeddings client."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from coderecall.index._internal.indexing.api_embeddings import (
    ApiEmbeddingsProvider,
    EmbeddingsApiError,
    default_dimensions,
    embeddings_url,
)


def _provider(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> ApiEmbeddingsProvider:
    return ApiEmbeddingsProvider(
        name="openai",
        base_url="https://api.example.com",
        api_key="sk-test",
        model="text-embedding-3-small",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestHelpers:
    @pytest.mark.parametrize(
        ("base", "expected"),
        [
            ("https://api.example.com", "https://api.example.com/v1/embeddings"),
            ("https://api.example.com/", "https://api.example.com/v1/embeddings"),
            ("http://localhost:8080/v1", "http://localhost:8080/v1/embeddings"),
        ],
    )
    def test_embeddings_url(self, base: str, expected: str) -> None:
        assert embeddings_url(base) == expected

    def test_default_dimensions(self) -> None:
        assert default_dimensions("text-embedding-3-small") == 1536
        assert default_dimensions("text-embedding-3-large") == 3072
        assert default_dimensions("bge-small-en") == 384


class TestApiEmbeddingsProvider:
    """Request shape and response handling."""

    @pytest.mark.asyncio
    async def test_given_shuffled_response_when_embedded_then_ordered_by_index(self) -> None:
        # Given
        seen: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append({"auth": request.headers["Authorization"], **body})
            data = [{"index": i, "embedding": [float(i), 1.0]} for i in range(len(body["input"]))]
            return httpx.Response(200, json={"data": list(reversed(data))})

        provider = _provider(handler)

        # When
        vectors = await provider.embed(["a", "b", "c"])
        await provider.aclose()

        # Then
        assert vectors == [[0.0, 1.0], [1.0, 1.0], [2.0, 1.0]]
        assert seen[0]["auth"] == "Bearer sk-test"
        assert seen[0]["model"] == "text-embedding-3-small"
        assert provider.dimensions == 2
        assert provider.embedding_id == "api:openai:text-embedding-3-small"

    @pytest.mark.asyncio
    async def test_given_batch_size_when_embedded_then_split_into_requests(self) -> None:
        sizes: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            texts = json.loads(request.content)["input"]
            sizes.append(len(texts))
            return httpx.Response(200, json={"data": [{"index": i, "embedding": [0.1]} for i in range(len(texts))]})

        provider = _provider(handler, batch_size=2)
        vectors = await provider.embed(["a", "b", "c", "d", "e"])
        await provider.aclose()

        assert sizes == [2, 2, 1]
        assert len(vectors) == 5

    @pytest.mark.asyncio
    async def test_given_error_status_when_embedded_then_raises(self) -> None:
        provider = _provider(lambda request: httpx.Response(429, text="rate limited"))

        with pytest.raises(EmbeddingsApiError) as exc_info:
            await provider.embed(["a"])
        await provider.aclose()

        assert exc_info.value.status_code == 429
        assert "rate limited" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_given_count_mismatch_when_embedded_then_raises(self) -> None:
        provider = _provider(lambda request: httpx.Response(200, json={"data": []}))

        with pytest.raises(EmbeddingsApiError):
            await provider.embed(["a"])
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_connectivity_probe_reports_failure(self) -> None:
        provider = _provider(lambda request: httpx.Response(500, text="down"))

        ok, error = await provider.test()
        await provider.aclose()

        assert ok is False
        assert error is not None and "500" in error
