"""Tests for the persistent vector cache."""

from __future__ import annotations

from pathlib import Path

import pytest
from sqlmodel import SQLModel

from coderecall.index._internal.db.cache import (
    CachedVectorEntry,
    VectorCache,
    cache_file_name,
    decode_vector,
    encode_vector,
)
from tests.index.conftest import make_row


class TestVectorEncoding:
    def test_float32_blob_round_trip(self) -> None:
        vector = [0.5, -0.25, 1.0]
        assert decode_vector(encode_vector(vector)) == pytest.approx(vector)

    def test_cache_file_name_is_stable_per_model(self) -> None:
        assert cache_file_name("fastembed:a") == cache_file_name("fastembed:a")
        assert cache_file_name("fastembed:a") != cache_file_name("fastembed:b")
        assert cache_file_name("fastembed:a").endswith(".db")


class TestVectorCache:
    """Cache keyed by (digest, embedding id)."""

    @pytest.mark.asyncio
    async def test_given_saved_rows_when_get_same_key_then_returns_rows(self, cache: VectorCache) -> None:
        # Given
        row = make_row("src/a.ts", "const a = 1;")
        await cache.save_vectors([row], {"src/a.ts": "filehash"})

        # When
        cached = await cache.get_cached_vectors(row.cache_key)

        # Then
        assert len(cached) == 1
        assert cached[0].path == "src/a.ts"
        assert cached[0].contents == row.contents
        assert cached[0].vector == pytest.approx(row.vector, abs=1e-6)

    @pytest.mark.asyncio
    async def test_given_saved_rows_when_other_digest_then_miss(self, cache: VectorCache) -> None:
        await cache.save_vectors([make_row("a.ts", "x")])

        assert await cache.get_cached_vectors("not-a-digest") == []

    @pytest.mark.asyncio
    async def test_given_saved_rows_when_other_embedding_id_then_miss(self, data_dir: Path) -> None:
        # Given
        row = make_row("a.ts", "x")
        first = VectorCache(data_dir / "cache", "model:one")
        second = VectorCache(data_dir / "cache", "model:two")
        try:
            await first.save_vectors([row])

            # When
            hit = await first.get_cached_vectors(row.cache_key)
            miss = await second.get_cached_vectors(row.cache_key)
        finally:
            first.dispose()
            second.dispose()

        # Then
        assert len(hit) == 1
        assert miss == []

    @pytest.mark.asyncio
    async def test_given_resave_same_path_and_digest_when_saved_then_not_duplicated(
        self, cache: VectorCache
    ) -> None:
        row = make_row("a.ts", "x")
        await cache.save_vectors([row])
        await cache.save_vectors([row, row])

        assert len(await cache.get_cached_vectors(row.cache_key)) == 1

    @pytest.mark.asyncio
    async def test_given_batch_lookup_when_partial_hits_then_only_hits_returned(self, cache: VectorCache) -> None:
        hit = make_row("a.ts", "x")
        await cache.save_vectors([hit])

        vectors = await cache.get_vectors([hit.cache_key, "missing", hit.cache_key])

        assert set(vectors) == {hit.cache_key}

    @pytest.mark.asyncio
    async def test_given_file_hash_when_delete_cache_then_only_that_path_removed(self, cache: VectorCache) -> None:
        """Identical chunks in other files survive deletion of one file."""
        # Given
        shared_a = make_row("a.ts", "shared")
        shared_b = make_row("b.ts", "shared")
        await cache.save_vectors([shared_a], {"a.ts": "hash-a"})
        await cache.save_vectors([shared_b], {"b.ts": "hash-b"})

        # When
        removed = await cache.delete_cache("a.ts", "hash-a")

        # Then
        assert removed == 1
        remaining = await cache.get_cached_vectors(shared_a.cache_key)
        assert [r.path for r in remaining] == ["b.ts"]

    @pytest.mark.asyncio
    async def test_given_entries_when_stats_then_counts(self, cache: VectorCache) -> None:
        await cache.save_vectors([make_row("a.ts", "x"), make_row("a.ts", "y", start=5)])

        stats = await cache.get_stats()

        assert stats.entries == 2
        assert stats.size_bytes > 0

    @pytest.mark.asyncio
    async def test_given_entries_when_clear_then_empty(self, cache: VectorCache) -> None:
        row = make_row("a.ts", "x")
        await cache.save_vectors([row])

        await cache.clear()

        assert await cache.get_cached_vectors(row.cache_key) == []

    @pytest.mark.asyncio
    async def test_given_fresh_entries_when_cleanup_then_kept(self, cache: VectorCache) -> None:
        row = make_row("a.ts", "x")
        await cache.save_vectors([row])

        assert await cache.cleanup_expired(max_age_days=30) == 0
        assert await cache.cleanup_expired(max_age_days=-1) == 1

    @pytest.mark.asyncio
    async def test_given_broken_database_when_read_then_degrades_to_miss(self, cache: VectorCache) -> None:
        """Cache faults are logged and treated as misses."""
        # Given
        SQLModel.metadata.drop_all(cache._db.engine, tables=[CachedVectorEntry.__table__])

        # When
        result = await cache.get_cached_vectors("anything")

        # Then
        assert result == []
