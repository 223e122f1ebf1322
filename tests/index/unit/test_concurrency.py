"""Tests for cancellation and the FIFO mutex."""

from __future__ import annotations

import asyncio

import pytest

from coderecall.core.errors import ErrorCode, IndexingError
from coderecall.index._internal.concurrency import CancellationToken, FifoMutex


class TestCancellationToken:
    def test_not_cancelled_by_default(self) -> None:
        token = CancellationToken()
        token.raise_if_cancelled("scan")
        assert not token.is_cancellation_requested

    def test_cancel_raises_cancelled(self) -> None:
        token = CancellationToken()
        token.cancel()

        with pytest.raises(IndexingError) as exc_info:
            token.raise_if_cancelled("embed")

        assert exc_info.value.code == ErrorCode.CANCELLED


class TestFifoMutex:
    """Lock handover order."""

    @pytest.mark.asyncio
    async def test_given_waiters_when_released_then_granted_in_request_order(self) -> None:
        # Given
        mutex = FifoMutex()
        order: list[int] = []
        await mutex.acquire()

        async def worker(n: int) -> None:
            async with mutex:
                order.append(n)
                await asyncio.sleep(0)

        tasks = []
        for n in range(5):
            tasks.append(asyncio.create_task(worker(n)))
            await asyncio.sleep(0)
        assert mutex.waiting == 5

        # When
        mutex.release()
        await asyncio.gather(*tasks)

        # Then
        assert order == [0, 1, 2, 3, 4]
        assert not mutex.locked

    @pytest.mark.asyncio
    async def test_given_cancelled_waiter_when_released_then_skipped(self) -> None:
        # Given
        mutex = FifoMutex()
        await mutex.acquire()
        cancelled = asyncio.create_task(mutex.acquire())
        await asyncio.sleep(0)
        cancelled.cancel()
        with pytest.raises(asyncio.CancelledError):
            await cancelled

        # When
        mutex.release()

        # Then
        assert not mutex.locked
        assert mutex.waiting == 0

    def test_release_unlocked_raises(self) -> None:
        with pytest.raises(RuntimeError):
            FifoMutex().release()
