"""Cooperative cancellation and the FIFO mutex for the embedding phase."""

from __future__ import annotations

import asyncio
from collections import deque
from types import TracebackType

from coderecall.core.errors import IndexingError


class CancellationToken:
    """Advisory cancellation flag checked at batch boundaries."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, stage: str | None = None) -> None:
        if self._cancelled:
            raise IndexingError.cancelled(stage)


class FifoMutex:
    """Async mutex that grants the lock strictly in request order.

    ``asyncio.Lock`` wakes waiters in order too, but a task arriving while
    the lock is being handed over can barge in. Here release passes
    ownership directly to the oldest waiter.
    """

    def __init__(self) -> None:
        self._locked = False
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def waiting(self) -> int:
        """Number of callers queued behind the current holder."""
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        if not self._locked and not self._waiters:
            self._locked = True
            return

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Ownership was handed over just before cancellation
                self.release()
            raise
        finally:
            if fut in self._waiters:
                self._waiters.remove(fut)

    def release(self) -> None:
        if not self._locked:
            raise RuntimeError("FifoMutex released while not locked")
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # Lock stays held; ownership moves to this waiter
                fut.set_result(None)
                return
        self._locked = False

    async def __aenter__(self) -> FifoMutex:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()
