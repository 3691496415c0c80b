"""Bounded connection pool with a FIFO wait queue."""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ConnectionPool:
    """Cap the number of simultaneously in-flight backend requests.

    Excess callers wait in arrival order. A released slot is handed straight
    to the oldest live waiter, so a late arrival can never overtake a queued
    caller. Cancelled waiters are skipped and never receive a slot.

    Example::

        pool = ConnectionPool(max_connections=5)
        async with pool.slot():
            response = await client.post(...)
    """

    def __init__(self, max_connections: int = 5) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.max_connections = max_connections
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def active(self) -> int:
        """Number of slots currently held."""
        return self._active

    @property
    def queued(self) -> int:
        """Number of callers waiting for a slot."""
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        """Wait for a free slot."""
        if self._active < self.max_connections and not self.queued:
            self._active += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation.
                self.release()
            else:
                self._remove_waiter(waiter)
            raise

    def release(self) -> None:
        """Return a slot, handing it to the oldest waiter if any."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Slot ownership transfers; the active count is unchanged.
                waiter.set_result(None)
                return
        if self._active <= 0:
            raise RuntimeError("release() called without a held slot")
        self._active -= 1

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold a slot for the duration of the ``async with`` block."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def _remove_waiter(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def stats(self) -> dict[str, int]:
        return {
            "active": self._active,
            "queued": self.queued,
            "max_connections": self.max_connections,
        }
