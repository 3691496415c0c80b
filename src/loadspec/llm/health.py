"""Time-bounded cache for backend health-check results."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class HealthCache:
    """Cache a health check result for ``ttl`` seconds.

    Concurrent callers that find the cache stale share a single check: the
    refresh runs under an :class:`asyncio.Lock` and the freshness check is
    repeated once the lock is held.

    Attributes:
        ttl: Seconds a cached result stays fresh.
        healthy: Last observed result, or None before the first check.
        checked_at: Monotonic timestamp of the last check.
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[bool]],
        ttl: float = 30.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._check = check
        self.ttl = ttl
        self._clock = clock
        self._lock = asyncio.Lock()
        self.healthy: Optional[bool] = None
        self.checked_at: Optional[float] = None

    def is_fresh(self) -> bool:
        if self.checked_at is None:
            return False
        return (self._clock() - self.checked_at) < self.ttl

    async def get(self, *, force: bool = False) -> bool:
        """Return the cached result, checking first when stale or forced."""
        if not force and self.is_fresh() and self.healthy is not None:
            return self.healthy
        async with self._lock:
            if not force and self.is_fresh() and self.healthy is not None:
                return self.healthy
            result = await self._check()
            if result != self.healthy:
                logger.info("Backend health changed: %s -> %s", self.healthy, result)
            self.healthy = result
            self.checked_at = self._clock()
            return result

    def invalidate(self) -> None:
        """Mark the cached result stale so the next call checks again."""
        self.checked_at = None
