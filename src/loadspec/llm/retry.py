"""Shared async retry policy with capped exponential backoff and jitter."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from loadspec.llm.exceptions import BackendError, RetryExhaustedError
from loadspec.llm.models import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry an async operation on retryable :class:`BackendError` failures.

    Delay before attempt ``n`` (1-based, counting retries only) is
    ``base_delay * multiplier ** (n - 1)``, capped at ``max_delay``. With
    jitter enabled the delay is scaled into ``[0.5, 1.0)`` of that value so
    many callers failing together do not retry in lockstep.

    Example::

        policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay=0.5))
        text = await policy.run(lambda: backend.call_once(request))
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def delay_for(self, attempt: int) -> float:
        """Return the backoff delay in seconds before retry *attempt* (1-based)."""
        cfg = self.config
        delay = cfg.base_delay * (cfg.multiplier ** max(attempt - 1, 0))
        delay = min(delay, cfg.max_delay)
        if cfg.jitter:
            delay *= 0.5 + self._rng.random() * 0.5
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "backend call",
    ) -> T:
        """Await *operation* until it succeeds or the attempt budget is spent.

        Raises:
            BackendError: A non-retryable failure, re-raised immediately.
            RetryExhaustedError: If every attempt failed with a retryable error.
        """
        last_error: BackendError | None = None
        max_attempts = self.config.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except BackendError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
                if attempt < max_attempts:
                    delay = self.delay_for(attempt)
                    logger.info(
                        "%s failed (attempt %d/%d, %s); retrying in %.2fs",
                        description,
                        attempt,
                        max_attempts,
                        exc.error_type.value,
                        delay,
                    )
                    await self._sleep(delay)

        assert last_error is not None
        raise RetryExhaustedError(attempts=max_attempts, last_error=last_error)
