"""Unit tests for loadspec.llm.retry."""

from __future__ import annotations

import random

import pytest

from loadspec.llm.exceptions import (
    AuthenticationFailedError,
    BackendTimeoutError,
    RateLimitedError,
    RetryExhaustedError,
)
from loadspec.llm.models import AIErrorType, RetryConfig
from loadspec.llm.retry import RetryPolicy


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _flaky(failures: list[Exception], result: str = "ok"):
    """Return an operation that raises each of *failures* once, then succeeds."""
    calls = {"n": 0}

    async def operation() -> str:
        calls["n"] += 1
        if failures:
            raise failures.pop(0)
        return result

    return operation, calls


# ---------------------------------------------------------------------------
# Backoff delays
# ---------------------------------------------------------------------------


class TestDelayFor:
    def test_exponential_without_jitter(self) -> None:
        policy = RetryPolicy(RetryConfig(base_delay=1.0, multiplier=2.0, jitter=False))
        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 4.0

    def test_capped_at_max_delay(self) -> None:
        policy = RetryPolicy(
            RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        )
        assert policy.delay_for(10) == 5.0

    def test_jitter_within_half_to_full(self) -> None:
        policy = RetryPolicy(
            RetryConfig(base_delay=2.0, jitter=True), rng=random.Random(42)
        )
        for _ in range(20):
            delay = policy.delay_for(1)
            assert 1.0 <= delay < 2.0


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestRun:
    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        sleep = _SleepRecorder()
        policy = RetryPolicy(RetryConfig(), sleep=sleep)
        operation, calls = _flaky([])
        assert await policy.run(operation) == "ok"
        assert calls["n"] == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self) -> None:
        sleep = _SleepRecorder()
        policy = RetryPolicy(
            RetryConfig(max_attempts=3, base_delay=0.5, jitter=False), sleep=sleep
        )
        operation, calls = _flaky([RateLimitedError("429"), BackendTimeoutError("slow")])
        assert await policy.run(operation) == "ok"
        assert calls["n"] == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_exhausted_raises(self) -> None:
        sleep = _SleepRecorder()
        policy = RetryPolicy(RetryConfig(max_attempts=2, jitter=False), sleep=sleep)
        operation, calls = _flaky(
            [RateLimitedError("a"), RateLimitedError("b"), RateLimitedError("c")]
        )
        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.run(operation)
        assert exc_info.value.attempts == 2
        assert exc_info.value.error_type == AIErrorType.RATE_LIMITED
        assert calls["n"] == 2
        # No sleep after the final attempt
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self) -> None:
        sleep = _SleepRecorder()
        policy = RetryPolicy(RetryConfig(max_attempts=5), sleep=sleep)
        operation, calls = _flaky([AuthenticationFailedError("401")])
        with pytest.raises(AuthenticationFailedError):
            await policy.run(operation)
        assert calls["n"] == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_non_backend_errors_propagate(self) -> None:
        policy = RetryPolicy(RetryConfig(max_attempts=3), sleep=_SleepRecorder())
        operation, calls = _flaky([KeyError("bug")])
        with pytest.raises(KeyError):
            await policy.run(operation)
        assert calls["n"] == 1
