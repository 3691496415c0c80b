"""Unit tests for loadspec.llm.health."""

from __future__ import annotations

import asyncio

import pytest

from loadspec.llm.health import HealthCache


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class _Check:
    def __init__(self, results: list[bool]) -> None:
        self.results = results
        self.calls = 0

    async def __call__(self) -> bool:
        self.calls += 1
        await asyncio.sleep(0)
        return self.results[min(self.calls - 1, len(self.results) - 1)]


class TestHealthCache:
    @pytest.mark.asyncio
    async def test_first_call_checks(self) -> None:
        check = _Check([True])
        cache = HealthCache(check, ttl=30, clock=_Clock())
        assert cache.healthy is None
        assert await cache.get() is True
        assert check.calls == 1
        assert cache.healthy is True

    @pytest.mark.asyncio
    async def test_fresh_result_cached(self) -> None:
        clock = _Clock()
        check = _Check([True, False])
        cache = HealthCache(check, ttl=30, clock=clock)
        await cache.get()
        clock.now += 10
        assert await cache.get() is True
        assert check.calls == 1

    @pytest.mark.asyncio
    async def test_stale_result_rechecks(self) -> None:
        clock = _Clock()
        check = _Check([True, False])
        cache = HealthCache(check, ttl=30, clock=clock)
        await cache.get()
        clock.now += 31
        assert await cache.get() is False
        assert check.calls == 2

    @pytest.mark.asyncio
    async def test_force_bypasses_cache(self) -> None:
        check = _Check([True, True])
        cache = HealthCache(check, ttl=30, clock=_Clock())
        await cache.get()
        await cache.get(force=True)
        assert check.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate(self) -> None:
        check = _Check([True, False])
        cache = HealthCache(check, ttl=30, clock=_Clock())
        await cache.get()
        cache.invalidate()
        assert cache.is_fresh() is False
        assert await cache.get() is False

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_check(self) -> None:
        check = _Check([True])
        cache = HealthCache(check, ttl=30, clock=_Clock())
        results = await asyncio.gather(*(cache.get() for _ in range(5)))
        assert results == [True] * 5
        assert check.calls == 1
