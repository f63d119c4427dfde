"""
Tests for the per-principal token bucket rate limiter.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import FakeClock
from ctxauth.core.config import RateLimitConfig
from ctxauth.errors import RateLimitExceeded
from ctxauth.ratelimit import PrincipalRateLimiter
from ctxauth.store import MemoryCacheStore
from ctxauth.types import RateLimitCategory


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    limits = {
        RateLimitCategory.CONTEXT_SWITCH: RateLimitConfig(100, timedelta(minutes=1)),
        RateLimitCategory.DELEGATION_GRANT: RateLimitConfig(2, timedelta(minutes=1)),
        RateLimitCategory.IDENTITY_FEDERATION: RateLimitConfig(5, timedelta(minutes=1)),
    }
    return PrincipalRateLimiter(MemoryCacheStore(clock=clock), limits, clock=clock)


class TestPrincipalRateLimiter:
    """Token bucket behaviour"""

    @pytest.mark.asyncio
    async def test_hundred_and_first_request_rejected(self, limiter):
        for _ in range(100):
            await limiter.admit("alice", RateLimitCategory.CONTEXT_SWITCH)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await limiter.admit("alice", RateLimitCategory.CONTEXT_SWITCH)

        error = exc_info.value
        assert error.category == RateLimitCategory.CONTEXT_SWITCH
        assert error.retry_after == pytest.approx(0.6)
        assert error.is_retryable()

    @pytest.mark.asyncio
    async def test_buckets_are_per_principal_and_category(self, limiter):
        for _ in range(2):
            await limiter.admit("alice", RateLimitCategory.DELEGATION_GRANT)
        with pytest.raises(RateLimitExceeded):
            await limiter.admit("alice", RateLimitCategory.DELEGATION_GRANT)

        await limiter.admit("bob", RateLimitCategory.DELEGATION_GRANT)
        await limiter.admit("alice", RateLimitCategory.CONTEXT_SWITCH)

    @pytest.mark.asyncio
    async def test_tokens_refill_over_time(self, limiter, clock):
        for _ in range(2):
            await limiter.admit("alice", RateLimitCategory.DELEGATION_GRANT)
        with pytest.raises(RateLimitExceeded):
            await limiter.admit("alice", RateLimitCategory.DELEGATION_GRANT)

        clock.advance(timedelta(seconds=30))
        await limiter.admit("alice", RateLimitCategory.DELEGATION_GRANT)
        assert await limiter.remaining("alice", RateLimitCategory.DELEGATION_GRANT) == pytest.approx(0)

    @pytest.mark.asyncio
    async def test_concurrent_admits_never_exceed_capacity(self, limiter):
        results = await asyncio.gather(
            *[limiter.admit("carol", RateLimitCategory.IDENTITY_FEDERATION) for _ in range(20)],
            return_exceptions=True,
        )
        admitted = [r for r in results if r is None]
        rejected = [r for r in results if isinstance(r, RateLimitExceeded)]
        assert len(admitted) == 5
        assert len(rejected) == 15

    @pytest.mark.asyncio
    async def test_reset(self, limiter):
        for _ in range(2):
            await limiter.admit("alice", RateLimitCategory.DELEGATION_GRANT)
        await limiter.reset("alice", RateLimitCategory.DELEGATION_GRANT)
        await limiter.admit("alice", RateLimitCategory.DELEGATION_GRANT)

    @pytest.mark.asyncio
    async def test_instances_sharing_a_store_share_the_limit(self, clock):
        class YieldingCacheStore(MemoryCacheStore):
            """Gives other tasks a turn on every read and write, like a network store."""

            async def get(self, key):
                await asyncio.sleep(0)
                return await super().get(key)

            async def set(self, key, value, ttl):
                await asyncio.sleep(0)
                await super().set(key, value, ttl)

        store = YieldingCacheStore(clock=clock)
        limits = {RateLimitCategory.IDENTITY_FEDERATION: RateLimitConfig(10, timedelta(minutes=1))}
        first = PrincipalRateLimiter(store, limits, clock=clock)
        second = PrincipalRateLimiter(store, limits, clock=clock)

        results = await asyncio.gather(
            *[
                (first if i % 2 else second).admit("carol", RateLimitCategory.IDENTITY_FEDERATION)
                for i in range(20)
            ],
            return_exceptions=True,
        )
        assert len([r for r in results if r is None]) == 10
        assert len([r for r in results if isinstance(r, RateLimitExceeded)]) == 10

    @pytest.mark.asyncio
    async def test_remaining_does_not_consume(self, limiter):
        await limiter.admit("alice", RateLimitCategory.DELEGATION_GRANT)
        assert await limiter.remaining("alice", RateLimitCategory.DELEGATION_GRANT) == pytest.approx(1)
        assert await limiter.remaining("alice", RateLimitCategory.DELEGATION_GRANT) == pytest.approx(1)
        await limiter.admit("alice", RateLimitCategory.DELEGATION_GRANT)
