"""Tests for the database-backed fixed-window rate limiter."""

import asyncio

import pytest
from sqlalchemy import select

from esiri.common.rate_limit.rate_limiter import RATE_LIMIT_PROFILES, acquire_profile, try_acquire
from esiri.models.models import RateLimitBucket


class TestTryAcquire:
    """Test try_acquire window accounting."""

    async def test_allows_up_to_limit_then_rejects(self, db):
        now = 1_700_000_000.0
        results = [await try_acquire(db, "read:abc", 3, 60, now=now + i) for i in range(4)]
        assert results == [True, True, True, False]

    async def test_window_resets_after_expiry(self, db):
        now = 1_700_000_000.0
        for i in range(3):
            assert await try_acquire(db, "sensitive:abc", 3, 60, now=now + i)
        assert not await try_acquire(db, "sensitive:abc", 3, 60, now=now + 10)

        assert await try_acquire(db, "sensitive:abc", 3, 60, now=now + 61)

        result = await db.execute(
            select(RateLimitBucket)
            .where(RateLimitBucket.bucket_key == "sensitive:abc")
            .execution_options(populate_existing=True)
        )
        bucket = result.scalar_one()
        assert bucket.count == 1
        assert bucket.window_start == pytest.approx(now + 61)

    async def test_rejected_attempts_still_count(self, db):
        now = 1_700_000_000.0
        for i in range(5):
            await try_acquire(db, "payment:abc", 2, 60, now=now + i)

        result = await db.execute(
            select(RateLimitBucket.count).where(RateLimitBucket.bucket_key == "payment:abc")
        )
        assert result.scalar_one() == 5

    async def test_keys_are_independent(self, db):
        now = 1_700_000_000.0
        assert await try_acquire(db, "read:one", 1, 60, now=now)
        assert not await try_acquire(db, "read:one", 1, 60, now=now)
        assert await try_acquire(db, "read:two", 1, 60, now=now)


class TestProfiles:
    """Test named rate limit profiles."""

    def test_profile_values(self):
        assert RATE_LIMIT_PROFILES["payment"].limit == 10
        assert RATE_LIMIT_PROFILES["sensitive"].limit == 5
        assert RATE_LIMIT_PROFILES["notification"].limit == 20
        assert RATE_LIMIT_PROFILES["read"].limit == 30
        assert all(p.window_seconds == 60 for p in RATE_LIMIT_PROFILES.values())

    async def test_acquire_profile_uses_bucket_limit(self, db):
        now = 1_700_000_000.0
        allowed = [await acquire_profile(db, "sensitive", "session-1", now=now) for _ in range(6)]
        assert allowed == [True] * 5 + [False]
        # Same identity, other bucket
        assert await acquire_profile(db, "read", "session-1", now=now)

    async def test_profile_keys_are_namespaced(self, db, rows):
        await acquire_profile(db, "read", "doctor-7", now=1_700_000_000.0)
        buckets = await rows(RateLimitBucket)
        assert [b.bucket_key for b in buckets] == ["read:doctor-7"]


class TestConcurrentAcquire:
    """Test acquisitions racing on a window that does not exist yet."""

    async def _burst(self, session_factory, key, limit, calls):
        now = 1_700_000_000.0

        async def acquire():
            async with session_factory() as session:
                return await try_acquire(session, key, limit, 60, now=now)

        results = await asyncio.gather(*(acquire() for _ in range(calls)))
        async with session_factory() as session:
            result = await session.execute(select(RateLimitBucket).where(RateLimitBucket.bucket_key == key))
            return results, result.scalar_one().count

    async def test_every_attempt_is_counted(self, session_factory):
        results, count = await self._burst(session_factory, "read:burst", 10, 8)
        assert results == [True] * 8
        assert count == 8

    async def test_limit_holds_under_burst(self, session_factory):
        results, count = await self._burst(session_factory, "sensitive:burst", 3, 8)
        assert results.count(True) == 3
        assert count == 8
