# esiri/common/rate_limit/rate_limiter.py
"""Fixed-window rate limiter backed by the rate_limit_buckets table."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.common.database.database import dialect_insert
from esiri.models.models import RateLimitBucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitProfile:
    limit: int
    window_seconds: int


RATE_LIMIT_PROFILES = {
    "payment": RateLimitProfile(limit=10, window_seconds=60),
    "sensitive": RateLimitProfile(limit=5, window_seconds=60),
    "notification": RateLimitProfile(limit=20, window_seconds=60),
    "read": RateLimitProfile(limit=30, window_seconds=60),
    # Unauthenticated endpoints, keyed by client IP
    "device-check": RateLimitProfile(limit=10, window_seconds=60),
    "session-create": RateLimitProfile(limit=5, window_seconds=60),
}


async def try_acquire(
    session: AsyncSession,
    bucket_key: str,
    limit: int,
    window_seconds: int,
    now: Optional[float] = None,
) -> bool:
    """
    Count one attempt against ``bucket_key`` and report whether it is within
    ``limit`` for the current window.

    The window is opened, incremented or reset by a single
    INSERT ... ON CONFLICT DO UPDATE, so concurrent callers never read a stale
    count or create the same window twice. The increment is committed
    immediately and counts whether or not the caller's operation succeeds.
    """
    now = time.time() if now is None else now
    expired = RateLimitBucket.window_start <= now - window_seconds

    stmt = dialect_insert(session)(RateLimitBucket).values(
        bucket_key=bucket_key, window_start=now, count=1
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[RateLimitBucket.bucket_key],
        set_={
            "count": case((expired, 1), else_=RateLimitBucket.count + 1),
            "window_start": case((expired, now), else_=RateLimitBucket.window_start),
        },
    ).returning(RateLimitBucket.count)

    result = await session.execute(stmt)
    count = result.scalar_one()
    await session.commit()

    allowed = count <= limit
    if not allowed:
        logger.warning(f"Rate limit exceeded for {bucket_key} ({count}/{limit})")
    return allowed


async def acquire_profile(
    session: AsyncSession,
    bucket: str,
    identity_key: str,
    now: Optional[float] = None,
) -> bool:
    profile = RATE_LIMIT_PROFILES[bucket]
    return await try_acquire(
        session, f"{bucket}:{identity_key}", profile.limit, profile.window_seconds, now=now
    )
