"""Redis cache helpers for the summary reader.

Key schema
----------
video_analytics:summary:{video_id}               JSON  TTL 5 min   per-video summary
video_analytics:popular:{limit}                  JSON  TTL 10 min  non-preview ranking
video_analytics:dashboard                        JSON  TTL 5 min   platform-wide stats
video_analytics:course:{course_id}               JSON  TTL 5 min   per-course summaries
video_analytics:checkpoint:{user_id}:{video_id}  JSON  TTL 5 min   resume checkpoint

Every helper here is soft-fail: a Redis error or timeout is logged as
:class:`CacheDegradedError` and reported as a miss (reads) or ``False``
(writes). Callers then use the database.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.exceptions import CacheDegradedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_PREFIX = "video_analytics"
DASHBOARD_KEY = f"{KEY_PREFIX}:dashboard"
POPULAR_PATTERN = f"{KEY_PREFIX}:popular:*"
ALL_KEYS_PATTERN = f"{KEY_PREFIX}:*"


def summary_key(video_id: UUID) -> str:
    return f"{KEY_PREFIX}:summary:{video_id}"


def popular_key(limit: int) -> str:
    return f"{KEY_PREFIX}:popular:{limit}"


def course_key(course_id: UUID) -> str:
    return f"{KEY_PREFIX}:course:{course_id}"


def checkpoint_key(user_id: UUID, video_id: UUID) -> str:
    return f"{KEY_PREFIX}:checkpoint:{user_id}:{video_id}"


# ---------------------------------------------------------------------------
# Error boundary
# ---------------------------------------------------------------------------


async def guarded(operation: str, call: Awaitable[T], timeout: float) -> tuple[bool, T | None]:
    """Await one cache call; never raises for Redis failures.

    Returns ``(ok, result)``.
    """
    try:
        return True, await asyncio.wait_for(call, timeout)
    except (RedisError, TimeoutError, OSError) as exc:
        degraded = CacheDegradedError(operation, str(exc) or type(exc).__name__)
        logger.warning("%s", degraded)
        return False, None


# ---------------------------------------------------------------------------
# Read / write
# ---------------------------------------------------------------------------


async def read_json(redis: Redis | None, key: str, timeout: float) -> str | None:
    """Return the cached JSON payload for ``key``, or None on miss or failure."""
    if redis is None:
        return None
    _, value = await guarded("read", redis.get(key), timeout)
    return value


async def write_json(
    redis: Redis | None, key: str, payload: str, ttl: int, timeout: float
) -> bool:
    if redis is None:
        return False
    ok, _ = await guarded("write", redis.setex(key, ttl, payload), timeout)
    return ok


async def delete_matching(redis: Redis, pattern: str) -> int:
    """Delete every key matching ``pattern`` (SCAN, not KEYS). Raises on failure."""
    keys = [key async for key in redis.scan_iter(match=pattern)]
    if not keys:
        return 0
    return await redis.delete(*keys)


async def clear_all(redis: Redis | None, timeout: float) -> bool:
    """Drop every analytics key; used after a full summary refresh."""
    if redis is None:
        return False
    ok, _ = await guarded("clear", delete_matching(redis, ALL_KEYS_PATTERN), timeout)
    return ok
