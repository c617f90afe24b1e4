"""Cache invalidation for the write path.

Writers only delete keys; the summary reader repopulates them on the next
miss. Invalidation runs after the database commit and is awaited with a short
timeout, but its failure is logged and never reaches the caller.
"""

import logging
from uuid import UUID

from redis.asyncio import Redis

from app.summary.cache import (
    DASHBOARD_KEY,
    POPULAR_PATTERN,
    checkpoint_key,
    course_key,
    delete_matching,
    guarded,
    summary_key,
)

logger = logging.getLogger(__name__)


def keys_for_video(
    video_id: UUID, course_id: UUID, user_id: UUID | None = None
) -> list[str]:
    keys = [summary_key(video_id), course_key(course_id), DASHBOARD_KEY]
    if user_id is not None:
        keys.append(checkpoint_key(user_id, video_id))
    return keys


async def _delete(redis: Redis, keys: list[str]) -> None:
    await redis.delete(*keys)
    await delete_matching(redis, POPULAR_PATTERN)


async def invalidate_video(
    redis: Redis | None,
    *,
    video_id: UUID,
    course_id: UUID,
    user_id: UUID | None,
    timeout: float,
) -> bool:
    """Best-effort invalidation of every cached view touching one video.

    Returns False when the cache was unavailable; the stale entries then
    expire on their own TTL.
    """
    if redis is None:
        return False
    keys = keys_for_video(video_id, course_id, user_id)
    ok, _ = await guarded("invalidate", _delete(redis, keys), timeout)
    if not ok:
        logger.warning("Stale cache entries for video %s left to expire", video_id)
    return ok
