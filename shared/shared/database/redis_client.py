from typing import Any

import redis.asyncio as redis


def get_redis_client(
    redis_url: str,
    *,
    socket_timeout: float | None = None,
    **kwargs: Any,
) -> redis.Redis:
    """Build an async client for cache traffic.

    ``socket_timeout`` bounds every round-trip; cache callers treat a timeout
    like any other cache failure and fall through to the database.
    """
    if socket_timeout is not None:
        kwargs.setdefault("socket_timeout", socket_timeout)
        kwargs.setdefault("socket_connect_timeout", socket_timeout)
    return redis.from_url(redis_url, decode_responses=True, **kwargs)
