from shared.database.postgres import Base, get_async_session_factory
from shared.database.redis_client import get_redis_client

__all__ = [
    "Base",
    "get_async_session_factory",
    "get_redis_client",
]
