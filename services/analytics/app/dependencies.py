import httpx
from fastapi import Depends, Request
from redis.asyncio import Redis

from app.aggregation.service import AggregationPolicy
from app.config import Settings
from shared.auth.dependencies import (
    get_current_user_optional,
    get_current_user_required,
    require_dashboard_access,
)

__all__ = [
    "get_settings",
    "get_redis",
    "get_catalog_client",
    "get_policy",
    "get_current_user_optional",
    "get_current_user_required",
    "require_dashboard_access",
]


def get_settings() -> Settings:
    return Settings()


def get_redis(request: Request) -> Redis | None:
    """Shared cache client, or None when the app started without one."""
    return getattr(request.app.state, "redis", None)


def get_catalog_client(request: Request) -> httpx.AsyncClient | None:
    return getattr(request.app.state, "catalog_client", None)


def get_policy(settings: Settings = Depends(get_settings)) -> AggregationPolicy:
    return AggregationPolicy.from_settings(settings)
