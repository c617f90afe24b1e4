"""
ARQ worker: scheduled summary refresh.

Runs as a SEPARATE process from the FastAPI API server so refresh cadence is
independent of ingestion load.

Start:  arq app.worker.WorkerSettings
Cron:   refresh_summary_job at minute ANALYTICS_REFRESH_MINUTE of every hour.
        Admins can also trigger it via POST /api/v1/admin/analytics/refresh
        (runs inline) or by enqueueing "refresh_summary_job".
"""
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

from arq import cron
from arq.connections import RedisSettings

from app.config import Settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s: %(message)s")
logger = logging.getLogger("analytics.worker")


# ── Startup / shutdown hooks ────────────────────────────────────────────────


async def startup(ctx: dict[str, Any]) -> None:
    """Called once when the worker process starts."""
    from app.database import init_db
    from shared.database.redis_client import get_redis_client

    settings = Settings()
    ctx["settings"] = settings
    init_db(
        settings.analytics_database_url,
        command_timeout=settings.analytics_refresh_timeout_secs,
    )
    ctx["cache"] = get_redis_client(
        settings.redis_url, socket_timeout=settings.analytics_cache_timeout_secs
    )
    logger.info("Worker started, DB pool initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Called once when the worker process stops."""
    cache = ctx.get("cache")
    if cache is not None:
        await cache.aclose()
    logger.info("Worker shutting down")


# ── Summary refresh ─────────────────────────────────────────────────────────


async def refresh_summary_job(ctx: dict[str, Any]) -> int:
    """Rebuild video_analytics_summary; returns the number of videos written."""
    from app.database import get_session_factory
    from app.summary.refresh import refresh_summary

    settings: Settings = ctx["settings"]
    factory = get_session_factory()
    try:
        async with factory() as session:
            result = await refresh_summary(session, settings=settings, redis=ctx.get("cache"))
    except Exception:
        logger.exception("Summary refresh failed")
        raise  # Let ARQ record the failure
    return result.videos


# ── ARQ worker configuration ────────────────────────────────────────────────


def _redis_settings() -> RedisSettings:
    """Parse redis_url from Settings into ARQ RedisSettings."""
    parsed = urlparse(Settings().redis_url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or 0),
        password=parsed.password,
    )


class WorkerSettings:
    """ARQ reads this class to configure the worker process."""

    functions = [refresh_summary_job]
    cron_jobs = [
        cron(
            refresh_summary_job,
            minute=Settings().analytics_refresh_minute,
            run_at_startup=False,
            unique=True,
        )
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    # A refresh is a single grouped scan; one at a time is enough.
    max_jobs = 1
    job_timeout = 600
    keep_result = 3600
    # Queue name, separate from other services
    queue_name = "analytics:tasks"
