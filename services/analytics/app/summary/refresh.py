"""Full rebuild of the ``video_analytics_summary`` projection.

Runs out of band from ingestion: hourly from the arq worker and on demand from
``POST /admin/analytics/refresh``. The old rows are replaced inside one
transaction, so readers see either the previous projection or the new one.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

from redis.asyncio import Redis
from sqlalchemy import String, case, cast, delete, distinct, func, insert, literal, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.database import bounded
from app.models import VideoAnalyticsSummary, VideoSession
from app.summary.cache import clear_all
from app.summary.schemas import RefreshResponse

logger = logging.getLogger(__name__)


def _viewer_key(count_anonymous: bool) -> Any:
    """Expression identifying a distinct viewer.

    Signed-in viewers are keyed by user id. Anonymous sessions are keyed by
    their session token when counted, otherwise they yield NULL and are
    ignored by COUNT(DISTINCT ...).
    """
    if not count_anonymous:
        return VideoSession.user_id
    return func.coalesce(
        cast(VideoSession.user_id, String),
        literal("anon:", String) + VideoSession.session_id,
    )


def _aggregate_query(count_anonymous: bool):
    viewer = _viewer_key(count_anonymous)
    is_completed = VideoSession.completed == true()
    return (
        select(
            VideoSession.video_id,
            VideoSession.course_id,
            func.max(case((VideoSession.is_preview == true(), 1), else_=0)).label("is_preview"),
            func.count(VideoSession.id).label("total_views"),
            func.count(distinct(viewer)).label("unique_viewers"),
            func.count(distinct(case((is_completed, viewer), else_=None))).label(
                "unique_completers"
            ),
            func.count(
                distinct(case((VideoSession.watch_time_seconds > 0, viewer), else_=None))
            ).label("playing_viewers"),
            func.avg(VideoSession.watch_time_seconds).label("avg_watch_time_seconds"),
            func.sum(VideoSession.watch_time_seconds).label("total_watch_time_seconds"),
            func.max(VideoSession.watch_time_seconds).label("max_watch_time_seconds"),
            func.avg(VideoSession.completion_percentage).label("avg_completion_percentage"),
            func.sum(case((is_completed, 1), else_=0)).label("completed_count"),
            func.avg(VideoSession.play_count).label("avg_play_count"),
            func.avg(VideoSession.pause_count).label("avg_pause_count"),
            func.avg(VideoSession.seek_count).label("avg_seek_count"),
            func.avg(VideoSession.average_playback_speed).label("avg_playback_speed"),
            func.min(VideoSession.started_at).label("first_view_at"),
            func.max(VideoSession.started_at).label("last_view_at"),
            func.max(VideoSession.video_duration_seconds).label("video_duration_seconds"),
        )
        .group_by(VideoSession.video_id, VideoSession.course_id)
    )


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part * 100.0 / whole, 2)


def summary_row(row: Any, refreshed_at: datetime) -> dict[str, Any]:
    """Turn one aggregate result row into ``video_analytics_summary`` values."""
    total_views = int(row.total_views or 0)
    completed_count = int(row.completed_count or 0)
    unique_viewers = int(row.unique_viewers or 0)
    return {
        "video_id": row.video_id,
        "course_id": row.course_id,
        "is_preview": bool(row.is_preview),
        "total_views": total_views,
        "unique_viewers": unique_viewers,
        "unique_completers": int(row.unique_completers or 0),
        "avg_watch_time_seconds": round(float(row.avg_watch_time_seconds or 0), 2),
        "total_watch_time_seconds": int(row.total_watch_time_seconds or 0),
        "max_watch_time_seconds": int(row.max_watch_time_seconds or 0),
        "avg_completion_percentage": round(float(row.avg_completion_percentage or 0), 2),
        "completed_count": completed_count,
        "completion_rate": _percent(completed_count, total_views),
        "drop_off_rate": _percent(total_views - completed_count, total_views),
        "play_rate": _percent(int(row.playing_viewers or 0), unique_viewers),
        "avg_play_count": round(float(row.avg_play_count or 0), 2),
        "avg_pause_count": round(float(row.avg_pause_count or 0), 2),
        "avg_seek_count": round(float(row.avg_seek_count or 0), 2),
        "avg_playback_speed": round(float(row.avg_playback_speed or 1.0), 2),
        "first_view_at": row.first_view_at,
        "last_view_at": row.last_view_at,
        "video_duration_seconds": row.video_duration_seconds,
        "refreshed_at": refreshed_at,
    }


async def refresh_summary(
    db: AsyncSession,
    *,
    settings: Settings,
    redis: Redis | None = None,
) -> RefreshResponse:
    """Recompute every summary row from the session records, then drop all
    cached dashboard views."""
    started = time.monotonic()
    refreshed_at = datetime.now(timezone.utc)
    timeout = settings.analytics_refresh_timeout_secs

    result = await bounded(
        db.execute(_aggregate_query(settings.analytics_count_anonymous_viewers)),
        timeout,
    )
    rows = [summary_row(row, refreshed_at) for row in result.all()]

    await bounded(db.execute(delete(VideoAnalyticsSummary)), timeout)
    if rows:
        await bounded(db.execute(insert(VideoAnalyticsSummary), rows), timeout)
    await bounded(db.commit(), timeout)

    cleared = await clear_all(redis, settings.analytics_cache_timeout_secs)
    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Analytics summary refreshed: %d videos in %dms (cache cleared: %s)",
        len(rows),
        duration_ms,
        cleared,
    )
    return RefreshResponse(
        videos=len(rows),
        refreshed_at=refreshed_at,
        duration_ms=duration_ms,
        cache_cleared=cleared,
    )
