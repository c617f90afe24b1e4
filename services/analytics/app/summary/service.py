"""Summary reader: dashboard queries served cache-aside.

Reads check Redis first, fall back to the database on a miss (or any cache
failure) and repopulate the key with a short TTL. Nothing here writes to the
database.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from sqlalchemy import and_, case, false, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.database import bounded
from app.exceptions import CheckpointNotFoundError, SummaryNotFoundError
from app.ingestion.schemas import ResumeCheckpointResponse
from app.models import VideoAnalyticsSummary, VideoHeatmapSegment, VideoSession, WatchProgress
from app.summary.cache import (
    DASHBOARD_KEY,
    checkpoint_key,
    course_key,
    popular_key,
    read_json,
    summary_key,
    write_json,
)
from app.summary.schemas import (
    CompletionTiers,
    CourseAnalyticsResponse,
    CourseOverview,
    CourseProgressResponse,
    DashboardStatsResponse,
    HeatmapResponse,
    HeatmapSegmentResponse,
    PopularVideoItem,
    PopularVideosResponse,
    SessionDetailResponse,
    SessionListResponse,
    VideoSummaryResponse,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Completion-rate tier boundaries (percent).
HIGH_COMPLETION = 75.0
LOW_COMPLETION = 50.0


async def _cached(
    model: type[M], redis: Redis | None, key: str, settings: Settings
) -> M | None:
    raw = await read_json(redis, key, settings.analytics_cache_timeout_secs)
    if raw is None:
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError:
        logger.warning("Discarding unreadable cache entry %s", key)
        return None


async def _store(
    redis: Redis | None, key: str, value: BaseModel, ttl: int, settings: Settings
) -> None:
    await write_json(
        redis,
        key,
        value.model_dump_json(exclude={"cache_hit"}),
        ttl,
        settings.analytics_cache_timeout_secs,
    )


def _latest(values: list[datetime | None]) -> datetime | None:
    present = [v for v in values if v is not None]
    return max(present) if present else None


# ---------------------------------------------------------------------------
# Per-video summary
# ---------------------------------------------------------------------------


async def get_video_summary(
    db: AsyncSession,
    video_id: UUID,
    *,
    settings: Settings,
    redis: Redis | None = None,
) -> VideoSummaryResponse:
    """Raises SummaryNotFoundError until the first refresh covers the video.

    A video used by several courses has one row per course; the row with the
    most views is returned.
    """
    key = summary_key(video_id)
    cached = await _cached(VideoSummaryResponse, redis, key, settings)
    if cached is not None:
        return cached.model_copy(update={"cache_hit": True})

    result = await bounded(
        db.execute(
            select(VideoAnalyticsSummary)
            .where(VideoAnalyticsSummary.video_id == video_id)
            .order_by(VideoAnalyticsSummary.total_views.desc())
            .limit(1)
        ),
        settings.analytics_db_timeout_secs,
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise SummaryNotFoundError(str(video_id))

    summary = VideoSummaryResponse.model_validate(row)
    await _store(redis, key, summary, settings.analytics_summary_ttl_secs, settings)
    return summary


# ---------------------------------------------------------------------------
# Popular videos
# ---------------------------------------------------------------------------


async def get_popular_videos(
    db: AsyncSession,
    limit: int,
    *,
    settings: Settings,
    redis: Redis | None = None,
) -> PopularVideosResponse:
    """Non-preview videos by total views, then unique viewers."""
    key = popular_key(limit)
    cached = await _cached(PopularVideosResponse, redis, key, settings)
    if cached is not None:
        return cached.model_copy(update={"cache_hit": True})

    result = await bounded(
        db.execute(
            select(VideoAnalyticsSummary)
            .where(VideoAnalyticsSummary.is_preview == false())
            .order_by(
                VideoAnalyticsSummary.total_views.desc(),
                VideoAnalyticsSummary.unique_viewers.desc(),
            )
            .limit(limit)
        ),
        settings.analytics_db_timeout_secs,
    )
    rows = result.scalars().all()
    popular = PopularVideosResponse(
        items=[PopularVideoItem.model_validate(r) for r in rows],
        limit=limit,
        as_of=_latest([r.refreshed_at for r in rows]),
    )
    await _store(redis, key, popular, settings.analytics_popular_ttl_secs, settings)
    return popular


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


async def get_dashboard_stats(
    db: AsyncSession,
    *,
    settings: Settings,
    redis: Redis | None = None,
) -> DashboardStatsResponse:
    cached = await _cached(DashboardStatsResponse, redis, DASHBOARD_KEY, settings)
    if cached is not None:
        return cached.model_copy(update={"cache_hit": True})

    rate = VideoAnalyticsSummary.completion_rate
    result = await bounded(
        db.execute(
            select(
                func.count().label("total_videos"),
                func.sum(VideoAnalyticsSummary.total_views).label("total_views"),
                func.sum(VideoAnalyticsSummary.unique_viewers).label("unique_viewers"),
                func.sum(VideoAnalyticsSummary.total_watch_time_seconds).label("watch_time"),
                func.avg(rate).label("avg_completion_rate"),
                func.sum(case((rate > HIGH_COMPLETION, 1), else_=0)).label("high"),
                func.sum(
                    case((and_(rate >= LOW_COMPLETION, rate <= HIGH_COMPLETION), 1), else_=0)
                ).label("medium"),
                func.sum(case((rate < LOW_COMPLETION, 1), else_=0)).label("low"),
                func.max(VideoAnalyticsSummary.refreshed_at).label("as_of"),
            ).select_from(VideoAnalyticsSummary)
        ),
        settings.analytics_db_timeout_secs,
    )
    row = result.one()
    stats = DashboardStatsResponse(
        total_videos=int(row.total_videos or 0),
        total_views=int(row.total_views or 0),
        total_unique_viewers=int(row.unique_viewers or 0),
        total_watch_time_seconds=int(row.watch_time or 0),
        avg_completion_rate=round(float(row.avg_completion_rate or 0), 2),
        completion_tiers=CompletionTiers(
            high=int(row.high or 0),
            medium=int(row.medium or 0),
            low=int(row.low or 0),
        ),
        as_of=row.as_of,
    )
    await _store(redis, DASHBOARD_KEY, stats, settings.analytics_dashboard_ttl_secs, settings)
    return stats


# ---------------------------------------------------------------------------
# Heatmap
# ---------------------------------------------------------------------------


async def get_heatmap(
    db: AsyncSession, video_id: UUID, *, settings: Settings
) -> HeatmapResponse:
    """All segments of one video ordered by start time. Not cached."""
    result = await bounded(
        db.execute(
            select(VideoHeatmapSegment)
            .where(VideoHeatmapSegment.video_id == video_id)
            .order_by(VideoHeatmapSegment.segment_start)
        ),
        settings.analytics_db_timeout_secs,
    )
    return HeatmapResponse(
        video_id=video_id,
        segments=[HeatmapSegmentResponse.model_validate(s) for s in result.scalars().all()],
    )


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------


def course_overview(videos: list[VideoSummaryResponse]) -> CourseOverview:
    if not videos:
        return CourseOverview(
            total_videos=0, total_views=0, total_watch_time_seconds=0, avg_completion_rate=0.0
        )
    most_viewed = max(videos, key=lambda v: (v.total_views, v.unique_viewers))
    watched = [v for v in videos if v.total_views > 0]
    least_completed = min(watched, key=lambda v: v.completion_rate) if watched else None
    return CourseOverview(
        total_videos=len(videos),
        total_views=sum(v.total_views for v in videos),
        total_watch_time_seconds=sum(v.total_watch_time_seconds for v in videos),
        avg_completion_rate=round(sum(v.completion_rate for v in videos) / len(videos), 2),
        most_viewed_video_id=most_viewed.video_id,
        least_completed_video_id=least_completed.video_id if least_completed else None,
    )


async def get_course_analytics(
    db: AsyncSession,
    course_id: UUID,
    *,
    settings: Settings,
    redis: Redis | None = None,
) -> CourseAnalyticsResponse:
    key = course_key(course_id)
    cached = await _cached(CourseAnalyticsResponse, redis, key, settings)
    if cached is not None:
        return cached.model_copy(update={"cache_hit": True})

    result = await bounded(
        db.execute(
            select(VideoAnalyticsSummary)
            .where(VideoAnalyticsSummary.course_id == course_id)
            .order_by(VideoAnalyticsSummary.total_views.desc())
        ),
        settings.analytics_db_timeout_secs,
    )
    videos = [VideoSummaryResponse.model_validate(r) for r in result.scalars().all()]
    analytics = CourseAnalyticsResponse(
        course_id=course_id,
        overview=course_overview(videos),
        videos=videos,
        as_of=_latest([v.as_of for v in videos]),
    )
    await _store(redis, key, analytics, settings.analytics_summary_ttl_secs, settings)
    return analytics


async def get_user_course_progress(
    db: AsyncSession, user_id: UUID, course_id: UUID, *, settings: Settings
) -> CourseProgressResponse:
    result = await bounded(
        db.execute(
            select(WatchProgress)
            .where(WatchProgress.user_id == user_id, WatchProgress.course_id == course_id)
            .order_by(WatchProgress.last_watched_at.desc())
        ),
        settings.analytics_db_timeout_secs,
    )
    items = [ResumeCheckpointResponse.model_validate(p) for p in result.scalars().all()]
    return CourseProgressResponse(
        course_id=course_id,
        completed_videos=sum(1 for p in items if p.completed),
        items=items,
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


async def get_sessions_by_date_range(
    db: AsyncSession,
    video_id: UUID,
    start: datetime,
    end: datetime,
    *,
    settings: Settings,
    limit: int = 50,
    offset: int = 0,
) -> SessionListResponse:
    """Sessions of one video started in ``[start, end)``, newest first."""
    conditions = (
        VideoSession.video_id == video_id,
        VideoSession.started_at >= start,
        VideoSession.started_at < end,
    )
    total = await bounded(
        db.scalar(select(func.count()).select_from(VideoSession).where(*conditions)),
        settings.analytics_db_timeout_secs,
    )
    result = await bounded(
        db.execute(
            select(VideoSession)
            .where(*conditions)
            .order_by(VideoSession.started_at.desc())
            .limit(limit)
            .offset(offset)
        ),
        settings.analytics_db_timeout_secs,
    )
    return SessionListResponse(
        items=[SessionDetailResponse.model_validate(s) for s in result.scalars().all()],
        total=int(total or 0),
        limit=limit,
        offset=offset,
    )


# ---------------------------------------------------------------------------
# Resume checkpoint
# ---------------------------------------------------------------------------


async def get_resume_checkpoint(
    db: AsyncSession,
    user_id: UUID,
    video_id: UUID,
    *,
    settings: Settings,
    redis: Redis | None = None,
) -> ResumeCheckpointResponse:
    key = checkpoint_key(user_id, video_id)
    cached = await _cached(ResumeCheckpointResponse, redis, key, settings)
    if cached is not None:
        return cached

    result = await bounded(
        db.execute(
            select(WatchProgress).where(
                WatchProgress.user_id == user_id, WatchProgress.video_id == video_id
            )
        ),
        settings.analytics_db_timeout_secs,
    )
    progress = result.scalar_one_or_none()
    if progress is None:
        raise CheckpointNotFoundError(str(video_id))

    checkpoint = ResumeCheckpointResponse.model_validate(progress)
    await _store(redis, key, checkpoint, settings.analytics_checkpoint_ttl_secs, settings)
    return checkpoint
