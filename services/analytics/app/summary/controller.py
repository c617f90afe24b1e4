"""Summary controller: orchestration layer between the admin router and the reader."""

from datetime import datetime
from uuid import UUID

from fastapi import HTTPException, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.exceptions import DependencyUnavailableError, SummaryNotFoundError
from app.summary import refresh, service
from app.summary.schemas import (
    CourseAnalyticsResponse,
    CourseProgressResponse,
    DashboardStatsResponse,
    HeatmapResponse,
    PopularVideosResponse,
    RefreshResponse,
    SessionListResponse,
    VideoSummaryResponse,
)


def _unavailable(exc: DependencyUnavailableError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "dependency_unavailable", "message": str(exc)},
        headers={"Retry-After": "5"},
    )


async def get_video_summary(
    db: AsyncSession, video_id: UUID, *, settings: Settings, redis: Redis | None
) -> VideoSummaryResponse:
    try:
        return await service.get_video_summary(db, video_id, settings=settings, redis=redis)
    except SummaryNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": "summary_not_found",
                "message": f"No analytics yet for video {video_id}. Summaries refresh hourly.",
            },
        ) from exc
    except DependencyUnavailableError as exc:
        raise _unavailable(exc) from exc


async def get_popular_videos(
    db: AsyncSession, limit: int, *, settings: Settings, redis: Redis | None
) -> PopularVideosResponse:
    try:
        return await service.get_popular_videos(db, limit, settings=settings, redis=redis)
    except DependencyUnavailableError as exc:
        raise _unavailable(exc) from exc


async def get_dashboard_stats(
    db: AsyncSession, *, settings: Settings, redis: Redis | None
) -> DashboardStatsResponse:
    try:
        return await service.get_dashboard_stats(db, settings=settings, redis=redis)
    except DependencyUnavailableError as exc:
        raise _unavailable(exc) from exc


async def get_heatmap(db: AsyncSession, video_id: UUID, *, settings: Settings) -> HeatmapResponse:
    try:
        return await service.get_heatmap(db, video_id, settings=settings)
    except DependencyUnavailableError as exc:
        raise _unavailable(exc) from exc


async def get_sessions(
    db: AsyncSession,
    video_id: UUID,
    start: datetime,
    end: datetime,
    *,
    settings: Settings,
    limit: int,
    offset: int,
) -> SessionListResponse:
    if end <= start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_input", "message": "end must be after start"},
        )
    try:
        return await service.get_sessions_by_date_range(
            db, video_id, start, end, settings=settings, limit=limit, offset=offset
        )
    except DependencyUnavailableError as exc:
        raise _unavailable(exc) from exc


async def get_course_analytics(
    db: AsyncSession, course_id: UUID, *, settings: Settings, redis: Redis | None
) -> CourseAnalyticsResponse:
    try:
        return await service.get_course_analytics(db, course_id, settings=settings, redis=redis)
    except DependencyUnavailableError as exc:
        raise _unavailable(exc) from exc


async def get_course_progress(
    db: AsyncSession, user_id: UUID, course_id: UUID, *, settings: Settings
) -> CourseProgressResponse:
    try:
        return await service.get_user_course_progress(db, user_id, course_id, settings=settings)
    except DependencyUnavailableError as exc:
        raise _unavailable(exc) from exc


async def refresh_summary(
    db: AsyncSession, *, settings: Settings, redis: Redis | None
) -> RefreshResponse:
    try:
        return await refresh.refresh_summary(db, settings=settings, redis=redis)
    except DependencyUnavailableError as exc:
        raise _unavailable(exc) from exc
