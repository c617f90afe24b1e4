from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.database import get_db
from app.dependencies import get_redis, get_settings, require_dashboard_access
from app.summary import controller
from app.summary.schemas import (
    CourseAnalyticsResponse,
    DashboardStatsResponse,
    HeatmapResponse,
    PopularVideosResponse,
    RefreshResponse,
    SessionListResponse,
    VideoSummaryResponse,
)

router = APIRouter(
    prefix="/admin/analytics",
    tags=["Analytics Admin"],
    dependencies=[Depends(require_dashboard_access)],
)


@router.get(
    "/dashboard",
    response_model=DashboardStatsResponse,
    summary="Platform-wide engagement stats",
    description="Totals across all videos plus completion-rate tiers (high >75%, medium 50-75%, low <50%).",
)
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis | None = Depends(get_redis),
) -> DashboardStatsResponse:
    return await controller.get_dashboard_stats(db, settings=settings, redis=redis)


# Registered before /videos/{video_id} so "popular" is not parsed as an id.
@router.get(
    "/videos/popular",
    response_model=PopularVideosResponse,
    summary="Most viewed videos",
    description="Ranked by total views, then unique viewers. Preview videos are excluded.",
)
async def get_popular_videos(
    limit: int = Query(10, ge=1, le=100, description="Number of videos to return."),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis | None = Depends(get_redis),
) -> PopularVideosResponse:
    return await controller.get_popular_videos(db, limit, settings=settings, redis=redis)


@router.get(
    "/videos/{video_id}",
    response_model=VideoSummaryResponse,
    summary="Engagement summary for one video",
)
async def get_video_summary(
    video_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis | None = Depends(get_redis),
) -> VideoSummaryResponse:
    return await controller.get_video_summary(db, video_id, settings=settings, redis=redis)


@router.get(
    "/videos/{video_id}/heatmap",
    response_model=HeatmapResponse,
    summary="Per-segment engagement for one video",
    description="Fixed-width segments ordered by start time.",
)
async def get_video_heatmap(
    video_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> HeatmapResponse:
    return await controller.get_heatmap(db, video_id, settings=settings)


@router.get(
    "/videos/{video_id}/sessions",
    response_model=SessionListResponse,
    summary="Sessions of one video in a date range",
)
async def get_video_sessions(
    video_id: UUID,
    start: datetime = Query(..., description="Inclusive lower bound on started_at."),
    end: datetime = Query(..., description="Exclusive upper bound on started_at."),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> SessionListResponse:
    return await controller.get_sessions(
        db, video_id, start, end, settings=settings, limit=limit, offset=offset
    )


@router.get(
    "/courses/{course_id}",
    response_model=CourseAnalyticsResponse,
    summary="Per-video summaries and overview for one course",
)
async def get_course_analytics(
    course_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis | None = Depends(get_redis),
) -> CourseAnalyticsResponse:
    return await controller.get_course_analytics(db, course_id, settings=settings, redis=redis)


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    summary="Rebuild the summary projection now",
    description="Normally runs hourly in the worker. Clears every cached dashboard view.",
)
async def refresh_summary(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis | None = Depends(get_redis),
) -> RefreshResponse:
    return await controller.refresh_summary(db, settings=settings, redis=redis)
