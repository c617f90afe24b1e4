"""Summary reader Pydantic V2 schemas.

Dashboard responses carry ``as_of`` (when the summary projection was last
rebuilt) and ``cache_hit`` so the dashboard can label stale numbers.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.ingestion.schemas import ResumeCheckpointResponse, SessionRecordResponse


# ---------------------------------------------------------------------------
# Per-video summary
# ---------------------------------------------------------------------------


class VideoSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    video_id: UUID
    course_id: UUID
    is_preview: bool

    total_views: int
    unique_viewers: int
    unique_completers: int

    avg_watch_time_seconds: float
    total_watch_time_seconds: int
    max_watch_time_seconds: int

    avg_completion_percentage: float
    completed_count: int
    completion_rate: float = Field(description="Completed sessions / sessions, in percent.")
    drop_off_rate: float
    play_rate: float

    avg_play_count: float
    avg_pause_count: float
    avg_seek_count: float
    avg_playback_speed: float

    first_view_at: datetime | None
    last_view_at: datetime | None
    video_duration_seconds: int | None
    as_of: datetime = Field(
        validation_alias=AliasChoices("refreshed_at", "as_of"),
        description="When the summary projection was last rebuilt.",
    )
    cache_hit: bool = False


# ---------------------------------------------------------------------------
# Popular videos
# ---------------------------------------------------------------------------


class PopularVideoItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    video_id: UUID
    course_id: UUID
    total_views: int
    unique_viewers: int
    completion_rate: float
    avg_watch_time_seconds: float


class PopularVideosResponse(BaseModel):
    items: list[PopularVideoItem]
    limit: int
    as_of: datetime | None = None
    cache_hit: bool = False


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class CompletionTiers(BaseModel):
    high: int = Field(description="Videos with completion rate above 75%.")
    medium: int = Field(description="Videos with completion rate from 50% to 75%.")
    low: int = Field(description="Videos with completion rate below 50%.")


class DashboardStatsResponse(BaseModel):
    total_videos: int
    total_views: int
    total_unique_viewers: int
    total_watch_time_seconds: int
    avg_completion_rate: float
    completion_tiers: CompletionTiers
    as_of: datetime | None = None
    cache_hit: bool = False


# ---------------------------------------------------------------------------
# Heatmap
# ---------------------------------------------------------------------------


class HeatmapSegmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    segment_start: int
    segment_end: int
    view_count: int
    total_watch_time_seconds: int
    last_aggregated_at: datetime


class HeatmapResponse(BaseModel):
    video_id: UUID
    segments: list[HeatmapSegmentResponse]


# ---------------------------------------------------------------------------
# Course analytics
# ---------------------------------------------------------------------------


class CourseOverview(BaseModel):
    total_videos: int
    total_views: int
    total_watch_time_seconds: int
    avg_completion_rate: float
    most_viewed_video_id: UUID | None = None
    least_completed_video_id: UUID | None = None


class CourseAnalyticsResponse(BaseModel):
    course_id: UUID
    overview: CourseOverview
    videos: list[VideoSummaryResponse]
    as_of: datetime | None = None
    cache_hit: bool = False


class CourseProgressResponse(BaseModel):
    course_id: UUID
    completed_videos: int
    items: list[ResumeCheckpointResponse]


# ---------------------------------------------------------------------------
# Session drill-down
# ---------------------------------------------------------------------------


class SessionDetailResponse(SessionRecordResponse):
    device_type: str | None
    browser: str | None
    os: str | None
    referrer: str | None


class SessionListResponse(BaseModel):
    items: list[SessionDetailResponse]
    total: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class RefreshResponse(BaseModel):
    videos: int = Field(description="Summary rows written.")
    refreshed_at: datetime
    duration_ms: int
    cache_cleared: bool
