import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


class VideoAnalyticsSummary(Base):
    """Read-optimised projection of all sessions of one video.

    Written only by ``app.summary.refresh``, which rebuilds every row.
    """

    __tablename__ = "video_analytics_summary"

    video_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    is_preview: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    total_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_viewers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_completers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    avg_watch_time_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_watch_time_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_watch_time_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    avg_completion_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    drop_off_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # Share of viewers who actually watched something
    play_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    avg_play_count: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_pause_count: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_seek_count: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_playback_speed: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    first_view_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_view_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    video_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refreshed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_video_analytics_summary_course_id", "course_id"),
        Index("ix_video_analytics_summary_total_views", "total_views"),
        Index("ix_video_analytics_summary_completion_rate", "completion_rate"),
    )
