import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VideoSession(Base):
    """One continuous watch session, keyed by the client's session token."""

    __tablename__ = "video_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    video_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    # NULL for anonymous viewers
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    lesson_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_preview: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    video_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Client-computed, excludes paused intervals
    watch_time_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Watch time added by the most recent progress event; feeds the heatmap.
    last_watch_time_delta_seconds: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    # Last reported position (last-write-wins)
    current_position_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Furthest position reached, never decreases
    max_position_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    play_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pause_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    seek_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_playback_speed: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    quality_changes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Request context captured at session start
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os: Mapped[str | None] = mapped_column(String(50), nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("watch_time_seconds >= 0", name="watch_time_non_negative"),
        CheckConstraint("max_position_seconds >= 0", name="max_position_non_negative"),
        CheckConstraint(
            "completion_percentage >= 0 AND completion_percentage <= 100",
            name="completion_percentage_range",
        ),
        Index("ix_video_sessions_video_id", "video_id"),
        Index("ix_video_sessions_course_id", "course_id"),
        Index("ix_video_sessions_user_video", "user_id", "video_id"),
        Index("ix_video_sessions_video_started", "video_id", "started_at"),
    )
