import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WatchProgress(Base):
    """Resume checkpoint: last known position for a (user, video) pair."""

    __tablename__ = "video_watch_progress"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    video_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    lesson_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Last-write-wins, unlike VideoSession.max_position_seconds
    current_position_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    video_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    progress_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    first_watched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    last_watched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "video_id"),
        Index("ix_video_watch_progress_user_course", "user_id", "course_id"),
    )
