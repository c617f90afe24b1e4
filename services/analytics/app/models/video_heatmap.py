import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


class VideoHeatmapSegment(Base):
    """Engagement counter for one fixed-width time window of a video."""

    __tablename__ = "video_heatmap"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    video_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    segment_start: Mapped[int] = mapped_column(Integer, nullable=False)
    segment_end: Mapped[int] = mapped_column(Integer, nullable=False)
    # Only ever incremented
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_watch_time_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_aggregated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("video_id", "segment_start", "segment_end"),
        CheckConstraint("segment_start >= 0", name="segment_start_non_negative"),
        CheckConstraint("segment_end > segment_start", name="segment_non_empty"),
    )
