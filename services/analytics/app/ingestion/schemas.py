"""Ingestion response schemas.

Request bodies are the shared wire events in ``shared.events.schemas``.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.aggregation.service import IngestOutcome


class SessionRecordResponse(BaseModel):
    """The session record as persisted after the event was applied."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    video_id: UUID
    course_id: UUID
    user_id: UUID | None
    lesson_id: str | None
    is_preview: bool
    video_duration_seconds: int | None
    watch_time_seconds: int
    current_position_seconds: int
    max_position_seconds: int = Field(description="Furthest position reached; never decreases.")
    completion_percentage: float
    completed: bool
    completed_at: datetime | None
    play_count: int
    pause_count: int
    seek_count: int
    average_playback_speed: float
    quality_changes: int
    started_at: datetime
    last_updated_at: datetime


class ResumeCheckpointResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    video_id: UUID
    course_id: UUID
    lesson_id: str | None
    current_position_seconds: int = Field(description="Last reported position (last-write-wins).")
    video_duration_seconds: int | None
    progress_percentage: float
    completed: bool
    completed_at: datetime | None
    first_watched_at: datetime
    last_watched_at: datetime


class IngestResponse(BaseModel):
    outcome: IngestOutcome = Field(
        description="created, updated, or duplicate_ignored for an idempotent re-submission."
    )
    session: SessionRecordResponse
    resume: ResumeCheckpointResponse | None = Field(
        default=None,
        description="Caller's resume checkpoint for this video, when signed in.",
    )
