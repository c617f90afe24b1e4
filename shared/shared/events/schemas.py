"""Playback telemetry wire events.

These models are the contract between the player-side tracker and the
ingestion endpoints: the tracker serialises them, the analytics service
validates request bodies against them. Field names are snake_case on the
wire.
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Client-generated, opaque; the tracker emits "<epoch ms>-<base36 suffix>".
SESSION_ID_PATTERN = r"^[A-Za-z0-9_.:\-]{8,255}$"

_wire_config = ConfigDict(
    str_strip_whitespace=True,
    extra="ignore",
)


class VideoViewEvent(BaseModel):
    """Session start: the viewer pressed play for the first time."""

    model_config = _wire_config

    session_id: str = Field(pattern=SESSION_ID_PATTERN)
    video_id: UUID
    course_id: UUID
    video_duration_seconds: int = Field(gt=0, le=86_400)
    lesson_id: str | None = Field(default=None, max_length=255)
    is_preview: bool = False


class VideoProgressEvent(BaseModel):
    """Periodic snapshot of one session's cumulative counters.

    ``video_id``/``course_id``/``video_duration_seconds`` are optional and
    only used to recreate a session whose start event never arrived.
    """

    model_config = _wire_config

    session_id: str = Field(pattern=SESSION_ID_PATTERN)
    current_position_seconds: int = Field(ge=0, le=86_400)
    watch_time_seconds: int = Field(ge=0)
    play_count: int = Field(default=1, ge=0)
    pause_count: int = Field(default=0, ge=0)
    seek_count: int = Field(default=0, ge=0)
    average_playback_speed: float = Field(default=1.0, gt=0, le=16)
    quality_changes: int = Field(default=0, ge=0)

    video_id: UUID | None = None
    course_id: UUID | None = None
    video_duration_seconds: int | None = Field(default=None, gt=0, le=86_400)
    lesson_id: str | None = Field(default=None, max_length=255)
    is_preview: bool | None = None


class VideoCompleteEvent(BaseModel):
    """The player believes the viewer finished the video."""

    model_config = _wire_config

    session_id: str = Field(pattern=SESSION_ID_PATTERN)
    watch_time_seconds: int | None = Field(default=None, ge=0)
