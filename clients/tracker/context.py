from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

import httpx


@dataclass
class TrackerContext:
    """Everything one tracker needs; passed explicitly to ``init_tracker``.

    ``client`` and ``clock`` are injectable so several trackers can share one
    connection pool and tests can control time.
    """

    video_id: UUID | str
    course_id: UUID | str
    duration_seconds: float
    base_url: str
    lesson_id: str | None = None
    is_preview: bool = False

    update_interval: float = 15.0  # seconds between progress flushes
    completion_threshold: float = 90.0  # percent of duration
    seek_threshold: float = 2.0  # position jump (seconds) counted as a seek

    retry_base_delay: float = 5.0
    max_retries: int = 3
    queue_capacity: int = 100

    access_token: str | None = None
    api_prefix: str = "/api/v1/analytics"
    request_timeout: float = 5.0
    client: httpx.AsyncClient | None = None
    clock: Callable[[], float] = field(default=time.monotonic)

    def validate(self) -> None:
        """Raise ValueError when the context cannot produce valid events."""
        if not self.video_id or not self.course_id:
            raise ValueError("video_id and course_id are required")
        if self.duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        if not self.base_url:
            raise ValueError("base_url is required")
        if self.update_interval <= 0:
            raise ValueError("update_interval must be positive")
        if not 0 < self.completion_threshold <= 100:
            raise ValueError("completion_threshold must be in (0, 100]")
