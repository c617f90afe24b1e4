"""Playback session state machine.

Pure bookkeeping, no I/O: every ``on_*`` method returns the events the caller
must deliver. States::

    idle -> tracking -> (paused <-> tracking) -> completed

Counters and watch time keep updating after completion; only the periodic
flush stops.
"""

from __future__ import annotations

import enum
import secrets
import string
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from tracker.context import TrackerContext

_BASE36 = string.digits + string.ascii_lowercase


class TrackerState(str, enum.Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    PAUSED = "paused"
    COMPLETED = "completed"


class EventKind(str, enum.Enum):
    VIEW = "video-view"
    PROGRESS = "video-progress"
    COMPLETE = "video-complete"


@dataclass(frozen=True)
class Emission:
    kind: EventKind
    session_id: str
    payload: dict[str, Any]

    @property
    def key(self) -> tuple[EventKind, str]:
        """Retry-queue identity: a newer progress snapshot replaces an older one."""
        return self.kind, self.session_id


def new_session_token(now_ms: int | None = None, suffix_length: int = 9) -> str:
    """``<epoch ms>-<random base36>``; unique without a server round-trip."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(suffix_length))
    return f"{now_ms}-{suffix}"


@dataclass
class PlaybackSession:
    context: TrackerContext
    token_factory: Callable[[], str] = new_session_token

    state: TrackerState = TrackerState.IDLE
    session_id: str | None = None

    play_count: int = 0
    pause_count: int = 0
    seek_count: int = 0
    quality_changes: int = 0
    watch_time: float = 0.0
    current_position: float = 0.0
    furthest_position: float = 0.0

    completion_sent: bool = False
    playing: bool = False
    _last_tick: float | None = field(default=None, repr=False)
    _speed_total: float = field(default=1.0, repr=False)
    _speed_samples: int = field(default=1, repr=False)

    # -- accounting -----------------------------------------------------------

    def _now(self) -> float:
        return self.context.clock()

    def _accrue(self) -> None:
        """Fold the time played since the last tick into watch time."""
        now = self._now()
        if self.playing and self._last_tick is not None:
            self.watch_time += max(0.0, now - self._last_tick)
        self._last_tick = now

    @property
    def average_playback_speed(self) -> float:
        return round(self._speed_total / self._speed_samples, 2)

    @property
    def started(self) -> bool:
        return self.session_id is not None

    @property
    def should_flush(self) -> bool:
        return self.state is TrackerState.TRACKING and self.playing

    # -- payloads -------------------------------------------------------------

    def _metadata(self) -> dict[str, Any]:
        return {
            "video_id": str(self.context.video_id),
            "course_id": str(self.context.course_id),
            "video_duration_seconds": int(self.context.duration_seconds),
            "lesson_id": self.context.lesson_id,
            "is_preview": self.context.is_preview,
        }

    def _view(self) -> Emission:
        if self.session_id is None:
            raise RuntimeError("Session has not started")
        return Emission(
            EventKind.VIEW,
            self.session_id,
            {"session_id": self.session_id, **self._metadata()},
        )

    def progress(self) -> Emission:
        """Snapshot of the cumulative counters, up to now."""
        if self.session_id is None:
            raise RuntimeError("Session has not started")
        self._accrue()
        payload = {
            "session_id": self.session_id,
            "current_position_seconds": int(self.current_position),
            "watch_time_seconds": int(self.watch_time),
            "play_count": self.play_count,
            "pause_count": self.pause_count,
            "seek_count": self.seek_count,
            "average_playback_speed": self.average_playback_speed,
            "quality_changes": self.quality_changes,
            # Lets the server recreate the session if the start event was lost.
            **self._metadata(),
        }
        return Emission(EventKind.PROGRESS, self.session_id, payload)

    def _complete(self) -> list[Emission]:
        if self.completion_sent or self.session_id is None:
            return []
        self.completion_sent = True
        self.state = TrackerState.COMPLETED
        return [
            Emission(
                EventKind.COMPLETE,
                self.session_id,
                {"session_id": self.session_id, "watch_time_seconds": int(self.watch_time)},
            )
        ]

    # -- transitions ----------------------------------------------------------

    def on_play(self) -> list[Emission]:
        if self.playing:
            return []
        emissions: list[Emission] = []
        if self.state is TrackerState.IDLE:
            self.session_id = self.token_factory()
            emissions.append(self._view())
        if self.state in (TrackerState.IDLE, TrackerState.PAUSED):
            self.state = TrackerState.TRACKING
        self.play_count += 1
        self.playing = True
        self._last_tick = self._now()
        return emissions

    def on_pause(self) -> list[Emission]:
        if not self.playing:
            return []
        self._accrue()
        self.playing = False
        self.pause_count += 1
        if self.state is TrackerState.TRACKING:
            self.state = TrackerState.PAUSED
        return []

    def on_time_update(self, position: float) -> list[Emission]:
        position = max(0.0, position)
        if abs(position - self.current_position) > self.context.seek_threshold:
            self.seek_count += 1
        self._accrue()
        self.current_position = position
        self.furthest_position = max(self.furthest_position, position)

        reached = position * 100 >= self.context.duration_seconds * self.context.completion_threshold
        if reached:
            return self._complete()
        return []

    def on_rate_change(self, rate: float) -> None:
        if rate <= 0:
            return
        self._accrue()
        self._speed_total += rate
        self._speed_samples += 1

    def on_quality_change(self) -> None:
        self.quality_changes += 1

    def on_ended(self) -> list[Emission]:
        self._accrue()
        self.playing = False
        return self._complete()
