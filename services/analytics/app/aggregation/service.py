"""Aggregation engine: the only writer of sessions, heatmap segments and
resume checkpoints.

Every write is a single atomic statement (``INSERT ... ON CONFLICT`` or
``UPDATE ... RETURNING``), so concurrent ingestion workers never need locks.
Rules applied per progress event:

* ``max_position_seconds`` = max(old, new); never decreases.
* ``watch_time_seconds``, ``current_position_seconds`` and the engagement
  counters are last-write-wins: the client computes them.
* Completion is decided here, inside the same statement, and is sticky.
* The heatmap bucket containing the new position gets ``view_count + 1`` and
  the watch time added since the previous event.
* A snapshot identical to the stored row is a client resend and writes nothing.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from redis.asyncio import Redis
from sqlalchemy import Float, and_, case, cast, false, func, literal, not_, or_, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.aggregation.cache import invalidate_video
from app.config import Settings
from app.database import bounded, dialect_insert
from app.exceptions import InvalidInputError, SessionNotFoundError
from app.models import VideoHeatmapSegment, VideoSession, WatchProgress
from shared.events.schemas import VideoCompleteEvent, VideoProgressEvent, VideoViewEvent

logger = logging.getLogger(__name__)


class IngestOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    # Idempotent re-submission: nothing was written.
    DUPLICATE_IGNORED = "duplicate_ignored"


@dataclass
class AggregationPolicy:
    completion_threshold: float = 90.0
    segment_seconds: int = 10
    implicit_session_create: bool = True
    db_timeout: float = 5.0
    cache_timeout: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> AggregationPolicy:
        return cls(
            completion_threshold=settings.analytics_completion_threshold,
            segment_seconds=settings.analytics_segment_seconds,
            implicit_session_create=settings.analytics_implicit_session_create,
            db_timeout=settings.analytics_db_timeout_secs,
            cache_timeout=settings.analytics_cache_timeout_secs,
        )


@dataclass
class IngestResult:
    session: VideoSession
    outcome: IngestOutcome
    checkpoint: WatchProgress | None = None
    heatmap_segment: VideoHeatmapSegment | None = None
    cache_invalidated: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def segment_bounds(position_seconds: int, width: int = 10) -> tuple[int, int]:
    """Return ``(start, end)`` of the heatmap bucket containing a position."""
    if position_seconds < 0:
        raise InvalidInputError("Position must be non-negative")
    start = (position_seconds // width) * width
    return start, start + width


def completion_percentage(furthest_seconds: int, duration_seconds: int | None) -> float:
    if not duration_seconds or duration_seconds <= 0:
        return 0.0
    return min(100.0, furthest_seconds * 100.0 / duration_seconds)


def crosses_threshold(
    furthest_seconds: int, duration_seconds: int | None, threshold: float
) -> bool:
    """``furthest / duration * 100 >= threshold`` without float division."""
    if not duration_seconds or duration_seconds <= 0:
        return False
    return furthest_seconds * 100 >= duration_seconds * threshold


# ---------------------------------------------------------------------------
# Session start
# ---------------------------------------------------------------------------


async def get_session(db: AsyncSession, session_id: str, timeout: float) -> VideoSession | None:
    result = await bounded(
        db.execute(
            select(VideoSession)
            .where(VideoSession.session_id == session_id)
            .execution_options(populate_existing=True)
        ),
        timeout,
    )
    return result.scalar_one_or_none()


async def get_checkpoint(
    db: AsyncSession, user_id: uuid.UUID, video_id: uuid.UUID, timeout: float
) -> WatchProgress | None:
    result = await bounded(
        db.execute(
            select(WatchProgress)
            .where(
                WatchProgress.user_id == user_id,
                WatchProgress.video_id == video_id,
            )
            .execution_options(populate_existing=True)
        ),
        timeout,
    )
    return result.scalar_one_or_none()


async def start_session(
    db: AsyncSession,
    event: VideoViewEvent,
    *,
    user_id: uuid.UUID | None,
    policy: AggregationPolicy,
    client_context: dict[str, str | None] | None = None,
) -> IngestResult:
    """Create the session record, or return the existing one for a repeated token.

    The caller's resume checkpoint (if any) is attached so the player can seek
    to the last known position.
    """
    now = _utcnow()
    stmt = (
        dialect_insert(db, VideoSession)
        .values(
            session_id=event.session_id,
            video_id=event.video_id,
            course_id=event.course_id,
            user_id=user_id,
            lesson_id=event.lesson_id,
            is_preview=event.is_preview,
            video_duration_seconds=event.video_duration_seconds,
            started_at=now,
            last_updated_at=now,
            **(client_context or {}),
        )
        .on_conflict_do_nothing(index_elements=["session_id"])
        .returning(VideoSession)
    )
    rows = await bounded(
        db.scalars(stmt, execution_options={"populate_existing": True}),
        policy.db_timeout,
    )
    session = rows.first()
    outcome = IngestOutcome.CREATED
    if session is None:
        session = await get_session(db, event.session_id, policy.db_timeout)
        if session is None:
            # Conflict on a row we cannot see: only possible if it was removed
            # between the two statements.
            raise SessionNotFoundError(event.session_id)
        outcome = IngestOutcome.DUPLICATE_IGNORED
        logger.info("Duplicate session start ignored: %s", event.session_id)
    else:
        await bounded(db.commit(), policy.db_timeout)

    checkpoint = None
    if user_id is not None:
        checkpoint = await get_checkpoint(db, user_id, session.video_id, policy.db_timeout)
    return IngestResult(session=session, outcome=outcome, checkpoint=checkpoint)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def _progress_assignments(
    event: VideoProgressEvent, now: datetime, threshold: float
) -> dict[str, Any]:
    """SET clause shared by the update and the upsert paths.

    Right-hand sides read the row as it was before the statement, so
    ``completed_at`` is only stamped by the event that first crosses the
    threshold.
    """
    position = event.current_position_seconds
    watch_time = event.watch_time_seconds

    duration = VideoSession.video_duration_seconds
    if event.video_duration_seconds is not None:
        duration = func.coalesce(VideoSession.video_duration_seconds, event.video_duration_seconds)

    furthest = case(
        (VideoSession.max_position_seconds >= position, VideoSession.max_position_seconds),
        else_=literal(position),
    )
    percentage = case(
        (or_(duration.is_(None), duration <= 0), 0.0),
        (furthest >= duration, 100.0),
        else_=cast(furthest, Float) * 100.0 / duration,
    )
    reached = and_(duration > 0, furthest * 100 >= duration * threshold)
    already_completed = VideoSession.completed == true()

    assignments: dict[str, Any] = {
        "current_position_seconds": position,
        "watch_time_seconds": watch_time,
        "max_position_seconds": furthest,
        "completion_percentage": percentage,
        "completed": case((already_completed, True), (reached, True), else_=False),
        "completed_at": case(
            (already_completed, VideoSession.completed_at), (reached, now), else_=None
        ),
        "last_watch_time_delta_seconds": case(
            (
                VideoSession.watch_time_seconds < watch_time,
                literal(watch_time) - VideoSession.watch_time_seconds,
            ),
            else_=0,
        ),
        "play_count": event.play_count,
        "pause_count": event.pause_count,
        "seek_count": event.seek_count,
        "average_playback_speed": event.average_playback_speed,
        "quality_changes": event.quality_changes,
        "last_updated_at": now,
    }
    if event.video_duration_seconds is not None:
        assignments["video_duration_seconds"] = duration
    return assignments


def _implicit_session_values(
    event: VideoProgressEvent,
    user_id: uuid.UUID | None,
    now: datetime,
    threshold: float,
) -> dict[str, Any]:
    position = event.current_position_seconds
    duration = event.video_duration_seconds
    reached = crosses_threshold(position, duration, threshold)
    return {
        "id": uuid.uuid4(),
        "session_id": event.session_id,
        "video_id": event.video_id,
        "course_id": event.course_id,
        "user_id": user_id,
        "lesson_id": event.lesson_id,
        "is_preview": bool(event.is_preview),
        "video_duration_seconds": duration,
        "current_position_seconds": position,
        "max_position_seconds": position,
        "watch_time_seconds": event.watch_time_seconds,
        "last_watch_time_delta_seconds": event.watch_time_seconds,
        "completion_percentage": completion_percentage(position, duration),
        "completed": reached,
        "completed_at": now if reached else None,
        "play_count": event.play_count,
        "pause_count": event.pause_count,
        "seek_count": event.seek_count,
        "average_playback_speed": event.average_playback_speed,
        "quality_changes": event.quality_changes,
        "started_at": now,
        "last_updated_at": now,
    }


def _repeats_stored_snapshot(event: VideoProgressEvent) -> Any | None:
    """Predicate that is true when the stored row already holds exactly this snapshot.

    Watch time only grows while the player is tracking, so a non-zero snapshot
    that matches the row can only be a resend of an event already applied.
    """
    if event.watch_time_seconds <= 0:
        return None
    return and_(
        VideoSession.current_position_seconds == event.current_position_seconds,
        VideoSession.watch_time_seconds == event.watch_time_seconds,
        VideoSession.play_count == event.play_count,
        VideoSession.pause_count == event.pause_count,
        VideoSession.seek_count == event.seek_count,
        VideoSession.quality_changes == event.quality_changes,
        VideoSession.average_playback_speed == event.average_playback_speed,
    )


def _has_session_metadata(event: VideoProgressEvent) -> bool:
    supplied = [
        event.video_id is not None,
        event.course_id is not None,
        event.video_duration_seconds is not None,
    ]
    if any(supplied) and not all(supplied):
        raise InvalidInputError(
            "video_id, course_id and video_duration_seconds must be sent together"
        )
    return all(supplied)


async def _apply_progress(
    db: AsyncSession,
    event: VideoProgressEvent,
    *,
    user_id: uuid.UUID | None,
    policy: AggregationPolicy,
    now: datetime,
) -> tuple[VideoSession, IngestOutcome]:
    assignments = _progress_assignments(event, now, policy.completion_threshold)
    repeated = _repeats_stored_snapshot(event)
    changed = not_(repeated) if repeated is not None else None

    if policy.implicit_session_create and _has_session_metadata(event):
        values = _implicit_session_values(event, user_id, now, policy.completion_threshold)
        stmt = (
            dialect_insert(db, VideoSession)
            .values(**values)
            .on_conflict_do_update(
                index_elements=["session_id"], set_=assignments, where=changed
            )
            .returning(VideoSession)
        )
        rows = await bounded(
            db.scalars(stmt, execution_options={"populate_existing": True}),
            policy.db_timeout,
        )
        session = rows.first()
        if session is not None and session.id == values["id"]:
            logger.info("Session %s created from a progress event", event.session_id)
            return session, IngestOutcome.CREATED
    else:
        stmt = (
            update(VideoSession)
            .where(VideoSession.session_id == event.session_id)
            .values(**assignments)
            .returning(VideoSession)
        )
        if changed is not None:
            stmt = stmt.where(changed)
        rows = await bounded(
            db.scalars(
                stmt,
                execution_options={"synchronize_session": False, "populate_existing": True},
            ),
            policy.db_timeout,
        )
        session = rows.first()

    if session is not None:
        return session, IngestOutcome.UPDATED

    # No row written: either the token is unknown or the snapshot is a resend.
    existing = await get_session(db, event.session_id, policy.db_timeout)
    if existing is None:
        raise SessionNotFoundError(event.session_id)
    logger.info("Repeated progress snapshot ignored: %s", event.session_id)
    return existing, IngestOutcome.DUPLICATE_IGNORED


async def _upsert_heatmap(
    db: AsyncSession,
    video_id: uuid.UUID,
    position_seconds: int,
    watch_time_delta: int,
    *,
    policy: AggregationPolicy,
    now: datetime,
) -> VideoHeatmapSegment:
    start, end = segment_bounds(position_seconds, policy.segment_seconds)
    stmt = dialect_insert(db, VideoHeatmapSegment).values(
        video_id=video_id,
        segment_start=start,
        segment_end=end,
        view_count=1,
        total_watch_time_seconds=watch_time_delta,
        last_aggregated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["video_id", "segment_start", "segment_end"],
        set_={
            "view_count": VideoHeatmapSegment.view_count + 1,
            "total_watch_time_seconds": (
                VideoHeatmapSegment.total_watch_time_seconds
                + stmt.excluded.total_watch_time_seconds
            ),
            "last_aggregated_at": stmt.excluded.last_aggregated_at,
        },
    ).returning(VideoHeatmapSegment)
    rows = await bounded(
        db.scalars(stmt, execution_options={"populate_existing": True}),
        policy.db_timeout,
    )
    return rows.one()


async def _upsert_checkpoint(
    db: AsyncSession,
    session: VideoSession,
    user_id: uuid.UUID,
    position_seconds: int,
    *,
    policy: AggregationPolicy,
    now: datetime,
) -> WatchProgress:
    """Last-write-wins on position; ``completed`` never reverts."""
    stmt = dialect_insert(db, WatchProgress).values(
        user_id=user_id,
        video_id=session.video_id,
        course_id=session.course_id,
        lesson_id=session.lesson_id,
        current_position_seconds=position_seconds,
        video_duration_seconds=session.video_duration_seconds,
        progress_percentage=completion_percentage(
            position_seconds, session.video_duration_seconds
        ),
        completed=session.completed,
        completed_at=session.completed_at if session.completed else None,
        first_watched_at=now,
        last_watched_at=now,
    )
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "video_id"],
        set_={
            "current_position_seconds": excluded.current_position_seconds,
            "video_duration_seconds": func.coalesce(
                excluded.video_duration_seconds, WatchProgress.video_duration_seconds
            ),
            "progress_percentage": excluded.progress_percentage,
            "completed": case(
                (WatchProgress.completed == true(), True), else_=excluded.completed
            ),
            "completed_at": func.coalesce(WatchProgress.completed_at, excluded.completed_at),
            "course_id": excluded.course_id,
            "lesson_id": func.coalesce(excluded.lesson_id, WatchProgress.lesson_id),
            "last_watched_at": excluded.last_watched_at,
        },
    ).returning(WatchProgress)
    rows = await bounded(
        db.scalars(stmt, execution_options={"populate_existing": True}),
        policy.db_timeout,
    )
    return rows.one()


async def record_progress(
    db: AsyncSession,
    event: VideoProgressEvent,
    *,
    user_id: uuid.UUID | None,
    policy: AggregationPolicy,
    redis: Redis | None = None,
) -> IngestResult:
    """Apply one progress snapshot to the session, heatmap and checkpoint.

    Raises :class:`SessionNotFoundError` for an unknown token when implicit
    creation is disabled or the event carries no video metadata.
    """
    now = _utcnow()
    session, outcome = await _apply_progress(
        db, event, user_id=user_id, policy=policy, now=now
    )
    owner = session.user_id or user_id
    if outcome is IngestOutcome.DUPLICATE_IGNORED:
        checkpoint = None
        if owner is not None:
            checkpoint = await get_checkpoint(db, owner, session.video_id, policy.db_timeout)
        return IngestResult(session=session, outcome=outcome, checkpoint=checkpoint)

    segment = await _upsert_heatmap(
        db,
        session.video_id,
        event.current_position_seconds,
        session.last_watch_time_delta_seconds,
        policy=policy,
        now=now,
    )

    checkpoint = None
    if owner is not None:
        checkpoint = await _upsert_checkpoint(
            db, session, owner, event.current_position_seconds, policy=policy, now=now
        )

    await bounded(db.commit(), policy.db_timeout)

    invalidated = await invalidate_video(
        redis,
        video_id=session.video_id,
        course_id=session.course_id,
        user_id=owner,
        timeout=policy.cache_timeout,
    )
    return IngestResult(
        session=session,
        outcome=outcome,
        checkpoint=checkpoint,
        heatmap_segment=segment,
        cache_invalidated=invalidated,
    )


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


async def record_completion(
    db: AsyncSession,
    event: VideoCompleteEvent,
    *,
    user_id: uuid.UUID | None,
    policy: AggregationPolicy,
    redis: Redis | None = None,
) -> IngestResult:
    """Mark the session completed. A second completion is a no-op and keeps
    the original ``completed_at``."""
    now = _utcnow()
    values: dict[str, Any] = {
        "completed": True,
        "completed_at": now,
        "last_updated_at": now,
    }
    if event.watch_time_seconds is not None:
        values["watch_time_seconds"] = event.watch_time_seconds

    stmt = (
        update(VideoSession)
        .where(
            VideoSession.session_id == event.session_id,
            VideoSession.completed == false(),
        )
        .values(**values)
        .returning(VideoSession)
    )
    rows = await bounded(
        db.scalars(
            stmt,
            execution_options={"synchronize_session": False, "populate_existing": True},
        ),
        policy.db_timeout,
    )
    session = rows.first()
    if session is None:
        existing = await get_session(db, event.session_id, policy.db_timeout)
        if existing is None:
            raise SessionNotFoundError(event.session_id)
        logger.info("Duplicate completion ignored: %s", event.session_id)
        return IngestResult(session=existing, outcome=IngestOutcome.DUPLICATE_IGNORED)

    checkpoint = None
    owner = session.user_id or user_id
    if owner is not None:
        checkpoint = await _upsert_checkpoint(
            db, session, owner, session.current_position_seconds, policy=policy, now=now
        )

    await bounded(db.commit(), policy.db_timeout)

    invalidated = await invalidate_video(
        redis,
        video_id=session.video_id,
        course_id=session.course_id,
        user_id=owner,
        timeout=policy.cache_timeout,
    )
    return IngestResult(
        session=session,
        outcome=IngestOutcome.UPDATED,
        checkpoint=checkpoint,
        cache_invalidated=invalidated,
    )
