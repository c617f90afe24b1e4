"""Ingestion controller: orchestration layer between router and aggregation service."""

from uuid import UUID

import httpx
from fastapi import HTTPException, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.aggregation import service
from app.aggregation.service import AggregationPolicy, IngestResult
from app.catalog import reconcile_view_event
from app.config import Settings
from app.exceptions import (
    CheckpointNotFoundError,
    DependencyUnavailableError,
    InvalidInputError,
    SessionNotFoundError,
)
from app.ingestion.schemas import IngestResponse, ResumeCheckpointResponse, SessionRecordResponse
from app.summary import service as summary_service
from shared.events.schemas import VideoCompleteEvent, VideoProgressEvent, VideoViewEvent

# Seconds a tracker should wait before resending after a 503.
_RETRY_AFTER_S = "5"


def _to_http(
    exc: InvalidInputError | SessionNotFoundError | DependencyUnavailableError,
) -> HTTPException:
    if isinstance(exc, InvalidInputError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_input", "message": exc.detail},
        )
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": "session_not_found",
                "message": "Unknown session. Send a new video-view event to start one.",
            },
        )
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "code": "dependency_unavailable",
            "message": "Analytics storage is temporarily unavailable.",
        },
        headers={"Retry-After": _RETRY_AFTER_S},
    )


def _to_response(result: IngestResult) -> IngestResponse:
    return IngestResponse(
        outcome=result.outcome,
        session=SessionRecordResponse.model_validate(result.session),
        resume=(
            ResumeCheckpointResponse.model_validate(result.checkpoint)
            if result.checkpoint is not None
            else None
        ),
    )


async def track_view(
    db: AsyncSession,
    event: VideoViewEvent,
    *,
    user_id: UUID | None,
    policy: AggregationPolicy,
    settings: Settings,
    client_context: dict[str, str | None],
    catalog_client: httpx.AsyncClient | None = None,
) -> IngestResponse:
    event = await reconcile_view_event(
        event,
        base_url=settings.catalog_base_url,
        timeout=settings.catalog_timeout_secs,
        client=catalog_client,
    )
    try:
        result = await service.start_session(
            db, event, user_id=user_id, policy=policy, client_context=client_context
        )
    except (InvalidInputError, SessionNotFoundError, DependencyUnavailableError) as exc:
        raise _to_http(exc) from exc
    return _to_response(result)


async def track_progress(
    db: AsyncSession,
    event: VideoProgressEvent,
    *,
    user_id: UUID | None,
    policy: AggregationPolicy,
    redis: Redis | None,
) -> IngestResponse:
    try:
        result = await service.record_progress(
            db, event, user_id=user_id, policy=policy, redis=redis
        )
    except (InvalidInputError, SessionNotFoundError, DependencyUnavailableError) as exc:
        raise _to_http(exc) from exc
    return _to_response(result)


async def track_completion(
    db: AsyncSession,
    event: VideoCompleteEvent,
    *,
    user_id: UUID | None,
    policy: AggregationPolicy,
    redis: Redis | None,
) -> IngestResponse:
    try:
        result = await service.record_completion(
            db, event, user_id=user_id, policy=policy, redis=redis
        )
    except (InvalidInputError, SessionNotFoundError, DependencyUnavailableError) as exc:
        raise _to_http(exc) from exc
    return _to_response(result)


async def get_resume_checkpoint(
    db: AsyncSession,
    user_id: UUID,
    video_id: UUID,
    *,
    settings: Settings,
    redis: Redis | None,
) -> ResumeCheckpointResponse:
    try:
        return await summary_service.get_resume_checkpoint(
            db, user_id, video_id, settings=settings, redis=redis
        )
    except CheckpointNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "checkpoint_not_found", "message": str(exc)},
        ) from exc
    except DependencyUnavailableError as exc:
        raise _to_http(exc) from exc
