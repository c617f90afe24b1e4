from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, Request, Response, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.aggregation.service import AggregationPolicy, IngestOutcome
from app.config import Settings
from app.database import get_db
from app.dependencies import (
    get_catalog_client,
    get_current_user_optional,
    get_current_user_required,
    get_policy,
    get_redis,
    get_settings,
)
from app.ingestion import controller
from app.ingestion.request_context import session_context
from app.ingestion.schemas import IngestResponse, ResumeCheckpointResponse
from app.rate_limit import COMPLETE_LIMIT, PROGRESS_LIMIT, VIEW_LIMIT, limiter
from shared.events.schemas import VideoCompleteEvent, VideoProgressEvent, VideoViewEvent
from shared.models.user import CurrentUser

router = APIRouter(prefix="/analytics", tags=["Ingestion"])


def _user_id(user: CurrentUser | None) -> UUID | None:
    return user.id if user is not None else None


@router.post(
    "/video-view",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a watch session",
    description=(
        "Idempotent by session_id: repeating a start returns the existing record "
        "with status 200 and outcome duplicate_ignored. Signed-in viewers also get "
        "their resume checkpoint."
    ),
)
@limiter.limit(VIEW_LIMIT)
async def track_video_view(
    request: Request,
    response: Response,
    body: VideoViewEvent,
    user: CurrentUser | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    policy: AggregationPolicy = Depends(get_policy),
    settings: Settings = Depends(get_settings),
    catalog_client: httpx.AsyncClient | None = Depends(get_catalog_client),
) -> IngestResponse:
    result = await controller.track_view(
        db,
        body,
        user_id=_user_id(user),
        policy=policy,
        settings=settings,
        client_context=session_context(request),
        catalog_client=catalog_client,
    )
    if result.outcome == IngestOutcome.DUPLICATE_IGNORED:
        response.status_code = status.HTTP_200_OK
    return result


@router.post(
    "/video-progress",
    response_model=IngestResponse,
    summary="Report playback progress",
    description=(
        "Cumulative snapshot sent every ~15s while playing. Unknown sessions are "
        "recreated when video_id, course_id and video_duration_seconds are included."
    ),
)
@limiter.limit(PROGRESS_LIMIT)
async def track_video_progress(
    request: Request,
    body: VideoProgressEvent,
    user: CurrentUser | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    policy: AggregationPolicy = Depends(get_policy),
    redis: Redis | None = Depends(get_redis),
) -> IngestResponse:
    return await controller.track_progress(
        db, body, user_id=_user_id(user), policy=policy, redis=redis
    )


@router.post(
    "/video-complete",
    response_model=IngestResponse,
    summary="Mark a session completed",
    description="Setting completion twice is harmless; completed_at keeps its first value.",
)
@limiter.limit(COMPLETE_LIMIT)
async def track_video_complete(
    request: Request,
    body: VideoCompleteEvent,
    user: CurrentUser | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    policy: AggregationPolicy = Depends(get_policy),
    redis: Redis | None = Depends(get_redis),
) -> IngestResponse:
    return await controller.track_completion(
        db, body, user_id=_user_id(user), policy=policy, redis=redis
    )


@router.get(
    "/resume/{video_id}",
    response_model=ResumeCheckpointResponse,
    summary="Resume position for the signed-in viewer",
)
async def get_resume_position(
    video_id: UUID,
    user: CurrentUser = Depends(get_current_user_required),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis | None = Depends(get_redis),
) -> ResumeCheckpointResponse:
    return await controller.get_resume_checkpoint(
        db, user.id, video_id, settings=settings, redis=redis
    )
