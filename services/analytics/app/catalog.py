"""
Catalog service lookups for video metadata.

The catalog owns each video's real duration and preview flag. Session starts
are checked against it when CATALOG_BASE_URL is set; client-supplied values
are the fallback whenever the catalog cannot answer.

Endpoint: GET {CATALOG_BASE_URL}/internal/videos/{video_id}
          -> {"duration_secs": int | null, "is_preview": bool}
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

import httpx

from app.exceptions import CatalogUnavailableError
from shared.events.schemas import VideoViewEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VideoMetadata:
    duration_seconds: int | None
    is_preview: bool | None


def _catalog_url(base_url: str, video_id: UUID) -> str:
    return f"{base_url.rstrip('/')}/internal/videos/{video_id}"


async def fetch_video_metadata(
    video_id: UUID,
    *,
    base_url: str,
    timeout: float,
    client: httpx.AsyncClient | None = None,
) -> VideoMetadata:
    """Raises CatalogUnavailableError on transport errors, non-2xx or bad JSON."""
    url = _catalog_url(base_url, video_id)
    try:
        if client is not None:
            response = await client.get(url, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await own_client.get(url)
    except httpx.RequestError as exc:
        raise CatalogUnavailableError(f"Catalog request failed: {exc}") from exc

    if response.status_code >= 400:
        raise CatalogUnavailableError(f"Catalog returned {response.status_code}")
    try:
        data = response.json()
    except ValueError as exc:
        raise CatalogUnavailableError("Catalog returned invalid JSON") from exc
    if not isinstance(data, dict):
        raise CatalogUnavailableError("Catalog returned an unexpected payload")

    duration = data.get("duration_secs")
    preview = data.get("is_preview")
    return VideoMetadata(
        duration_seconds=int(duration) if isinstance(duration, (int, float)) and duration > 0 else None,
        is_preview=preview if isinstance(preview, bool) else None,
    )


async def reconcile_view_event(
    event: VideoViewEvent,
    *,
    base_url: str,
    timeout: float,
    client: httpx.AsyncClient | None = None,
) -> VideoViewEvent:
    """Return ``event`` with duration and preview flag taken from the catalog.

    Never raises: catalog failures are logged and the client's values kept.
    """
    if not base_url:
        return event
    try:
        metadata = await fetch_video_metadata(
            event.video_id, base_url=base_url, timeout=timeout, client=client
        )
    except CatalogUnavailableError as exc:
        logger.warning("Catalog lookup for video %s failed: %s", event.video_id, exc)
        return event

    updates: dict[str, object] = {}
    if (
        metadata.duration_seconds is not None
        and metadata.duration_seconds != event.video_duration_seconds
    ):
        logger.info(
            "Video %s: client duration %ss replaced by catalog duration %ss",
            event.video_id,
            event.video_duration_seconds,
            metadata.duration_seconds,
        )
        updates["video_duration_seconds"] = metadata.duration_seconds
    if metadata.is_preview is not None and metadata.is_preview != event.is_preview:
        updates["is_preview"] = metadata.is_preview
    return event.model_copy(update=updates) if updates else event
