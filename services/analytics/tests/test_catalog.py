from uuid import uuid4

import httpx
import pytest

from app.catalog import fetch_video_metadata, reconcile_view_event
from app.exceptions import CatalogUnavailableError
from shared.events.schemas import VideoViewEvent

CATALOG_URL = "http://catalog.test"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _event(**overrides) -> VideoViewEvent:
    values = {
        "session_id": "sess-catalog-1",
        "video_id": uuid4(),
        "course_id": uuid4(),
        "video_duration_seconds": 500,
    }
    values.update(overrides)
    return VideoViewEvent(**values)


@pytest.mark.asyncio
async def test_fetch_video_metadata() -> None:
    video_id = uuid4()
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"duration_secs": 612, "is_preview": True})

    async with _client(handler) as client:
        metadata = await fetch_video_metadata(
            video_id, base_url=CATALOG_URL + "/", timeout=1.0, client=client
        )

    assert seen == [f"/internal/videos/{video_id}"]
    assert metadata.duration_seconds == 612
    assert metadata.is_preview is True


@pytest.mark.asyncio
async def test_fetch_ignores_unusable_fields() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"duration_secs": None, "is_preview": "yes"})

    async with _client(handler) as client:
        metadata = await fetch_video_metadata(uuid4(), base_url=CATALOG_URL, timeout=1.0, client=client)

    assert metadata.duration_seconds is None
    assert metadata.is_preview is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"detail": "boom"}),
        httpx.Response(200, content=b"<html>"),
        httpx.Response(200, json=["not", "a", "dict"]),
    ],
)
async def test_fetch_raises_on_bad_responses(response: httpx.Response) -> None:
    async with _client(lambda request: response) as client:
        with pytest.raises(CatalogUnavailableError):
            await fetch_video_metadata(uuid4(), base_url=CATALOG_URL, timeout=1.0, client=client)


@pytest.mark.asyncio
async def test_fetch_raises_on_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    async with _client(handler) as client:
        with pytest.raises(CatalogUnavailableError):
            await fetch_video_metadata(uuid4(), base_url=CATALOG_URL, timeout=1.0, client=client)


@pytest.mark.asyncio
async def test_reconcile_prefers_catalog_values() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"duration_secs": 640, "is_preview": True})

    event = _event()
    async with _client(handler) as client:
        reconciled = await reconcile_view_event(event, base_url=CATALOG_URL, timeout=1.0, client=client)

    assert reconciled.video_duration_seconds == 640
    assert reconciled.is_preview is True
    assert reconciled.session_id == event.session_id


@pytest.mark.asyncio
async def test_reconcile_keeps_client_values_when_catalog_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    event = _event()
    async with _client(handler) as client:
        reconciled = await reconcile_view_event(event, base_url=CATALOG_URL, timeout=1.0, client=client)

    assert reconciled is event


@pytest.mark.asyncio
async def test_reconcile_disabled_without_base_url() -> None:
    event = _event()
    assert await reconcile_view_event(event, base_url="", timeout=1.0) is event
