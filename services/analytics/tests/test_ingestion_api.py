from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.aggregation import service as aggregation_service
from app.exceptions import DependencyUnavailableError
from app.models import VideoSession

VIEW_URL = "/api/v1/analytics/video-view"
PROGRESS_URL = "/api/v1/analytics/video-progress"
COMPLETE_URL = "/api/v1/analytics/video-complete"

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


def _view_body(session_id: str, video_id=None, course_id=None, duration: int = 600) -> dict:
    return {
        "session_id": session_id,
        "video_id": str(video_id or uuid4()),
        "course_id": str(course_id or uuid4()),
        "video_duration_seconds": duration,
    }


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "analytics"}


@pytest.mark.asyncio
async def test_view_creates_then_ignores_duplicate(async_client: AsyncClient) -> None:
    body = _view_body("1700000000000-abcdefghi")

    created = await async_client.post(VIEW_URL, json=body)
    assert created.status_code == 201
    data = created.json()
    assert data["outcome"] == "created"
    assert data["session"]["session_id"] == body["session_id"]
    assert data["session"]["completed"] is False
    assert data["resume"] is None

    repeated = await async_client.post(VIEW_URL, json=body)
    assert repeated.status_code == 200
    assert repeated.json()["outcome"] == "duplicate_ignored"


@pytest.mark.asyncio
async def test_view_captures_request_context(async_client: AsyncClient, session_factory) -> None:
    body = _view_body("sess-context-1")
    response = await async_client.post(
        VIEW_URL,
        json=body,
        headers={
            "User-Agent": IPHONE_UA,
            "X-Forwarded-For": "203.0.113.9, 10.0.0.2",
            "Referer": "https://learn.example.com/course/1",
        },
    )
    assert response.status_code == 201

    async with session_factory() as db:
        session = await db.scalar(
            select(VideoSession).where(VideoSession.session_id == "sess-context-1")
        )
    assert session.device_type == "mobile"
    assert session.os == "iOS"
    assert session.browser == "Safari"
    assert session.ip_address == "203.0.113.9"
    assert session.referrer == "https://learn.example.com/course/1"


@pytest.mark.asyncio
async def test_missing_fields_are_invalid_input(async_client: AsyncClient) -> None:
    response = await async_client.post(VIEW_URL, json={"session_id": "sess-bad-001"})

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "invalid_input"
    fields = {d["field"] for d in error["details"]}
    assert {"video_id", "course_id", "video_duration_seconds"} <= fields


@pytest.mark.asyncio
async def test_negative_position_is_invalid_input(async_client: AsyncClient) -> None:
    response = await async_client.post(
        PROGRESS_URL,
        json={"session_id": "sess-neg-0001", "current_position_seconds": -5, "watch_time_seconds": 1},
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_input"


@pytest.mark.asyncio
async def test_progress_for_unknown_session_is_404(async_client: AsyncClient) -> None:
    response = await async_client.post(
        PROGRESS_URL,
        json={"session_id": "sess-missing-1", "current_position_seconds": 5, "watch_time_seconds": 5},
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "session_not_found"


@pytest.mark.asyncio
async def test_partial_metadata_is_400(async_client: AsyncClient) -> None:
    response = await async_client.post(
        PROGRESS_URL,
        json={
            "session_id": "sess-partial-1",
            "current_position_seconds": 5,
            "watch_time_seconds": 5,
            "video_id": str(uuid4()),
        },
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_input"


@pytest.mark.asyncio
async def test_progress_then_complete(async_client: AsyncClient) -> None:
    body = _view_body("sess-flow-001", duration=600)
    await async_client.post(VIEW_URL, json=body)

    progress = await async_client.post(
        PROGRESS_URL,
        json={
            "session_id": "sess-flow-001",
            "current_position_seconds": 300,
            "watch_time_seconds": 290,
            "play_count": 1,
            "pause_count": 1,
        },
    )
    assert progress.status_code == 200
    session = progress.json()["session"]
    assert progress.json()["outcome"] == "updated"
    assert session["max_position_seconds"] == 300
    assert session["completion_percentage"] == pytest.approx(50.0)

    done = await async_client.post(
        COMPLETE_URL, json={"session_id": "sess-flow-001", "watch_time_seconds": 310}
    )
    assert done.status_code == 200
    assert done.json()["session"]["completed"] is True
    assert done.json()["session"]["completed_at"] is not None

    again = await async_client.post(COMPLETE_URL, json={"session_id": "sess-flow-001"})
    assert again.status_code == 200
    assert again.json()["outcome"] == "duplicate_ignored"
    assert again.json()["session"]["completed_at"] == done.json()["session"]["completed_at"]


@pytest.mark.asyncio
async def test_complete_unknown_session_is_404(async_client: AsyncClient) -> None:
    response = await async_client.post(COMPLETE_URL, json={"session_id": "sess-ghost-01"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_signed_in_viewer_gets_resume_position(async_client: AsyncClient, auth_headers) -> None:
    headers = auth_headers()
    video_id, course_id = uuid4(), uuid4()

    await async_client.post(
        VIEW_URL, json=_view_body("sess-resume-01", video_id, course_id), headers=headers
    )
    await async_client.post(
        PROGRESS_URL,
        json={"session_id": "sess-resume-01", "current_position_seconds": 120, "watch_time_seconds": 118},
        headers=headers,
    )

    second = await async_client.post(
        VIEW_URL, json=_view_body("sess-resume-02", video_id, course_id), headers=headers
    )
    assert second.status_code == 201
    assert second.json()["resume"]["current_position_seconds"] == 120

    resume = await async_client.get(f"/api/v1/analytics/resume/{video_id}", headers=headers)
    assert resume.status_code == 200
    assert resume.json()["current_position_seconds"] == 120
    assert resume.json()["course_id"] == str(course_id)


@pytest.mark.asyncio
async def test_resume_requires_sign_in(async_client: AsyncClient, auth_headers) -> None:
    anonymous = await async_client.get(f"/api/v1/analytics/resume/{uuid4()}")
    assert anonymous.status_code == 401

    missing = await async_client.get(f"/api/v1/analytics/resume/{uuid4()}", headers=auth_headers())
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "checkpoint_not_found"


@pytest.mark.asyncio
async def test_course_progress_lists_checkpoints(async_client: AsyncClient, auth_headers) -> None:
    headers = auth_headers()
    course_id = uuid4()
    for index, position in enumerate((100, 580)):
        token = f"sess-course-{index:02d}"
        await async_client.post(
            VIEW_URL, json=_view_body(token, course_id=course_id, duration=600), headers=headers
        )
        await async_client.post(
            PROGRESS_URL,
            json={"session_id": token, "current_position_seconds": position, "watch_time_seconds": position},
            headers=headers,
        )

    response = await async_client.get(
        f"/api/v1/analytics/courses/{course_id}/progress", headers=headers
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data["items"]) == 2
    assert data["completed_videos"] == 1


@pytest.mark.asyncio
async def test_store_outage_is_503(async_client: AsyncClient, monkeypatch) -> None:
    async def unavailable(*args, **kwargs):
        raise DependencyUnavailableError("database", "timeout")

    monkeypatch.setattr(aggregation_service, "start_session", unavailable)

    response = await async_client.post(VIEW_URL, json=_view_body("sess-outage-1"))

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "5"
    assert response.json()["error"]["code"] == "dependency_unavailable"
