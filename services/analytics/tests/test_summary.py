from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

import app.database as app_database
import app.summary.refresh as refresh_module
import shared.database.redis_client as redis_client_module
from app import worker
from app.aggregation.service import AggregationPolicy, record_completion, record_progress, start_session
from app.config import Settings
from app.database import bounded
from app.exceptions import SummaryNotFoundError
from app.models import VideoAnalyticsSummary
from app.summary import service
from app.summary.cache import DASHBOARD_KEY, popular_key, summary_key
from app.summary.refresh import refresh_summary
from shared.events.schemas import VideoCompleteEvent, VideoProgressEvent, VideoViewEvent

ADMIN_BASE = "/api/v1/admin/analytics"


async def _watch(
    db: AsyncSession,
    policy: AggregationPolicy,
    token: str,
    video_id,
    course_id,
    *,
    user_id=None,
    position: int = 0,
    complete: bool = False,
    is_preview: bool = False,
    duration: int = 100,
) -> None:
    await start_session(
        db,
        VideoViewEvent(
            session_id=token,
            video_id=video_id,
            course_id=course_id,
            video_duration_seconds=duration,
            is_preview=is_preview,
        ),
        user_id=user_id,
        policy=policy,
    )
    if position:
        await record_progress(
            db,
            VideoProgressEvent(
                session_id=token, current_position_seconds=position, watch_time_seconds=position
            ),
            user_id=user_id,
            policy=policy,
        )
    if complete:
        await record_completion(
            db, VideoCompleteEvent(session_id=token), user_id=user_id, policy=policy
        )


def _summary_row(completion_rate: float, *, total_views: int = 10, is_preview: bool = False, **kw):
    values = {
        "video_id": uuid4(),
        "course_id": uuid4(),
        "is_preview": is_preview,
        "total_views": total_views,
        "unique_viewers": total_views,
        "completion_rate": completion_rate,
        "total_watch_time_seconds": 100,
        "refreshed_at": datetime.now(timezone.utc),
    }
    values.update(kw)
    return VideoAnalyticsSummary(**values)


# ── Refresh ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_refresh_builds_summary(
    db_session: AsyncSession, policy: AggregationPolicy, settings: Settings, redis_double
) -> None:
    video_id, course_id, viewer = uuid4(), uuid4(), uuid4()
    await _watch(db_session, policy, "sess-sum-001", video_id, course_id, user_id=viewer, position=95)
    await _watch(db_session, policy, "sess-sum-002", video_id, course_id, user_id=viewer, position=20)
    await _watch(db_session, policy, "sess-sum-003", video_id, course_id, position=50, complete=True)
    await redis_double.setex(DASHBOARD_KEY, 300, "{}")

    result = await refresh_summary(db_session, settings=settings, redis=redis_double)

    assert result.videos == 1
    assert result.cache_cleared is True
    assert redis_double.store == {}

    summary = await service.get_video_summary(db_session, video_id, settings=settings)
    assert summary.total_views == 3
    assert summary.completed_count == 2
    assert summary.completion_rate == pytest.approx(66.67)
    assert summary.drop_off_rate == pytest.approx(33.33)
    # One signed-in viewer plus one anonymous session.
    assert summary.unique_viewers == 2
    assert summary.unique_completers == 2
    assert summary.total_watch_time_seconds == 165
    assert summary.max_watch_time_seconds == 95
    assert summary.play_rate == pytest.approx(100.0)
    assert summary.as_of is not None


@pytest.mark.asyncio
async def test_refresh_can_ignore_anonymous_viewers(
    db_session: AsyncSession, policy: AggregationPolicy
) -> None:
    settings = Settings(analytics_count_anonymous_viewers=False)
    video_id, course_id = uuid4(), uuid4()
    await _watch(db_session, policy, "sess-anon-001", video_id, course_id, user_id=uuid4(), position=10)
    await _watch(db_session, policy, "sess-anon-002", video_id, course_id, position=10)

    await refresh_summary(db_session, settings=settings)

    summary = await service.get_video_summary(db_session, video_id, settings=settings)
    assert summary.total_views == 2
    assert summary.unique_viewers == 1


@pytest.mark.asyncio
async def test_refresh_replaces_previous_projection(
    db_session: AsyncSession, policy: AggregationPolicy, settings: Settings
) -> None:
    video_id, course_id = uuid4(), uuid4()
    await _watch(db_session, policy, "sess-again-01", video_id, course_id, position=10)
    await refresh_summary(db_session, settings=settings)
    await _watch(db_session, policy, "sess-again-02", video_id, course_id, position=10)

    result = await refresh_summary(db_session, settings=settings)

    assert result.videos == 1
    summary = await service.get_video_summary(db_session, video_id, settings=settings)
    assert summary.total_views == 2


@pytest.mark.asyncio
async def test_refresh_uses_its_own_timeout(
    db_session: AsyncSession, policy: AggregationPolicy, monkeypatch
) -> None:
    settings = Settings(analytics_db_timeout_secs=0.01, analytics_refresh_timeout_secs=30.0)
    await _watch(db_session, policy, "sess-slow-001", uuid4(), uuid4(), position=10)

    timeouts: list[float] = []

    async def recording_bounded(operation, timeout: float):
        timeouts.append(timeout)
        return await bounded(operation, timeout)

    monkeypatch.setattr(refresh_module, "bounded", recording_bounded)
    result = await refresh_summary(db_session, settings=settings)

    assert result.videos == 1
    assert timeouts
    assert set(timeouts) == {30.0}


@pytest.mark.asyncio
async def test_worker_pool_allows_long_refresh(monkeypatch) -> None:
    monkeypatch.setenv("ANALYTICS_DB_TIMEOUT_SECS", "5")
    monkeypatch.setenv("ANALYTICS_REFRESH_TIMEOUT_SECS", "120")
    calls: list[dict] = []

    def fake_init_db(database_url: str, *, command_timeout: float | None = None) -> None:
        calls.append({"url": database_url, "command_timeout": command_timeout})

    monkeypatch.setattr(app_database, "init_db", fake_init_db)
    monkeypatch.setattr(redis_client_module, "get_redis_client", lambda *a, **kw: None)

    ctx: dict = {}
    await worker.startup(ctx)

    assert calls[0]["command_timeout"] == 120.0
    assert ctx["settings"].analytics_refresh_timeout_secs == 120.0


# ── Cache-aside reads ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_video_summary_is_cached(
    db_session: AsyncSession, settings: Settings, redis_double
) -> None:
    row = _summary_row(80.0)
    db_session.add(row)
    await db_session.commit()

    first = await service.get_video_summary(db_session, row.video_id, settings=settings, redis=redis_double)
    assert first.cache_hit is False
    key = summary_key(row.video_id)
    assert key in redis_double.store
    assert redis_double.ttls[key] == settings.analytics_summary_ttl_secs

    second = await service.get_video_summary(db_session, row.video_id, settings=settings, redis=redis_double)
    assert second.cache_hit is True
    assert second.model_dump(exclude={"cache_hit"}) == first.model_dump(exclude={"cache_hit"})


@pytest.mark.asyncio
async def test_cache_failure_falls_through_to_store(
    db_session: AsyncSession, settings: Settings, broken_redis
) -> None:
    row = _summary_row(40.0)
    db_session.add(row)
    await db_session.commit()

    summary = await service.get_video_summary(
        db_session, row.video_id, settings=settings, redis=broken_redis
    )
    stats = await service.get_dashboard_stats(db_session, settings=settings, redis=broken_redis)

    assert summary.cache_hit is False
    assert summary.completion_rate == 40.0
    assert stats.total_videos == 1


@pytest.mark.asyncio
async def test_unreadable_cache_entry_is_ignored(
    db_session: AsyncSession, settings: Settings, redis_double
) -> None:
    row = _summary_row(55.0)
    db_session.add(row)
    await db_session.commit()
    await redis_double.setex(summary_key(row.video_id), 300, "not json")

    summary = await service.get_video_summary(db_session, row.video_id, settings=settings, redis=redis_double)

    assert summary.cache_hit is False
    assert summary.completion_rate == 55.0


@pytest.mark.asyncio
async def test_missing_summary_raises(db_session: AsyncSession, settings: Settings) -> None:
    with pytest.raises(SummaryNotFoundError):
        await service.get_video_summary(db_session, uuid4(), settings=settings)


@pytest.mark.asyncio
async def test_popular_excludes_previews_and_orders_by_views(
    db_session: AsyncSession, settings: Settings, redis_double
) -> None:
    low = _summary_row(50.0, total_views=5)
    tie_fewer_viewers = _summary_row(50.0, total_views=20, unique_viewers=3)
    tie_more_viewers = _summary_row(50.0, total_views=20, unique_viewers=9)
    preview = _summary_row(50.0, total_views=500, is_preview=True)
    db_session.add_all([low, tie_fewer_viewers, tie_more_viewers, preview])
    await db_session.commit()

    popular = await service.get_popular_videos(db_session, 10, settings=settings, redis=redis_double)

    assert [item.video_id for item in popular.items] == [
        tie_more_viewers.video_id,
        tie_fewer_viewers.video_id,
        low.video_id,
    ]
    assert popular_key(10) in redis_double.store
    assert redis_double.ttls[popular_key(10)] == settings.analytics_popular_ttl_secs


@pytest.mark.asyncio
async def test_dashboard_completion_tiers(db_session: AsyncSession, settings: Settings) -> None:
    db_session.add_all(
        [
            _summary_row(80.0),
            _summary_row(75.0),
            _summary_row(50.0),
            _summary_row(49.0),
        ]
    )
    await db_session.commit()

    stats = await service.get_dashboard_stats(db_session, settings=settings)

    assert stats.total_videos == 4
    assert stats.total_views == 40
    assert stats.completion_tiers.high == 1
    assert stats.completion_tiers.medium == 2
    assert stats.completion_tiers.low == 1
    assert stats.avg_completion_rate == pytest.approx(63.5)


@pytest.mark.asyncio
async def test_dashboard_with_no_data(db_session: AsyncSession, settings: Settings) -> None:
    stats = await service.get_dashboard_stats(db_session, settings=settings)
    assert stats.total_videos == 0
    assert stats.total_views == 0
    assert stats.as_of is None


@pytest.mark.asyncio
async def test_course_analytics_overview(db_session: AsyncSession, settings: Settings) -> None:
    course_id = uuid4()
    popular = _summary_row(90.0, total_views=30, course_id=course_id)
    weak = _summary_row(20.0, total_views=10, course_id=course_id)
    db_session.add_all([popular, weak, _summary_row(50.0)])
    await db_session.commit()

    analytics = await service.get_course_analytics(db_session, course_id, settings=settings)

    assert [v.video_id for v in analytics.videos] == [popular.video_id, weak.video_id]
    assert analytics.overview.total_videos == 2
    assert analytics.overview.total_views == 40
    assert analytics.overview.avg_completion_rate == 55.0
    assert analytics.overview.most_viewed_video_id == popular.video_id
    assert analytics.overview.least_completed_video_id == weak.video_id


@pytest.mark.asyncio
async def test_heatmap_and_sessions(
    db_session: AsyncSession, policy: AggregationPolicy, settings: Settings
) -> None:
    video_id, course_id = uuid4(), uuid4()
    await _watch(db_session, policy, "sess-heat-101", video_id, course_id, position=35)
    await _watch(db_session, policy, "sess-heat-102", video_id, course_id, position=5)

    heatmap = await service.get_heatmap(db_session, video_id, settings=settings)
    assert [s.segment_start for s in heatmap.segments] == [0, 30]

    now = datetime.now(timezone.utc)
    sessions = await service.get_sessions_by_date_range(
        db_session, video_id, now - timedelta(hours=1), now + timedelta(hours=1), settings=settings
    )
    assert sessions.total == 2
    assert {s.session_id for s in sessions.items} == {"sess-heat-101", "sess-heat-102"}

    empty = await service.get_sessions_by_date_range(
        db_session, video_id, now + timedelta(hours=1), now + timedelta(hours=2), settings=settings
    )
    assert empty.total == 0


# ── Admin API ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_admin_routes_require_dashboard_role(async_client: AsyncClient, auth_headers) -> None:
    anonymous = await async_client.get(f"{ADMIN_BASE}/dashboard")
    assert anonymous.status_code == 401

    viewer = await async_client.get(f"{ADMIN_BASE}/dashboard", headers=auth_headers(roles=("user",)))
    assert viewer.status_code == 403

    analyst = await async_client.get(f"{ADMIN_BASE}/dashboard", headers=auth_headers(roles=("analyst",)))
    assert analyst.status_code == 200


@pytest.mark.asyncio
async def test_admin_refresh_then_read(async_client: AsyncClient, auth_headers, redis_double) -> None:
    admin = auth_headers(roles=("admin",))
    video_id, course_id = str(uuid4()), str(uuid4())
    await async_client.post(
        "/api/v1/analytics/video-view",
        json={
            "session_id": "sess-admin-01",
            "video_id": video_id,
            "course_id": course_id,
            "video_duration_seconds": 100,
        },
    )

    missing = await async_client.get(f"{ADMIN_BASE}/videos/{video_id}", headers=admin)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "summary_not_found"

    refreshed = await async_client.post(f"{ADMIN_BASE}/refresh", headers=admin)
    assert refreshed.status_code == 200
    assert refreshed.json()["videos"] == 1

    first = await async_client.get(f"{ADMIN_BASE}/videos/{video_id}", headers=admin)
    assert first.status_code == 200
    assert first.json()["total_views"] == 1
    assert first.json()["cache_hit"] is False

    second = await async_client.get(f"{ADMIN_BASE}/videos/{video_id}", headers=admin)
    assert second.json()["cache_hit"] is True

    popular = await async_client.get(f"{ADMIN_BASE}/videos/popular", headers=admin)
    assert popular.status_code == 200
    assert [item["video_id"] for item in popular.json()["items"]] == [video_id]

    course = await async_client.get(f"{ADMIN_BASE}/courses/{course_id}", headers=admin)
    assert course.status_code == 200
    assert course.json()["overview"]["total_videos"] == 1

    heatmap = await async_client.get(f"{ADMIN_BASE}/videos/{video_id}/heatmap", headers=admin)
    assert heatmap.status_code == 200
    assert heatmap.json()["segments"] == []


@pytest.mark.asyncio
async def test_admin_query_validation(async_client: AsyncClient, auth_headers) -> None:
    admin = auth_headers(roles=("admin",))

    bad_limit = await async_client.get(f"{ADMIN_BASE}/videos/popular?limit=0", headers=admin)
    assert bad_limit.status_code == 400

    bad_range = await async_client.get(
        f"{ADMIN_BASE}/videos/{uuid4()}/sessions",
        params={"start": "2026-01-02T00:00:00Z", "end": "2026-01-01T00:00:00Z"},
        headers=admin,
    )
    assert bad_range.status_code == 400
    assert bad_range.json()["error"]["code"] == "invalid_input"
