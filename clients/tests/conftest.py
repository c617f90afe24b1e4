import json
from collections.abc import AsyncGenerator, Callable
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from tracker import TrackerContext


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Recorder:
    """httpx.MockTransport handler that records requests and replays scripted statuses."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.failures: dict[str, list[int | Exception]] = {}

    def fail(self, endpoint: str, *outcomes: int | Exception) -> None:
        self.failures.setdefault(endpoint, []).extend(outcomes)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.rsplit("/", 1)[-1]
        scripted = self.failures.get(endpoint)
        if scripted:
            outcome = scripted.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return httpx.Response(outcome, json={"error": {"code": "dependency_unavailable"}})
        status = 201 if endpoint == "video-view" else 200
        return httpx.Response(status, json={"outcome": "created"})

    def paths(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/" + endpoint)]

    def payloads(self, endpoint: str) -> list[dict]:
        return [json.loads(r.content) for r in self.paths(endpoint)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest_asyncio.fixture
async def http_client(recorder: Recorder) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        yield client


@pytest.fixture
def make_context() -> Callable[..., TrackerContext]:
    def _make(**overrides) -> TrackerContext:
        values = {
            "video_id": uuid4(),
            "course_id": uuid4(),
            "duration_seconds": 100,
            "base_url": "http://analytics.test",
        }
        values.update(overrides)
        return TrackerContext(**values)

    return _make
