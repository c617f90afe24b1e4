import os

# Rate limiting is disabled in development; must be set before the app is imported.
os.environ["ENV_NAME"] = "development"

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from fnmatch import fnmatchcase
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401 - register with Base
from app.aggregation.service import AggregationPolicy
from app.config import Settings
from app.database import get_db
from app.dependencies import get_redis, get_settings
from app.main import app
from shared.auth.config import AuthSettings
from shared.database.postgres import Base

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class InMemoryRedis:
    """The subset of redis.asyncio.Redis the analytics service uses."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def scan_iter(self, match: str | None = None):
        for key in list(self.store):
            if match is None or fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        return None


class BrokenRedis:
    """Every call fails as if the cache host were down."""

    async def get(self, key: str) -> str | None:
        raise RedisConnectionError("cache down")

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        raise RedisConnectionError("cache down")

    async def delete(self, *keys: str) -> int:
        raise RedisConnectionError("cache down")

    async def scan_iter(self, match: str | None = None):
        raise RedisConnectionError("cache down")
        yield  # pragma: no cover

    async def aclose(self) -> None:
        return None


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        analytics_implicit_session_create=True,
        analytics_count_anonymous_viewers=True,
        catalog_base_url="",
    )


@pytest.fixture
def policy(settings: Settings) -> AggregationPolicy:
    return AggregationPolicy.from_settings(settings)


@pytest.fixture
def redis_double() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def broken_redis() -> BrokenRedis:
    return BrokenRedis()


@pytest_asyncio.fixture
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    redis_double: InMemoryRedis,
    settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis_double
    app.dependency_overrides[get_settings] = lambda: settings
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    def _headers(user_id: UUID | None = None, roles: tuple[str, ...] = ("user",)) -> dict[str, str]:
        auth = AuthSettings()
        payload = {
            "sub": str(user_id or uuid4()),
            "email": "viewer@example.com",
            "roles": list(roles),
            "iss": auth.issuer,
            "aud": auth.audience,
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        }
        token = jwt.encode(payload, auth.secret, algorithm=auth.algorithm)
        return {"Authorization": f"Bearer {token}"}

    return _headers
