import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable
from typing import Any, TypeVar

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.database.postgres import get_async_session_factory

# Import all models so SQLAlchemy's Base.metadata is populated.
# Required for Alembic autogenerate and create_all().
import app.models  # noqa: F401
from app.exceptions import DependencyUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(database_url: str, *, command_timeout: float | None = None) -> None:
    global _session_factory
    # Every active viewer flushes roughly every 15s.
    _session_factory = get_async_session_factory(
        database_url,
        expire_on_commit=False,
        command_timeout=command_timeout,
        **({} if database_url.startswith("sqlite") else {"pool_size": 10, "max_overflow": 20}),
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def bounded(operation: Awaitable[T], timeout: float) -> T:
    """Await one database round-trip, translating timeouts and connection
    failures into :class:`DependencyUnavailableError`.

    No retry: the client backs off and resends.
    """
    try:
        return await asyncio.wait_for(operation, timeout)
    except TimeoutError as exc:
        logger.error("Database operation timed out after %.2fs", timeout)
        raise DependencyUnavailableError("database", "timeout") from exc
    except (OperationalError, InterfaceError, OSError) as exc:
        logger.error("Database unreachable: %s", exc)
        raise DependencyUnavailableError("database", type(exc).__name__) from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.error("Database connection lost: %s", exc)
            raise DependencyUnavailableError("database", "connection lost") from exc
        raise


def dialect_insert(db: AsyncSession, entity: Any) -> Any:
    """Return an ``INSERT`` supporting ``ON CONFLICT`` for the bound dialect."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert(entity)
    return postgresql.insert(entity)
