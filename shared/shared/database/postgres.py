import os
import ssl
from pathlib import Path
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

# Deterministic constraint names so Alembic diffs stay stable across databases.
_NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

Base = declarative_base(metadata=MetaData(naming_convention=_NAMING_CONVENTION))


def _build_connect_args(command_timeout: float | None) -> dict[str, Any]:
    """Return asyncpg ``connect_args``: SSL when DATABASE_SSL is set, plus a
    per-statement ``command_timeout`` so a hung database surfaces as an error
    instead of a stuck request."""
    connect_args: dict[str, Any] = {}
    if command_timeout is not None:
        connect_args["command_timeout"] = command_timeout

    mode = os.environ.get("DATABASE_SSL", "").lower()
    if not mode or mode == "disable":
        return connect_args

    cert_path = os.environ.get("RDS_SSL_CERT", "")
    if cert_path and Path(cert_path).exists():
        connect_args["ssl"] = ssl.create_default_context(cafile=cert_path)
    else:
        # Fall back to simple 'require' (encrypted, no cert verification)
        connect_args["ssl"] = "require"
    return connect_args


def get_async_engine(
    database_url: str,
    *,
    command_timeout: float | None = None,
    **kwargs: Any,
) -> Any:
    if database_url.startswith("sqlite"):
        # Local tooling only; SQLite has no server-side pool to size.
        return create_async_engine(database_url, **kwargs)

    connect_args = _build_connect_args(command_timeout)
    if connect_args:
        kwargs.setdefault("connect_args", connect_args)
    kwargs.setdefault("pool_size", 5)
    kwargs.setdefault("max_overflow", 10)
    return create_async_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=3600,
        **kwargs,
    )


def get_async_session_factory(
    database_url: str,
    *,
    expire_on_commit: bool = False,
    **engine_kwargs: Any,
) -> async_sessionmaker[AsyncSession]:
    engine = get_async_engine(database_url, **engine_kwargs)
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=expire_on_commit,
        autoflush=False,
        autocommit=False,
    )
