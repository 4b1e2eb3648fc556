"""Common helpers for storage repositories."""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager, nullcontext
from datetime import UTC, datetime
from weakref import WeakKeyDictionary

from sqlalchemy import Engine, event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

DEFAULT_BUSY_TIMEOUT_MS = 5000

_SQLITE_WRITE_LOCKS: WeakKeyDictionary[Engine, asyncio.Lock] = WeakKeyDictionary()


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_db_datetime(value: datetime) -> datetime:
    """Normalize to naive UTC, the representation stored in the database."""

    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def to_utc_aware_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def optional_utc(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def build_engine(
    database_url: str,
    *,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    echo: bool = False,
) -> AsyncEngine:
    """Build an async SQLAlchemy engine with consistent SQLite policy."""

    if not database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo, pool_pre_ping=True)

    engine = create_async_engine(
        database_url,
        echo=echo,
        connect_args={"timeout": max(1.0, busy_timeout_ms / 1000.0)},
        poolclass=NullPool,
    )
    event.listen(
        engine.sync_engine,
        "connect",
        lambda dbapi_connection, _: _apply_sqlite_pragmas(
            dbapi_connection,
            busy_timeout_ms=busy_timeout_ms,
        ),
    )
    return engine


def write_lock(engine: AsyncEngine) -> AbstractAsyncContextManager[object]:
    """Serialize writers sharing one SQLite engine.

    SQLite admits one writer per file. Other backends get a no-op context.
    """

    if engine.dialect.name != "sqlite":
        return nullcontext()
    lock = _SQLITE_WRITE_LOCKS.get(engine.sync_engine)
    if lock is None:
        lock = asyncio.Lock()
        _SQLITE_WRITE_LOCKS[engine.sync_engine] = lock
    return lock


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""

    # Registers table metadata.
    from pages_core.storage import sqlmodel_models  # noqa: F401, PLC0415

    async with engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)


def _apply_sqlite_pragmas(dbapi_connection, *, busy_timeout_ms: int) -> None:  # noqa: ANN001
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()
