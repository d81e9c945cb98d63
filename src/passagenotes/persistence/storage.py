"""Key-value storage backends for persisted and recovery records.

Both backends store opaque string values under string keys.  ``SqlStorage``
keeps them in a single SQLModel table through an async SQLAlchemy engine
(SQLite via aiosqlite by default); ``MemoryStorage`` is used by tests and by
sessions that do not need durability.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import Column, DateTime, Text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, SQLModel, col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from passagenotes.errors import StorageError, StorageQuotaError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"


class KeyValueStorage(Protocol):
    """Async string key-value store."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> bool: ...

    async def keys(self, prefix: str = "") -> list[str]: ...

    async def close(self) -> None: ...


class MemoryStorage:
    """Dict-backed storage with an optional size quota.

    The quota counts characters of keys plus values, which is enough to
    exercise quota handling without a real backend.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}

    def _usage_without(self, key: str) -> int:
        return sum(len(k) + len(v) for k, v in self._data.items() if k != key)

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            needed = self._usage_without(key) + len(key) + len(value)
            if needed > self.quota_bytes:
                msg = f"Quota of {self.quota_bytes} exceeded writing {key!r}"
                raise StorageQuotaError(msg)
        self._data[key] = value

    async def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._data if key.startswith(prefix))

    async def close(self) -> None:
        return None


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class StorageEntry(SQLModel, table=True):
    """One stored value."""

    __tablename__ = "storage_entry"

    key: str = Field(primary_key=True, max_length=512)
    value: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class SqlStorage:
    """Storage in the ``storage_entry`` table of any async SQLAlchemy database.

    Plain ``sqlite://`` URLs are mapped to the aiosqlite driver.  The table is
    created on first use.
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        parsed = make_url(url)
        if parsed.drivername == "sqlite":
            parsed = parsed.set(drivername="sqlite+aiosqlite")

        engine_args: dict[str, object] = {}
        if parsed.get_backend_name() == "sqlite":
            engine_args["connect_args"] = {"check_same_thread": False}
            if parsed.database in (None, "", ":memory:"):
                # One shared connection, or every session sees an empty database
                engine_args["poolclass"] = StaticPool

        self.url = parsed.render_as_string(hide_password=True)
        self._engine = create_async_engine(parsed, echo=echo, **engine_args)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._schema_ready = False

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(
                SQLModel.metadata.create_all, tables=[StorageEntry.__table__]
            )
        self._schema_ready = True

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        try:
            await self._ensure_schema()
        except SQLAlchemyError as exc:
            msg = f"Cannot initialise storage at {self.url}"
            raise StorageError(msg) from exc

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as exc:
                logger.exception("Storage session error, rolling back transaction")
                await session.rollback()
                msg = f"Storage operation failed at {self.url}"
                raise StorageError(msg) from exc

    async def get(self, key: str) -> str | None:
        async with self._session() as session:
            entry = await session.get(StorageEntry, key)
            return entry.value if entry is not None else None

    async def set(self, key: str, value: str) -> None:
        async with self._session() as session:
            entry = await session.get(StorageEntry, key)
            if entry is None:
                session.add(StorageEntry(key=key, value=value))
            else:
                entry.value = value
                entry.updated_at = _utcnow()
                session.add(entry)

    async def remove(self, key: str) -> bool:
        async with self._session() as session:
            entry = await session.get(StorageEntry, key)
            if entry is None:
                return False
            await session.delete(entry)
            return True

    async def keys(self, prefix: str = "") -> list[str]:
        async with self._session() as session:
            statement = select(StorageEntry.key).order_by(col(StorageEntry.key))
            if prefix:
                statement = statement.where(
                    col(StorageEntry.key).startswith(prefix, autoescape=True)
                )
            result = await session.exec(statement)
            return list(result.all())

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        await self._engine.dispose()


def create_storage(url: str | None) -> KeyValueStorage:
    """Build a storage backend from a URL (``None`` or ``memory://`` for RAM)."""
    if not url or url == MEMORY_URL:
        return MemoryStorage()
    return SqlStorage(url)
