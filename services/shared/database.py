"""Async SQLAlchemy engine and session management, one Database per service."""
from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import ColumnElement, MetaData, case
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """ISO-8601 in UTC; naive values (SQLite) are treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class Database:
    """Engine and session factory bound to one service's metadata."""

    def __init__(self, url: str, metadata: MetaData, *, echo: bool = False) -> None:
        self._url = url
        self._metadata = metadata
        options: dict[str, Any] = {"pool_pre_ping": True, "echo": echo}
        if url.startswith("postgresql"):
            options.update(pool_size=10, max_overflow=20)
        self._engine = create_async_engine(url, **options)
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )

    @property
    def url(self) -> str:
        return self._url

    @property
    def engine(self):
        return self._engine

    async def create_all(self) -> None:
        """Create all tables registered on this service's metadata."""
        async with self._engine.begin() as conn:
            await conn.run_sync(self._metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    def session(self) -> AsyncSession:
        return self._session_factory()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session wrapped in a single transaction: commit on exit, rollback on error."""
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """FastAPI dependency yielding a session that commits on success."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


def _dialect_insert(session: AsyncSession):
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"insert-if-absent is not supported on dialect {name!r}")


async def insert_ignore(
    session: AsyncSession,
    model: Any,
    values: dict[str, Any],
    index_elements: Iterable[str],
) -> bool:
    """
    INSERT .. ON CONFLICT DO NOTHING.

    Returns True when this call inserted the row, False when a row with the
    same conflict target already existed.
    """
    insert = _dialect_insert(session)
    columns = list(index_elements)
    stmt = (
        insert(model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=columns)
        .returning(getattr(model, columns[0]))
    )
    result = await session.execute(stmt)
    return result.first() is not None


def floor_at_zero(expr: ColumnElement, amount: Any) -> ColumnElement:
    """Portable GREATEST(expr - amount, 0)."""
    return case((expr - amount > 0, expr - amount), else_=0)
