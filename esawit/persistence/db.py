from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from esawit.core.config import Settings


class Database:
    """Explicit handle for the relational store.

    Constructed once per process and passed to the managers that need it; the
    entry point owns ``connect()`` and ``disconnect()``.
    """

    def __init__(self, url: str, *, pool_size: int = 10, max_overflow: int = 10, echo: bool = False) -> None:
        self.url = url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> Database:
        return cls(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("database is not connected")
        return self._engine

    async def connect(self) -> None:
        if self._engine is not None:
            return
        engine_kwargs: dict[str, Any] = {"pool_pre_ping": True, "echo": self._echo}
        # Configure bounded asyncpg pools; SQLite uses its own static pool.
        if not self.is_sqlite:
            engine_kwargs["pool_size"] = max(1, int(self._pool_size))
            engine_kwargs["max_overflow"] = max(0, int(self._max_overflow))
            engine_kwargs["pool_timeout"] = 30
            engine_kwargs["pool_recycle"] = 1800
        self._engine = create_async_engine(self.url, **engine_kwargs)
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)

    async def disconnect(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._sessionmaker is None:
            raise RuntimeError("database is not connected")
        async with self._sessionmaker() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        # Commit on clean exit, roll back on any exception.
        async with self.session() as session:
            async with session.begin():
                yield session

    async def ping(self) -> bool:
        async with self.session() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def create_all(self) -> None:
        # Schema bootstrap for local development and tests; production uses alembic.
        from esawit.domain.models import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
