"""PostgreSQL and Redis connections.

The SQL illustration store and the audit trail share one async engine
(SQLAlchemy 2.0, asyncpg). It is built on first use, so running with the
in-memory backend never opens a pool. Redis only caches rendered pages.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from wealthdesk.config import settings

logger = logging.getLogger(__name__)


class Database:
    """Lazily created engine plus its session factory."""

    def __init__(self, url: str | None = None) -> None:
        self.url = url or settings.db.database_url
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            cfg = settings.db
            self._engine = create_async_engine(
                self.url,
                echo=cfg.echo_sql,
                pool_size=cfg.pool_size,
                max_overflow=cfg.max_overflow,
                pool_pre_ping=True,
                pool_recycle=3600,
            )
            self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        return self._sessions

    @property
    def engine(self) -> AsyncEngine:
        self._factory()
        assert self._engine is not None  # noqa: S101
        return self._engine

    def session(self) -> AsyncSession:
        return self._factory()()

    async def connect(self) -> None:
        """Check connectivity; outside production also create missing tables."""
        from wealthdesk.models import Base

        async with self.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if not settings.is_production:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("Database ready (%s)", self.engine.url.render_as_string(hide_password=True))

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessions = None


database = Database()


@contextlib.asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """One transaction: commit on success, rollback on error.

    Usage:
        async with session_scope() as db:
            db.add(row)
    """
    async with database.session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def create_redis(url: str | None = None) -> aioredis.Redis:
    """Redis client for the page cache. Connects on first command."""
    return aioredis.from_url(url or settings.db.redis_url, decode_responses=True)


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[Database, None]:
    """Open the database for the application's lifetime."""
    await database.connect()
    try:
        yield database
    finally:
        await database.dispose()
