# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine (asyncpg driver). The candidate store and the
# state sink each open their own short-lived sessions from
# async_session_factory; there is no request-scoped session because the
# search core is called from outside any HTTP request lifecycle too.
#
# The engine is created lazily so that importing the package (tests, the
# in-memory pipeline) never requires a database driver or a reachable host.
# =============================================================================

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from buildermatch.config import settings

_async_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Lazily create and cache the async engine."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
    return _async_engine


def async_session_factory() -> AsyncSession:
    """
    Return a new AsyncSession.

    expire_on_commit=False keeps loaded attributes readable after commit,
    outside the greenlet context that would be needed to refresh them.
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory()


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    Session that commits on success and rolls back on error.

    Usage:
        async with session_scope() as session:
            await session.execute(stmt)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    """Close pooled connections (application shutdown)."""
    global _async_engine, _async_session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_factory = None
