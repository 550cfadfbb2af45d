"""
Async database access for the affiliate engine.

PostgreSQL via asyncpg in production. SQLite via aiosqlite is accepted for
local runs and tests; it gets no connection pool sizing and ignores row locks.
Sessions never expire loaded rows on commit, so services can keep using the
objects they just wrote.
"""
import logging
from typing import Any, AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def engine_options(database_url: str, settings) -> dict[str, Any]:
    """create_async_engine kwargs for a database URL."""
    options: dict[str, Any] = {"echo": settings.app_env == "development"}
    if make_url(database_url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
    return options


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from affiliate_engine.config import get_settings
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url, **engine_options(settings.database_url, settings)
        )
        logger.info("Database engine created (%s)", make_url(settings.database_url).get_backend_name())
    return _engine


def _get_session_maker() -> async_sessionmaker:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_maker


def async_session_factory() -> AsyncSession:
    """A session outside of a request (scripts, cache loaders)."""
    return _get_session_maker()()


async def dispose_engine() -> None:
    """Close pooled connections. Called on application shutdown."""
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Services commit their own writes; anything left
    pending when the handler returns is committed here, and an exception
    rolls the session back.
    """
    async with _get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
