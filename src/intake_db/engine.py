"""Process-wide async engine and session factory for the SQL backend.

Both are built lazily from :func:`~intake_db.config.load_db_settings` on
first use.  Connections are pinged before checkout and recycled, so a
database restart shows up as one failed storage call (and a degraded
store) rather than a stuck pool.  Call ``dispose_engine()`` on shutdown.
"""

import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from intake_db.config import DatabaseSettings, load_db_settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(settings: DatabaseSettings) -> dict:
    """Keyword arguments for ``create_async_engine``."""
    return {
        "echo": settings.echo,
        "pool_size": settings.pool_size,
        "max_overflow": settings.max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": settings.pool_recycle,
        "connect_args": {"command_timeout": settings.command_timeout},
    }


def get_engine() -> AsyncEngine:
    """Return (and lazily create) the singleton async engine."""
    global _engine
    if _engine is None:
        settings = load_db_settings()
        _engine = create_async_engine(settings.async_url, **engine_options(settings))
        logger.info(
            "Database engine created for %s (pool=%d+%d)",
            make_url(settings.async_url).render_as_string(hide_password=True),
            settings.pool_size,
            settings.max_overflow,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return (and lazily create) the async session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def dispose_engine() -> None:
    """Close every pooled connection and forget the engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None
