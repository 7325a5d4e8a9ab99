"""Database settings for the session document store.

The URL comes from ``DATABASE_URL`` when set, otherwise it is assembled from
``PG_HOST`` / ``PG_PORT`` / ``PG_USER`` / ``PG_PASSWORD`` / ``PG_DATABASE``.
Either way it is normalised per driver: Alembic runs on psycopg2, the
server on asyncpg.

Pool and timeout knobs (``PG_POOL_SIZE``, ``PG_MAX_OVERFLOW``,
``PG_POOL_RECYCLE``, ``PG_COMMAND_TIMEOUT``, ``PG_ECHO``) bound how long a
storage call can block: a statement that exceeds the command timeout fails,
and the session store then carries on in memory.
"""

import os
from dataclasses import dataclass

_ASYNC_SCHEME = "postgresql+asyncpg://"
_SYNC_SCHEME = "postgresql://"


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings read once from the environment."""

    url: str
    pool_size: int = 5
    max_overflow: int = 10
    # Seconds before a pooled connection is replaced
    pool_recycle: int = 1800
    # Seconds a single statement may run (asyncpg)
    command_timeout: float = 10.0
    echo: bool = False

    @property
    def async_url(self) -> str:
        if self.url.startswith(_SYNC_SCHEME):
            return _ASYNC_SCHEME + self.url[len(_SYNC_SCHEME):]
        return self.url

    @property
    def sync_url(self) -> str:
        if self.url.startswith(_ASYNC_SCHEME):
            return _SYNC_SCHEME + self.url[len(_ASYNC_SCHEME):]
        return self.url


def _url_from_parts() -> str:
    host = os.getenv("PG_HOST", "localhost")
    port = os.getenv("PG_PORT", "5432")
    user = os.getenv("PG_USER", "intake")
    password = os.getenv("PG_PASSWORD", "intake")
    database = os.getenv("PG_DATABASE", "intake")
    return f"{_SYNC_SCHEME}{user}:{password}@{host}:{port}/{database}"


def load_db_settings() -> DatabaseSettings:
    """Build :class:`DatabaseSettings` from the ``DATABASE_URL`` / ``PG_*`` env vars."""
    return DatabaseSettings(
        url=os.getenv("DATABASE_URL") or _url_from_parts(),
        pool_size=int(os.getenv("PG_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("PG_MAX_OVERFLOW", "10")),
        pool_recycle=int(os.getenv("PG_POOL_RECYCLE", "1800")),
        command_timeout=float(os.getenv("PG_COMMAND_TIMEOUT", "10")),
        echo=os.getenv("PG_ECHO", "false").lower() == "true",
    )


def get_sync_url() -> str:
    """psycopg2 URL for Alembic."""
    return load_db_settings().sync_url


def get_async_url() -> str:
    """asyncpg URL for the runtime engine."""
    return load_db_settings().async_url
