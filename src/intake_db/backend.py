"""SqlStorageBackend — the engines' key-value contract over PostgreSQL.

Every operation runs in its own short transaction.  Database failures are
re-raised as :class:`~intake_engine.errors.StorageError` so the session
store can degrade to in-memory operation exactly as it does for a full or
disabled local store.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from intake_engine.errors import StorageError
from intake_engine.storage import StorageBackend

from intake_db.engine import get_session_factory
from intake_db.repository import EntryRepository

logger = logging.getLogger(__name__)


class SqlStorageBackend(StorageBackend):
    """Args:
        session_factory: optional factory override; defaults to the
            process-wide factory from :mod:`intake_db.engine`.
        repo: optional repository override (tests pass a mock).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        repo: EntryRepository | None = None,
    ) -> None:
        self._factory = session_factory
        self._repo = repo or EntryRepository()

    def _session(self) -> AsyncSession:
        factory = self._factory or get_session_factory()
        return factory()

    async def get_item(self, key: str) -> str | None:
        try:
            async with self._session() as db:
                entry = await self._repo.get(db, key)
                return entry.value if entry is not None else None
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Storage read failed for %s: %s", key, type(exc).__name__)
            raise StorageError(f"Storage read failed: {type(exc).__name__}") from exc

    async def set_item(self, key: str, value: str) -> None:
        try:
            async with self._session() as db:
                await self._repo.upsert(db, key, value)
                await db.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Storage write failed for %s: %s", key, type(exc).__name__)
            raise StorageError(f"Storage write failed: {type(exc).__name__}") from exc

    async def remove_item(self, key: str) -> None:
        try:
            async with self._session() as db:
                await self._repo.delete(db, key)
                await db.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Storage delete failed for %s: %s", key, type(exc).__name__)
            raise StorageError(f"Storage delete failed: {type(exc).__name__}") from exc
