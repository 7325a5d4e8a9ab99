"""Async CRUD repository for StorageEntry.

All public methods accept an ``AsyncSession`` so the caller controls
transaction boundaries.  Methods call ``flush()`` but never ``commit()``.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from intake_db.models.entry import StorageEntry


class EntryRepository:
    """Async read/write operations on the ``storage_entries`` table."""

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, db: AsyncSession, key: str) -> StorageEntry | None:
        """Fetch an entry by key."""
        return await db.get(StorageEntry, key)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def upsert(self, db: AsyncSession, key: str, value: str) -> None:
        """Insert or overwrite the value stored under *key* in one statement.

        Concurrent first writes of a key cannot collide on the primary key.
        The caller must ``await db.commit()`` to persist.
        """
        now = datetime.now(timezone.utc)
        stmt = (
            insert(StorageEntry)
            .values(key=key, value=value, created_at=now, updated_at=now)
            .on_conflict_do_update(
                index_elements=[StorageEntry.key],
                set_={"value": value, "updated_at": func.now()},
            )
        )
        await db.execute(stmt)
        await db.flush()

    async def delete(self, db: AsyncSession, key: str) -> bool:
        """Remove the entry under *key*.  Returns False if it did not exist."""
        entry = await db.get(StorageEntry, key)
        if entry is None:
            return False
        await db.delete(entry)
        await db.flush()
        return True

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def purge_older_than(
        self,
        db: AsyncSession,
        *,
        older_than_days: int,
        prefix: str | None = None,
    ) -> int:
        """Delete entries not written for *older_than_days* days.

        ``older_than_days=0`` removes every matching entry.  When *prefix*
        is given only keys starting with it are affected.  Returns the
        number of deleted rows.
        """
        stmt = delete(StorageEntry)
        if older_than_days > 0:
            cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
            stmt = stmt.where(StorageEntry.updated_at < cutoff)
        if prefix:
            stmt = stmt.where(StorageEntry.key.startswith(prefix))
        result = await db.execute(stmt)
        await db.flush()
        return result.rowcount or 0
