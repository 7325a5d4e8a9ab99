"""StorageEntry ORM model — one row per stored key.

The intake engines persist whole JSON documents under string keys
(``onboarding_session_{id}``, ``assessment_summary_{id}``).  The value is
kept as opaque text so the row mirrors the key-value contract exactly; the
engines own the document shape.
"""

from datetime import datetime, timezone

from sqlalchemy import Index, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from intake_db.models.base import Base


class StorageEntry(Base):
    """A single key-value document."""

    __tablename__ = "storage_entries"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        # TTL purge scans by last write time
        Index("ix_storage_entries_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<StorageEntry(key={self.key!r}, bytes={len(self.value or '')})>"
