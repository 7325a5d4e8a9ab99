"""ORM models for intake_db."""

from intake_db.models.base import Base
from intake_db.models.entry import StorageEntry

__all__ = ["Base", "StorageEntry"]
