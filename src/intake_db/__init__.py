"""intake_db — PostgreSQL persistence layer for intake session documents.

This package provides the ORM model, async engine factory, repository and a
``StorageBackend`` implementation so the intake engines can persist their
session documents in a database instead of process memory.  It is designed
to be consumed by the FastAPI server and the cleanup CLI.
"""

from intake_db.backend import SqlStorageBackend
from intake_db.engine import get_engine, get_session_factory
from intake_db.models.entry import StorageEntry
from intake_db.repository import EntryRepository

__all__ = [
    "StorageEntry",
    "get_engine",
    "get_session_factory",
    "EntryRepository",
    "SqlStorageBackend",
]
