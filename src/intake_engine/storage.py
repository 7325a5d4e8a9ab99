"""Session store — durable, per-session JSON documents over a key-value backend.

Layout::

    onboarding_session_{id}  -> {"data": {<section>: {...}, ...}, "savedAt": ISO}
    assessment_summary_{id}  -> {"summary": {...}, "formData": {...}, "generatedAt": ISO}

The store never lets a storage failure escape to the engines: a failing
backend turns every operation into a logged no-op and flips
:attr:`SessionStore.degraded` so the engines can keep working in memory.
Unparsable documents are removed on load and treated as absent.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

from pydantic import Field, ValidationError

from intake_engine.constants import (
    SESSION_KEY_PREFIX,
    SESSION_SECTION,
    SUMMARY_KEY_PREFIX,
)
from intake_engine.errors import StorageError
from intake_engine.models.base import CamelModel, utcnow
from intake_engine.models.session import Session, SessionStatus
from intake_engine.models.summary import AssessmentSummary, StoredSummary

logger = logging.getLogger(__name__)


def session_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def summary_key(session_id: str) -> str:
    return f"{SUMMARY_KEY_PREFIX}{session_id}"


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class StorageBackend(ABC):
    """Raw string key-value storage.  Implementations raise StorageError."""

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        ...


class InMemoryBackend(StorageBackend):
    """Dict-backed storage for tests and the ``memory`` server mode.

    Args:
        quota_bytes: when set, a write that would push the total stored size
            past this limit raises ``StorageError`` (quota exceeded).
        disabled: every operation raises ``StorageError`` (storage off).

        record_writes: append every successful write to :attr:`writes` and
            every removal to :attr:`removed`, so tests can assert on the exact
            number and content of store writes.  Off by default; the log
            grows with every write.
    """

    def __init__(
        self,
        *,
        quota_bytes: int | None = None,
        disabled: bool = False,
        record_writes: bool = False,
    ) -> None:
        self.items: dict[str, str] = {}
        self.writes: list[tuple[str, str]] = []
        self.removed: list[str] = []
        self.quota_bytes = quota_bytes
        self.disabled = disabled
        self.record_writes = record_writes

    def _check_enabled(self) -> None:
        if self.disabled:
            raise StorageError("Storage is disabled")

    async def get_item(self, key: str) -> str | None:
        self._check_enabled()
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._check_enabled()
        if self.quota_bytes is not None:
            used = sum(len(v) for k, v in self.items.items() if k != key)
            if used + len(value) > self.quota_bytes:
                raise StorageError("Storage quota exceeded")
        self.items[key] = value
        if self.record_writes:
            self.writes.append((key, value))

    async def remove_item(self, key: str) -> None:
        self._check_enabled()
        self.items.pop(key, None)
        if self.record_writes:
            self.removed.append(key)

    def writes_for(self, key: str) -> list[dict]:
        """Parsed documents written under *key*, oldest first."""
        return [json.loads(v) for k, v in self.writes if k == key]


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class SavedData(CamelModel):
    """The onboarding session document."""

    data: dict[str, dict[str, Any]] = Field(default_factory=dict)
    saved_at: datetime = Field(default_factory=utcnow)


def _parse_saved(raw: str | None) -> SavedData | None:
    if raw is None:
        return None
    try:
        return SavedData.model_validate_json(raw)
    except ValidationError:
        return None


# ---------------------------------------------------------------------------
# SessionStore
# ---------------------------------------------------------------------------

class SessionStore:
    """Section-level load/save of onboarding session documents.

    Args:
        backend: the key-value backend (in-memory, SQL, ...).
    """

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend
        # key -> [lock, holders]; serialises read-modify-write cycles on the
        # same document and is dropped once no one holds it
        self._locks: dict[str, list] = {}
        self.degraded = False

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        entry = self._locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def _storage_failed(self, action: str, key: str, exc: StorageError) -> None:
        self.degraded = True
        logger.warning(
            "Storage %s failed for %s; continuing in memory only: %s",
            action, key, exc,
        )

    async def _read_json(self, key: str) -> Any | None:
        """Fetch and parse *key*; corrupt JSON is removed and reads as None."""
        try:
            raw = await self._backend.get_item(key)
        except StorageError as exc:
            self._storage_failed("read", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unparsable document at %s", key)
            await self._discard(key)
            return None

    async def _write_json(self, key: str, document: dict) -> bool:
        try:
            await self._backend.set_item(key, json.dumps(document))
        except StorageError as exc:
            self._storage_failed("write", key, exc)
            return False
        if self.degraded:
            logger.info("Session storage recovered")
            self.degraded = False
        return True

    async def _discard(self, key: str) -> None:
        try:
            await self._backend.remove_item(key)
        except StorageError as exc:
            self._storage_failed("remove", key, exc)

    # ------------------------------------------------------------------
    # Session document
    # ------------------------------------------------------------------

    async def load(self, session_id: str) -> SavedData | None:
        """Return the session document, or None if absent or unreadable.

        Never raises: a document that is not valid JSON, or JSON of the
        wrong shape, is removed from storage and reported as absent.
        """
        key = session_key(session_id)
        raw = await self._read_json(key)
        if raw is None:
            return None
        try:
            return SavedData.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed session document at %s", key)
            await self._discard(key)
            return None

    async def load_section(self, session_id: str, section: str) -> dict[str, Any] | None:
        saved = await self.load(session_id)
        if saved is None:
            return None
        return saved.data.get(section)

    async def save(self, session_id: str, section: str, data: dict[str, Any]) -> bool:
        """Overwrite one section of the session document and stamp ``savedAt``.

        The section is replaced as a whole; other sections are kept.
        Returns False (and logs a warning) when storage is unavailable.
        """
        key = session_key(session_id)
        async with self._key_lock(key):
            try:
                existing = await self._backend.get_item(key)
            except StorageError as exc:
                # Writing blind would clobber the other sections
                self._storage_failed("read", key, exc)
                return False
            saved = _parse_saved(existing) or SavedData()
            saved.data[section] = data
            saved.saved_at = utcnow()
            return await self._write_json(key, saved.to_wire())

    async def remove(self, session_id: str) -> None:
        """Remove the session document and its summary."""
        key = session_key(session_id)
        async with self._key_lock(key):
            await self._discard(key)
            await self._discard(summary_key(session_id))

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def load_session(self, session_id: str, *, now: datetime | None = None) -> Session:
        """Return the stored session, creating a fresh one if none is usable.

        A missing or corrupted document yields a new in-progress session that
        is persisted immediately.  A session past its expiry is returned with
        status ``expired``.
        """
        section = await self.load_section(session_id, SESSION_SECTION)
        session: Session | None = None
        if section is not None:
            try:
                session = Session.model_validate(section)
            except ValidationError:
                logger.warning("Discarding malformed session section for %s", session_id)
                await self.remove(session_id)

        if session is None:
            session = Session.new(session_id, now=now)
            await self.save_session(session)
            logger.info("Created new onboarding session %s", session_id)
            return session

        if session.status != SessionStatus.EXPIRED and session.is_expired(now):
            session.status = SessionStatus.EXPIRED
            await self.save_session(session)
            logger.info("Onboarding session %s has expired", session_id)
        return session

    async def save_session(self, session: Session) -> bool:
        return await self.save(session.id, SESSION_SECTION, session.to_wire())

    async def flag_crisis(self, session_id: str) -> Session:
        """Set the sticky crisis flag on the stored session."""
        session = await self.load_session(session_id)
        if not session.progress.crisis_detected:
            session.progress.crisis_detected = True
            await self.save_session(session)
            logger.warning("Crisis language detected in session %s", session_id)
        return session

    async def start_over(self, session_id: str) -> Session:
        """Discard everything stored for *session_id* and begin a new session.

        The crisis flag is carried into the new session; it is never cleared
        for a session id.
        """
        previous = await self.load_section(session_id, SESSION_SECTION) or {}
        crisis = bool(previous.get("progress", {}).get("crisisDetected"))
        await self.remove(session_id)
        session = Session.new(session_id)
        session.progress.crisis_detected = crisis
        await self.save_session(session)
        logger.info("Session %s started over", session_id)
        return session

    # ------------------------------------------------------------------
    # Summary document
    # ------------------------------------------------------------------

    async def save_summary(
        self,
        session_id: str,
        summary: AssessmentSummary,
        form_data: dict[str, Any] | None = None,
    ) -> bool:
        """Store *summary* as the current summary (replacing any previous one)."""
        document = StoredSummary(
            summary=summary,
            form_data=form_data or {},
            generated_at=summary.generated_at,
        )
        return await self._write_json(summary_key(session_id), document.to_wire())

    async def load_summary(self, session_id: str) -> StoredSummary | None:
        key = summary_key(session_id)
        raw = await self._read_json(key)
        if raw is None:
            return None
        try:
            return StoredSummary.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed summary document at %s", key)
            await self._discard(key)
            return None
