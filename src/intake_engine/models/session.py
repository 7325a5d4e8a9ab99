"""Onboarding session model and its lifecycle status."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Literal

from pydantic import Field

from intake_engine.constants import SESSION_TTL_DAYS
from intake_engine.models.base import CamelModel, utcnow


class SessionStatus(str, Enum):
    """Lifecycle status of an onboarding attempt."""

    STARTED = "started"
    IN_PROGRESS = "in-progress"
    ASSESSMENT_COMPLETE = "assessment-complete"
    EXPIRED = "expired"


class SessionProgress(CamelModel):
    """Where the user is inside the assessment step."""

    mode: Literal["chat", "form"] = "chat"
    form_page: int = 1
    completed_pages: list[int] = Field(default_factory=list)
    summary_confirmed: bool = False
    # Sticky: once set it is never cleared for this session id
    crisis_detected: bool = False


class Session(CamelModel):
    """One onboarding attempt, keyed by the caller-supplied session id."""

    id: str
    status: SessionStatus = SessionStatus.IN_PROGRESS
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    progress: SessionProgress = Field(default_factory=SessionProgress)

    @classmethod
    def new(cls, session_id: str, *, now: datetime | None = None) -> Session:
        """Create a fresh in-progress session expiring after the TTL."""
        created = now or utcnow()
        return cls(
            id=session_id,
            status=SessionStatus.IN_PROGRESS,
            created_at=created,
            expires_at=created + timedelta(days=SESSION_TTL_DAYS),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at
