"""Immutable state snapshots emitted by the engines after every intent.

Snapshots are what subscribers (a UI, the HTTP layer, tests) observe; they
never expose the engines' mutable internals.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import ConfigDict, Field

from intake_engine.models.base import CamelModel
from intake_engine.models.form import FormCompletion
from intake_engine.models.message import Message
from intake_engine.models.question import AssessmentResponse, StructuredQuestion
from intake_engine.models.session import SessionStatus
from intake_engine.models.summary import AssessmentSummary


class ConversationPhase(str, Enum):
    GREETING = "greeting"
    FREEFORM_QA = "freeform-qa"
    STRUCTURED_QA = "structured-qa"
    COMPLETENESS_CHECK = "completeness-check"
    SUMMARY_PENDING = "summary-pending"
    SUMMARY_READY = "summary-ready"


class QuestionView(CamelModel):
    """The structured question currently on screen."""

    model_config = ConfigDict(frozen=True)

    section_id: str
    question: StructuredQuestion
    index: int
    total: int
    # True while the selection-feedback delay is running
    recording: bool = False
    other_open: bool = False
    other_draft: str = ""


class ConversationState(CamelModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    status: SessionStatus
    mode: Literal["chat", "form"] = "chat"
    phase: ConversationPhase
    messages: list[Message] = Field(default_factory=list)
    responses: list[AssessmentResponse] = Field(default_factory=list)
    current_question: QuestionView | None = None
    suggested_replies: list[str] = Field(default_factory=list)
    crisis_detected: bool = False
    crisis_resources: list[dict[str, str]] = Field(default_factory=list)
    summary: AssessmentSummary | None = None
    summary_confirmed: bool = False
    error: str | None = None
    can_retry: bool = False
    storage_degraded: bool = False


class FormState(CamelModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    status: SessionStatus
    mode: Literal["chat", "form"] = "form"
    page: int
    values: dict[str, Any] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)
    completed_pages: list[int] = Field(default_factory=list)
    saving: bool = False
    save_status: Literal["idle", "saving", "saved", "error"] = "idle"
    last_saved: datetime | None = None
    save_error: str | None = None
    completion: FormCompletion = Field(default_factory=FormCompletion)
    submitted: bool = False
    summary: AssessmentSummary | None = None
    storage_degraded: bool = False
