"""Public model re-exports for intake_engine.

Consumers should import from ``intake_engine.models`` rather than reaching
into sub-modules directly.
"""

# --- Session ---
from intake_engine.models.session import Session, SessionProgress, SessionStatus

# --- Chat ---
from intake_engine.models.message import Message, MessageMetadata, ResponderReply

# --- Structured questions ---
from intake_engine.models.question import (
    AssessmentResponse,
    QuestionSection,
    StructuredQuestion,
)

# --- Form ---
from intake_engine.models.form import (
    FormAssessmentInput,
    FormCompletion,
    Page1,
    Page2,
    Page3,
    form_completion,
    validate_field,
    validate_page,
)

# --- Summary ---
from intake_engine.models.summary import (
    AssessmentSummary,
    DailyLifeImpact,
    StoredSummary,
    SummaryMetadata,
)

# --- Sync ---
from intake_engine.models.sync import (
    MutationResult,
    RemoteSnapshot,
    SyncResult,
    SyncState,
    SyncStatus,
)

# --- Intents / state snapshots ---
from intake_engine.models.intent import ConversationIntent, FormIntent
from intake_engine.models.state import (
    ConversationPhase,
    ConversationState,
    FormState,
    QuestionView,
)

__all__ = [
    # Session
    "Session",
    "SessionProgress",
    "SessionStatus",
    # Chat
    "Message",
    "MessageMetadata",
    "ResponderReply",
    # Questions
    "AssessmentResponse",
    "QuestionSection",
    "StructuredQuestion",
    # Form
    "FormAssessmentInput",
    "FormCompletion",
    "Page1",
    "Page2",
    "Page3",
    "form_completion",
    "validate_field",
    "validate_page",
    # Summary
    "AssessmentSummary",
    "DailyLifeImpact",
    "StoredSummary",
    "SummaryMetadata",
    # Sync
    "MutationResult",
    "RemoteSnapshot",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    # Intents / state
    "ConversationIntent",
    "FormIntent",
    "ConversationPhase",
    "ConversationState",
    "FormState",
    "QuestionView",
]
