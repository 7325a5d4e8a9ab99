"""intake_engine — assessment intake state machine SDK.

Public API:
    ConversationEngine — chat-mode assessment (free-form + structured Q&A)
    FormEngine         — three-page form assessment with debounced auto-save
    SyncReconciler     — replays completed local data to the remote system
    SessionStore       — session-scoped persistence over a StorageBackend
    QuestionBank       — loads structured question sections from YAML

Storage:
    StorageBackend     — ABC for key-value persistence
    InMemoryBackend    — dict-backed backend with quota / disabled simulation

Collaborators:
    ChatResponder      — ABC for the opaque conversational responder
    CrisisClassifier   — ABC for crisis-language detection
    OnboardingMutations — ABC for the remote mutation API
    KeywordCrisisClassifier — keyword/phrase crisis classifier
    GraphQLClient      — httpx client implementing the remote interfaces

Pure functions:
    chat_to_form / form_to_chat — mode bridge
    form_to_summary / chat_to_summary — summary synthesizer
    format_summary_for_display — Markdown rendering of a summary
"""

from intake_engine.bridge import chat_to_form, form_to_chat
from intake_engine.conversation import ConversationEngine
from intake_engine.crisis import KeywordCrisisClassifier
from intake_engine.errors import MutationError, ResponderError, StorageError
from intake_engine.form import FormEngine
from intake_engine.interfaces import ChatResponder, CrisisClassifier, OnboardingMutations
from intake_engine.question_bank import QuestionBank
from intake_engine.remote import GraphQLClient
from intake_engine.storage import InMemoryBackend, SessionStore, StorageBackend
from intake_engine.summary import chat_to_summary, format_summary_for_display, form_to_summary
from intake_engine.sync import SyncReconciler, mask_member_id

__all__ = [
    # Engines
    "ConversationEngine",
    "FormEngine",
    "SyncReconciler",
    # Persistence
    "SessionStore",
    "StorageBackend",
    "InMemoryBackend",
    "QuestionBank",
    # Collaborators
    "ChatResponder",
    "CrisisClassifier",
    "OnboardingMutations",
    "KeywordCrisisClassifier",
    "GraphQLClient",
    # Errors
    "StorageError",
    "ResponderError",
    "MutationError",
    # Pure functions
    "chat_to_form",
    "form_to_chat",
    "form_to_summary",
    "chat_to_summary",
    "format_summary_for_display",
    "mask_member_id",
]
