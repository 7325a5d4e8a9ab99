"""Chat message models and the reply contract of the external responder."""

from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from pydantic import Field

from intake_engine.models.base import CamelModel, utcnow


class MessageMetadata(CamelModel):
    """Optional context attached to a message."""

    phase: str | None = None
    intent: str | None = None
    # Set on messages that answer (or ask) a structured question
    question_id: str | None = None
    score: int | None = None


class Message(CamelModel):
    """A single chat turn.  The conversation log is append-only."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    sender: Literal["user", "ai", "system"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: MessageMetadata | None = None

    @property
    def is_freeform_user(self) -> bool:
        """True for user text typed into the chat, not a structured answer."""
        return self.sender == "user" and (
            self.metadata is None or self.metadata.question_id is None
        )


class ResponderReply(CamelModel):
    """What the external chat responder returns for one user turn.

    ``start_section`` asks the engine to open a structured question
    section; ``extracted`` carries any fields the responder pulled out of
    the conversation (e.g. ``concernDuration``) and is merged into the
    chat's extracted data.
    """

    content: str
    start_section: str | None = None
    suggested_replies: list[str] = Field(default_factory=list)
    extracted: dict[str, Any] = Field(default_factory=dict)
