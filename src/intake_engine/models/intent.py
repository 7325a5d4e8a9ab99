"""Intents — the discrete inputs accepted by the assessment engines.

Each intent is a small pydantic model tagged by ``kind``.  The
``ConversationIntent`` and ``FormIntent`` unions use a discriminator so that
an HTTP body (or any other transport) can be parsed straight into the right
class::

    intent = TypeAdapter(ConversationIntent).validate_python(
        {"kind": "submit_answer", "question_id": "phq_a_1", "answer": "Several days"}
    )
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


# --- Chat ---

class SendMessage(BaseModel):
    kind: Literal["send_message"] = "send_message"
    text: str


class StartQuestions(BaseModel):
    """Open a structured question section (next unanswered one if omitted)."""

    kind: Literal["start_questions"] = "start_questions"
    section_id: str | None = None


class SubmitAnswer(BaseModel):
    kind: Literal["submit_answer"] = "submit_answer"
    question_id: str
    answer: str


class EditOtherText(BaseModel):
    kind: Literal["edit_other_text"] = "edit_other_text"
    text: str


class PressKey(BaseModel):
    kind: Literal["press_key"] = "press_key"
    key: Literal["Enter", "Escape"]
    shift: bool = False


class RetryLastMessage(BaseModel):
    kind: Literal["retry_last_message"] = "retry_last_message"


class AddMore(BaseModel):
    kind: Literal["add_more"] = "add_more"


class ConfirmSummary(BaseModel):
    kind: Literal["confirm_summary"] = "confirm_summary"


class StartOver(BaseModel):
    kind: Literal["start_over"] = "start_over"


# --- Shared ---

class GoBack(BaseModel):
    kind: Literal["go_back"] = "go_back"


class SwitchMode(BaseModel):
    kind: Literal["switch_mode"] = "switch_mode"
    target: Literal["chat", "form"]


# --- Form ---

class SetField(BaseModel):
    """A keystroke-level edit: updates the value, never validates."""

    kind: Literal["set_field"] = "set_field"
    field: str
    value: Any = None


class BlurField(BaseModel):
    """The field lost focus: validate it and schedule an auto-save."""

    kind: Literal["blur_field"] = "blur_field"
    field: str


class SaveField(BaseModel):
    """Set and blur in one step (select inputs, radio groups)."""

    kind: Literal["save_field"] = "save_field"
    field: str
    value: Any = None


class NextPage(BaseModel):
    kind: Literal["next_page"] = "next_page"


class SubmitForm(BaseModel):
    kind: Literal["submit_form"] = "submit_form"


class RetrySave(BaseModel):
    """Resend the auto-save writes that failed."""

    kind: Literal["retry_save"] = "retry_save"


ConversationIntent = Annotated[
    Union[
        SendMessage,
        StartQuestions,
        SubmitAnswer,
        EditOtherText,
        PressKey,
        GoBack,
        SwitchMode,
        RetryLastMessage,
        AddMore,
        ConfirmSummary,
        StartOver,
    ],
    Field(discriminator="kind"),
]

FormIntent = Annotated[
    Union[
        SetField, BlurField, SaveField, NextPage, GoBack, SubmitForm, RetrySave, SwitchMode
    ],
    Field(discriminator="kind"),
]
