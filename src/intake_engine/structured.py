"""StructuredQuestionFlow — one question at a time, with option or free-text answers.

The flow owns a cursor over an ordered list of questions and writes answers
into a response dict keyed by question id (shared with the owning engine), so
re-answering a question always overwrites its previous response.

Recording guard:
    Committing an answer waits ``recording_delay`` seconds (the selection
    feedback window).  While that transition is pending, a repeated submit
    for the same question is ignored, and stepping back is refused.

Free-text ("Other") editing:
    Submitting the literal ``Other`` option on a question that allows it
    opens the editor instead of answering.  Enter submits the trimmed draft,
    Shift+Enter inserts a newline, Escape discards the draft and returns to
    the option list.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from intake_engine.constants import OTHER_OPTION, RECORDING_DELAY
from intake_engine.models.question import AssessmentResponse, StructuredQuestion

logger = logging.getLogger(__name__)


class StructuredQuestionFlow:
    """Cursor over *questions* that records at most one response per question.

    Args:
        questions: the ordered questions of one section.
        responses: shared ``{question_id: AssessmentResponse}`` dict.
        recording_delay: seconds between accepting an answer and committing it.
        start_index: resume position (e.g. when restoring a session).
    """

    def __init__(
        self,
        questions: Sequence[StructuredQuestion],
        *,
        responses: dict[str, AssessmentResponse] | None = None,
        recording_delay: float = RECORDING_DELAY,
        start_index: int = 0,
    ) -> None:
        if not questions:
            raise ValueError("StructuredQuestionFlow needs at least one question")
        self._questions = list(questions)
        self._responses = responses if responses is not None else {}
        self._delay = recording_delay
        self._index = max(0, min(start_index, len(self._questions)))
        self._pending: str | None = None
        self._other_open = False
        self._draft = ""

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def index(self) -> int:
        return self._index

    @property
    def total(self) -> int:
        return len(self._questions)

    @property
    def finished(self) -> bool:
        return self._index >= len(self._questions)

    @property
    def current(self) -> StructuredQuestion | None:
        return None if self.finished else self._questions[self._index]

    @property
    def recording(self) -> bool:
        return self._pending is not None

    @property
    def other_open(self) -> bool:
        return self._other_open

    @property
    def other_draft(self) -> str:
        return self._draft

    @property
    def responses(self) -> dict[str, AssessmentResponse]:
        return dict(self._responses)

    # ------------------------------------------------------------------
    # Answering
    # ------------------------------------------------------------------

    async def submit(self, question_id: str, answer: str) -> bool:
        """Answer the current question.

        Returns True when a response was recorded, False when the submit was
        ignored (duplicate while recording) or opened the free-text editor.
        Raises ``ValueError`` for answers the question does not accept.
        """
        if self._pending == question_id:
            logger.debug("Ignoring duplicate submit for %s while recording", question_id)
            return False
        question = self._require_current(question_id)

        if answer == OTHER_OPTION and question.allow_other:
            self.open_other()
            return False
        if answer in question.options:
            return await self._record(question, answer, question.value_for(answer))
        if question.allow_other or question.type == "text":
            text = answer.strip()
            if not text:
                raise ValueError(f"Answer for {question_id} must not be empty")
            return await self._record(question, text, None)
        raise ValueError(f"Invalid answer for {question_id}: not one of its options")

    async def _record(
        self, question: StructuredQuestion, text: str, value: int | None
    ) -> bool:
        self._pending = question.id
        try:
            await asyncio.sleep(self._delay)
            self._responses[question.id] = AssessmentResponse(
                question_id=question.id,
                response_text=text,
                response_value=value,
            )
            self._index += 1
            self._other_open = False
            self._draft = ""
        finally:
            self._pending = None
        logger.debug("Recorded response for %s", question.id)
        return True

    def _require_current(self, question_id: str) -> StructuredQuestion:
        question = self.current
        if question is None:
            raise ValueError("Cannot submit: all questions in this section are answered")
        if question.id != question_id:
            raise ValueError(
                f"Cannot submit {question_id}: the current question is {question.id}"
            )
        return question

    # ------------------------------------------------------------------
    # Back navigation
    # ------------------------------------------------------------------

    def go_back(self) -> StructuredQuestion:
        """Re-open the previous question and discard its recorded response."""
        if self._pending is not None:
            raise ValueError("Cannot step back: a response is still recording")
        if self._index == 0:
            raise ValueError("Cannot step back: already at the first question")
        self._index -= 1
        question = self._questions[self._index]
        self._responses.pop(question.id, None)
        self._other_open = False
        self._draft = ""
        return question

    # ------------------------------------------------------------------
    # Free-text editor
    # ------------------------------------------------------------------

    def open_other(self) -> None:
        question = self.current
        if question is None or not question.allow_other:
            raise ValueError("Cannot open free text: question does not allow other answers")
        self._other_open = True
        self._draft = ""

    def update_draft(self, text: str) -> None:
        if not self._other_open:
            raise ValueError("Cannot edit free text: the editor is not open")
        self._draft = text

    async def press_key(self, key: str, *, shift: bool = False) -> bool:
        """Handle a key press in the free-text editor.

        Returns True only when Enter committed a response.
        """
        if not self._other_open:
            raise ValueError("Cannot handle key: the free-text editor is not open")
        if key == "Escape":
            self._other_open = False
            self._draft = ""
            return False
        if key != "Enter":
            raise ValueError(f"Unsupported key: {key}")
        if shift:
            self._draft += "\n"
            return False

        question = self.current
        text = self._draft.strip()
        if question is None or not text:
            return False
        if self._pending == question.id:
            return False
        return await self._record(question, text, None)
