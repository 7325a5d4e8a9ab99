"""ConversationEngine — chat-based assessment as a message-passing state machine.

Callers feed discrete intents into :meth:`ConversationEngine.dispatch` and get
back an immutable :class:`ConversationState` snapshot; subscribers receive
every snapshot, including the transient completeness / summary phases.

Phases::

    GREETING -> FREEFORM_QA <-> STRUCTURED_QA -> COMPLETENESS_CHECK
             -> SUMMARY_PENDING -> SUMMARY_READY

Crisis detection is a side channel rather than a phase: all user-authored
text is scanned synchronously, before the engine awaits anything, and a
match sets a sticky flag that survives reloads and start-over.

The chat section of the session document is rewritten after every intent so
that a reload resumes where the parent left off.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from intake_engine.bridge import form_to_chat
from intake_engine.completeness import CategoryCompletenessPolicy, CompletenessPolicy
from intake_engine.constants import (
    CHAT_SECTION,
    CHILD_SECTION,
    CRISIS_RESOURCES,
    FORM_SECTION,
    RECORDING_DELAY,
    RESUBMIT_WINDOW,
)
from intake_engine.crisis import default_classifier
from intake_engine.errors import ResponderError
from intake_engine.interfaces import ChatResponder, CrisisClassifier
from intake_engine.models.form import form_from_wire
from intake_engine.models.intent import (
    AddMore,
    ConfirmSummary,
    EditOtherText,
    GoBack,
    PressKey,
    RetryLastMessage,
    SendMessage,
    StartOver,
    StartQuestions,
    SubmitAnswer,
    SwitchMode,
)
from intake_engine.models.message import Message, MessageMetadata
from intake_engine.models.question import AssessmentResponse, QuestionSection
from intake_engine.models.session import Session, SessionStatus
from intake_engine.models.state import ConversationPhase, ConversationState, QuestionView
from intake_engine.models.summary import AssessmentSummary
from intake_engine.question_bank import QuestionBank
from intake_engine.storage import SessionStore
from intake_engine.structured import StructuredQuestionFlow
from intake_engine.summary import chat_to_summary

logger = logging.getLogger(__name__)

Phase = ConversationPhase

GREETING_SUGGESTIONS = [
    "They've been feeling anxious",
    "Changes in mood or behavior",
    "Trouble at school",
    "I'm not sure where to start",
]
WELCOME_BACK = "Welcome back! Let's continue where we left off."
ADD_MORE_PROMPT = "Of course! What else would you like to share?"
SECTION_DONE = "Thank you, that's really helpful."
SUMMARY_READY_TEXT = (
    "Thank you for sharing all of this. I've put together a summary of what "
    "you've told me. Please take a look and let me know if anything is missing."
)
CRISIS_TEXT = (
    "It sounds like your child may be going through something really hard. "
    "If they are in immediate danger, please call 911. You can also call or "
    "text 988 any time to reach the Suicide & Crisis Lifeline."
)


def greeting_text(child_name: str | None) -> str:
    who = child_name or "your child"
    return (
        "Hi! I'm here to help you get started. I'll ask a few questions to "
        "understand what's going on, and you can share as much or as little "
        f"as you like. Tell me what's been going on with {who}."
    )


class ConversationEngine:
    """Orchestrates one session's chat assessment.

    Args:
        session_id: the onboarding session id (state is partitioned by it).
        store: session store used for all persistence.
        bank: loaded :class:`QuestionBank`.
        responder: optional external chat responder.  Without one the engine
            walks the question sections in bank order after each message.
        classifier: crisis classifier; defaults to the packaged keyword list.
            Scanning cannot be turned off.
        policy: completeness policy; defaults to
            :class:`CategoryCompletenessPolicy` over the bank.
        child_name: optional override; otherwise read from the child section.
        recording_delay: selection-feedback delay for structured answers.
    """

    def __init__(
        self,
        session_id: str,
        *,
        store: SessionStore,
        bank: QuestionBank,
        responder: ChatResponder | None = None,
        classifier: CrisisClassifier | None = None,
        policy: CompletenessPolicy | None = None,
        child_name: str | None = None,
        recording_delay: float = RECORDING_DELAY,
    ) -> None:
        self.session_id = session_id
        self._store = store
        self._bank = bank
        self._responder = responder
        self._classifier = classifier or default_classifier()
        self._policy = policy or CategoryCompletenessPolicy(bank)
        self._child_name = child_name
        self._delay = recording_delay

        self._session: Session = Session.new(session_id)
        self._phase = Phase.GREETING
        self._messages: list[Message] = []
        self._responses: dict[str, AssessmentResponse] = {}
        self._extracted: dict[str, Any] = {}
        self._section: QuestionSection | None = None
        self._flow: StructuredQuestionFlow | None = None
        self._suggestions: list[str] = []
        self._summary: AssessmentSummary | None = None
        self._error: str | None = None
        self._retry_text: str | None = None
        self._crisis_unsaved = False
        # (question_id, answer, monotonic time) of the last committed answer
        self._last_answer: tuple[str, str, float] | None = None
        self._subscribers: list[Callable[[ConversationState], None]] = []

        self._handlers = {
            "send_message": self._on_send_message,
            "start_questions": self._on_start_questions,
            "submit_answer": self._on_submit_answer,
            "edit_other_text": self._on_edit_other_text,
            "press_key": self._on_press_key,
            "go_back": self._on_go_back,
            "switch_mode": self._on_switch_mode,
            "retry_last_message": self._on_retry,
            "add_more": self._on_add_more,
            "confirm_summary": self._on_confirm_summary,
            "start_over": self._on_start_over,
        }

    # ==================================================================
    # Public API
    # ==================================================================

    @property
    def phase(self) -> ConversationPhase:
        return self._phase

    @property
    def crisis_detected(self) -> bool:
        return self._session.progress.crisis_detected

    def flag_crisis(self) -> bool:
        """Set the sticky crisis flag.  Returns False if it was already set."""
        if self._session.progress.crisis_detected:
            return False
        logger.warning("Crisis language detected in session %s", self.session_id)
        self._session.progress.crisis_detected = True
        self._crisis_unsaved = True
        self._add_message("system", CRISIS_TEXT, phase="crisis")
        return True

    async def scan_inbound(self, text: str) -> bool:
        """Scan *text* ahead of its intent and persist a new flag at once.

        May run while another intent of this session is still being
        handled (e.g. waiting on the responder).
        """
        if not self._classifier.detect(text):
            return False
        if self.flag_crisis():
            self._crisis_unsaved = False
            await self._store.save_session(self._session)
        return True

    def subscribe(self, callback: Callable[[ConversationState], None]) -> Callable[[], None]:
        """Register *callback* for every snapshot; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def snapshot(self) -> ConversationState:
        """Build an immutable view of the current state."""
        view = None
        if self._phase == Phase.STRUCTURED_QA and self._flow and self._flow.current:
            view = QuestionView(
                section_id=self._section.id,
                question=self._flow.current,
                index=self._flow.index,
                total=self._flow.total,
                recording=self._flow.recording,
                other_open=self._flow.other_open,
                other_draft=self._flow.other_draft,
            )
        crisis = self._session.progress.crisis_detected
        return ConversationState(
            session_id=self.session_id,
            status=self._session.status,
            mode=self._session.progress.mode,
            phase=self._phase,
            messages=list(self._messages),
            responses=list(self._responses.values()),
            current_question=view,
            suggested_replies=list(self._suggestions),
            crisis_detected=crisis,
            crisis_resources=list(CRISIS_RESOURCES) if crisis else [],
            summary=self._summary,
            summary_confirmed=self._session.progress.summary_confirmed,
            error=self._error,
            can_retry=self._retry_text is not None,
            storage_degraded=self._store.degraded,
        )

    async def start(self) -> ConversationState:
        """Restore the saved conversation, or greet the parent."""
        self._session = await self._store.load_session(self.session_id)
        if self._session.status == SessionStatus.EXPIRED:
            raise ValueError(f"Session {self.session_id} has expired")
        if self._child_name is None:
            child = await self._store.load_section(self.session_id, CHILD_SECTION) or {}
            self._child_name = child.get("firstName") or None
        self._session.progress.mode = "chat"

        chat = await self._store.load_section(self.session_id, CHAT_SECTION)
        if chat and chat.get("messages"):
            self._restore(chat)
            self._add_message("ai", WELCOME_BACK, phase="restore")
            logger.info(
                "Restored conversation %s: %d messages, %d responses",
                self.session_id, len(self._messages), len(self._responses),
            )
        else:
            self._greet()
            form = await self._store.load_section(self.session_id, FORM_SECTION)
            if form:
                bridged = form_to_chat(form_from_wire(form))
                self._extracted.update(bridged["extractedData"])
                if bridged["contextNote"]:
                    self._add_message("system", bridged["contextNote"], phase="bridge")

        stored = await self._store.load_summary(self.session_id)
        if stored is not None and self._phase == Phase.SUMMARY_READY:
            self._summary = stored.summary

        await self._store.save_session(self._session)
        await self._persist()
        return self._emit()

    async def dispatch(self, intent: Any) -> ConversationState:
        """Apply one intent and return the resulting snapshot.

        Raises ``ValueError`` for intents that are not valid in the
        current phase.
        """
        handler = self._handlers.get(getattr(intent, "kind", None))
        if handler is None:
            raise ValueError(f"Unsupported intent for conversation: {intent!r}")
        try:
            await handler(intent)
        finally:
            # The flag must reach storage even when the intent itself fails
            if self._crisis_unsaved:
                self._crisis_unsaved = False
                await self._store.save_session(self._session)
        await self._persist()
        return self._emit()

    # ==================================================================
    # Intent handlers
    # ==================================================================

    async def _on_send_message(self, intent: SendMessage) -> None:
        text = intent.text.strip()
        if not text:
            raise ValueError("Cannot send an empty message")
        if self._phase == Phase.STRUCTURED_QA:
            raise ValueError("Cannot send a message while a structured question is open")
        if self._phase == Phase.SUMMARY_PENDING:
            raise ValueError("Cannot send a message while the summary is being generated")

        self._add_message("user", text, phase="freeform")
        # Scan before anything is awaited
        self._scan(text)
        self._phase = Phase.FREEFORM_QA
        self._error = None
        await self._reply(text)

    async def _on_retry(self, intent: RetryLastMessage) -> None:
        if self._retry_text is None:
            raise ValueError("Cannot retry: no failed message")
        self._error = None
        await self._reply(self._retry_text)

    async def _on_start_questions(self, intent: StartQuestions) -> None:
        if self._phase in (Phase.STRUCTURED_QA, Phase.SUMMARY_PENDING):
            raise ValueError(f"Cannot start questions during {self._phase.value}")
        if intent.section_id is not None:
            section = self._bank.get_section(intent.section_id)
        else:
            section = self._bank.next_section(self._responses)
            if section is None:
                raise ValueError("Cannot start questions: every section is answered")
        self._open_section(section)

    async def _on_submit_answer(self, intent: SubmitAnswer) -> None:
        self._scan(intent.answer)
        if self._is_resubmit(intent):
            logger.debug(
                "Ignoring repeated submit for %s in session %s",
                intent.question_id, self.session_id,
            )
            return
        flow = self._require_flow("submit an answer")
        recorded = await flow.submit(intent.question_id, intent.answer)
        if recorded:
            self._last_answer = (intent.question_id, intent.answer, time.monotonic())
            await self._after_answer(intent.question_id)

    def _is_resubmit(self, intent: SubmitAnswer) -> bool:
        """True for a repeat of the answer committed within the resubmit window.

        Requests are serialised per session, so a double submit usually
        arrives after the first one has already advanced the flow.
        """
        if self._last_answer is None:
            return False
        question_id, answer, at = self._last_answer
        if (question_id, answer) != (intent.question_id, intent.answer):
            return False
        return time.monotonic() - at <= self._delay + RESUBMIT_WINDOW

    async def _on_edit_other_text(self, intent: EditOtherText) -> None:
        self._require_flow("edit free text").update_draft(intent.text)

    async def _on_press_key(self, intent: PressKey) -> None:
        flow = self._require_flow("handle a key press")
        question = flow.current
        if intent.key == "Enter" and not intent.shift:
            self._scan(flow.other_draft)
        recorded = await flow.press_key(intent.key, shift=intent.shift)
        if recorded and question is not None:
            await self._after_answer(question.id)

    async def _on_go_back(self, intent: GoBack) -> None:
        flow = self._require_flow("step back")
        flow.go_back()
        self._last_answer = None

    async def _on_switch_mode(self, intent: SwitchMode) -> None:
        if intent.target == "chat":
            return
        self._session.progress.mode = "form"
        await self._store.save_session(self._session)
        logger.info("Session %s switched to form mode", self.session_id)

    async def _on_add_more(self, intent: AddMore) -> None:
        if self._phase != Phase.SUMMARY_READY:
            raise ValueError("Cannot add more: the summary is not ready")
        self._phase = Phase.FREEFORM_QA
        self._add_message("ai", ADD_MORE_PROMPT, phase="freeform")

    async def _on_confirm_summary(self, intent: ConfirmSummary) -> None:
        if self._phase != Phase.SUMMARY_READY:
            raise ValueError("Cannot confirm: the summary is not ready")
        self._session.progress.summary_confirmed = True
        await self._store.save_session(self._session)

    async def _on_start_over(self, intent: StartOver) -> None:
        if self._flow is not None and self._flow.recording:
            raise ValueError("Cannot start over: a response is still recording")
        self._session = await self._store.start_over(self.session_id)
        self._last_answer = None
        self._messages = []
        self._responses = {}
        self._extracted = {}
        self._section = None
        self._flow = None
        self._summary = None
        self._error = None
        self._retry_text = None
        self._greet()

    # ==================================================================
    # Conversation steps
    # ==================================================================

    def _scan(self, text: str) -> None:
        if text and self._classifier.detect(text):
            self.flag_crisis()

    def _greet(self) -> None:
        self._phase = Phase.GREETING
        self._add_message("ai", greeting_text(self._child_name), phase="greeting")
        self._suggestions = list(GREETING_SUGGESTIONS)

    async def _reply(self, text: str) -> None:
        """Ask the responder for a reply; fall back to the question sections."""
        self._suggestions = []
        start_section: str | None = None
        if self._responder is not None:
            context = {
                "extractedData": dict(self._extracted),
                "childName": self._child_name,
                "unansweredSections": self._bank.unanswered_sections(self._responses),
            }
            try:
                reply = await self._responder.respond(
                    self.session_id, list(self._messages), context
                )
            except ResponderError as exc:
                logger.warning("Responder failed for session %s: %s", self.session_id, exc)
                self._error = "Sorry, something went wrong. Please try again."
                self._retry_text = text
                return
            self._retry_text = None
            self._extracted.update(reply.extracted)
            self._suggestions = list(reply.suggested_replies)
            self._add_message("ai", reply.content, phase="freeform")
            start_section = reply.start_section
        else:
            self._retry_text = None

        if start_section is not None:
            self._open_section(self._bank.get_section(start_section))
            return
        if await self._check_completeness():
            return
        if self._responder is None:
            section = self._bank.next_section(self._responses)
            if section is not None:
                self._open_section(section)

    def _open_section(self, section: QuestionSection, *, announce: bool = True) -> None:
        answered = set(self._responses)
        start = next(
            (i for i, q in enumerate(section.questions) if q.id not in answered),
            0,
        )
        self._section = section
        self._flow = StructuredQuestionFlow(
            section.questions,
            responses=self._responses,
            recording_delay=self._delay,
            start_index=start,
        )
        self._phase = Phase.STRUCTURED_QA
        self._suggestions = []
        if announce and section.intro:
            self._add_message("ai", section.intro, phase="structured")
        logger.debug("Session %s opened section %s at %d", self.session_id, section.id, start)

    async def _after_answer(self, question_id: str) -> None:
        response = self._responses[question_id]
        self._add_message(
            "user",
            response.response_text,
            phase="structured",
            question_id=question_id,
            score=response.response_value,
        )
        if self._flow is not None and self._flow.finished:
            self._flow = None
            self._section = None
            self._phase = Phase.FREEFORM_QA
            self._add_message("ai", SECTION_DONE, phase="structured")
            if not await self._check_completeness() and self._responder is None:
                section = self._bank.next_section(self._responses)
                if section is not None:
                    self._open_section(section)

    async def _check_completeness(self) -> bool:
        """Run the completeness policy; on success synthesize the summary."""
        previous = self._phase
        self._phase = Phase.COMPLETENESS_CHECK
        self._emit()
        if not self._policy(list(self._responses.values()), list(self._messages)):
            self._phase = previous
            return False

        self._phase = Phase.SUMMARY_PENDING
        self._emit()
        self._summary = chat_to_summary(
            self._chat_document(),
            self._responses.values(),
            questions=self._bank.questions,
            child_name=self._child_name,
        )
        await self._store.save_summary(self.session_id, self._summary)
        self._session.status = SessionStatus.ASSESSMENT_COMPLETE
        self._session.progress.summary_confirmed = False
        await self._store.save_session(self._session)
        self._phase = Phase.SUMMARY_READY
        self._add_message("ai", SUMMARY_READY_TEXT, phase="summary")
        logger.info("Session %s chat assessment complete", self.session_id)
        return True

    # ==================================================================
    # Helpers
    # ==================================================================

    def _require_flow(self, action: str) -> StructuredQuestionFlow:
        if self._phase != Phase.STRUCTURED_QA or self._flow is None:
            raise ValueError(f"Cannot {action}: no structured question is open")
        return self._flow

    def _add_message(
        self,
        sender: str,
        content: str,
        *,
        phase: str | None = None,
        question_id: str | None = None,
        score: int | None = None,
    ) -> None:
        metadata = MessageMetadata(phase=phase, question_id=question_id, score=score)
        self._messages.append(Message(sender=sender, content=content, metadata=metadata))

    def _emit(self) -> ConversationState:
        state = self.snapshot()
        for callback in list(self._subscribers):
            callback(state)
        return state

    def _chat_document(self) -> dict[str, Any]:
        return {
            "phase": self._phase.value,
            "messages": [m.to_wire() for m in self._messages],
            "responses": [r.to_wire() for r in self._responses.values()],
            "extractedData": dict(self._extracted),
            "sectionId": self._section.id if self._section else None,
            "questionIndex": self._flow.index if self._flow else None,
            "summary": self._summary.to_wire() if self._summary else None,
        }

    async def _persist(self) -> None:
        await self._store.save(self.session_id, CHAT_SECTION, self._chat_document())

    def _restore(self, chat: dict[str, Any]) -> None:
        self._messages = [Message.model_validate(m) for m in chat.get("messages", [])]
        self._responses = {}
        for raw in chat.get("responses") or []:
            response = AssessmentResponse.model_validate(raw)
            self._responses[response.question_id] = response
        self._extracted = dict(chat.get("extractedData") or {})
        try:
            self._phase = Phase(chat.get("phase", Phase.FREEFORM_QA.value))
        except ValueError:
            self._phase = Phase.FREEFORM_QA
        # Transient phases never survive a reload
        if self._phase in (Phase.COMPLETENESS_CHECK, Phase.SUMMARY_PENDING, Phase.GREETING):
            self._phase = Phase.FREEFORM_QA

        section = self._bank.sections.get(chat.get("sectionId"))
        if self._phase == Phase.STRUCTURED_QA and section is not None and any(
            q.id not in self._responses for q in section.questions
        ):
            self._open_section(section, announce=False)
        elif self._phase == Phase.STRUCTURED_QA:
            self._phase = Phase.FREEFORM_QA
        if chat.get("summary") and self._phase == Phase.SUMMARY_READY:
            self._summary = AssessmentSummary.model_validate(chat["summary"])

