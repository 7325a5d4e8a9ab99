"""ConversationEngine tests — phases, crisis side channel, responder, restore.

Engines run with ``recording_delay=0`` and the in-memory store, so every
test is a plain sequence of intents.
"""

import asyncio
from datetime import timedelta

import pytest

from intake_engine.constants import CHILD_SECTION, FORM_SECTION
from intake_engine.conversation import (
    ADD_MORE_PROMPT,
    CRISIS_TEXT,
    GREETING_SUGGESTIONS,
    WELCOME_BACK,
    ConversationEngine,
)
from intake_engine.errors import ResponderError
from intake_engine.interfaces import ChatResponder
from intake_engine.models.base import utcnow
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
from intake_engine.models.message import ResponderReply
from intake_engine.models.session import Session, SessionStatus
from intake_engine.models.state import ConversationPhase as Phase

OPENING = "I'm worried about my son, he seems sad and withdrawn all the time"


class FakeResponder(ChatResponder):
    """Replays canned replies and records what it was asked."""

    def __init__(self, *replies: ResponderReply):
        self.replies = list(replies)
        self.calls = []

    async def respond(self, session_id, messages, context):
        self.calls.append((session_id, [m.content for m in messages], context))
        if self.replies:
            return self.replies.pop(0)
        return ResponderReply(content="Tell me more.")


class FailingResponder(FakeResponder):
    """Fails the first ``failures`` calls, then behaves like FakeResponder."""

    def __init__(self, failures: int = 1, *replies: ResponderReply):
        super().__init__(*replies)
        self.failures = failures

    async def respond(self, session_id, messages, context):
        if self.failures:
            self.failures -= 1
            raise ResponderError("upstream timeout")
        return await super().respond(session_id, messages, context)


class GatedResponder(ChatResponder):
    """Blocks in ``respond`` until :attr:`release` is set."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def respond(self, session_id, messages, context):
        self.entered.set()
        await self.release.wait()
        return ResponderReply(content="Thanks for telling me.")


def make_engine(store, bank, classifier=None, **kwargs):
    kwargs.setdefault("recording_delay", 0)
    return ConversationEngine(
        "s1", store=store, bank=bank, classifier=classifier, **kwargs
    )


async def answer_section(engine, bank, section_id, answer="Not at all"):
    state = None
    for question in bank.get_section(section_id).questions:
        state = await engine.dispatch(SubmitAnswer(question_id=question.id, answer=answer))
    return state


async def complete_chat(engine, bank):
    await engine.start()
    await engine.dispatch(SendMessage(text=OPENING))
    await answer_section(engine, bank, "phq_a")
    return await answer_section(engine, bank, "gad_7", "More than half the days")


# =====================================================================
# Greeting and free-form
# =====================================================================


class TestGreeting:

    @pytest.mark.asyncio
    async def test_fresh_session_greets(self, store, bank):
        state = await make_engine(store, bank).start()

        assert state.phase == Phase.GREETING
        assert state.status == SessionStatus.IN_PROGRESS
        assert len(state.messages) == 1
        assert state.messages[0].sender == "ai"
        assert state.suggested_replies == GREETING_SUGGESTIONS

    @pytest.mark.asyncio
    async def test_greeting_uses_child_name(self, store, bank):
        await store.save("s1", CHILD_SECTION, {"firstName": "Maya"})
        state = await make_engine(store, bank).start()
        assert "Maya" in state.messages[0].content

    @pytest.mark.asyncio
    async def test_form_values_acknowledged(self, store, bank):
        await store.save(
            "s1", FORM_SECTION, {"primaryConcerns": "Panic before tests", "concernSeverity": 4}
        )
        state = await make_engine(store, bank).start()

        note = state.messages[-1]
        assert note.sender == "system"
        assert "Panic before tests" in note.content
        assert "severity significant" in note.content

    @pytest.mark.asyncio
    async def test_expired_session_refused(self, store, bank):
        await store.save_session(Session.new("s1", now=utcnow() - timedelta(days=31)))
        with pytest.raises(ValueError, match="has expired"):
            await make_engine(store, bank).start()

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        with pytest.raises(ValueError, match="empty"):
            await engine.dispatch(SendMessage(text="   "))

    @pytest.mark.asyncio
    async def test_message_opens_first_section(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        state = await engine.dispatch(SendMessage(text=OPENING))

        assert state.phase == Phase.STRUCTURED_QA
        assert state.current_question.section_id == "phq_a"
        assert state.current_question.question.id == "phq_a_1"
        assert state.current_question.total == 9

    @pytest.mark.asyncio
    async def test_message_refused_while_question_open(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(SendMessage(text=OPENING))
        with pytest.raises(ValueError, match="Cannot send"):
            await engine.dispatch(SendMessage(text="one more thing"))

    @pytest.mark.asyncio
    async def test_unsupported_intent(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        with pytest.raises(ValueError, match="Unsupported intent"):
            await engine.dispatch(object())


# =====================================================================
# Structured questions
# =====================================================================


class TestStructuredQuestions:

    @pytest.mark.asyncio
    async def test_answer_is_echoed_as_user_message(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(SendMessage(text=OPENING))
        state = await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))

        echo = state.messages[-1]
        assert echo.sender == "user"
        assert echo.metadata.question_id == "phq_a_1"
        assert echo.metadata.score == 1
        assert state.current_question.question.id == "phq_a_2"

    @pytest.mark.asyncio
    async def test_finished_section_opens_next(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(SendMessage(text=OPENING))
        state = await answer_section(engine, bank, "phq_a")

        assert state.phase == Phase.STRUCTURED_QA
        assert state.current_question.section_id == "gad_7"

    @pytest.mark.asyncio
    async def test_go_back_discards_answer(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(SendMessage(text=OPENING))
        await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))
        state = await engine.dispatch(GoBack())

        assert state.current_question.question.id == "phq_a_1"
        assert state.responses == []

    @pytest.mark.asyncio
    async def test_start_specific_section(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        state = await engine.dispatch(StartQuestions(section_id="context"))
        assert state.current_question.question.id == "context_support"

    @pytest.mark.asyncio
    async def test_other_text_via_keys(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(StartQuestions(section_id="context"))
        state = await engine.dispatch(SubmitAnswer(question_id="context_support", answer="Other"))
        assert state.current_question.other_open

        await engine.dispatch(EditOtherText(text="Play therapy when she was six"))
        state = await engine.dispatch(PressKey(key="Enter"))

        assert state.responses[0].response_text == "Play therapy when she was six"
        assert state.current_question.question.id == "context_trigger"

    @pytest.mark.asyncio
    async def test_answer_without_open_question(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        with pytest.raises(ValueError, match="no structured question is open"):
            await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))

    @pytest.mark.asyncio
    async def test_double_submit_is_ignored(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(SendMessage(text=OPENING))
        first = await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))
        second = await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))

        assert second.current_question.question.id == "phq_a_2"
        assert len(second.responses) == 1
        assert len(second.messages) == len(first.messages)

    @pytest.mark.asyncio
    async def test_late_repeat_is_refused(self, store, bank, monkeypatch):
        monkeypatch.setattr("intake_engine.conversation.RESUBMIT_WINDOW", -1)
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(SendMessage(text=OPENING))
        await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))

        with pytest.raises(ValueError, match="current question is phq_a_2"):
            await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))

    @pytest.mark.asyncio
    async def test_same_answer_after_go_back_is_recorded(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(SendMessage(text=OPENING))
        await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))
        await engine.dispatch(GoBack())
        state = await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))

        assert [r.question_id for r in state.responses] == ["phq_a_1"]
        assert state.current_question.question.id == "phq_a_2"


# =====================================================================
# Completeness and summary
# =====================================================================


class TestSummary:

    @pytest.mark.asyncio
    async def test_required_sections_complete_the_chat(self, store, bank):
        engine = make_engine(store, bank)
        state = await complete_chat(engine, bank)

        assert state.phase == Phase.SUMMARY_READY
        assert state.status == SessionStatus.ASSESSMENT_COMPLETE
        assert state.summary.source == "chat"
        # "worried" in the opening message; anxiety total 14 -> band 3
        assert state.summary.metadata.concern_severity == 3
        assert "Anxiety management and coping strategies" in state.summary.recommended_focus

        stored = await store.load_summary("s1")
        assert stored.summary == state.summary
        session = await store.load_session("s1")
        assert session.status == SessionStatus.ASSESSMENT_COMPLETE

    @pytest.mark.asyncio
    async def test_transient_phases_are_emitted(self, store, bank):
        engine = make_engine(store, bank)
        phases = []
        engine.subscribe(lambda s: phases.append(s.phase))

        await complete_chat(engine, bank)

        assert Phase.COMPLETENESS_CHECK in phases
        i = phases.index(Phase.SUMMARY_PENDING)
        assert Phase.SUMMARY_READY in phases[i:]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, store, bank):
        engine = make_engine(store, bank)
        seen = []
        unsubscribe = engine.subscribe(seen.append)
        await engine.start()
        unsubscribe()
        await engine.dispatch(SendMessage(text=OPENING))
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_structured_answers_alone_not_enough(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(StartQuestions(section_id="phq_a"))
        await answer_section(engine, bank, "phq_a")
        # gad_7 opens on its own once phq_a is finished
        state = await answer_section(engine, bank, "gad_7")

        # No free-form message from the parent yet
        assert state.phase != Phase.SUMMARY_READY
        assert state.summary is None

    @pytest.mark.asyncio
    async def test_confirm_summary(self, store, bank):
        engine = make_engine(store, bank)
        await complete_chat(engine, bank)
        state = await engine.dispatch(ConfirmSummary())
        assert state.summary_confirmed

    @pytest.mark.asyncio
    async def test_confirm_before_ready(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        with pytest.raises(ValueError, match="not ready"):
            await engine.dispatch(ConfirmSummary())

    @pytest.mark.asyncio
    async def test_add_more_reopens_chat(self, store, bank):
        engine = make_engine(store, bank)
        await complete_chat(engine, bank)
        state = await engine.dispatch(AddMore())

        assert state.phase == Phase.FREEFORM_QA
        assert state.messages[-1].content == ADD_MORE_PROMPT


# =====================================================================
# Crisis side channel
# =====================================================================


class TestCrisis:

    @pytest.mark.asyncio
    async def test_freeform_message_flags_crisis(self, store, bank, classifier):
        engine = make_engine(store, bank, classifier)
        await engine.start()
        state = await engine.dispatch(SendMessage(text="Last night he said he wants to die"))

        assert state.crisis_detected
        assert state.crisis_resources
        assert any(m.content == CRISIS_TEXT for m in state.messages)

    @pytest.mark.asyncio
    async def test_other_text_is_scanned(self, store, bank, classifier):
        engine = make_engine(store, bank, classifier)
        await engine.start()
        await engine.dispatch(StartQuestions(section_id="context"))
        state = await engine.dispatch(
            SubmitAnswer(question_id="context_support", answer="After the self-harm last spring")
        )
        assert state.crisis_detected

    @pytest.mark.asyncio
    async def test_crisis_notice_added_once(self, store, bank, classifier):
        engine = make_engine(store, bank, classifier)
        await engine.start()
        await engine.dispatch(StartQuestions(section_id="context"))
        await engine.dispatch(
            SubmitAnswer(question_id="context_support", answer="She has been cutting")
        )
        state = await engine.dispatch(
            SubmitAnswer(question_id="context_trigger", answer="She talked about suicide")
        )
        assert sum(1 for m in state.messages if m.content == CRISIS_TEXT) == 1

    @pytest.mark.asyncio
    async def test_crisis_survives_start_over(self, store, bank, classifier):
        engine = make_engine(store, bank, classifier)
        await engine.start()
        await engine.dispatch(SendMessage(text="She told me she wants to die"))
        state = await engine.dispatch(StartOver())

        assert state.phase == Phase.GREETING
        assert len(state.messages) == 1
        assert state.crisis_detected

    @pytest.mark.asyncio
    async def test_crisis_survives_reload(self, store, bank, classifier):
        engine = make_engine(store, bank, classifier)
        await engine.start()
        await engine.dispatch(SendMessage(text="He keeps hurting himself"))

        state = await make_engine(store, bank, classifier).start()
        assert state.crisis_detected

    @pytest.mark.asyncio
    async def test_ordinary_text_not_flagged(self, store, bank, classifier):
        engine = make_engine(store, bank, classifier)
        await engine.start()
        state = await engine.dispatch(SendMessage(text=OPENING))
        assert not state.crisis_detected
        assert state.crisis_resources == []

    @pytest.mark.asyncio
    async def test_scanning_is_on_without_a_classifier(self, store, bank):
        engine = ConversationEngine("s1", store=store, bank=bank, recording_delay=0)
        await engine.start()
        state = await engine.dispatch(SendMessage(text="He said he wants to die"))
        assert state.crisis_detected

    @pytest.mark.asyncio
    async def test_scan_inbound_while_responder_is_busy(self, store, bank):
        responder = GatedResponder()
        engine = make_engine(store, bank, responder=responder)
        await engine.start()
        busy = asyncio.create_task(engine.dispatch(SendMessage(text=OPENING)))
        await responder.entered.wait()

        assert await engine.scan_inbound("she wants to kill herself") is True
        stored = await store.load_session("s1")
        assert stored.progress.crisis_detected
        assert not busy.done()

        responder.release.set()
        state = await busy
        assert state.crisis_detected
        assert sum(1 for m in state.messages if m.content == CRISIS_TEXT) == 1

    @pytest.mark.asyncio
    async def test_scan_inbound_ignores_ordinary_text(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        assert await engine.scan_inbound(OPENING) is False
        assert not engine.crisis_detected


# =====================================================================
# External responder
# =====================================================================


class TestResponder:

    @pytest.mark.asyncio
    async def test_reply_and_context(self, store, bank):
        responder = FakeResponder(
            ResponderReply(
                content="How long has this been going on?",
                suggested_replies=["A few weeks", "Months"],
                extracted={"primaryConcerns": "sad and withdrawn"},
            )
        )
        engine = make_engine(store, bank, responder=responder)
        await engine.start()
        state = await engine.dispatch(SendMessage(text=OPENING))

        assert state.phase == Phase.FREEFORM_QA
        assert state.messages[-1].content == "How long has this been going on?"
        assert state.suggested_replies == ["A few weeks", "Months"]
        session_id, contents, context = responder.calls[0]
        assert session_id == "s1"
        assert contents[-1] == OPENING
        assert context["unansweredSections"] == ["phq_a", "gad_7", "context"]

    @pytest.mark.asyncio
    async def test_responder_can_open_section(self, store, bank):
        responder = FakeResponder(
            ResponderReply(content="A few quick questions.", start_section="gad_7")
        )
        engine = make_engine(store, bank, responder=responder)
        await engine.start()
        state = await engine.dispatch(SendMessage(text=OPENING))

        assert state.phase == Phase.STRUCTURED_QA
        assert state.current_question.section_id == "gad_7"

    @pytest.mark.asyncio
    async def test_failure_offers_retry(self, store, bank):
        engine = make_engine(store, bank, responder=FailingResponder(1))
        await engine.start()
        state = await engine.dispatch(SendMessage(text=OPENING))

        assert state.error
        assert state.can_retry
        # The parent's message is kept
        assert state.messages[-1].content == OPENING

        state = await engine.dispatch(RetryLastMessage())
        assert state.error is None
        assert not state.can_retry
        assert state.messages[-1].content == "Tell me more."

    @pytest.mark.asyncio
    async def test_retry_without_failure(self, store, bank):
        engine = make_engine(store, bank, responder=FakeResponder())
        await engine.start()
        with pytest.raises(ValueError, match="no failed message"):
            await engine.dispatch(RetryLastMessage())


# =====================================================================
# Persistence
# =====================================================================


class TestRestore:

    @pytest.mark.asyncio
    async def test_resume_at_open_question(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        await engine.dispatch(SendMessage(text=OPENING))
        await engine.dispatch(SubmitAnswer(question_id="phq_a_1", answer="Several days"))
        await engine.dispatch(SubmitAnswer(question_id="phq_a_2", answer="Not at all"))

        state = await make_engine(store, bank).start()

        assert state.phase == Phase.STRUCTURED_QA
        assert state.current_question.question.id == "phq_a_3"
        assert {r.question_id for r in state.responses} == {"phq_a_1", "phq_a_2"}
        assert state.messages[-1].content == WELCOME_BACK

    @pytest.mark.asyncio
    async def test_resume_summary_ready(self, store, bank):
        await complete_chat(make_engine(store, bank), bank)

        state = await make_engine(store, bank).start()
        assert state.phase == Phase.SUMMARY_READY
        assert state.summary is not None

    @pytest.mark.asyncio
    async def test_switch_to_form_persisted(self, store, bank):
        engine = make_engine(store, bank)
        await engine.start()
        state = await engine.dispatch(SwitchMode(target="form"))

        assert state.mode == "form"
        session = await store.load_session("s1")
        assert session.progress.mode == "form"

    @pytest.mark.asyncio
    async def test_start_over_clears_chat(self, store, bank):
        engine = make_engine(store, bank)
        await complete_chat(engine, bank)
        state = await engine.dispatch(StartOver())

        assert state.responses == []
        assert state.summary is None
        assert await store.load_summary("s1") is None
        chat = await store.load_section("s1", "chat")
        assert len(chat["messages"]) == 1
