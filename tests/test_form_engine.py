"""FormEngine tests — keystrokes vs blur, debounced auto-save, navigation, submit."""

import pytest

from intake_engine.constants import CHAT_SECTION, FORM_SECTION
from intake_engine.form import FormEngine
from intake_engine.models.intent import (
    BlurField,
    GoBack,
    NextPage,
    RetrySave,
    SaveField,
    SetField,
    SubmitForm,
    SwitchMode,
)
from intake_engine.models.session import SessionStatus

KEY = "onboarding_session_s1"

PAGE1 = {
    "primary_concerns": "She gets stomach aches every school morning",
    "concern_duration": "3-6-months",
    "concern_severity": 4,
}


def make_engine(store, **kwargs):
    kwargs.setdefault("debounce", 0.01)
    return FormEngine("s1", store=store, **kwargs)


async def fill_page(engine, values):
    for field, value in values.items():
        await engine.dispatch(SaveField(field=field, value=value))


async def to_last_page(engine):
    await engine.start()
    await fill_page(engine, PAGE1)
    await engine.dispatch(NextPage())
    await engine.dispatch(NextPage())


# =====================================================================
# Field edits
# =====================================================================


class TestFieldEdits:

    @pytest.mark.asyncio
    async def test_keystrokes_do_not_validate(self, store):
        engine = make_engine(store)
        await engine.start()
        state = await engine.dispatch(SetField(field="concern_severity", value=9))

        assert state.values["concern_severity"] == 9
        assert state.errors == {}
        assert not state.saving

    @pytest.mark.asyncio
    async def test_blur_validates_field(self, store):
        engine = make_engine(store)
        await engine.start()
        await engine.dispatch(SetField(field="concern_severity", value=9))
        state = await engine.dispatch(BlurField(field="concern_severity"))

        assert state.errors == {"concern_severity": "Severity must be between 1 and 5"}
        assert state.saving

    @pytest.mark.asyncio
    async def test_fixing_field_clears_error(self, store):
        engine = make_engine(store)
        await engine.start()
        await engine.dispatch(SaveField(field="concern_severity", value=0))
        state = await engine.dispatch(SaveField(field="concern_severity", value=2))
        assert "concern_severity" not in state.errors

    @pytest.mark.asyncio
    async def test_field_from_another_page(self, store):
        engine = make_engine(store)
        await engine.start()
        with pytest.raises(ValueError, match="not on page 1"):
            await engine.dispatch(SetField(field="therapy_goals", value="x"))


# =====================================================================
# Auto-save
# =====================================================================


class TestAutoSave:

    @pytest.mark.asyncio
    async def test_rapid_blurs_coalesce(self, store, backend):
        """Two blurs inside the debounce window produce one write."""
        engine = make_engine(store, debounce=0.05)
        await engine.start()
        before = len(backend.writes_for(KEY))

        await engine.dispatch(SaveField(field="primary_concerns", value="First draft of it"))
        await engine.dispatch(SaveField(field="primary_concerns", value="Second, final version"))
        await engine.saver.drain()

        writes = backend.writes_for(KEY)[before:]
        assert len(writes) == 1
        assert writes[0]["data"][FORM_SECTION]["primaryConcerns"] == "Second, final version"

    @pytest.mark.asyncio
    async def test_save_merges_with_earlier_fields(self, store):
        engine = make_engine(store)
        await engine.start()
        await engine.dispatch(SaveField(field="concern_severity", value=3))
        await engine.saver.drain()
        await engine.dispatch(SaveField(field="concern_duration", value="1-3-months"))
        await engine.saver.drain()

        section = await store.load_section("s1", FORM_SECTION)
        assert section == {"concernSeverity": 3, "concernDuration": "1-3-months"}

    @pytest.mark.asyncio
    async def test_pending_save_survives_close(self, store):
        engine = make_engine(store)
        await engine.start()
        await engine.dispatch(SaveField(field="concern_severity", value=5))
        await engine.close()
        await engine.saver.drain()

        assert engine.saver.detached
        section = await store.load_section("s1", FORM_SECTION)
        assert section["concernSeverity"] == 5

    @pytest.mark.asyncio
    async def test_failed_background_write_is_not_raised(self, store, backend):
        engine = make_engine(store)
        await engine.start()
        backend.disabled = True

        await engine.dispatch(SaveField(field="concern_severity", value=5))
        await engine.saver.drain()

        assert store.degraded
        assert engine.snapshot().storage_degraded


class TestSaveStatus:

    @pytest.mark.asyncio
    async def test_idle_then_saving_then_saved(self, store):
        engine = make_engine(store)
        state = await engine.start()
        assert state.save_status == "idle"
        assert state.last_saved is None

        state = await engine.dispatch(SaveField(field="concern_severity", value=3))
        assert state.save_status == "saving"

        await engine.saver.drain()
        state = engine.snapshot()
        assert state.save_status == "saved"
        assert state.last_saved is not None
        assert state.save_error is None

    @pytest.mark.asyncio
    async def test_failed_write_reports_error(self, store, backend):
        engine = make_engine(store)
        await engine.start()
        backend.disabled = True

        await engine.dispatch(SaveField(field="concern_severity", value=5))
        await engine.saver.drain()

        state = engine.snapshot()
        assert state.save_status == "error"
        assert "not saved" in state.save_error

    @pytest.mark.asyncio
    async def test_retry_resends_failed_data(self, store, backend):
        engine = make_engine(store)
        await engine.start()
        backend.disabled = True
        await engine.dispatch(SaveField(field="concern_severity", value=5))
        await engine.saver.drain()

        backend.disabled = False
        state = await engine.dispatch(RetrySave())

        assert state.save_status == "saved"
        assert not state.storage_degraded
        section = await store.load_section("s1", FORM_SECTION)
        assert section["concernSeverity"] == 5

    @pytest.mark.asyncio
    async def test_later_save_clears_error(self, store, backend):
        engine = make_engine(store)
        await engine.start()
        backend.disabled = True
        await engine.dispatch(SaveField(field="concern_severity", value=5))
        await engine.saver.drain()

        backend.disabled = False
        await engine.dispatch(SaveField(field="concern_duration", value="1-3-months"))
        await engine.saver.drain()

        assert engine.snapshot().save_status == "saved"
        section = await store.load_section("s1", FORM_SECTION)
        assert section == {"concernSeverity": 5, "concernDuration": "1-3-months"}

    @pytest.mark.asyncio
    async def test_completion_follows_values(self, store):
        engine = make_engine(store)
        await engine.start()
        state = await engine.dispatch(
            SaveField(field="primary_concerns", value=PAGE1["primary_concerns"])
        )
        assert state.completion.required_complete == 1
        assert state.completion.overall_percentage == 25


# =====================================================================
# Navigation
# =====================================================================


class TestNavigation:

    @pytest.mark.asyncio
    async def test_invalid_page_blocks_next(self, store):
        engine = make_engine(store)
        await engine.start()
        await engine.dispatch(SaveField(field="primary_concerns", value="Too short"))
        state = await engine.dispatch(NextPage())

        assert state.page == 1
        assert set(state.errors) == {"primary_concerns", "concern_duration", "concern_severity"}

    @pytest.mark.asyncio
    async def test_valid_page_advances_and_saves(self, store):
        engine = make_engine(store)
        await engine.start()
        await fill_page(engine, PAGE1)
        state = await engine.dispatch(NextPage())

        assert state.page == 2
        assert state.completed_pages == [1]
        assert state.errors == {}
        # Flushed without waiting for the debounce window
        section = await store.load_section("s1", FORM_SECTION)
        assert section["primaryConcerns"] == PAGE1["primary_concerns"]
        session = await store.load_session("s1")
        assert session.progress.form_page == 2

    @pytest.mark.asyncio
    async def test_empty_page_two_is_valid(self, store):
        engine = make_engine(store)
        await to_last_page(engine)
        state = engine.snapshot()
        assert state.page == 3
        assert state.completed_pages == [1, 2]

    @pytest.mark.asyncio
    async def test_next_on_last_page(self, store):
        engine = make_engine(store)
        await to_last_page(engine)
        with pytest.raises(ValueError, match="last page"):
            await engine.dispatch(NextPage())

    @pytest.mark.asyncio
    async def test_back_keeps_values(self, store):
        engine = make_engine(store)
        await engine.start()
        await fill_page(engine, PAGE1)
        await engine.dispatch(NextPage())
        state = await engine.dispatch(GoBack())

        assert state.page == 1
        assert state.values["concern_severity"] == 4

    @pytest.mark.asyncio
    async def test_back_from_first_page_switches_to_chat(self, store):
        engine = make_engine(store)
        await engine.start()
        state = await engine.dispatch(GoBack())

        assert state.mode == "chat"
        session = await store.load_session("s1")
        assert session.progress.mode == "chat"

    @pytest.mark.asyncio
    async def test_switch_to_chat(self, store):
        engine = make_engine(store)
        await engine.start()
        state = await engine.dispatch(SwitchMode(target="chat"))
        assert state.mode == "chat"
        assert engine.saver.detached


# =====================================================================
# Submit
# =====================================================================


class TestSubmit:

    @pytest.mark.asyncio
    async def test_submit_completes_locally(self, store):
        engine = make_engine(store, child_name="Ava")
        await to_last_page(engine)
        await engine.dispatch(SaveField(field="therapy_goals", value="Less worry about school"))
        state = await engine.dispatch(SubmitForm())

        assert state.submitted
        assert state.status == SessionStatus.ASSESSMENT_COMPLETE
        assert state.completed_pages == [1, 2, 3]
        assert state.summary.source == "form"
        assert state.summary.child_name == "Ava"

        stored = await store.load_summary("s1")
        assert stored.summary == state.summary
        assert stored.form_data["therapyGoals"] == "Less worry about school"
        assert stored.form_data["concernSeverity"] == 4

    @pytest.mark.asyncio
    async def test_submit_reports_errors(self, store):
        engine = make_engine(store)
        await to_last_page(engine)
        state = await engine.dispatch(SubmitForm())

        assert not state.submitted
        assert "therapy_goals" in state.errors
        assert await store.load_summary("s1") is None

    @pytest.mark.asyncio
    async def test_submit_before_last_page(self, store):
        engine = make_engine(store)
        await engine.start()
        with pytest.raises(ValueError, match="Cannot submit"):
            await engine.dispatch(SubmitForm())


# =====================================================================
# Start / restore
# =====================================================================


class TestStart:

    @pytest.mark.asyncio
    async def test_prefill_from_chat(self, store):
        await store.save(
            "s1",
            CHAT_SECTION,
            {
                "messages": [
                    {
                        "sender": "user",
                        "content": "I'm worried, she has had trouble falling asleep for a few months",
                    }
                ]
            },
        )
        state = await make_engine(store).start()

        assert state.mode == "form"
        assert state.values["sleep_patterns"] == "difficulty-falling-asleep"
        assert state.values["concern_duration"] == "1-3-months"
        # The chat itself is left untouched
        assert (await store.load_section("s1", CHAT_SECTION))["messages"]

    @pytest.mark.asyncio
    async def test_restore_page_and_values(self, store):
        first = make_engine(store)
        await first.start()
        await fill_page(first, PAGE1)
        await first.dispatch(NextPage())

        state = await make_engine(store).start()

        assert state.page == 2
        assert state.values == PAGE1
        assert state.completed_pages == [1]

    @pytest.mark.asyncio
    async def test_saved_form_wins_over_chat(self, store):
        await store.save("s1", FORM_SECTION, {"concernSeverity": 2})
        await store.save(
            "s1", CHAT_SECTION, {"messages": [{"sender": "user", "content": "It's severe"}]}
        )
        state = await make_engine(store).start()
        assert state.values == {"concern_severity": 2}
