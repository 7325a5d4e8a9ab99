"""FormEngine — three-page validated form with debounced per-field auto-save.

Behaviour summary:

  * ``set_field`` (keystrokes) only updates the value; nothing is validated
    while the parent is still typing.
  * ``blur_field`` validates that field and schedules an auto-save of the
    *whole* current page.  Saves go through a :class:`DebouncedSaver`, so
    rapid blurs coalesce into one write carrying the latest values.
  * ``next_page`` requires the current page to validate and flushes pending
    saves; ``back`` is always allowed, and back from page 1 switches to chat.
  * ``submit`` validates every page, synthesizes the summary locally and
    marks the session assessment-complete with no network round trip.
  * a failed auto-save leaves ``save_status == "error"`` until a later save
    succeeds or ``retry_save`` resends the data.

On start the engine restores saved form values, or pre-fills them from the
chat through the mode bridge when no form data exists yet.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from intake_engine.autosave import DebouncedSaver
from intake_engine.bridge import chat_to_form
from intake_engine.constants import (
    AUTOSAVE_DEBOUNCE,
    CHAT_SECTION,
    CHILD_SECTION,
    FORM_PAGES,
    FORM_SECTION,
)
from intake_engine.errors import StorageError
from intake_engine.models.form import (
    FormAssessmentInput,
    PAGE_FIELDS,
    form_completion,
    form_from_wire,
    form_to_wire,
    page_of,
    validate_field,
    validate_page,
)
from intake_engine.models.session import Session, SessionStatus
from intake_engine.models.state import FormState
from intake_engine.models.summary import AssessmentSummary
from intake_engine.storage import SessionStore
from intake_engine.summary import form_to_summary

logger = logging.getLogger(__name__)

FIRST_PAGE = FORM_PAGES[0]
LAST_PAGE = FORM_PAGES[-1]


class FormEngine:
    """Orchestrates one session's form assessment.

    Args:
        session_id: the onboarding session id.
        store: session store used for all persistence.
        debounce: auto-save debounce window in seconds.
        child_name: optional override; otherwise read from the child section.
    """

    def __init__(
        self,
        session_id: str,
        *,
        store: SessionStore,
        debounce: float = AUTOSAVE_DEBOUNCE,
        child_name: str | None = None,
    ) -> None:
        self.session_id = session_id
        self._store = store
        self._child_name = child_name
        self._saver = DebouncedSaver(
            self._write_section, delay=debounce, name=f"form[{session_id}]"
        )

        self._session: Session = Session.new(session_id)
        self._values: dict[str, Any] = {}
        # Last section content handed to the store; saves merge onto it
        self._persisted: dict[str, Any] = {}
        self._errors: dict[str, str] = {}
        self._summary: AssessmentSummary | None = None
        self._submitted = False
        self._subscribers: list[Callable[[FormState], None]] = []

        self._handlers = {
            "set_field": lambda i: self.set_field(i.field, i.value),
            "blur_field": lambda i: self.blur_field(i.field),
            "save_field": lambda i: self.save_field(i.field, i.value),
            "next_page": lambda i: self.next_page(),
            "go_back": lambda i: self.back(),
            "submit_form": lambda i: self.submit(),
            "retry_save": lambda i: self._saver.retry(),
            "switch_mode": lambda i: self.switch_mode(i.target),
        }

    # ==================================================================
    # Read-only view
    # ==================================================================

    @property
    def page(self) -> int:
        return self._session.progress.form_page

    @property
    def saver(self) -> DebouncedSaver:
        return self._saver

    def subscribe(self, callback: Callable[[FormState], None]) -> Callable[[], None]:
        """Register *callback* for every snapshot; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def snapshot(self) -> FormState:
        progress = self._session.progress
        return FormState(
            session_id=self.session_id,
            status=self._session.status,
            mode=progress.mode,
            page=progress.form_page,
            values=dict(self._values),
            errors=dict(self._errors),
            completed_pages=sorted(progress.completed_pages),
            saving=self._saver.pending,
            save_status=self._saver.status,
            last_saved=self._saver.last_saved,
            save_error=str(self._saver.last_error) if self._saver.last_error else None,
            completion=form_completion(self._values),
            submitted=self._submitted,
            summary=self._summary,
            storage_degraded=self._store.degraded,
        )

    def _emit(self) -> FormState:
        state = self.snapshot()
        for callback in list(self._subscribers):
            callback(state)
        return state

    # ==================================================================
    # Lifecycle
    # ==================================================================

    async def start(self) -> FormState:
        """Load saved form values, or pre-fill them from the chat."""
        self._session = await self._store.load_session(self.session_id)
        if self._session.status == SessionStatus.EXPIRED:
            raise ValueError(f"Session {self.session_id} has expired")
        if self._child_name is None:
            child = await self._store.load_section(self.session_id, CHILD_SECTION) or {}
            self._child_name = child.get("firstName") or None

        saved = await self._store.load_section(self.session_id, FORM_SECTION)
        if saved:
            self._values = form_from_wire(saved)
            self._persisted = dict(self._values)
            logger.info("Restored %d form fields for %s", len(self._values), self.session_id)
        else:
            chat = await self._store.load_section(self.session_id, CHAT_SECTION)
            self._values = chat_to_form(chat)
            if self._values:
                logger.info(
                    "Pre-filled %d form fields from chat for %s",
                    len(self._values), self.session_id,
                )

        stored = await self._store.load_summary(self.session_id)
        if stored is not None and stored.summary.source == "form":
            self._summary = stored.summary
            self._submitted = self._session.status == SessionStatus.ASSESSMENT_COMPLETE

        progress = self._session.progress
        progress.mode = "form"
        if progress.form_page not in FORM_PAGES:
            progress.form_page = FIRST_PAGE
        await self._store.save_session(self._session)
        return self._emit()

    async def dispatch(self, intent: Any) -> FormState:
        """Apply one intent and return the resulting snapshot."""
        handler = self._handlers.get(getattr(intent, "kind", None))
        if handler is None:
            raise ValueError(f"Unsupported intent for form: {intent!r}")
        result = handler(intent)
        if inspect.isawaitable(result):
            await result
        return self._emit()

    async def close(self) -> None:
        """Tear down the view; a pending auto-save still completes."""
        self._saver.detach()

    # ==================================================================
    # Field edits
    # ==================================================================

    def _require_field_on_page(self, field: str) -> None:
        if page_of(field) != self.page:
            raise ValueError(f"Field {field} is not on page {self.page}")

    def set_field(self, field: str, value: Any) -> None:
        """Record a keystroke-level edit.  Never validates, never saves."""
        self._require_field_on_page(field)
        self._values[field] = value

    def blur_field(self, field: str) -> None:
        """Validate *field* and schedule an auto-save of the current page."""
        self._require_field_on_page(field)
        error = validate_field(self.page, field, self._values)
        if error:
            self._errors[field] = error
        else:
            self._errors.pop(field, None)
        snapshot = {f: self._values[f] for f in PAGE_FIELDS[self.page] if f in self._values}
        self._saver.schedule(snapshot)

    def save_field(self, field: str, value: Any) -> None:
        self.set_field(field, value)
        self.blur_field(field)

    async def _write_section(self, data: dict[str, Any]) -> None:
        merged = {**self._persisted, **data}
        self._persisted = merged
        if not await self._store.save(self.session_id, FORM_SECTION, form_to_wire(merged)):
            raise StorageError(f"Form answers for {self.session_id} were not saved")

    # ==================================================================
    # Navigation
    # ==================================================================

    async def next_page(self) -> None:
        """Advance if the current page validates; otherwise show its errors."""
        page = self.page
        if page == LAST_PAGE:
            raise ValueError("Cannot go to next page: already on the last page, submit instead")
        errors = validate_page(page, self._values)
        if errors:
            self._errors = errors
            logger.debug("Page %d blocked by %d errors", page, len(errors))
            return
        self._schedule_page(page)
        await self._saver.flush()
        progress = self._session.progress
        if page not in progress.completed_pages:
            progress.completed_pages.append(page)
        progress.form_page = page + 1
        self._errors = {}
        await self._store.save_session(self._session)

    async def back(self) -> None:
        """Go to the previous page; from page 1 switch to the chat."""
        if self.page == FIRST_PAGE:
            await self.switch_mode("chat")
            return
        await self._saver.flush()
        self._session.progress.form_page = self.page - 1
        self._errors = {}
        await self._store.save_session(self._session)

    async def switch_mode(self, target: str) -> None:
        if target == "form":
            return
        # Leaving the form: pending saves finish in the background
        self._saver.detach()
        self._session.progress.mode = "chat"
        await self._store.save_session(self._session)
        logger.info("Session %s switched to chat mode", self.session_id)

    async def submit(self) -> None:
        """Validate all pages, synthesize the summary, complete the assessment."""
        if self.page != LAST_PAGE:
            raise ValueError(f"Cannot submit: form is on page {self.page}")
        for page in FORM_PAGES:
            errors = validate_page(page, self._values)
            if errors:
                self._errors = errors
                self._session.progress.form_page = page
                await self._store.save_session(self._session)
                return

        self._schedule_page(LAST_PAGE)
        await self._saver.flush()
        form = FormAssessmentInput.model_validate(self._values)
        self._summary = form_to_summary(form, self._child_name)
        await self._store.save_summary(
            self.session_id, self._summary, form_data=form_to_wire(self._values)
        )

        progress = self._session.progress
        if LAST_PAGE not in progress.completed_pages:
            progress.completed_pages.append(LAST_PAGE)
        progress.summary_confirmed = False
        self._session.status = SessionStatus.ASSESSMENT_COMPLETE
        self._submitted = True
        self._errors = {}
        await self._store.save_session(self._session)
        logger.info("Session %s form assessment submitted", self.session_id)

    def _schedule_page(self, page: int) -> None:
        snapshot = {f: self._values[f] for f in PAGE_FIELDS[page] if f in self._values}
        if snapshot:
            self._saver.schedule(snapshot)
