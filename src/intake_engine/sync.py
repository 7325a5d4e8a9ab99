"""SyncReconciler — replays locally completed onboarding data to the remote system.

States::

    NOT_CHECKED -> MISMATCH_DETECTED -> SYNCING -> SYNCED | SYNC_FAILED

A mismatch exists when local data shows full completion (parent, child,
insurance or self-pay, assessment) but the remote snapshot lacks at least
one of the corresponding records.

Sync replays a fixed-order sequence of mutations, strictly one at a time::

    parent info -> child info -> insurance | self-pay
                -> each assessment response (original order)
                -> complete assessment (force=True)

The first failing step halts the rest.  Steps that already succeeded are
reported in ``synced_items``.  Retry replays the whole sequence from the
start; the remote mutations are assumed to be idempotent.

Member IDs are PHI: they are masked in every log line and error message.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from intake_engine.constants import (
    CHAT_SECTION,
    CHILD_SECTION,
    FORM_SECTION,
    INSURANCE_SECTION,
    PARENT_SECTION,
    SYNC_STEP_DELAY,
)
from intake_engine.errors import MutationError
from intake_engine.interfaces import OnboardingMutations
from intake_engine.models.form import (
    APPETITE_LABELS,
    DURATION_LABELS,
    SCHOOL_LABELS,
    SLEEP_LABELS,
    SOCIAL_LABELS,
    form_from_wire,
)
from intake_engine.models.question import AssessmentResponse
from intake_engine.models.sync import (
    MutationResult,
    RemoteSnapshot,
    SyncResult,
    SyncState,
    SyncStatus,
)
from intake_engine.storage import SessionStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int, bool], None]

PARENT_ITEM = "Parent Information"
CHILD_ITEM = "Child Information"
INSURANCE_ITEM = "Insurance / Payment"
SELF_PAY_ITEM = "Insurance / Payment (Self-Pay)"
ASSESSMENT_ITEM = "Assessment"

_FORM_RESPONSE_LABELS: dict[str, dict[str, str]] = {
    "concern_duration": DURATION_LABELS,
    "sleep_patterns": SLEEP_LABELS,
    "appetite_changes": APPETITE_LABELS,
    "school_performance": SCHOOL_LABELS,
    "social_relationships": SOCIAL_LABELS,
}


def mask_member_id(member_id: str | None) -> str:
    """``ABC123456789`` -> ``****6789`` (short IDs are fully masked)."""
    if not member_id:
        return ""
    return "****" + (member_id[-4:] if len(member_id) > 4 else "")


# ---------------------------------------------------------------------------
# Local completion checks
# ---------------------------------------------------------------------------

def has_valid_parent(parent: dict[str, Any] | None) -> bool:
    return bool(parent and parent.get("firstName") and parent.get("email"))


def has_valid_child(child: dict[str, Any] | None) -> bool:
    if not child:
        return False
    first = child.get("firstName") or ""
    return len(first) >= 2 and bool(child.get("dateOfBirth"))


def is_self_pay(insurance: dict[str, Any] | None) -> bool:
    if not insurance:
        return False
    return bool(
        insurance.get("isSelfPay")
        or insurance.get("verificationStatus") == "self_pay"
        or insurance.get("carrier") == "Self-Pay"
    )


def has_valid_insurance(insurance: dict[str, Any] | None) -> bool:
    if not insurance:
        return False
    if is_self_pay(insurance):
        return True
    carrier = insurance.get("carrier") or insurance.get("payerName")
    return bool(carrier and insurance.get("memberId"))


def has_valid_assessment(form: dict[str, Any] | None, chat: dict[str, Any] | None) -> bool:
    if form and (
        form.get("primaryConcerns") or form.get("concernDuration") or form.get("concernSeverity")
    ):
        return True
    return bool(chat and chat.get("responses"))


def local_responses(form: dict[str, Any] | None, chat: dict[str, Any] | None) -> list[AssessmentResponse]:
    """Assessment responses to replay, in the order they were given.

    Structured chat answers are used when present; a form-only assessment
    is replayed as one response per filled form field.
    """
    if chat and chat.get("responses"):
        return [AssessmentResponse.model_validate(r) for r in chat["responses"]]
    responses = []
    for field, value in form_from_wire(form or {}).items():
        if value in (None, ""):
            continue
        labels = _FORM_RESPONSE_LABELS.get(field, {})
        responses.append(
            AssessmentResponse(
                question_id=f"form_{field}",
                response_text=labels.get(value, str(value)),
                response_value=value if field == "concern_severity" else None,
            )
        )
    return responses


@dataclass
class _Step:
    label: str
    call: Callable[[], Awaitable[MutationResult]]
    # Reported in synced_items once this step succeeds
    synced_item: str | None = None


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

class SyncReconciler:
    """Detects local/remote divergence for one session and replays mutations.

    Args:
        session_id: the onboarding session id.
        store: session store holding the local data.
        mutations: remote mutation client.
        on_progress: optional ``(step, current, total, success)`` callback.
        step_delay: pause between mutations, in seconds.
    """

    def __init__(
        self,
        session_id: str,
        *,
        store: SessionStore,
        mutations: OnboardingMutations,
        on_progress: ProgressCallback | None = None,
        step_delay: float = SYNC_STEP_DELAY,
    ) -> None:
        self.session_id = session_id
        self._store = store
        self._mutations = mutations
        self._on_progress = on_progress
        self._delay = step_delay
        self._state = SyncState.NOT_CHECKED
        self.last_status: SyncStatus | None = None
        self.last_result: SyncResult | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    async def _local(self) -> dict[str, dict[str, Any] | None]:
        saved = await self._store.load(self.session_id)
        data = saved.data if saved else {}
        return {
            section: data.get(section)
            for section in (PARENT_SECTION, CHILD_SECTION, INSURANCE_SECTION, FORM_SECTION, CHAT_SECTION)
        }

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def detect(self, remote: RemoteSnapshot) -> SyncStatus:
        """Compare local completion with *remote* and update the state."""
        if self._state == SyncState.SYNCING:
            raise ValueError("Cannot check sync status: a sync is in progress")
        local = await self._local()
        parent_ok = has_valid_parent(local[PARENT_SECTION])
        child_ok = has_valid_child(local[CHILD_SECTION])
        insurance_ok = has_valid_insurance(local[INSURANCE_SECTION])
        assessment_ok = has_valid_assessment(local[FORM_SECTION], local[CHAT_SECTION])
        complete = parent_ok and child_ok and insurance_ok and assessment_ok

        needs = {
            PARENT_ITEM: parent_ok and not remote.has_parent,
            CHILD_ITEM: child_ok and not remote.has_child,
            INSURANCE_ITEM: insurance_ok and not remote.has_insurance,
            ASSESSMENT_ITEM: assessment_ok and not remote.assessment_complete,
        }
        items = [item for item, needed in needs.items() if needed] if complete else []
        status = SyncStatus(
            state=SyncState.MISMATCH_DETECTED if items else SyncState.SYNCED,
            local_complete=complete,
            needs_parent_sync=needs[PARENT_ITEM],
            needs_child_sync=needs[CHILD_ITEM],
            needs_insurance_sync=needs[INSURANCE_ITEM],
            needs_assessment_sync=needs[ASSESSMENT_ITEM],
            items_to_sync=items,
        )
        if items:
            self._state = SyncState.MISMATCH_DETECTED
        elif complete:
            self._state = SyncState.SYNCED
        else:
            # Nothing to reconcile until onboarding is complete locally
            self._state = SyncState.NOT_CHECKED
            status = status.model_copy(update={"state": SyncState.NOT_CHECKED})
        self.last_status = status
        logger.info(
            "Sync check for %s: state=%s, items=%s",
            self.session_id, self._state.value, items,
        )
        return status

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def _build_steps(self, local: dict[str, dict[str, Any] | None]) -> list[_Step]:
        sid = self.session_id
        m = self._mutations
        steps: list[_Step] = []

        parent = local[PARENT_SECTION]
        if has_valid_parent(parent):
            parent_info = {
                "firstName": parent.get("firstName"),
                "lastName": parent.get("lastName", ""),
                "email": parent.get("email"),
                "phone": parent.get("phone", ""),
                "relationshipToChild": parent.get("relationshipToChild", ""),
            }
            steps.append(_Step(PARENT_ITEM, lambda: m.submit_parent_info(sid, parent_info), PARENT_ITEM))

        child = local[CHILD_SECTION]
        if has_valid_child(child):
            child_info = {
                "first_name": child["firstName"],
                "last_name": child.get("lastName") or child["firstName"],
                "date_of_birth": child["dateOfBirth"],
                "gender": child.get("gender") or child.get("pronouns") or "",
                "grade": child.get("grade") or "",
                "primary_concerns": child.get("primaryConcerns") or "",
            }
            steps.append(_Step(CHILD_ITEM, lambda: m.submit_child_info(sid, child_info), CHILD_ITEM))

        insurance = local[INSURANCE_SECTION]
        if is_self_pay(insurance):
            steps.append(_Step(INSURANCE_ITEM, lambda: m.select_self_pay(sid), SELF_PAY_ITEM))
        elif has_valid_insurance(insurance):
            fields = {
                "payerName": insurance.get("carrier") or insurance.get("payerName") or "Other",
                "memberId": insurance.get("memberId") or "",
                "groupNumber": insurance.get("groupNumber") or "",
                "subscriberName": insurance.get("subscriberName") or "",
                "subscriberDob": insurance.get("subscriberDob") or "",
            }
            steps.append(_Step(INSURANCE_ITEM, lambda: m.submit_insurance_info(sid, fields), INSURANCE_ITEM))

        if has_valid_assessment(local[FORM_SECTION], local[CHAT_SECTION]):
            for response in local_responses(local[FORM_SECTION], local[CHAT_SECTION]):
                steps.append(
                    _Step(
                        f"Assessment {response.question_id}",
                        # Bind the loop variable now
                        lambda r=response: m.submit_assessment_response(
                            sid, r.question_id, r.response_text, r.response_value
                        ),
                    )
                )
            steps.append(
                _Step("Complete Assessment", lambda: m.complete_assessment(sid, force=True), ASSESSMENT_ITEM)
            )
        return steps

    async def sync(self) -> SyncResult:
        """Replay the mutation sequence; halts at the first failure."""
        if self._state == SyncState.SYNCING:
            raise ValueError("Cannot sync: a sync is already in progress")
        if self._state not in (SyncState.MISMATCH_DETECTED, SyncState.SYNC_FAILED):
            raise ValueError(f"Cannot sync: state is {self._state.value}, no mismatch detected")

        self._state = SyncState.SYNCING
        try:
            result = await self._replay()
        except Exception:
            self._state = SyncState.SYNC_FAILED
            raise
        self._state = SyncState.SYNCED if result.success else SyncState.SYNC_FAILED
        self.last_result = result
        logger.info(
            "Sync for %s finished: success=%s, synced=%s",
            self.session_id, result.success, result.synced_items,
        )
        return result

    async def retry(self) -> SyncResult:
        """Replay the full sequence again after a failure."""
        if self._state != SyncState.SYNC_FAILED:
            raise ValueError(f"Cannot retry: state is {self._state.value}")
        return await self.sync()

    async def _replay(self) -> SyncResult:
        local = await self._local()
        if not any(local.values()):
            return SyncResult(success=False, errors=["No local data found for this session"])

        member_id = (local[INSURANCE_SECTION] or {}).get("memberId")
        steps = self._build_steps(local)
        total = len(steps)
        errors: list[str] = []
        synced: list[str] = []

        for current, step in enumerate(steps, start=1):
            error = await self._run(step)
            success = error is None
            if success:
                if step.synced_item:
                    synced.append(step.synced_item)
            else:
                errors.append(_redact(f"{step.label}: {error}", member_id))
            if self._on_progress is not None:
                self._on_progress(step.label, current, total, success)
            if not success:
                logger.warning("Sync for %s halted at step %s", self.session_id, step.label)
                break
            if current < total and self._delay > 0:
                await asyncio.sleep(self._delay)

        if member_id:
            logger.debug("Insurance member %s handled for %s", mask_member_id(member_id), self.session_id)
        return SyncResult(success=not errors, errors=errors, synced_items=synced)

    async def _run(self, step: _Step) -> str | None:
        """Run one mutation; return an error message, or None on success."""
        try:
            result = await step.call()
        except MutationError as exc:
            return str(exc) or "mutation failed"
        if not result.success or result.errors:
            return ", ".join(result.errors) or "mutation failed"
        return None


def _redact(text: str, member_id: str | None) -> str:
    if member_id:
        return text.replace(member_id, mask_member_id(member_id))
    return text
