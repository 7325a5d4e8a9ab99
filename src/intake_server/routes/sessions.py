"""Session endpoints — load, onboarding sections, summary, start over, delete.

``GET /sessions/{session_id}`` creates the session on first access, the
same way the engines do on start.
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from intake_engine.constants import CHILD_SECTION, INSURANCE_SECTION, PARENT_SECTION
from intake_engine.models.session import Session
from intake_engine.models.state import ConversationState
from intake_engine.models.summary import StoredSummary
from intake_engine.storage import SessionStore
from intake_engine.summary import format_summary_for_display

from intake_server.dependencies import get_registry, get_store
from intake_server.registry import EngineRegistry

router = APIRouter(tags=["sessions"])

# Sections owned by the onboarding steps that precede the assessment
ONBOARDING_SECTIONS = (PARENT_SECTION, CHILD_SECTION, INSURANCE_SECTION)


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_store),
) -> Session:
    """Return the session record, creating it if it does not exist yet."""
    return await store.load_session(session_id)


@router.put("/sessions/{session_id}/onboarding/{section}")
async def save_onboarding_section(
    session_id: str,
    section: str,
    body: dict[str, Any],
    store: SessionStore = Depends(get_store),
) -> dict[str, Any]:
    """Store a parent / child / insurance section as entered by the parent."""
    if section not in ONBOARDING_SECTIONS:
        raise ValueError(f"Onboarding section not found: {section}")
    saved = await store.save(session_id, section, body)
    return {"saved": saved}


@router.get("/sessions/{session_id}/summary")
async def get_summary(
    session_id: str,
    store: SessionStore = Depends(get_store),
) -> StoredSummary:
    stored = await store.load_summary(session_id)
    if stored is None:
        raise ValueError(f"Summary not found: session_id={session_id}")
    return stored


@router.get("/sessions/{session_id}/summary/display", response_class=PlainTextResponse)
async def get_summary_display(
    session_id: str,
    store: SessionStore = Depends(get_store),
) -> str:
    """The summary rendered as Markdown."""
    stored = await store.load_summary(session_id)
    if stored is None:
        raise ValueError(f"Summary not found: session_id={session_id}")
    return format_summary_for_display(stored.summary)


@router.post("/sessions/{session_id}/start-over")
async def start_over(
    session_id: str,
    registry: EngineRegistry = Depends(get_registry),
    store: SessionStore = Depends(get_store),
) -> ConversationState:
    """Clear all assessment progress and restart the chat with a greeting.

    Works on an expired session too; the new session keeps the crisis flag.
    """
    async with registry.lock(session_id):
        await registry.discard(session_id)
        await store.start_over(session_id)
        engine = await registry.conversation(session_id)
        return engine.snapshot()


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    registry: EngineRegistry = Depends(get_registry),
    store: SessionStore = Depends(get_store),
) -> None:
    """Remove the session document and its summary."""
    async with registry.lock(session_id):
        await registry.discard(session_id)
        await store.remove(session_id)
