"""Form endpoints — drive the three-page form engine with intents.

Auto-saves scheduled by ``blur_field`` run in the background on the
server's event loop; ``next_page`` and ``submit_form`` flush them.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from intake_engine.models.intent import FormIntent
from intake_engine.models.state import FormState

from intake_server.dependencies import get_registry
from intake_server.registry import EngineRegistry

router = APIRouter(tags=["form"])


class FormIntentRequest(BaseModel):
    """Body for POST /sessions/{session_id}/form/intents."""
    intent: FormIntent


@router.get("/sessions/{session_id}/form")
async def get_form(
    session_id: str,
    registry: EngineRegistry = Depends(get_registry),
) -> FormState:
    """Return the form state, restoring or pre-filling it if needed."""
    async with registry.lock(session_id):
        engine = await registry.form(session_id)
        return engine.snapshot()


@router.post("/sessions/{session_id}/form/intents")
async def dispatch_form_intent(
    session_id: str,
    body: FormIntentRequest,
    registry: EngineRegistry = Depends(get_registry),
) -> FormState:
    async with registry.lock(session_id):
        engine = await registry.form(session_id)
        return await engine.dispatch(body.intent)
