"""Chat endpoints — drive the conversation engine with intents.

Intents are posted as ``{"intent": {"kind": "...", ...}}``; see
:mod:`intake_engine.models.intent` for the accepted kinds.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from intake_engine.models.intent import ConversationIntent, SendMessage, SubmitAnswer
from intake_engine.models.state import ConversationState

from intake_server.dependencies import get_registry
from intake_server.registry import EngineRegistry

router = APIRouter(tags=["chat"])


class ChatIntentRequest(BaseModel):
    """Body for POST /sessions/{session_id}/chat/intents."""
    intent: ConversationIntent


def _inbound_text(intent: ConversationIntent) -> str | None:
    if isinstance(intent, SendMessage):
        return intent.text
    if isinstance(intent, SubmitAnswer):
        return intent.answer
    return None


@router.get("/sessions/{session_id}/chat")
async def get_conversation(
    session_id: str,
    registry: EngineRegistry = Depends(get_registry),
) -> ConversationState:
    """Return the conversation state, starting (or restoring) it if needed."""
    async with registry.lock(session_id):
        engine = await registry.conversation(session_id)
        return engine.snapshot()


@router.post("/sessions/{session_id}/chat/intents")
async def dispatch_chat_intent(
    session_id: str,
    body: ChatIntentRequest,
    registry: EngineRegistry = Depends(get_registry),
) -> ConversationState:
    """Apply one intent; returns 409 if it is not valid in the current phase."""
    text = _inbound_text(body.intent)
    if text:
        # Crisis language is flagged before waiting on the session lock
        await registry.scan_inbound(session_id, text)
    async with registry.lock(session_id):
        engine = await registry.conversation(session_id)
        return await engine.dispatch(body.intent)
