"""Sync endpoints — detect local/remote divergence and replay mutations.

Requires ``GRAPHQL_URL``; without it every endpoint answers 503.
"""

from fastapi import APIRouter, Depends

from intake_engine.models.sync import RemoteSnapshot, SyncResult, SyncStatus

from intake_server.dependencies import get_registry
from intake_server.registry import EngineRegistry

router = APIRouter(tags=["sync"])


@router.post("/sessions/{session_id}/sync/check")
async def check_sync(
    session_id: str,
    body: RemoteSnapshot,
    registry: EngineRegistry = Depends(get_registry),
) -> SyncStatus:
    """Compare local completion with the caller-supplied remote snapshot."""
    async with registry.lock(session_id):
        return await registry.reconciler(session_id).detect(body)


@router.post("/sessions/{session_id}/sync")
async def run_sync(
    session_id: str,
    registry: EngineRegistry = Depends(get_registry),
) -> SyncResult:
    """Replay the mutation sequence.  409 unless a mismatch was detected."""
    async with registry.lock(session_id):
        return await registry.reconciler(session_id).sync()


@router.post("/sessions/{session_id}/sync/retry")
async def retry_sync(
    session_id: str,
    registry: EngineRegistry = Depends(get_registry),
) -> SyncResult:
    """Replay the full sequence again after a failed sync."""
    async with registry.lock(session_id):
        return await registry.reconciler(session_id).retry()
