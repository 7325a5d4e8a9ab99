"""Sync reconciler models — remote snapshot, status and result.

All of these are ephemeral: they are recomputed every time reconciliation
is attempted and never persisted.
"""

from enum import Enum

from pydantic import Field, computed_field

from intake_engine.models.base import CamelModel


class SyncState(str, Enum):
    NOT_CHECKED = "not-checked"
    MISMATCH_DETECTED = "mismatch-detected"
    SYNCING = "syncing"
    SYNCED = "synced"
    SYNC_FAILED = "sync-failed"


class RemoteSnapshot(CamelModel):
    """Which records the remote system of record already holds."""

    has_parent: bool = False
    has_child: bool = False
    has_insurance: bool = False
    assessment_complete: bool = False


class SyncStatus(CamelModel):
    """Result of comparing local progress with a :class:`RemoteSnapshot`."""

    state: SyncState
    local_complete: bool
    needs_parent_sync: bool = False
    needs_child_sync: bool = False
    needs_insurance_sync: bool = False
    needs_assessment_sync: bool = False
    items_to_sync: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def needs_sync(self) -> bool:
        return bool(self.items_to_sync)


class MutationResult(CamelModel):
    """Outcome of one remote mutation.  Payload-level errors go in ``errors``."""

    success: bool = True
    errors: list[str] = Field(default_factory=list)


class SyncResult(CamelModel):
    success: bool
    errors: list[str] = Field(default_factory=list)
    synced_items: list[str] = Field(default_factory=list)
