"""
Sync Models for finsync

Records that describe the state of synchronization rather than
user data: queued operations, the process-wide sync metadata, the
remote snapshot used for reconciliation, and the report a sync pass
produces.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from finsync.models.entities import (
    Budget,
    EntitySyncStatus,
    EntityType,
    Expense,
    SavingsBucket,
    SavingsEntry,
    utcnow,
)


class OperationKind(str, Enum):
    """What a queued operation does to its entity."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    """
    Sync engine state.

    offline -> syncing -> online | error; any state -> offline when
    connectivity is lost.
    """
    ONLINE = "online"
    OFFLINE = "offline"
    SYNCING = "syncing"
    ERROR = "error"


class RemoteErrorKind(str, Enum):
    """
    Error kinds reported by the remote data service.

    network and server are retryable; the rest are terminal.
    """
    NETWORK = "network"
    VALIDATION = "validation"
    NOT_FOUND = "notFound"
    UNAUTHORIZED = "unauthorized"
    SERVER = "server"

    @property
    def retryable(self) -> bool:
        return self in (RemoteErrorKind.NETWORK, RemoteErrorKind.SERVER)


# =============================================================================
# QUEUE AND METADATA
# =============================================================================

class SyncOperation(BaseModel):
    """
    A local mutation not yet confirmed by the remote service.

    CRITICAL: Operations for the same entity replay in `sequence`
    order, so a stale update can never overwrite a later delete.
    """

    operation_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique operation id"
    )
    sequence: int = Field(
        default=0,
        ge=0,
        description="Monotonic enqueue position"
    )
    owner_id: Optional[str] = Field(
        default=None,
        description="Owner whose queue this operation belongs to"
    )
    entity_type: EntityType
    entity_id: str = Field(
        ...,
        min_length=1,
        description="Target record id"
    )
    kind: OperationKind
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Record snapshot at enqueue time"
    )
    enqueued_at: datetime = Field(
        default_factory=utcnow
    )
    retry_count: int = Field(
        default=0,
        ge=0
    )
    last_error: Optional[str] = None

    @property
    def entity_key(self) -> tuple[EntityType, str]:
        return (self.entity_type, self.entity_id)


class SyncMetadata(BaseModel):
    """Process-wide sync singleton."""

    owner_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    is_online: bool = True
    status: SyncStatus = SyncStatus.ONLINE
    last_error: Optional[str] = None


class RemoteSnapshot(BaseModel):
    """Authoritative server state for one owner."""

    expenses: list[Expense] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
    buckets: list[SavingsBucket] = Field(default_factory=list)
    entries: list[SavingsEntry] = Field(default_factory=list)

    def records(self, entity_type: EntityType) -> list:
        return {
            EntityType.EXPENSE: self.expenses,
            EntityType.BUDGET: self.budgets,
            EntityType.SAVINGS_BUCKET: self.buckets,
            EntityType.SAVINGS_ENTRY: self.entries,
        }[EntityType(entity_type)]


# =============================================================================
# SYNC PASS RESULTS
# =============================================================================

class SyncFailure(BaseModel):
    """An operation that failed during a sync pass."""

    operation_id: str
    entity_type: EntityType
    entity_id: str
    kind: OperationKind
    error_kind: RemoteErrorKind
    message: str
    retryable: bool
    retry_count: int = 0


class ReconciliationConflict(BaseModel):
    """
    A reconciliation pull that would have overwritten pending local state.

    Not an error: the pending local record wins and the conflict is
    logged for observability.
    """

    entity_type: EntityType
    entity_id: str
    local_status: EntitySyncStatus
    local_content: dict[str, Any] = Field(default_factory=dict)
    remote_content: dict[str, Any] = Field(default_factory=dict)


class SyncReport(BaseModel):
    """What one sync pass did."""

    correlation_id: str = Field(default_factory=lambda: str(uuid4()))
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    manual: bool = False

    skipped: bool = Field(
        default=False,
        description="Pass did not run because the client was offline"
    )
    aborted: bool = Field(
        default=False,
        description="Connectivity was lost mid-pass"
    )

    replayed: list[str] = Field(default_factory=list)
    retried: list[SyncFailure] = Field(default_factory=list)
    dropped: list[SyncFailure] = Field(default_factory=list)
    deferred: list[str] = Field(default_factory=list)

    reconciled: bool = False
    reconciliation_error: Optional[str] = None
    conflicts: list[ReconciliationConflict] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    final_status: Optional[SyncStatus] = None

    @property
    def succeeded(self) -> bool:
        return self.final_status == SyncStatus.ONLINE


class StatusSnapshot(BaseModel):
    """Read-only view of the sync status stream."""

    status: SyncStatus
    is_online: bool
    pending_count: int = 0
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None


class SyncNotification(BaseModel):
    """Toast-style message raised when a manual sync fails."""

    created_at: datetime = Field(default_factory=utcnow)
    title: str
    message: str
    failures: list[SyncFailure] = Field(default_factory=list)
