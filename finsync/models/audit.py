"""
Audit Models for finsync

Every step of the sync lifecycle is logged as a structured event.
This provides:
1. Traceability of every queued mutation from enqueue to confirmation
2. Debugging information when a replay or reconciliation fails
3. Visibility into reconciliation conflicts that were resolved silently

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finsync.models.entities import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each stage of the mutation lifecycle has its own event type.
    """
    # Local mutations
    OPERATION_ENQUEUED = "operation_enqueued"
    OPERATION_SQUASHED = "operation_squashed"
    VALIDATION_REJECTED = "validation_rejected"

    # Replay
    OPERATION_REPLAYED = "operation_replayed"
    OPERATION_RETRY_SCHEDULED = "operation_retry_scheduled"
    OPERATION_DROPPED = "operation_dropped"
    OPERATION_DEFERRED = "operation_deferred"
    ENTITY_REKEYED = "entity_rekeyed"

    # Reconciliation
    RECONCILIATION_STARTED = "reconciliation_started"
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    RECONCILIATION_FAILED = "reconciliation_failed"
    RECONCILIATION_CONFLICT = "reconciliation_conflict"

    # Engine state
    SYNC_STARTED = "sync_started"
    SYNC_ABORTED = "sync_aborted"
    SYNC_FINISHED = "sync_finished"
    STATUS_CHANGED = "status_changed"
    CONNECTIVITY_CHANGED = "connectivity_changed"

    # Session lifecycle
    OWNER_SIGNED_IN = "owner_signed_in"
    OWNER_SIGNED_OUT = "owner_signed_out"
    LOCAL_DATA_CLEARED = "local_data_cleared"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'savings_bucket')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events of one sync pass share an id
    correlation_id: Optional[str] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": self.correlation_id,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.operation_enqueued("expense", expense_id, "create", op_id)
        event = AuditEventBuilder.status_changed("syncing", "error", correlation_id)
    """

    @staticmethod
    def operation_enqueued(
        entity_type: str,
        entity_id: str,
        kind: str,
        operation_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_ENQUEUED,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"Queued {kind} of {entity_type}",
            details={
                "operation_id": operation_id,
                "kind": kind,
            },
            is_user_action=True,
        )

    @staticmethod
    def operation_squashed(
        entity_type: str,
        entity_id: str,
        dropped_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_SQUASHED,
            entity_type=entity_type,
            entity_id=entity_id,
            description=(
                f"Deleted unsynced {entity_type}; dropped {dropped_count} queued operations"
            ),
            details={"dropped_count": dropped_count},
            is_user_action=True,
        )

    @staticmethod
    def validation_rejected(
        action: str,
        issues: list[dict],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_REJECTED,
            severity=AuditSeverity.WARNING,
            description=f"{action} rejected with {len(issues)} issues",
            details={
                "action": action,
                "issues": issues,
            },
            is_user_action=True,
        )

    @staticmethod
    def operation_replayed(
        entity_type: str,
        entity_id: str,
        kind: str,
        operation_id: str,
        correlation_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REPLAYED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Remote confirmed {kind} of {entity_type}",
            details={
                "operation_id": operation_id,
                "kind": kind,
            },
        )

    @staticmethod
    def operation_retry_scheduled(
        entity_type: str,
        entity_id: str,
        operation_id: str,
        error_kind: str,
        error_message: str,
        retry_count: int,
        correlation_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_RETRY_SCHEDULED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Replay failed ({error_kind}); operation stays queued",
            details={
                "operation_id": operation_id,
                "retry_count": retry_count,
            },
            error_code=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def operation_dropped(
        entity_type: str,
        entity_id: str,
        operation_id: str,
        error_kind: str,
        error_message: str,
        correlation_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_DROPPED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Remote rejected operation ({error_kind}); dropped from queue",
            details={"operation_id": operation_id},
            error_code=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def operation_deferred(
        entity_type: str,
        entity_id: str,
        blocked_by: str,
        correlation_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_DEFERRED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description="Replay deferred until the parent bucket syncs",
            details={"blocked_by": blocked_by},
        )

    @staticmethod
    def entity_rekeyed(
        entity_type: str,
        old_id: str,
        new_id: str,
        correlation_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_REKEYED,
            entity_type=entity_type,
            entity_id=new_id,
            correlation_id=correlation_id,
            description="Server assigned a new id to a locally created record",
            details={"old_id": old_id, "new_id": new_id},
        )

    @staticmethod
    def reconciliation_completed(
        counts: dict[str, int],
        removed: int,
        conflicts: int,
        correlation_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            correlation_id=correlation_id,
            description=(
                f"Reconciled snapshot: {sum(counts.values())} rows, "
                f"{removed} removed, {conflicts} conflicts"
            ),
            details={"counts": counts, "removed": removed, "conflicts": conflicts},
        )

    @staticmethod
    def reconciliation_failed(
        error_kind: str,
        error_message: str,
        correlation_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description="Reconciliation pull failed",
            error_code=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def reconciliation_conflict(
        entity_type: str,
        entity_id: str,
        local_status: str,
        correlation_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description="Kept local record over older server snapshot",
            details={"local_status": local_status},
        )

    @staticmethod
    def status_changed(
        previous: str,
        current: str,
        correlation_id: Optional[str] = None,
    ) -> AuditEvent:
        severity = AuditSeverity.WARNING if current == "error" else AuditSeverity.INFO
        return AuditEvent(
            event_type=AuditEventType.STATUS_CHANGED,
            severity=severity,
            correlation_id=correlation_id,
            description=f"Sync status {previous} -> {current}",
            details={"previous": previous, "current": current},
        )

    @staticmethod
    def sync_finished(
        report_details: dict[str, Any],
        correlation_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FINISHED,
            correlation_id=correlation_id,
            description=f"Sync pass finished: {report_details.get('final_status')}",
            details=report_details,
        )

    @staticmethod
    def owner_signed_in(owner_id: str, cleared: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OWNER_SIGNED_IN,
            entity_type="owner",
            entity_id=owner_id,
            description="Owner signed in",
            details={"cleared_previous_owner": cleared},
            is_user_action=True,
        )

    @staticmethod
    def local_data_cleared(
        owner_id: Optional[str],
        dropped_operations: int,
    ) -> AuditEvent:
        severity = AuditSeverity.WARNING if dropped_operations else AuditSeverity.INFO
        return AuditEvent(
            event_type=AuditEventType.LOCAL_DATA_CLEARED,
            severity=severity,
            entity_type="owner",
            entity_id=owner_id,
            description=f"Local data cleared ({dropped_operations} unsynced operations dropped)",
            details={"dropped_operations": dropped_operations},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
