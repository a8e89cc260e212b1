"""
Mutation Queue

An ordered, durable log of local mutations the remote service has not
confirmed yet.

GUARANTEES:
- Operations are persisted before enqueue() returns
- list_pending() returns operations in enqueue order
- Operations for the same entity are never reordered
- A failed operation stays queued until it is confirmed or dropped
"""

from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from finsync.models.entities import EntityType
from finsync.models.sync import OperationKind, SyncOperation
from finsync.store.events import QUEUE_TOPIC, EventBus
from finsync.store.interface import LocalStoreBackend
from finsync.validation import ValidationError


EntityKey = tuple[EntityType, str]


class MutationQueue:
    """Queue of pending SyncOperations, persisted through the store backend."""

    def __init__(self, backend: LocalStoreBackend, bus: EventBus):
        self._backend = backend
        self._bus = bus
        self._operations: dict[str, SyncOperation] = {}
        for data in backend.load_operations():
            op = SyncOperation.model_validate_json(data)
            self._operations[op.operation_id] = op
        self._next_sequence = max(
            (op.sequence for op in self._operations.values()), default=0
        ) + 1

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        entity_type: EntityType,
        entity_id: str,
        kind: OperationKind,
        payload: Optional[dict[str, Any]] = None,
        owner_id: Optional[str] = None,
    ) -> str:
        """
        Append an operation and return its id.

        Raises:
            ValidationError: missing entity id, kind or entity type
        """
        if not entity_id:
            raise ValidationError.single("entity_id", "missing", "Operation needs an entity id")
        if kind is None:
            raise ValidationError.single("kind", "missing", "Operation needs a kind")
        try:
            op = SyncOperation(
                sequence=self._next_sequence,
                owner_id=owner_id,
                entity_type=entity_type,
                entity_id=entity_id,
                kind=kind,
                payload=payload or {},
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Malformed sync operation: {e}")

        self._next_sequence += 1
        self._save(op)
        self._publish("enqueue", [op.operation_id])
        return op.operation_id

    def dequeue(self, operation_id: str) -> bool:
        """Remove a confirmed (or abandoned) operation. Idempotent."""
        if self._operations.pop(operation_id, None) is None:
            return False
        self._backend.delete_operation(operation_id)
        self._publish("dequeue", [operation_id])
        return True

    def list_pending(self) -> list[SyncOperation]:
        """Queued operations in enqueue order."""
        ops = sorted(self._operations.values(), key=lambda op: op.sequence)
        return [op.model_copy(deep=True) for op in ops]

    def pending_by_entity(self) -> dict[EntityKey, list[SyncOperation]]:
        """
        Queued operations grouped per entity.

        Groups are ordered by their earliest operation; operations
        inside a group keep enqueue order.
        """
        groups: dict[EntityKey, list[SyncOperation]] = {}
        for op in self.list_pending():
            groups.setdefault(op.entity_key, []).append(op)
        return groups

    def mark_failed(self, operation_id: str, error: str) -> Optional[SyncOperation]:
        """Record a failed replay without removing the operation."""
        op = self._operations.get(operation_id)
        if op is None:
            return None
        op.retry_count += 1
        op.last_error = error
        self._save(op)
        self._publish("failed", [operation_id])
        return op.model_copy()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get(self, operation_id: str) -> Optional[SyncOperation]:
        op = self._operations.get(operation_id)
        return op.model_copy(deep=True) if op else None

    def contains(self, operation_id: str) -> bool:
        return operation_id in self._operations

    def operations_for(self, entity_type: EntityType, entity_id: str) -> list[SyncOperation]:
        key = (EntityType(entity_type), entity_id)
        return [op for op in self.list_pending() if op.entity_key == key]

    def has_pending(self, entity_type: EntityType, entity_id: str) -> bool:
        key = (EntityType(entity_type), entity_id)
        return any(op.entity_key == key for op in self._operations.values())

    def has_pending_create(self, entity_type: EntityType, entity_id: str) -> bool:
        return any(
            op.kind == OperationKind.CREATE
            for op in self.operations_for(entity_type, entity_id)
        )

    def pending_count(self) -> int:
        return len(self._operations)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def drop_entity(self, entity_type: EntityType, entity_id: str) -> int:
        """Remove every queued operation for one entity."""
        dropped = [op.operation_id for op in self.operations_for(entity_type, entity_id)]
        for operation_id in dropped:
            self._operations.pop(operation_id, None)
            self._backend.delete_operation(operation_id)
        if dropped:
            self._publish("drop", dropped)
        return len(dropped)

    def remap_entity(self, entity_type: EntityType, old_id: str, new_id: str) -> int:
        """
        Point queued operations at a server-assigned id.

        When a bucket is re-keyed, queued entry payloads referencing
        it follow.
        """
        entity_type = EntityType(entity_type)
        changed = []
        for op in self._operations.values():
            touched = False
            if op.entity_key == (entity_type, old_id):
                op.entity_id = new_id
                if op.payload.get("id") == old_id:
                    op.payload["id"] = new_id
                touched = True
            if (
                entity_type == EntityType.SAVINGS_BUCKET
                and op.entity_type == EntityType.SAVINGS_ENTRY
                and op.payload.get("bucket_id") == old_id
            ):
                op.payload["bucket_id"] = new_id
                touched = True
            if touched:
                self._save(op)
                changed.append(op.operation_id)
        if changed:
            self._publish("remap", changed)
        return len(changed)

    def clear(self) -> int:
        """Drop every queued operation. Returns how many were dropped."""
        count = len(self._operations)
        self._operations.clear()
        self._backend.clear_operations()
        self._next_sequence = 1
        self._publish("clear", [])
        return count

    def _save(self, op: SyncOperation) -> None:
        self._operations[op.operation_id] = op
        self._backend.save_operation(op.operation_id, op.sequence, op.model_dump_json())

    def _publish(self, action: str, ids: list[str]) -> None:
        self._bus.publish(QUEUE_TOPIC, {"action": action, "ids": ids})
