"""
Local Store

The client-resident mirror of the four entity tables, plus the
mutation queue and the sync metadata singleton.

DESIGN DECISION: Reads never touch the backend. Every table is held
in memory and written through to the backend on each change, so
query_local() is a plain filter over a dict and never blocks.

Every change publishes on the EventBus before the call returns. Live
views recompute inside that publish, which is what gives the UI
read-your-write behaviour with no stale window.

The store is scoped to ONE owner at a time. Records belonging to a
different owner are rejected.
"""

from typing import Any, Callable, Iterable, Mapping, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from finsync.models.entities import (
    Budget,
    EntitySyncStatus,
    EntityType,
    LocalRecord,
    SavingsEntry,
    model_for,
)
from finsync.models.sync import StatusSnapshot, SyncMetadata, SyncStatus
from finsync.models.validation import ValidationIssue
from finsync.store.events import METADATA_TOPIC, ChangeEvent, EventBus
from finsync.store.interface import LocalStoreBackend
from finsync.store.queue import MutationQueue
from finsync.validation import ValidationError


Predicate = Callable[[Any], bool]


class LocalStore:
    """
    Durable, queryable mirror of server-owned records.

    Usage:
        store = LocalStore(SQLiteBackend("finsync.db"))
        store.upsert_local(EntityType.EXPENSE, expense, EntitySyncStatus.PENDING)
        store.query_local(EntityType.EXPENSE, lambda e: e.month == "2025-01")
    """

    def __init__(self, backend: LocalStoreBackend, bus: Optional[EventBus] = None):
        self._backend = backend
        self._bus = bus or EventBus()
        self._tables: dict[EntityType, dict[str, LocalRecord]] = {}

        for entity_type in EntityType:
            model = model_for(entity_type)
            self._tables[entity_type] = {}
            for data in backend.load_records(entity_type.value):
                record = model.model_validate_json(data)
                self._tables[entity_type][record.id] = record

        raw_metadata = backend.load_metadata()
        if raw_metadata:
            # Connectivity and pass state belong to the previous process.
            # Start offline until the host reports connectivity again.
            self._metadata = SyncMetadata.model_validate_json(raw_metadata).model_copy(
                update={"is_online": False, "status": SyncStatus.OFFLINE}
            )
        else:
            self._metadata = SyncMetadata()
        self._queue = MutationQueue(backend, self._bus)

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def queue(self) -> MutationQueue:
        return self._queue

    @property
    def owner_id(self) -> Optional[str]:
        return self._metadata.owner_id

    # -------------------------------------------------------------------------
    # Entity tables
    # -------------------------------------------------------------------------

    def upsert_local(
        self,
        entity_type: EntityType,
        record: Union[LocalRecord, Mapping[str, Any]],
        sync_status: EntitySyncStatus = EntitySyncStatus.PENDING,
    ) -> LocalRecord:
        """
        Insert or overwrite a record by id and set its sync status.

        Raises:
            ValidationError: record does not fit the entity schema, or
                belongs to another owner
        """
        entity_type = EntityType(entity_type)
        stored = self._coerce(entity_type, record)
        stored = stored.model_copy(update={"sync_status": EntitySyncStatus(sync_status)})

        if self.owner_id and stored.owner_id != self.owner_id:
            raise ValidationError.single(
                "owner_id",
                "owner_mismatch",
                f"Record belongs to {stored.owner_id}, store is scoped to {self.owner_id}",
            )

        changed = [stored.id]
        if entity_type == EntityType.BUDGET:
            # One budget per (owner, month)
            for other in list(self._tables[entity_type].values()):
                if (
                    other.id != stored.id
                    and other.owner_id == stored.owner_id
                    and other.month == stored.month
                ):
                    self._remove(entity_type, other.id)
                    changed.append(other.id)

        self._put(entity_type, stored)
        self._publish(entity_type, "upsert", changed)
        return stored.model_copy()

    def delete_local(self, entity_type: EntityType, record_id: str) -> bool:
        """
        Remove a record. Idempotent: an absent id is a no-op.

        Deleting a bucket removes its entries too.
        """
        entity_type = EntityType(entity_type)
        if record_id not in self._tables[entity_type]:
            return False

        self._remove(entity_type, record_id)

        if entity_type == EntityType.SAVINGS_BUCKET:
            entry_ids = [
                entry.id
                for entry in self._tables[EntityType.SAVINGS_ENTRY].values()
                if entry.bucket_id == record_id
            ]
            for entry_id in entry_ids:
                self._remove(EntityType.SAVINGS_ENTRY, entry_id)
            if entry_ids:
                self._publish(EntityType.SAVINGS_ENTRY, "delete", entry_ids)

        self._publish(entity_type, "delete", [record_id])
        return True

    def query_local(
        self,
        entity_type: EntityType,
        predicate: Optional[Predicate] = None,
    ) -> list:
        """Snapshot (copies) of records matching predicate."""
        records = self._tables[EntityType(entity_type)].values()
        return [
            record.model_copy()
            for record in records
            if predicate is None or predicate(record)
        ]

    def get_local(self, entity_type: EntityType, record_id: str) -> Optional[Any]:
        record = self._tables[EntityType(entity_type)].get(record_id)
        return record.model_copy() if record else None

    def set_sync_status(
        self,
        entity_type: EntityType,
        record_id: str,
        sync_status: EntitySyncStatus,
    ) -> bool:
        """Update only the sync flag of a record."""
        entity_type = EntityType(entity_type)
        record = self._tables[entity_type].get(record_id)
        if record is None:
            return False
        if record.sync_status == sync_status:
            return True
        self._put(entity_type, record.model_copy(update={"sync_status": EntitySyncStatus(sync_status)}))
        self._publish(entity_type, "status", [record_id])
        return True

    def remap_id(self, entity_type: EntityType, old_id: str, new_id: str) -> Optional[Any]:
        """
        Re-key a record after the server assigned its canonical id.

        Queued operations and (for buckets) child entries follow.
        """
        entity_type = EntityType(entity_type)
        if old_id == new_id:
            return self.get_local(entity_type, old_id)

        record = self._tables[entity_type].get(old_id)
        if record is not None:
            self._remove(entity_type, old_id)
            self._put(entity_type, record.model_copy(update={"id": new_id}))
            self._publish(entity_type, "remap", [old_id, new_id])

        if entity_type == EntityType.SAVINGS_BUCKET:
            moved = []
            for entry in list(self._tables[EntityType.SAVINGS_ENTRY].values()):
                if entry.bucket_id == old_id:
                    self._put(EntityType.SAVINGS_ENTRY, entry.model_copy(update={"bucket_id": new_id}))
                    moved.append(entry.id)
            if moved:
                self._publish(EntityType.SAVINGS_ENTRY, "remap", moved)

        self._queue.remap_entity(entity_type, old_id, new_id)
        return self.get_local(entity_type, new_id)

    def entries_for_bucket(self, bucket_id: str) -> list[SavingsEntry]:
        return self.query_local(EntityType.SAVINGS_ENTRY, lambda e: e.bucket_id == bucket_id)

    def budget_for_month(self, month: str) -> Optional[Budget]:
        budgets = self.query_local(EntityType.BUDGET, lambda b: b.month == month)
        return budgets[0] if budgets else None

    # -------------------------------------------------------------------------
    # Sync metadata singleton
    # -------------------------------------------------------------------------

    def get_sync_metadata(self) -> SyncMetadata:
        return self._metadata.model_copy()

    def set_sync_metadata(self, **partial: Any) -> SyncMetadata:
        """Update selected fields of the metadata singleton."""
        updated = SyncMetadata.model_validate({**self._metadata.model_dump(), **partial})
        if updated == self._metadata:
            return updated.model_copy()
        self._metadata = updated
        self._backend.save_metadata(updated.model_dump_json())
        self._bus.publish(METADATA_TOPIC, {"action": "update", "fields": sorted(partial)})
        return updated.model_copy()

    def status_snapshot(self) -> StatusSnapshot:
        """Sync status, connectivity and queue depth in one read."""
        metadata = self._metadata
        return StatusSnapshot(
            status=metadata.status,
            is_online=metadata.is_online,
            pending_count=self._queue.pending_count(),
            last_synced_at=metadata.last_synced_at,
            last_error=metadata.last_error,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def clear(self) -> int:
        """
        Wipe every table, the queue and the metadata.

        Returns the number of unsynced operations that were dropped.
        """
        dropped = self._queue.clear()
        self._backend.clear_records()
        self._backend.clear_metadata()
        self._metadata = SyncMetadata()
        for entity_type in EntityType:
            ids = list(self._tables[entity_type])
            self._tables[entity_type] = {}
            self._publish(entity_type, "clear", ids)
        self._bus.publish(METADATA_TOPIC, {"action": "clear", "fields": []})
        return dropped

    def subscribe(
        self,
        topics: Iterable[Union[str, EntityType]],
        handler: Callable[[ChangeEvent], None],
    ) -> Callable[[], None]:
        """Subscribe one handler to several topics; returns an unsubscribe callable."""
        unsubscribers = [self._bus.subscribe(topic, handler) for topic in topics]

        def unsubscribe() -> None:
            for unsub in unsubscribers:
                unsub()

        return unsubscribe

    def close(self) -> None:
        self._backend.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _coerce(
        self,
        entity_type: EntityType,
        record: Union[LocalRecord, Mapping[str, Any]],
    ) -> LocalRecord:
        model = model_for(entity_type)
        if isinstance(record, BaseModel) and not isinstance(record, model):
            raise ValidationError.single(
                "entity_type",
                "wrong_type",
                f"Expected {model.__name__}, got {type(record).__name__}",
            )
        data = record.model_dump() if isinstance(record, BaseModel) else dict(record)
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            issues = [
                ValidationIssue(
                    field=".".join(str(part) for part in err["loc"]) or entity_type.value,
                    issue_type=err["type"],
                    message=err["msg"],
                    severity="error",
                )
                for err in e.errors()
            ]
            raise ValidationError(f"Invalid {entity_type.value} record: {e}", issues)

    def _put(self, entity_type: EntityType, record: LocalRecord) -> None:
        self._tables[entity_type][record.id] = record
        self._backend.save_record(entity_type.value, record.id, record.owner_id, record.model_dump_json())

    def _remove(self, entity_type: EntityType, record_id: str) -> None:
        self._tables[entity_type].pop(record_id, None)
        self._backend.delete_record(entity_type.value, record_id)

    def _publish(self, entity_type: EntityType, action: str, ids: list[str]) -> None:
        self._bus.publish(entity_type.value, {"action": action, "ids": ids})
