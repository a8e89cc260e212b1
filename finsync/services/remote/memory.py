"""
In-memory remote data service.

An authoritative server that lives in the same process. Used by tests
and by the `memory` remote backend. It behaves like the hosted API:
- rows are scoped per owner; touching another owner's row is unauthorized
- entries need an existing bucket (notFound otherwise)
- withdrawals beyond the balance are accepted and flagged as overdraft
- budgets are upserted by month

Test hooks let a caller flip connectivity, inject failures for the next
N calls of a method, or run a callback while a call is in flight.
"""

import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import uuid4

import structlog

from finsync.models.entities import (
    Budget,
    EntitySyncStatus,
    EntityType,
    EntryType,
    Expense,
    LocalRecord,
    SavingsBucket,
    SavingsEntry,
    utcnow,
)
from finsync.models.sync import RemoteErrorKind, RemoteSnapshot
from finsync.services.remote.interface import RemoteDataService, RemoteServiceError


logger = structlog.get_logger("finsync.remote.memory")


class InMemoryRemoteService(RemoteDataService):
    """
    Usage:
        remote = InMemoryRemoteService()
        remote.inject_failure("create_expense", RemoteErrorKind.SERVER, times=2)
        remote.set_online(False)
    """

    def __init__(self, assign_server_ids: bool = False):
        self.assign_server_ids = assign_server_ids
        self.online = True
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.overdrafts: list[str] = []

        self._rows: dict[EntityType, dict[str, LocalRecord]] = {
            entity_type: {} for entity_type in EntityType
        }
        self._failures: dict[str, list[tuple[RemoteErrorKind, str]]] = defaultdict(list)
        self._hooks: dict[str, list[Callable[[], Any]]] = defaultdict(list)
        self._revoked: set[str] = set()

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def set_online(self, online: bool) -> None:
        self.online = online

    def inject_failure(
        self,
        method: str,
        kind: RemoteErrorKind,
        times: int = 1,
        message: str = "",
    ) -> None:
        """Make the next `times` calls of `method` fail with `kind`."""
        self._failures[method].extend(
            [(RemoteErrorKind(kind), message or f"injected {kind}")] * times
        )

    def on_call(self, method: str, callback: Callable[[], Any]) -> None:
        """Run callback once, while the next call of `method` is in flight."""
        self._hooks[method].append(callback)

    def revoke(self, owner_id: str) -> None:
        """Reject every further call for owner_id as unauthorized."""
        self._revoked.add(owner_id)

    def seed(self, record: LocalRecord) -> LocalRecord:
        """Put a row straight into server state, bypassing the call log."""
        stored = self._canonical(record)
        self._rows[self._entity_type_of(record)][stored.id] = stored
        return stored

    def rows(self, entity_type: EntityType, owner_id: Optional[str] = None) -> list:
        return [
            row.model_copy()
            for row in self._rows[EntityType(entity_type)].values()
            if owner_id is None or row.owner_id == owner_id
        ]

    def get(self, entity_type: EntityType, record_id: str) -> Optional[Any]:
        row = self._rows[EntityType(entity_type)].get(record_id)
        return row.model_copy() if row else None

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def create_expense(self, expense: Expense) -> Expense:
        await self._enter("create_expense", expense.owner_id, id=expense.id)
        return self._insert(EntityType.EXPENSE, expense)

    async def update_expense(self, expense: Expense) -> Expense:
        await self._enter("update_expense", expense.owner_id, id=expense.id)
        return self._replace(EntityType.EXPENSE, expense)

    async def delete_expense(self, owner_id: str, expense_id: str) -> None:
        await self._enter("delete_expense", owner_id, id=expense_id)
        self._delete(EntityType.EXPENSE, owner_id, expense_id)

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def create_budget(self, owner_id: str, month: str, amount: Decimal) -> Budget:
        await self._enter("create_budget", owner_id, month=month)
        return self._upsert_budget(owner_id, month, amount)

    async def update_budget(self, owner_id: str, month: str, amount: Decimal) -> Budget:
        await self._enter("update_budget", owner_id, month=month)
        return self._upsert_budget(owner_id, month, amount)

    # -------------------------------------------------------------------------
    # Savings
    # -------------------------------------------------------------------------

    async def create_bucket(self, bucket: SavingsBucket) -> SavingsBucket:
        await self._enter("create_bucket", bucket.owner_id, id=bucket.id)
        return self._insert(EntityType.SAVINGS_BUCKET, bucket)

    async def update_bucket(self, bucket: SavingsBucket) -> SavingsBucket:
        await self._enter("update_bucket", bucket.owner_id, id=bucket.id)
        return self._replace(EntityType.SAVINGS_BUCKET, bucket)

    async def delete_bucket(self, owner_id: str, bucket_id: str) -> None:
        await self._enter("delete_bucket", owner_id, id=bucket_id)
        self._delete(EntityType.SAVINGS_BUCKET, owner_id, bucket_id)
        entries = self._rows[EntityType.SAVINGS_ENTRY]
        for entry_id in [e.id for e in entries.values() if e.bucket_id == bucket_id]:
            del entries[entry_id]

    async def create_entry(self, entry: SavingsEntry) -> SavingsEntry:
        await self._enter("create_entry", entry.owner_id, id=entry.id, bucket_id=entry.bucket_id)
        self._require_bucket(entry)
        stored = self._insert(EntityType.SAVINGS_ENTRY, entry)
        if entry.entry_type == EntryType.WITHDRAWAL and self._balance(entry.bucket_id) < 0:
            self.overdrafts.append(stored.id)
        return stored

    async def update_entry(self, entry: SavingsEntry) -> SavingsEntry:
        await self._enter("update_entry", entry.owner_id, id=entry.id)
        self._require_bucket(entry)
        return self._replace(EntityType.SAVINGS_ENTRY, entry)

    async def delete_entry(self, owner_id: str, entry_id: str) -> None:
        await self._enter("delete_entry", owner_id, id=entry_id)
        self._delete(EntityType.SAVINGS_ENTRY, owner_id, entry_id)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def fetch_full_snapshot(self, owner_id: str) -> RemoteSnapshot:
        await self._enter("fetch_full_snapshot", owner_id)
        return RemoteSnapshot(
            expenses=self.rows(EntityType.EXPENSE, owner_id),
            budgets=self.rows(EntityType.BUDGET, owner_id),
            buckets=self.rows(EntityType.SAVINGS_BUCKET, owner_id),
            entries=self.rows(EntityType.SAVINGS_ENTRY, owner_id),
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _enter(self, method: str, owner_id: str, **details: Any) -> None:
        self.calls.append((method, {"owner_id": owner_id, **details}))

        hooks, self._hooks[method] = self._hooks[method], []
        for hook in hooks:
            hook()

        # Suspend like a real network call would
        await asyncio.sleep(0)

        if not self.online:
            raise RemoteServiceError(RemoteErrorKind.NETWORK, "Server unreachable")
        if self._failures[method]:
            kind, message = self._failures[method].pop(0)
            logger.debug("injected_failure", method=method, kind=kind.value)
            raise RemoteServiceError(kind, message)
        if owner_id in self._revoked:
            raise RemoteServiceError(RemoteErrorKind.UNAUTHORIZED, "Session expired")

    def _canonical(self, record: LocalRecord) -> LocalRecord:
        return record.model_copy(update={"sync_status": EntitySyncStatus.SYNCED})

    def _entity_type_of(self, record: LocalRecord) -> EntityType:
        for entity_type, model in (
            (EntityType.EXPENSE, Expense),
            (EntityType.BUDGET, Budget),
            (EntityType.SAVINGS_BUCKET, SavingsBucket),
            (EntityType.SAVINGS_ENTRY, SavingsEntry),
        ):
            if isinstance(record, model):
                return entity_type
        raise TypeError(f"Not a mirrored record: {type(record).__name__}")

    def _insert(self, entity_type: EntityType, record: LocalRecord) -> Any:
        table = self._rows[entity_type]
        existing = table.get(record.id)
        if existing is not None and existing.owner_id != record.owner_id:
            raise RemoteServiceError(RemoteErrorKind.UNAUTHORIZED, "Record belongs to another owner")

        update: dict[str, Any] = {"sync_status": EntitySyncStatus.SYNCED}
        if self.assign_server_ids and existing is None:
            update["id"] = f"srv-{uuid4()}"
        stored = record.model_copy(update=update)
        table[stored.id] = stored
        return stored.model_copy()

    def _replace(self, entity_type: EntityType, record: LocalRecord) -> Any:
        self._owned(entity_type, record.owner_id, record.id)
        stored = self._canonical(record)
        self._rows[entity_type][stored.id] = stored
        return stored.model_copy()

    def _delete(self, entity_type: EntityType, owner_id: str, record_id: str) -> None:
        self._owned(entity_type, owner_id, record_id)
        del self._rows[entity_type][record_id]

    def _owned(self, entity_type: EntityType, owner_id: str, record_id: str) -> LocalRecord:
        row = self._rows[entity_type].get(record_id)
        if row is None:
            raise RemoteServiceError(RemoteErrorKind.NOT_FOUND, f"{entity_type.value} {record_id} not found")
        if row.owner_id != owner_id:
            raise RemoteServiceError(RemoteErrorKind.UNAUTHORIZED, "Record belongs to another owner")
        return row

    def _require_bucket(self, entry: SavingsEntry) -> None:
        self._owned(EntityType.SAVINGS_BUCKET, entry.owner_id, entry.bucket_id)

    def _balance(self, bucket_id: str) -> Decimal:
        balance = Decimal("0")
        for entry in self._rows[EntityType.SAVINGS_ENTRY].values():
            if entry.bucket_id != bucket_id:
                continue
            if entry.entry_type == EntryType.DEPOSIT:
                balance += entry.amount
            else:
                balance -= entry.amount
        return balance

    def _upsert_budget(self, owner_id: str, month: str, amount: Decimal) -> Budget:
        table = self._rows[EntityType.BUDGET]
        for budget in table.values():
            if budget.owner_id == owner_id and budget.month == month:
                stored = budget.model_copy(update={"amount": Decimal(str(amount))})
                table[stored.id] = stored
                return stored.model_copy()

        stored = Budget(
            id=f"srv-{uuid4()}",
            owner_id=owner_id,
            month=month,
            amount=Decimal(str(amount)),
            created_at=utcnow(),
            sync_status=EntitySyncStatus.SYNCED,
        )
        table[stored.id] = stored
        return stored.model_copy()
