"""
Session Orchestrator for finsync

This module ties the local store, the mutation queue, the sync engine
and the live views together, and defines the mutation entry points the
UI calls.

Every mutation follows the same two-phase contract:
1. Validate input (synchronous; ValidationError on bad input)
2. Apply to the local store as `pending` and queue the operation
   (synchronous; the caller gets the optimistic record back)
3. Confirmation happens later, in a sync pass

DESIGN DECISION: The session enforces the boundaries:
- Nothing is queued without passing validation
- Deleting a record the server never saw cancels its queued create
  instead of sending a create and a delete
- Switching owner wipes the previous owner's mirror and queue
- Every step is audited
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, NamedTuple, Optional

from pydantic import BaseModel

from finsync.audit import AuditLogger, configure_logging
from finsync.config import Settings, get_settings
from finsync.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from finsync.models.entities import (
    Budget,
    EntitySyncStatus,
    EntityType,
    EntryType,
    Expense,
    ExpenseKind,
    LocalRecord,
    SavingsBucket,
    SavingsEntry,
)
from finsync.models.sync import OperationKind, SyncReport
from finsync.models.validation import ValidationResult
from finsync.queries import ReactiveQueries, signed_balance
from finsync.services.remote import (
    GoogleSheetsClient,
    GoogleSheetsRemoteService,
    InMemoryRemoteService,
    RemoteDataService,
)
from finsync.store import (
    InMemoryBackend,
    LocalStore,
    LocalStoreBackend,
    NotFoundError,
    SQLiteBackend,
    StoreError,
)
from finsync.sync import SyncEngine
from finsync.validation import MutationValidator, ValidationError


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Marks an update argument the caller did not pass
UNSET: Any = _Unset()


class EntryResult(BaseModel):
    """
    Result of recording a savings entry.

    `overdraft` is informational only: withdrawals are never blocked.
    """

    entry: SavingsEntry
    overdraft: bool
    balance: Decimal


class OfflineSession:
    """
    Mutation entry points for one signed-in owner.

    Usage:
        session.sign_in("user-1")
        expense = session.add_expense("12.50", "Groceries", date.today())
        report = await session.sync_now()
    """

    def __init__(
        self,
        store: LocalStore,
        engine: SyncEngine,
        queries: Optional[ReactiveQueries] = None,
        validator: Optional[MutationValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        auto_sync: bool = True,
    ):
        self._store = store
        self._engine = engine
        self._queries = queries or ReactiveQueries(store)
        self._validator = validator or MutationValidator()
        self._audit = audit_logger or AuditLogger("finsync.session")
        self._auto_sync = auto_sync

    @property
    def store(self) -> LocalStore:
        return self._store

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def queries(self) -> ReactiveQueries:
        return self._queries

    @property
    def owner_id(self) -> Optional[str]:
        return self._store.owner_id

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def sign_in(self, owner_id: str) -> bool:
        """
        Scope the local store to owner_id.

        Returns True if another owner's data had to be cleared.
        """
        if not owner_id:
            raise ValidationError.single("owner_id", "missing", "Owner id is required")

        previous = self._store.owner_id
        cleared = False
        if previous != owner_id and (previous is not None or self._has_local_data()):
            self._clear(previous)
            cleared = True

        self._store.set_sync_metadata(owner_id=owner_id)
        self._audit.log(AuditEventBuilder.owner_signed_in(owner_id, cleared))
        return cleared

    def sign_out(self) -> int:
        """Wipe the mirror, queue and metadata. Returns dropped operations."""
        owner_id = self._store.owner_id
        dropped = self._clear(owner_id)
        self._audit.log(AuditEvent(
            event_type=AuditEventType.OWNER_SIGNED_OUT,
            entity_type="owner",
            entity_id=owner_id,
            description="Owner signed out",
            details={"dropped_operations": dropped},
            is_user_action=True,
        ))
        return dropped

    def _has_local_data(self) -> bool:
        if self._store.queue.pending_count():
            return True
        return any(self._store.query_local(entity_type) for entity_type in EntityType)

    def _clear(self, owner_id: Optional[str]) -> int:
        dropped = self._store.clear()
        self._audit.log(AuditEventBuilder.local_data_cleared(owner_id, dropped))
        return dropped

    def _require_owner(self) -> str:
        if self._store.owner_id is None:
            raise StoreError("No owner is signed in")
        return self._store.owner_id

    # -------------------------------------------------------------------------
    # Shared mutation steps
    # -------------------------------------------------------------------------

    def _validated(self, result: ValidationResult) -> dict[str, Any]:
        try:
            return self._validator.require(result)
        except ValidationError as e:
            self._audit.log(AuditEventBuilder.validation_rejected(
                result.action,
                [issue.model_dump() for issue in e.issues],
            ))
            raise

    def _get(self, entity_type: EntityType, record_id: str) -> Any:
        record = self._store.get_local(entity_type, record_id)
        if record is None:
            raise NotFoundError(f"{entity_type.value} {record_id} not found")
        return record

    def _apply(self, entity_type: EntityType, record: LocalRecord, kind: OperationKind) -> Any:
        stored = self._store.upsert_local(entity_type, record, EntitySyncStatus.PENDING)
        operation_id = self._store.queue.enqueue(
            entity_type,
            stored.id,
            kind,
            payload=stored.to_payload(),
            owner_id=stored.owner_id,
        )
        self._audit.log(AuditEventBuilder.operation_enqueued(
            entity_type.value, stored.id, kind.value, operation_id,
        ))
        self._kick()
        return stored

    def _delete(self, entity_type: EntityType, record_id: str) -> bool:
        if self._store.get_local(entity_type, record_id) is None:
            return False

        queue = self._store.queue
        if queue.has_pending_create(entity_type, record_id):
            # Never reached the server: cancel instead of create-then-delete
            dropped = queue.drop_entity(entity_type, record_id)
            self._audit.log(AuditEventBuilder.operation_squashed(
                entity_type.value, record_id, dropped,
            ))
        else:
            operation_id = queue.enqueue(
                entity_type,
                record_id,
                OperationKind.DELETE,
                payload={"id": record_id},
                owner_id=self._store.owner_id,
            )
            self._audit.log(AuditEventBuilder.operation_enqueued(
                entity_type.value, record_id, OperationKind.DELETE.value, operation_id,
            ))

        self._store.delete_local(entity_type, record_id)
        self._kick()
        return True

    def _kick(self) -> None:
        if self._auto_sync:
            self._engine.request_sync()

    @staticmethod
    def _pick(new: Any, current: Any) -> Any:
        return current if new is UNSET else new

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def add_expense(
        self,
        amount: Any,
        category: str,
        expense_date: Any,
        notes: Optional[str] = None,
        kind: ExpenseKind = ExpenseKind.EXPENSE,
    ) -> Expense:
        """Record an expense (or income) locally and queue its create."""
        owner_id = self._require_owner()
        values = self._validated(
            self._validator.check_expense(amount, category, expense_date, notes, kind)
        )
        expense = Expense(owner_id=owner_id, **values)
        return self._apply(EntityType.EXPENSE, expense, OperationKind.CREATE)

    def add_income(
        self,
        amount: Any,
        category: str,
        income_date: Any,
        notes: Optional[str] = None,
    ) -> Expense:
        return self.add_expense(amount, category, income_date, notes, ExpenseKind.INCOME)

    def update_expense(
        self,
        expense_id: str,
        amount: Any = UNSET,
        category: Any = UNSET,
        expense_date: Any = UNSET,
        notes: Any = UNSET,
        kind: Any = UNSET,
    ) -> Expense:
        """
        Change fields of an expense. Arguments left out keep their value.

        Raises:
            NotFoundError: no local expense with that id
            ValidationError: the merged record is invalid
        """
        self._require_owner()
        current = self._get(EntityType.EXPENSE, expense_id)
        values = self._validated(self._validator.check_expense(
            self._pick(amount, current.amount),
            self._pick(category, current.category),
            self._pick(expense_date, current.date),
            self._pick(notes, current.notes),
            self._pick(kind, current.kind),
        ))
        return self._apply(
            EntityType.EXPENSE,
            current.model_copy(update=values),
            OperationKind.UPDATE,
        )

    def delete_expense(self, expense_id: str) -> bool:
        """Delete an expense. Unknown ids are a no-op (returns False)."""
        self._require_owner()
        return self._delete(EntityType.EXPENSE, expense_id)

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    def set_budget(self, month: str, amount: Any) -> Budget:
        """Create the month's budget or overwrite its amount."""
        owner_id = self._require_owner()
        values = self._validated(self._validator.check_budget(month, amount))

        existing = self._store.budget_for_month(values["month"])
        if existing is not None:
            return self._apply(
                EntityType.BUDGET,
                existing.model_copy(update={"amount": values["amount"]}),
                OperationKind.UPDATE,
            )
        budget = Budget(owner_id=owner_id, **values)
        return self._apply(EntityType.BUDGET, budget, OperationKind.CREATE)

    # -------------------------------------------------------------------------
    # Savings buckets
    # -------------------------------------------------------------------------

    def add_bucket(
        self,
        name: str,
        color: str,
        goal_amount: Any = None,
        interest_yearly_percent: Any = None,
    ) -> SavingsBucket:
        owner_id = self._require_owner()
        values = self._validated(
            self._validator.check_bucket(name, color, goal_amount, interest_yearly_percent)
        )
        bucket = SavingsBucket(owner_id=owner_id, **values)
        return self._apply(EntityType.SAVINGS_BUCKET, bucket, OperationKind.CREATE)

    def update_bucket(
        self,
        bucket_id: str,
        name: Any = UNSET,
        color: Any = UNSET,
        goal_amount: Any = UNSET,
        interest_yearly_percent: Any = UNSET,
    ) -> SavingsBucket:
        self._require_owner()
        current = self._get(EntityType.SAVINGS_BUCKET, bucket_id)
        values = self._validated(self._validator.check_bucket(
            self._pick(name, current.name),
            self._pick(color, current.color),
            self._pick(goal_amount, current.goal_amount),
            self._pick(interest_yearly_percent, current.interest_yearly_percent),
        ))
        return self._apply(
            EntityType.SAVINGS_BUCKET,
            current.model_copy(update=values),
            OperationKind.UPDATE,
        )

    def delete_bucket(self, bucket_id: str) -> bool:
        """
        Delete a bucket and its entries.

        The server deletes the entries with the bucket, so queued entry
        operations are dropped rather than replayed.
        """
        self._require_owner()
        if self._store.get_local(EntityType.SAVINGS_BUCKET, bucket_id) is None:
            return False
        for entry in self._store.entries_for_bucket(bucket_id):
            self._store.queue.drop_entity(EntityType.SAVINGS_ENTRY, entry.id)
        return self._delete(EntityType.SAVINGS_BUCKET, bucket_id)

    # -------------------------------------------------------------------------
    # Savings entries
    # -------------------------------------------------------------------------

    def add_entry(
        self,
        bucket_id: str,
        amount: Any,
        entry_date: Any,
        entry_type: EntryType = EntryType.DEPOSIT,
        notes: Optional[str] = None,
    ) -> EntryResult:
        """
        Record a deposit or withdrawal.

        Withdrawals past the balance go through; the result carries
        overdraft=True.
        """
        owner_id = self._require_owner()
        self._get(EntityType.SAVINGS_BUCKET, bucket_id)
        values = self._validated(
            self._validator.check_entry(amount, entry_date, entry_type, notes)
        )
        entry = self._apply(
            EntityType.SAVINGS_ENTRY,
            SavingsEntry(owner_id=owner_id, bucket_id=bucket_id, **values),
            OperationKind.CREATE,
        )
        balance = signed_balance(self._store.entries_for_bucket(bucket_id))
        return EntryResult(
            entry=entry,
            overdraft=entry.entry_type == EntryType.WITHDRAWAL and balance < 0,
            balance=balance,
        )

    def update_entry(
        self,
        entry_id: str,
        amount: Any = UNSET,
        entry_date: Any = UNSET,
        entry_type: Any = UNSET,
        notes: Any = UNSET,
    ) -> SavingsEntry:
        self._require_owner()
        current = self._get(EntityType.SAVINGS_ENTRY, entry_id)
        values = self._validated(self._validator.check_entry(
            self._pick(amount, current.amount),
            self._pick(entry_date, current.date),
            self._pick(entry_type, current.entry_type),
            self._pick(notes, current.notes),
        ))
        return self._apply(
            EntityType.SAVINGS_ENTRY,
            current.model_copy(update=values),
            OperationKind.UPDATE,
        )

    def delete_entry(self, entry_id: str) -> bool:
        self._require_owner()
        return self._delete(EntityType.SAVINGS_ENTRY, entry_id)

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    async def sync_now(self) -> SyncReport:
        """User-requested sync. Failures come back as a notification, not an exception."""
        return await self._engine.sync_now(manual=True)

    def set_online(self, online: bool) -> None:
        self._engine.set_online(online)

    def discard_error(self, entity_type: EntityType, record_id: str) -> bool:
        """
        Throw away a local change the server rejected.

        The local row and any operations still queued for it are
        removed; the next reconciliation restores the server's version
        if there is one.
        """
        entity_type = EntityType(entity_type)
        record = self._store.get_local(entity_type, record_id)
        if record is None or record.sync_status != EntitySyncStatus.ERROR:
            return False
        self._store.queue.drop_entity(entity_type, record_id)
        self._store.delete_local(entity_type, record_id)
        self._kick()
        return True


# =============================================================================
# WIRING
# =============================================================================

class AppComponents(NamedTuple):
    store: LocalStore
    remote: RemoteDataService
    engine: SyncEngine
    queries: ReactiveQueries
    session: OfflineSession


def create_backend(settings: Settings) -> LocalStoreBackend:
    store_settings = settings.store
    if store_settings.backend == "memory":
        return InMemoryBackend()
    return SQLiteBackend(store_settings.database_path)


def create_remote(settings: Settings) -> RemoteDataService:
    if settings.remote.backend == "google_sheets":
        return GoogleSheetsRemoteService(GoogleSheetsClient(settings.google_sheets))
    return InMemoryRemoteService()


def create_app_components(
    owner_id: Optional[str] = None,
    settings: Optional[Settings] = None,
    backend: Optional[LocalStoreBackend] = None,
    remote: Optional[RemoteDataService] = None,
    today: Optional[Callable[[], date]] = None,
    auto_sync: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        owner_id: Sign this owner in right away
        backend: Local persistence; defaults to the configured backend
        remote: Remote data service; defaults to the configured one
        today: Clock for interest accrual in live views

    Returns:
        AppComponents(store, remote, engine, queries, session)
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)

    store = LocalStore(backend or create_backend(settings))
    remote = remote or create_remote(settings)
    engine = SyncEngine(store, remote, settings=settings.sync)
    queries = ReactiveQueries(store, today=today)
    session = OfflineSession(store, engine, queries=queries, auto_sync=auto_sync)

    if owner_id:
        session.sign_in(owner_id)

    return AppComponents(store, remote, engine, queries, session)
