"""Tests for the session entry points and app wiring."""

import pytest
from datetime import date
from decimal import Decimal

from finsync.config import Settings
from finsync.models.entities import EntitySyncStatus, EntityType, EntryType
from finsync.models.sync import OperationKind, RemoteErrorKind, SyncStatus
from finsync.orchestrator import OfflineSession, create_app_components, create_backend
from finsync.services.remote import InMemoryRemoteService
from finsync.store import InMemoryBackend, NotFoundError, StoreError
from finsync.validation import ValidationError


OWNER = "user-1"
JAN_5 = date(2025, 1, 5)


class TestSessionLifecycle:
    """Tests for signing owners in and out."""

    def test_fresh_sign_in_clears_nothing(self, store, engine):
        session = OfflineSession(store, engine, auto_sync=False)
        assert session.sign_in(OWNER) is False
        assert session.owner_id == OWNER

    def test_same_owner_keeps_data(self, session):
        session.add_expense("10", "Dining", JAN_5)
        assert session.sign_in(OWNER) is False
        assert len(session.store.query_local(EntityType.EXPENSE)) == 1

    def test_switching_owner_wipes_previous_data(self, session, store):
        session.add_expense("10", "Dining", JAN_5)

        assert session.sign_in("user-2") is True

        assert store.owner_id == "user-2"
        assert store.query_local(EntityType.EXPENSE) == []
        assert store.queue.pending_count() == 0

    def test_sign_out_reports_dropped_operations(self, session, store):
        session.add_expense("10", "Dining", JAN_5)
        session.add_bucket("Trip", "sky")
        assert session.sign_out() == 2
        assert store.owner_id is None

    def test_mutation_without_owner(self, store, engine):
        session = OfflineSession(store, engine, auto_sync=False)
        with pytest.raises(StoreError):
            session.add_expense("10", "Dining", JAN_5)

    def test_empty_owner_rejected(self, store, engine):
        session = OfflineSession(store, engine, auto_sync=False)
        with pytest.raises(ValidationError):
            session.sign_in("")


class TestExpenseMutations:
    """Tests for the optimistic write path."""

    def test_add_expense_is_pending_and_queued(self, session, store):
        expense = session.add_expense("12.50", "Groceries", JAN_5, notes="weekly shop")

        assert expense.sync_status == EntitySyncStatus.PENDING
        assert store.get_local(EntityType.EXPENSE, expense.id).notes == "weekly shop"
        ops = store.queue.list_pending()
        assert [(op.kind, op.entity_id) for op in ops] == [(OperationKind.CREATE, expense.id)]
        assert ops[0].payload["amount"] == "12.50"
        assert ops[0].owner_id == OWNER

    def test_invalid_input_is_not_queued(self, session, store):
        with pytest.raises(ValidationError):
            session.add_expense("-5", "Groceries", JAN_5)
        assert store.queue.pending_count() == 0
        assert store.query_local(EntityType.EXPENSE) == []

    def test_update_keeps_unspecified_fields(self, session, store):
        expense = session.add_expense("12.50", "Groceries", JAN_5, notes="weekly shop")
        updated = session.update_expense(expense.id, amount="15.00")

        assert updated.amount == Decimal("15.00")
        assert updated.category == "Groceries"
        assert updated.notes == "weekly shop"
        assert [op.kind for op in store.queue.list_pending()] == [
            OperationKind.CREATE,
            OperationKind.UPDATE,
        ]

    def test_update_can_clear_notes(self, session):
        expense = session.add_expense("12.50", "Groceries", JAN_5, notes="weekly shop")
        assert session.update_expense(expense.id, notes=None).notes is None

    def test_update_unknown_expense(self, session):
        with pytest.raises(NotFoundError):
            session.update_expense("missing", amount="1")

    def test_delete_unsynced_expense_cancels_create(self, session, store):
        expense = session.add_expense("12.50", "Groceries", JAN_5)
        session.update_expense(expense.id, amount="13.00")

        assert session.delete_expense(expense.id) is True

        assert store.queue.pending_count() == 0
        assert store.get_local(EntityType.EXPENSE, expense.id) is None

    @pytest.mark.asyncio
    async def test_delete_synced_expense_queues_delete(self, session, store, engine):
        expense = session.add_expense("12.50", "Groceries", JAN_5)
        await engine.sync_now()

        session.delete_expense(expense.id)

        ops = store.queue.list_pending()
        assert [(op.kind, op.entity_id) for op in ops] == [(OperationKind.DELETE, expense.id)]

    def test_delete_unknown_is_noop(self, session, store):
        assert session.delete_expense("missing") is False
        assert store.queue.pending_count() == 0

    def test_add_income(self, session):
        income = session.add_income("2000", "Salary", JAN_5)
        assert income.kind.value == "income"


class TestBudgetMutations:
    """Tests for month-keyed budgets."""

    def test_set_budget_twice_updates(self, session, store):
        first = session.set_budget("2025-01", "100")
        second = session.set_budget("2025-01", "250")

        assert second.id == first.id
        budgets = store.query_local(EntityType.BUDGET)
        assert len(budgets) == 1
        assert budgets[0].amount == Decimal("250")
        assert [op.kind for op in store.queue.list_pending()] == [
            OperationKind.CREATE,
            OperationKind.UPDATE,
        ]

    def test_bad_month(self, session):
        with pytest.raises(ValidationError):
            session.set_budget("January", "100")


class TestSavingsMutations:
    """Tests for buckets and entries."""

    def test_entry_needs_bucket(self, session):
        with pytest.raises(NotFoundError):
            session.add_entry("missing", "10", JAN_5)

    def test_withdrawal_past_balance_is_allowed(self, session):
        bucket = session.add_bucket("Trip", "sky")
        deposit = session.add_entry(bucket.id, "50", JAN_5)
        withdrawal = session.add_entry(bucket.id, "80", JAN_5, EntryType.WITHDRAWAL)

        assert deposit.overdraft is False
        assert withdrawal.overdraft is True
        assert withdrawal.balance == Decimal("-30")
        assert withdrawal.entry.sync_status == EntitySyncStatus.PENDING

    def test_update_bucket(self, session):
        bucket = session.add_bucket("Trip", "sky", goal_amount="500")
        updated = session.update_bucket(bucket.id, color="mint")
        assert updated.color == "mint"
        assert updated.goal_amount == Decimal("500")

    def test_update_entry(self, session):
        bucket = session.add_bucket("Trip", "sky")
        result = session.add_entry(bucket.id, "50", JAN_5)
        updated = session.update_entry(result.entry.id, entry_type=EntryType.WITHDRAWAL)
        assert updated.entry_type == EntryType.WITHDRAWAL
        assert updated.amount == Decimal("50")

    def test_delete_unsynced_bucket_cancels_everything(self, session, store):
        bucket = session.add_bucket("Trip", "sky")
        session.add_entry(bucket.id, "50", JAN_5)

        session.delete_bucket(bucket.id)

        assert store.queue.pending_count() == 0
        assert store.query_local(EntityType.SAVINGS_ENTRY) == []

    @pytest.mark.asyncio
    async def test_delete_synced_bucket_drops_entry_ops(self, session, store, engine):
        bucket = session.add_bucket("Trip", "sky")
        await engine.sync_now()
        session.add_entry(bucket.id, "50", JAN_5)

        session.delete_bucket(bucket.id)

        ops = store.queue.list_pending()
        assert [(op.entity_type, op.kind) for op in ops] == [
            (EntityType.SAVINGS_BUCKET, OperationKind.DELETE),
        ]

    def test_delete_entry(self, session, store):
        bucket = session.add_bucket("Trip", "sky")
        result = session.add_entry(bucket.id, "50", JAN_5)
        assert session.delete_entry(result.entry.id) is True
        assert store.entries_for_bucket(bucket.id) == []


class TestErrorRecovery:
    """Tests for discarding rejected changes."""

    @pytest.mark.asyncio
    async def test_discard_rejected_update_restores_server_copy(self, session, store, engine, remote):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        await engine.sync_now()
        session.update_expense(expense.id, amount="500.00")
        remote.inject_failure("update_expense", RemoteErrorKind.VALIDATION)
        await engine.sync_now()

        assert session.discard_error(EntityType.EXPENSE, expense.id) is True
        assert store.get_local(EntityType.EXPENSE, expense.id) is None

        await engine.sync_now()
        restored = store.get_local(EntityType.EXPENSE, expense.id)
        assert restored.amount == Decimal("10.00")
        assert restored.sync_status == EntitySyncStatus.SYNCED

    def test_discard_only_touches_error_rows(self, session):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        assert session.discard_error(EntityType.EXPENSE, expense.id) is False
        assert session.discard_error(EntityType.EXPENSE, "missing") is False


class TestWiring:
    """Tests for create_app_components."""

    def test_components_share_one_store(self):
        components = create_app_components(
            owner_id=OWNER,
            settings=Settings(),
            backend=InMemoryBackend(),
            remote=InMemoryRemoteService(),
            auto_sync=False,
        )
        assert components.session.store is components.store
        assert components.session.engine is components.engine
        assert components.store.owner_id == OWNER

    def test_memory_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("FINSYNC_STORE_BACKEND", "memory")
        assert isinstance(create_backend(Settings()), InMemoryBackend)

    @pytest.mark.asyncio
    async def test_auto_sync_after_mutation(self):
        remote = InMemoryRemoteService()
        components = create_app_components(
            owner_id=OWNER,
            settings=Settings(),
            backend=InMemoryBackend(),
            remote=remote,
        )
        expense = components.session.add_expense("10.00", "Dining", JAN_5)

        await components.engine.wait_idle()

        assert remote.get(EntityType.EXPENSE, expense.id) is not None
        local = components.store.get_local(EntityType.EXPENSE, expense.id)
        assert local.sync_status == EntitySyncStatus.SYNCED
        assert components.engine.status.status == SyncStatus.ONLINE

    def test_set_online_flows_to_status(self, session, engine):
        session.set_online(False)
        assert engine.status.status == SyncStatus.OFFLINE
        assert not engine.is_online
