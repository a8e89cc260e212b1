"""
Tests for the sync engine.

Runs full passes against the in-memory remote service. Backoff is zero
(see conftest), so retries do not slow the suite down.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from finsync.models.entities import EntitySyncStatus, EntityType, EntryType, Expense
from finsync.models.sync import OperationKind, RemoteErrorKind, SyncStatus
from finsync.orchestrator import OfflineSession
from finsync.queries import ReactiveQueries
from finsync.services.remote import InMemoryRemoteService, RemoteServiceError
from finsync.store import InMemoryBackend, LocalStore
from finsync.sync import RetryableSyncError, SyncEngine, TerminalSyncError, classify, same_content


OWNER = "user-1"
JAN_5 = date(2025, 1, 5)


class TestClassification:
    """Tests for splitting remote errors into retryable and terminal."""

    @pytest.mark.parametrize("kind", [RemoteErrorKind.NETWORK, RemoteErrorKind.SERVER])
    def test_retryable_kinds(self, kind):
        assert isinstance(classify(RemoteServiceError(kind, "x")), RetryableSyncError)

    @pytest.mark.parametrize(
        "kind",
        [RemoteErrorKind.VALIDATION, RemoteErrorKind.NOT_FOUND, RemoteErrorKind.UNAUTHORIZED],
    )
    def test_terminal_kinds(self, kind):
        error = classify(RemoteServiceError(kind, "x"))
        assert isinstance(error, TerminalSyncError)
        assert error.kind == kind

    def test_same_content_ignores_id_and_flags(self):
        local = Expense(owner_id=OWNER, amount=Decimal("3"), category="Dining", date=JAN_5)
        remote = local.model_copy(update={"id": "srv-1", "sync_status": EntitySyncStatus.SYNCED})
        assert same_content(local, remote)
        assert not same_content(local, remote.model_copy(update={"amount": Decimal("4")}))


class TestReplay:
    """Tests for draining the queue."""

    @pytest.mark.asyncio
    async def test_operations_replay_in_order(self, session, engine, remote, store):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        session.update_expense(expense.id, amount="12.00")

        report = await engine.sync_now()

        assert report.succeeded
        assert remote.call_names() == ["create_expense", "update_expense", "fetch_full_snapshot"]
        assert remote.get(EntityType.EXPENSE, expense.id).amount == Decimal("12.00")
        local = store.get_local(EntityType.EXPENSE, expense.id)
        assert local.sync_status == EntitySyncStatus.SYNCED
        assert store.queue.pending_count() == 0
        assert engine.status.status == SyncStatus.ONLINE
        assert engine.status.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_updates_then_delete_replay_in_order(self, session, engine, remote, store):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        await engine.sync_now()
        already_called = len(remote.call_names())

        session.update_expense(expense.id, amount="11.00")
        session.update_expense(expense.id, amount="12.00")
        session.delete_expense(expense.id)
        assert [op.kind for op in store.queue.list_pending()] == [
            OperationKind.UPDATE,
            OperationKind.UPDATE,
            OperationKind.DELETE,
        ]

        report = await engine.sync_now()

        assert report.succeeded
        assert remote.call_names()[already_called:] == [
            "update_expense",
            "update_expense",
            "delete_expense",
            "fetch_full_snapshot",
        ]
        assert remote.get(EntityType.EXPENSE, expense.id) is None
        assert store.get_local(EntityType.EXPENSE, expense.id) is None
        assert store.queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, session, engine, remote):
        session.add_expense("10.00", "Dining", JAN_5)
        remote.inject_failure("create_expense", RemoteErrorKind.SERVER, times=2)

        report = await engine.sync_now()

        assert report.succeeded
        assert remote.call_names().count("create_expense") == 3

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_retried(self, session, engine, remote):
        session.add_expense("10.00", "Dining", JAN_5)

        def boom():
            raise RuntimeError("socket closed")

        remote.on_call("create_expense", boom)
        report = await engine.sync_now()

        assert report.succeeded
        assert remote.call_names().count("create_expense") == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_keep_operation(self, session, engine, remote, store):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        session.update_expense(expense.id, amount="11.00")
        remote.inject_failure("create_expense", RemoteErrorKind.NETWORK, times=3)

        report = await engine.sync_now()

        assert report.final_status == SyncStatus.ERROR
        assert len(report.retried) == 1
        assert report.retried[0].retry_count == 1
        # The later update for the same entity must not jump the queue
        assert "update_expense" not in remote.call_names()
        ops = store.queue.list_pending()
        assert [op.kind for op in ops] == [OperationKind.CREATE, OperationKind.UPDATE]
        assert ops[0].retry_count == 1
        assert store.get_local(EntityType.EXPENSE, expense.id).sync_status == EntitySyncStatus.PENDING
        assert engine.status.last_error

    @pytest.mark.asyncio
    async def test_retried_operation_succeeds_next_pass(self, session, engine, remote, store):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        remote.inject_failure("create_expense", RemoteErrorKind.NETWORK, times=3)
        await engine.sync_now()

        report = await engine.sync_now()

        assert report.succeeded
        assert store.get_local(EntityType.EXPENSE, expense.id).sync_status == EntitySyncStatus.SYNCED
        assert engine.status.last_error is None

    @pytest.mark.asyncio
    async def test_terminal_failure_drops_and_flags(self, session, engine, remote, store):
        rejected = session.add_expense("10.00", "Dining", JAN_5)
        accepted = session.add_expense("20.00", "Housing", JAN_5)
        remote.inject_failure("create_expense", RemoteErrorKind.VALIDATION, message="bad category")

        report = await engine.sync_now()

        assert report.final_status == SyncStatus.ERROR
        assert [f.entity_id for f in report.dropped] == [rejected.id]
        assert report.dropped[0].error_kind == RemoteErrorKind.VALIDATION
        assert store.queue.pending_count() == 0
        assert store.get_local(EntityType.EXPENSE, rejected.id).sync_status == EntitySyncStatus.ERROR
        assert store.get_local(EntityType.EXPENSE, accepted.id).sync_status == EntitySyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_entries_wait_for_failed_bucket(self, session, engine, remote, store):
        bucket = session.add_bucket("Trip", "sky")
        result = session.add_entry(bucket.id, "50", JAN_5)
        remote.inject_failure("create_bucket", RemoteErrorKind.SERVER, times=3)

        report = await engine.sync_now()

        entry_op = store.queue.operations_for(EntityType.SAVINGS_ENTRY, result.entry.id)[0]
        assert report.deferred == [entry_op.operation_id]
        assert "create_entry" not in remote.call_names()
        assert store.queue.pending_count() == 2

    @pytest.mark.asyncio
    async def test_delete_of_missing_row_counts_as_done(self, session, engine, remote, store):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        await engine.sync_now()
        await remote.delete_expense(OWNER, expense.id)

        session.delete_expense(expense.id)
        report = await engine.sync_now()

        assert report.succeeded
        assert report.dropped == []
        assert store.queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_passes_do_not_overlap(self, session, engine, remote):
        session.add_expense("10.00", "Dining", JAN_5)

        first, second = await asyncio.gather(engine.sync_now(), engine.sync_now())

        assert first.succeeded and second.succeeded
        assert remote.call_names().count("create_expense") == 1


class TestServerAssignedIds:
    """Tests for records the server re-keys."""

    @pytest.fixture
    def rekeying(self, fast_settings):
        store = LocalStore(InMemoryBackend())
        remote = InMemoryRemoteService(assign_server_ids=True)
        engine = SyncEngine(store, remote, settings=fast_settings)
        session = OfflineSession(store, engine, queries=ReactiveQueries(store), auto_sync=False)
        session.sign_in(OWNER)
        return store, remote, engine, session

    @pytest.mark.asyncio
    async def test_bucket_and_entries_follow_server_id(self, rekeying):
        store, remote, engine, session = rekeying
        bucket = session.add_bucket("Trip", "sky")
        result = session.add_entry(bucket.id, "50", JAN_5)

        report = await engine.sync_now()

        assert report.succeeded
        buckets = store.query_local(EntityType.SAVINGS_BUCKET)
        assert len(buckets) == 1
        server_id = buckets[0].id
        assert server_id.startswith("srv-")
        assert store.get_local(EntityType.SAVINGS_BUCKET, bucket.id) is None

        entries = store.query_local(EntityType.SAVINGS_ENTRY)
        assert len(entries) == 1
        assert entries[0].bucket_id == server_id
        assert entries[0].id != result.entry.id
        assert entries[0].sync_status == EntitySyncStatus.SYNCED

        create_entry = [details for name, details in remote.calls if name == "create_entry"][0]
        assert create_entry["bucket_id"] == server_id

    @pytest.mark.asyncio
    async def test_update_after_create_targets_server_id(self, rekeying):
        store, remote, engine, session = rekeying
        expense = session.add_expense("10.00", "Dining", JAN_5)
        session.update_expense(expense.id, category="Housing")

        await engine.sync_now()

        rows = remote.rows(EntityType.EXPENSE, OWNER)
        assert len(rows) == 1
        assert rows[0].category == "Housing"
        assert store.query_local(EntityType.EXPENSE)[0].id == rows[0].id

    @pytest.mark.asyncio
    async def test_budget_is_matched_by_month(self, session, engine, remote, store):
        budget = session.set_budget("2025-01", "300")

        await engine.sync_now()

        budgets = store.query_local(EntityType.BUDGET)
        assert len(budgets) == 1
        assert budgets[0].id != budget.id
        assert budgets[0].id == remote.rows(EntityType.BUDGET, OWNER)[0].id
        assert budgets[0].sync_status == EntitySyncStatus.SYNCED


class TestReconciliation:
    """Tests for the snapshot pull after replay."""

    @pytest.mark.asyncio
    async def test_pulls_new_server_rows(self, session, engine, remote, store):
        seeded = remote.seed(
            Expense(owner_id=OWNER, amount=Decimal("7.00"), category="Utilities", date=JAN_5)
        )
        remote.seed(
            Expense(owner_id="user-2", amount=Decimal("1.00"), category="Utilities", date=JAN_5)
        )

        report = await engine.sync_now()

        assert report.reconciled
        rows = store.query_local(EntityType.EXPENSE)
        assert [row.id for row in rows] == [seeded.id]
        assert rows[0].sync_status == EntitySyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_removes_rows_deleted_on_server(self, session, engine, remote, store):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        await engine.sync_now()
        await remote.delete_expense(OWNER, expense.id)

        report = await engine.sync_now()

        assert report.removed == [f"expense:{expense.id}"]
        assert store.get_local(EntityType.EXPENSE, expense.id) is None

    @pytest.mark.asyncio
    async def test_pending_local_change_wins(self, session, engine, remote, store):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        await engine.sync_now()
        remote.seed(remote.get(EntityType.EXPENSE, expense.id).model_copy(update={"amount": Decimal("99.00")}))

        session.update_expense(expense.id, amount="20.00")
        remote.inject_failure("update_expense", RemoteErrorKind.SERVER, times=3)
        report = await engine.sync_now()

        assert len(report.conflicts) == 1
        assert report.conflicts[0].remote_content["amount"] == "99.00"
        local = store.get_local(EntityType.EXPENSE, expense.id)
        assert local.amount == Decimal("20.00")
        assert local.sync_status == EntitySyncStatus.PENDING

    @pytest.mark.asyncio
    async def test_rejected_row_stays_visible(self, session, engine, remote, store):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        await engine.sync_now()

        session.update_expense(expense.id, amount="500.00")
        remote.inject_failure("update_expense", RemoteErrorKind.VALIDATION)
        await engine.sync_now()

        local = store.get_local(EntityType.EXPENSE, expense.id)
        assert local.sync_status == EntitySyncStatus.ERROR
        assert local.amount == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_snapshot_failure_sets_error(self, session, engine, remote):
        remote.inject_failure("fetch_full_snapshot", RemoteErrorKind.UNAUTHORIZED, message="expired")

        report = await engine.sync_now()

        assert report.final_status == SyncStatus.ERROR
        assert report.reconciliation_error == "expired"
        assert not report.reconciled


class TestConnectivity:
    """Tests for offline handling and reconnects."""

    @pytest.mark.asyncio
    async def test_offline_pass_is_skipped(self, session, engine, remote, store):
        engine.set_online(False)
        session.add_expense("10.00", "Dining", JAN_5)

        report = await engine.sync_now()

        assert report.skipped
        assert report.final_status == SyncStatus.OFFLINE
        assert remote.calls == []
        assert store.queue.pending_count() == 1

    @pytest.mark.asyncio
    async def test_connectivity_lost_mid_pass(self, session, engine, remote, store):
        first = session.add_expense("10.00", "Dining", JAN_5)
        second = session.add_expense("20.00", "Dining", JAN_5)

        def drop_connection():
            remote.set_online(False)
            engine.set_online(False)

        remote.on_call("create_expense", drop_connection)
        report = await engine.sync_now()

        assert report.aborted
        assert report.final_status == SyncStatus.OFFLINE
        assert "fetch_full_snapshot" not in remote.call_names()
        assert remote.call_names().count("create_expense") == 1
        assert store.queue.pending_count() == 2
        for expense in (first, second):
            assert store.get_local(EntityType.EXPENSE, expense.id).sync_status == EntitySyncStatus.PENDING

    @pytest.mark.asyncio
    async def test_reconnect_triggers_sync(self, session, engine, remote, store):
        engine.set_online(False)
        expense = session.add_expense("10.00", "Dining", JAN_5)

        task = engine.set_online(True)
        assert task is not None
        await engine.wait_idle()

        assert remote.get(EntityType.EXPENSE, expense.id) is not None
        assert engine.status.status == SyncStatus.ONLINE
        assert engine.status.pending_count == 0

    @pytest.mark.asyncio
    async def test_reconnect_with_empty_queue_does_nothing(self, session, engine, remote):
        engine.set_online(False)
        assert engine.set_online(True) is None
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_delete_while_create_in_flight(self, session, engine, remote, store):
        expense = session.add_expense("10.00", "Dining", JAN_5)
        remote.on_call("create_expense", lambda: session.delete_expense(expense.id))

        await engine.sync_now()

        assert store.get_local(EntityType.EXPENSE, expense.id) is None
        ops = store.queue.list_pending()
        assert [(op.kind, op.entity_id) for op in ops] == [(OperationKind.DELETE, expense.id)]

        await engine.sync_now()
        assert remote.rows(EntityType.EXPENSE, OWNER) == []
        assert store.queue.pending_count() == 0


class TestStatusStream:
    """Tests for status and notification subscriptions."""

    @pytest.mark.asyncio
    async def test_status_transitions(self, session, engine):
        seen = []
        engine.subscribe_status(seen.append)
        session.add_expense("10.00", "Dining", JAN_5)

        await engine.sync_now()

        statuses = [snapshot.status for snapshot in seen]
        assert SyncStatus.SYNCING in statuses
        assert statuses[-1] == SyncStatus.ONLINE
        assert seen[0].pending_count == 1
        assert seen[-1].pending_count == 0

    @pytest.mark.asyncio
    async def test_manual_failure_notifies(self, session, engine, remote):
        notifications = []
        engine.subscribe_notifications(notifications.append)
        session.add_entry(session.add_bucket("Trip", "sky").id, "5", JAN_5, EntryType.WITHDRAWAL)
        remote.inject_failure("create_bucket", RemoteErrorKind.VALIDATION)

        report = await session.sync_now()

        assert report.manual
        assert len(notifications) == 1
        assert notifications[0].title == "Sync failed"
        assert notifications[0].failures[0].entity_type == EntityType.SAVINGS_BUCKET

    @pytest.mark.asyncio
    async def test_background_failure_does_not_notify(self, session, engine, remote):
        notifications = []
        engine.subscribe_notifications(notifications.append)
        session.add_expense("10.00", "Dining", JAN_5)
        remote.inject_failure("create_expense", RemoteErrorKind.VALIDATION)

        report = await engine.sync_now()

        assert report.final_status == SyncStatus.ERROR
        assert notifications == []
