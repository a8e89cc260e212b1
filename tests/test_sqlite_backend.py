"""Tests for the SQLite-backed local store."""

import pytest
from datetime import date
from decimal import Decimal

from finsync.models.entities import EntitySyncStatus, EntityType, Expense, SavingsBucket, utcnow
from finsync.models.sync import OperationKind, SyncStatus
from finsync.services.remote import InMemoryRemoteService
from finsync.store import LocalStore, SQLiteBackend
from finsync.sync import SyncEngine


OWNER = "user-1"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "finsync.db"


class TestSQLiteBackend:
    """Tests for raw document persistence."""

    def test_records_round_trip(self, db_path):
        backend = SQLiteBackend(db_path)
        backend.save_record("expense", "e1", OWNER, '{"id": "e1"}')
        backend.save_record("expense", "e1", OWNER, '{"id": "e1", "v": 2}')
        backend.save_record("budget", "b1", OWNER, '{"id": "b1"}')

        assert backend.load_records("expense") == ['{"id": "e1", "v": 2}']
        backend.delete_record("expense", "e1")
        backend.delete_record("expense", "e1")
        assert backend.load_records("expense") == []
        backend.close()

    def test_operations_ordered_by_sequence(self, db_path):
        backend = SQLiteBackend(db_path)
        backend.save_operation("op-b", 2, "second")
        backend.save_operation("op-a", 1, "first")
        assert backend.load_operations() == ["first", "second"]
        backend.clear_operations()
        assert backend.load_operations() == []
        backend.close()

    def test_metadata(self, db_path):
        backend = SQLiteBackend(db_path)
        assert backend.load_metadata() is None
        backend.save_metadata('{"status": "online"}')
        assert backend.load_metadata() == '{"status": "online"}'
        backend.clear_metadata()
        assert backend.load_metadata() is None
        backend.close()


class TestDurableStore:
    """Tests that offline work survives closing and reopening the store."""

    def test_store_survives_restart(self, db_path):
        store = LocalStore(SQLiteBackend(db_path))
        store.set_sync_metadata(owner_id=OWNER, is_online=False, status=SyncStatus.OFFLINE)
        expense = store.upsert_local(
            EntityType.EXPENSE,
            Expense(owner_id=OWNER, amount=Decimal("4.20"), category="Dining", date=date(2025, 1, 2)),
        )
        bucket = store.upsert_local(
            EntityType.SAVINGS_BUCKET,
            SavingsBucket(owner_id=OWNER, name="Trip", color="sky", interest_yearly_percent=Decimal("5")),
            EntitySyncStatus.SYNCED,
        )
        op_id = store.queue.enqueue(
            EntityType.EXPENSE, expense.id, OperationKind.CREATE, expense.to_payload(), OWNER
        )
        store.close()

        reopened = LocalStore(SQLiteBackend(db_path))
        try:
            assert reopened.owner_id == OWNER
            assert reopened.get_sync_metadata().status == SyncStatus.OFFLINE

            restored = reopened.get_local(EntityType.EXPENSE, expense.id)
            assert restored.amount == Decimal("4.20")
            assert restored.date == date(2025, 1, 2)
            assert restored.sync_status == EntitySyncStatus.PENDING

            restored_bucket = reopened.get_local(EntityType.SAVINGS_BUCKET, bucket.id)
            assert restored_bucket.interest_yearly_percent == Decimal("5")
            assert restored_bucket.sync_status == EntitySyncStatus.SYNCED

            ops = reopened.queue.list_pending()
            assert [op.operation_id for op in ops] == [op_id]
            assert ops[0].payload["amount"] == "4.20"
        finally:
            reopened.close()

    def test_clear_survives_restart(self, db_path):
        store = LocalStore(SQLiteBackend(db_path))
        store.set_sync_metadata(owner_id=OWNER)
        store.upsert_local(
            EntityType.EXPENSE,
            Expense(owner_id=OWNER, amount=Decimal("1"), category="Dining", date=date(2025, 1, 2)),
        )
        store.clear()
        store.close()

        reopened = LocalStore(SQLiteBackend(db_path))
        try:
            assert reopened.owner_id is None
            assert reopened.query_local(EntityType.EXPENSE) == []
        finally:
            reopened.close()


class TestRestartStatus:
    """Tests that a restart does not carry over connectivity or an unfinished pass."""

    @pytest.mark.asyncio
    async def test_interrupted_pass_resumes_on_reconnect(self, db_path, fast_settings):
        store = LocalStore(SQLiteBackend(db_path))
        store.set_sync_metadata(owner_id=OWNER)
        expense = store.upsert_local(
            EntityType.EXPENSE,
            Expense(owner_id=OWNER, amount=Decimal("9.99"), category="Dining", date=date(2025, 1, 3)),
        )
        store.queue.enqueue(
            EntityType.EXPENSE, expense.id, OperationKind.CREATE, expense.to_payload(), OWNER
        )
        # Process dies halfway through a pass
        store.set_sync_metadata(status=SyncStatus.SYNCING)
        store.close()

        reopened = LocalStore(SQLiteBackend(db_path))
        remote = InMemoryRemoteService()
        engine = SyncEngine(reopened, remote, settings=fast_settings)
        try:
            assert engine.status.status == SyncStatus.OFFLINE
            assert engine.is_online is False
            assert engine.status.pending_count == 1

            task = engine.set_online(True)
            assert task is not None
            await engine.wait_idle()

            assert remote.get(EntityType.EXPENSE, expense.id) is not None
            assert reopened.queue.pending_count() == 0
            assert engine.status.status == SyncStatus.ONLINE
        finally:
            reopened.close()

    def test_restart_keeps_sync_history(self, db_path):
        store = LocalStore(SQLiteBackend(db_path))
        synced_at = utcnow()
        store.set_sync_metadata(
            owner_id=OWNER,
            last_synced_at=synced_at,
            last_error="2 change(s) will be retried",
        )
        store.close()

        reopened = LocalStore(SQLiteBackend(db_path))
        try:
            metadata = reopened.get_sync_metadata()
            assert metadata.owner_id == OWNER
            assert metadata.last_synced_at == synced_at
            assert metadata.last_error == "2 change(s) will be retried"
            assert metadata.status == SyncStatus.OFFLINE
        finally:
            reopened.close()
