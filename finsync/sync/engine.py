"""
Sync Engine

Drains the mutation queue against the remote data service, then pulls
the server's snapshot and reconciles the local mirror with it.

A pass:
1. Offline -> nothing happens, the report says `skipped`
2. Status -> syncing
3. Replay, one entity at a time, each entity's operations in FIFO order
4. Reconciliation pull (unless connectivity was lost)
5. Status -> online, error or offline

CRITICAL INVARIANTS:
- Operations for one entity are never reordered. The first failure
  stops that entity's replay for the rest of the pass.
- A record's pending/error flag is only cleared by a confirmed replay
  or by a reconciliation that shows identical content on the server.
- A record with queued operations is never overwritten by the server
  snapshot. The local change wins and the conflict is logged.

Sync failures never propagate to the caller that made the local change.
They surface through the status stream, per-record flags, the
SyncReport and (for manual passes) a SyncNotification.
"""

import asyncio
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finsync.audit import AuditLogger, create_correlation_id
from finsync.config import SyncSettings, get_settings
from finsync.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from finsync.models.entities import (
    EntitySyncStatus,
    EntityType,
    LocalRecord,
    model_for,
    utcnow,
)
from finsync.models.sync import (
    OperationKind,
    ReconciliationConflict,
    RemoteErrorKind,
    RemoteSnapshot,
    StatusSnapshot,
    SyncFailure,
    SyncNotification,
    SyncOperation,
    SyncReport,
    SyncStatus,
)
from finsync.services.remote import RemoteDataService, RemoteServiceError
from finsync.store import METADATA_TOPIC, NOTIFICATION_TOPIC, QUEUE_TOPIC, LocalStore
from finsync.validation import ValidationError


# =============================================================================
# EXCEPTIONS
# =============================================================================

class SyncError(Exception):
    """Base exception for replay and reconciliation failures."""

    def __init__(self, kind: RemoteErrorKind, message: str = ""):
        self.kind = RemoteErrorKind(kind)
        self.message = message or self.kind.value
        super().__init__(f"[{self.kind.value}] {self.message}")


class RetryableSyncError(SyncError):
    """Transient failure (network, server, timeout). The operation stays queued."""
    pass


class TerminalSyncError(SyncError):
    """The server rejected the operation. It is dropped and the record flagged."""
    pass


def classify(error: RemoteServiceError) -> SyncError:
    """Split remote failures into retryable and terminal ones."""
    if error.kind.retryable:
        return RetryableSyncError(error.kind, error.message)
    return TerminalSyncError(error.kind, error.message)


# =============================================================================
# ENGINE
# =============================================================================

class SyncEngine:
    """
    Owns the sync status and runs sync passes.

    Usage:
        engine = SyncEngine(store, remote)
        engine.set_online(True)
        report = await engine.sync_now(manual=True)
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteDataService,
        settings: Optional[SyncSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._remote = remote
        self._settings = settings or get_settings().sync
        self._audit = audit_logger or AuditLogger("finsync.sync")
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()
        self._last_report: Optional[SyncReport] = None

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    @property
    def status(self) -> StatusSnapshot:
        return self._store.status_snapshot()

    @property
    def is_online(self) -> bool:
        return self._store.get_sync_metadata().is_online

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    @property
    def last_report(self) -> Optional[SyncReport]:
        return self._last_report

    def subscribe_status(self, listener: Callable[[StatusSnapshot], None]) -> Callable[[], None]:
        """
        Call listener with a new StatusSnapshot whenever status,
        connectivity or the pending count changes.
        """
        last: list[Optional[StatusSnapshot]] = [None]

        def on_change(_event) -> None:
            snapshot = self.status
            if snapshot != last[0]:
                last[0] = snapshot
                listener(snapshot)

        return self._store.subscribe([METADATA_TOPIC, QUEUE_TOPIC], on_change)

    def subscribe_notifications(
        self,
        listener: Callable[[SyncNotification], None],
    ) -> Callable[[], None]:
        return self._store.bus.subscribe(
            NOTIFICATION_TOPIC,
            lambda event: listener(SyncNotification.model_validate(event.payload)),
        )

    def _set_status(
        self,
        status: SyncStatus,
        correlation_id: Optional[str] = None,
        **fields: Any,
    ) -> None:
        previous = self._store.get_sync_metadata().status
        self._store.set_sync_metadata(status=status, **fields)
        self._audit.log_status_changed(previous.value, status.value, correlation_id)

    # -------------------------------------------------------------------------
    # Connectivity
    # -------------------------------------------------------------------------

    def set_online(self, online: bool) -> Optional[asyncio.Task]:
        """
        Feed the host environment's connectivity signal.

        Coming back online schedules a sync pass when work is queued.
        """
        metadata = self._store.get_sync_metadata()
        if metadata.is_online == online:
            return None

        self._audit.log(AuditEvent(
            event_type=AuditEventType.CONNECTIVITY_CHANGED,
            description="Connectivity restored" if online else "Connectivity lost",
            details={"is_online": online},
        ))

        if not online:
            self._set_status(SyncStatus.OFFLINE, is_online=False)
            return None

        self._set_status(SyncStatus.ONLINE, is_online=True)
        if self._settings.auto_sync_on_reconnect and self._store.queue.pending_count():
            return self.request_sync()
        return None

    def request_sync(self) -> Optional[asyncio.Task]:
        """Schedule a background pass, if online and inside a running loop."""
        if not self.is_online:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None

        task = loop.create_task(self.sync_now())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for scheduled background passes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Sync pass
    # -------------------------------------------------------------------------

    async def sync_now(self, manual: bool = False) -> SyncReport:
        """
        Run one sync pass.

        Passes never overlap: a call made while one is running waits
        for it and then runs its own pass over whatever is queued by then.
        """
        async with self._lock:
            report = await self._run_pass(manual)
        self._last_report = report
        return report

    async def _run_pass(self, manual: bool) -> SyncReport:
        report = SyncReport(correlation_id=create_correlation_id(), manual=manual)
        cid = report.correlation_id
        owner_id = self._store.owner_id

        if not self.is_online or owner_id is None:
            report.skipped = True
            report.final_status = self._store.get_sync_metadata().status
            report.finished_at = utcnow()
            return report

        self._audit.log(AuditEvent(
            event_type=AuditEventType.SYNC_STARTED,
            correlation_id=cid,
            description="Sync pass started",
            details={
                "manual": manual,
                "pending_count": self._store.queue.pending_count(),
            },
            is_user_action=manual,
        ))
        self._set_status(SyncStatus.SYNCING, cid)

        await self._replay(owner_id, report)

        if not self._still_current(owner_id):
            report.aborted = True

        if report.aborted:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.SYNC_ABORTED,
                severity=AuditSeverity.WARNING,
                correlation_id=cid,
                description="Connectivity lost during sync; reconciliation skipped",
            ))
        else:
            await self._reconcile(owner_id, report)

        return self._finish(owner_id, report)

    def _still_current(self, owner_id: str) -> bool:
        return self.is_online and self._store.owner_id == owner_id

    def _finish(self, owner_id: str, report: SyncReport) -> SyncReport:
        cid = report.correlation_id
        report.finished_at = utcnow()

        if self._store.owner_id != owner_id:
            # Signed out mid-pass; the store was already reset
            report.final_status = self._store.get_sync_metadata().status
        elif report.aborted:
            report.final_status = SyncStatus.OFFLINE
            self._set_status(SyncStatus.OFFLINE, cid)
        elif report.dropped or report.retried or report.reconciliation_error:
            report.final_status = SyncStatus.ERROR
            self._set_status(
                SyncStatus.ERROR,
                cid,
                last_error=self._error_summary(report),
                last_synced_at=report.finished_at,
            )
        else:
            report.final_status = SyncStatus.ONLINE
            self._set_status(
                SyncStatus.ONLINE,
                cid,
                last_error=None,
                last_synced_at=report.finished_at,
            )

        self._audit.log(AuditEventBuilder.sync_finished(
            {
                "final_status": report.final_status.value if report.final_status else None,
                "manual": report.manual,
                "replayed": len(report.replayed),
                "retried": len(report.retried),
                "dropped": len(report.dropped),
                "deferred": len(report.deferred),
                "conflicts": len(report.conflicts),
                "removed": len(report.removed),
                "aborted": report.aborted,
            },
            cid,
        ))

        if report.manual and report.final_status == SyncStatus.ERROR:
            notification = SyncNotification(
                title="Sync failed",
                message=self._error_summary(report),
                failures=report.dropped + report.retried,
            )
            self._store.bus.publish(NOTIFICATION_TOPIC, notification.model_dump(mode="json"))

        return report

    def _error_summary(self, report: SyncReport) -> str:
        parts = []
        if report.dropped:
            parts.append(f"{len(report.dropped)} change(s) rejected by the server")
        if report.retried:
            parts.append(f"{len(report.retried)} change(s) will be retried")
        if report.reconciliation_error:
            parts.append(f"refresh failed: {report.reconciliation_error}")
        return "; ".join(parts) or "Sync failed"

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    async def _replay(self, owner_id: str, report: SyncReport) -> None:
        failed_buckets: set[str] = set()

        for (entity_type, entity_id), ops in self._store.queue.pending_by_entity().items():
            if not self._still_current(owner_id):
                report.aborted = True
                return

            if entity_type == EntityType.SAVINGS_ENTRY:
                blocked_by = self._blocking_bucket(ops, failed_buckets)
                if blocked_by:
                    for op in ops:
                        report.deferred.append(op.operation_id)
                    self._audit.log(AuditEventBuilder.operation_deferred(
                        entity_type.value, entity_id, blocked_by, report.correlation_id,
                    ))
                    continue

            if not await self._replay_entity(owner_id, ops, report):
                if entity_type == EntityType.SAVINGS_BUCKET:
                    failed_buckets.add(entity_id)

    def _blocking_bucket(self, ops: list[SyncOperation], failed_buckets: set[str]) -> Optional[str]:
        for op in ops:
            current = self._store.queue.get(op.operation_id)
            bucket_id = (current or op).payload.get("bucket_id")
            if bucket_id in failed_buckets:
                return bucket_id
        return None

    async def _replay_entity(
        self,
        owner_id: str,
        ops: list[SyncOperation],
        report: SyncReport,
    ) -> bool:
        """Replay one entity's operations in order; False on the first failure."""
        for queued in ops:
            if not self._still_current(owner_id):
                report.aborted = True
                return False

            # Re-read: the operation may have been re-keyed or dropped since
            # the pass started
            op = self._store.queue.get(queued.operation_id)
            if op is None:
                continue

            try:
                canonical = await self._replay_with_retry(owner_id, op)
            except TerminalSyncError as e:
                if op.kind == OperationKind.DELETE and e.kind == RemoteErrorKind.NOT_FOUND:
                    # Already gone on the server
                    self._confirm(owner_id, op, None, report)
                    continue
                self._drop(op, e, report)
                return False
            except RetryableSyncError as e:
                self._keep_for_retry(op, e, report)
                return False

            self._confirm(owner_id, op, canonical, report)
        return True

    async def _replay_with_retry(self, owner_id: str, op: SyncOperation) -> Optional[LocalRecord]:
        settings = self._settings
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.replay_attempts) | self._went_offline,
            wait=wait_exponential(
                multiplier=settings.backoff_multiplier,
                min=settings.backoff_min_seconds,
                max=settings.backoff_max_seconds,
            ),
            retry=retry_if_exception_type(RetryableSyncError),
            reraise=True,
        )
        result = None
        async for attempt in retrying:
            with attempt:
                result = await self._call_remote(owner_id, op)
        return result

    def _went_offline(self, retry_state) -> bool:
        return not self.is_online

    async def _call_remote(self, owner_id: str, op: SyncOperation) -> Optional[LocalRecord]:
        try:
            return await asyncio.wait_for(
                self._dispatch(owner_id, op),
                timeout=self._settings.remote_timeout_seconds,
            )
        except RemoteServiceError as e:
            raise classify(e)
        except asyncio.TimeoutError:
            raise RetryableSyncError(RemoteErrorKind.NETWORK, "Remote call timed out")
        except SyncError:
            raise
        except Exception as e:
            self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation_id": op.operation_id},
            )
            raise RetryableSyncError(RemoteErrorKind.SERVER, str(e))

    async def _dispatch(self, owner_id: str, op: SyncOperation) -> Optional[LocalRecord]:
        remote = self._remote
        entity_type = op.entity_type

        if op.kind == OperationKind.DELETE:
            if entity_type == EntityType.EXPENSE:
                await remote.delete_expense(owner_id, op.entity_id)
            elif entity_type == EntityType.SAVINGS_BUCKET:
                await remote.delete_bucket(owner_id, op.entity_id)
            elif entity_type == EntityType.SAVINGS_ENTRY:
                await remote.delete_entry(owner_id, op.entity_id)
            else:
                raise TerminalSyncError(RemoteErrorKind.VALIDATION, "Budgets cannot be deleted")
            return None

        try:
            record = model_for(entity_type).model_validate(
                {**op.payload, "id": op.entity_id, "owner_id": owner_id}
            )
        except PydanticValidationError as e:
            raise TerminalSyncError(RemoteErrorKind.VALIDATION, f"Malformed payload: {e}")

        create = op.kind == OperationKind.CREATE
        if entity_type == EntityType.EXPENSE:
            if create:
                return await remote.create_expense(record)
            return await remote.update_expense(record)
        if entity_type == EntityType.BUDGET:
            if create:
                return await remote.create_budget(owner_id, record.month, record.amount)
            return await remote.update_budget(owner_id, record.month, record.amount)
        if entity_type == EntityType.SAVINGS_BUCKET:
            if create:
                return await remote.create_bucket(record)
            return await remote.update_bucket(record)
        if create:
            return await remote.create_entry(record)
        return await remote.update_entry(record)

    # -------------------------------------------------------------------------
    # Replay outcomes
    # -------------------------------------------------------------------------

    def _confirm(
        self,
        owner_id: str,
        op: SyncOperation,
        canonical: Optional[LocalRecord],
        report: SyncReport,
    ) -> None:
        cid = report.correlation_id
        queue = self._store.queue
        entity_type = op.entity_type

        still_queued = queue.dequeue(op.operation_id)
        report.replayed.append(op.operation_id)
        self._audit.log(AuditEventBuilder.operation_replayed(
            entity_type.value, op.entity_id, op.kind.value, op.operation_id, cid,
        ))

        if canonical is None or self._store.owner_id != owner_id:
            return

        if not still_queued:
            # The record was deleted locally while its create was in flight
            if op.kind == OperationKind.CREATE and entity_type != EntityType.BUDGET:
                queue.enqueue(entity_type, canonical.id, OperationKind.DELETE, owner_id=owner_id)
            return

        if canonical.id != op.entity_id:
            self._store.remap_id(entity_type, op.entity_id, canonical.id)
            self._audit.log(AuditEventBuilder.entity_rekeyed(
                entity_type.value, op.entity_id, canonical.id, cid,
            ))

        if queue.has_pending(entity_type, canonical.id):
            # A newer local change is still queued; it wins
            return
        if self._store.get_local(entity_type, canonical.id) is None:
            return

        try:
            self._store.upsert_local(entity_type, canonical, EntitySyncStatus.SYNCED)
        except ValidationError as e:
            self._audit.log_error(
                error_type="canonical_record_rejected",
                error_message=str(e),
                details={"entity_type": entity_type.value, "entity_id": canonical.id},
                correlation_id=cid,
            )

    def _failure(self, op: SyncOperation, error: SyncError, retry_count: int) -> SyncFailure:
        return SyncFailure(
            operation_id=op.operation_id,
            entity_type=op.entity_type,
            entity_id=op.entity_id,
            kind=op.kind,
            error_kind=error.kind,
            message=error.message,
            retryable=isinstance(error, RetryableSyncError),
            retry_count=retry_count,
        )

    def _drop(self, op: SyncOperation, error: TerminalSyncError, report: SyncReport) -> None:
        self._store.queue.dequeue(op.operation_id)
        self._store.set_sync_status(op.entity_type, op.entity_id, EntitySyncStatus.ERROR)
        report.dropped.append(self._failure(op, error, op.retry_count))
        self._audit.log(AuditEventBuilder.operation_dropped(
            op.entity_type.value,
            op.entity_id,
            op.operation_id,
            error.kind.value,
            error.message,
            report.correlation_id,
        ))

    def _keep_for_retry(self, op: SyncOperation, error: RetryableSyncError, report: SyncReport) -> None:
        updated = self._store.queue.mark_failed(op.operation_id, str(error))
        retry_count = updated.retry_count if updated else op.retry_count + 1
        report.retried.append(self._failure(op, error, retry_count))
        self._audit.log(AuditEventBuilder.operation_retry_scheduled(
            op.entity_type.value,
            op.entity_id,
            op.operation_id,
            error.kind.value,
            error.message,
            retry_count,
            report.correlation_id,
        ))

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def _reconcile(self, owner_id: str, report: SyncReport) -> None:
        cid = report.correlation_id
        self._audit.log(AuditEvent(
            event_type=AuditEventType.RECONCILIATION_STARTED,
            correlation_id=cid,
            description="Pulling server snapshot",
        ))

        try:
            snapshot = await self._fetch_snapshot(owner_id)
        except SyncError as e:
            report.reconciliation_error = e.message
            self._audit.log(AuditEventBuilder.reconciliation_failed(e.kind.value, e.message, cid))
            return

        if self._store.owner_id != owner_id:
            return

        counts = self._apply_snapshot(owner_id, snapshot, report)
        report.reconciled = True
        self._audit.log(AuditEventBuilder.reconciliation_completed(
            counts, len(report.removed), len(report.conflicts), cid,
        ))

    async def _fetch_snapshot(self, owner_id: str) -> RemoteSnapshot:
        settings = self._settings
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.replay_attempts),
            wait=wait_exponential(
                multiplier=settings.backoff_multiplier,
                min=settings.backoff_min_seconds,
                max=settings.backoff_max_seconds,
            ),
            retry=retry_if_exception_type(RetryableSyncError),
            reraise=True,
        )
        snapshot = None
        async for attempt in retrying:
            with attempt:
                try:
                    snapshot = await asyncio.wait_for(
                        self._remote.fetch_full_snapshot(owner_id),
                        timeout=self._settings.remote_timeout_seconds,
                    )
                except RemoteServiceError as e:
                    raise classify(e)
                except asyncio.TimeoutError:
                    raise RetryableSyncError(RemoteErrorKind.NETWORK, "Snapshot fetch timed out")
                except Exception as e:
                    self._audit.log_error(error_type=type(e).__name__, error_message=str(e))
                    raise RetryableSyncError(RemoteErrorKind.SERVER, str(e))
        return snapshot

    def _apply_snapshot(
        self,
        owner_id: str,
        snapshot: RemoteSnapshot,
        report: SyncReport,
    ) -> dict[str, int]:
        store = self._store
        queue = store.queue
        counts: dict[str, int] = {}

        for entity_type in EntityType:
            counts[entity_type.value] = 0
            remote_ids: set[str] = set()

            for remote in snapshot.records(entity_type):
                if remote.owner_id != owner_id:
                    continue
                remote_ids.add(remote.id)

                local = store.get_local(entity_type, remote.id)
                if local is None and entity_type == EntityType.BUDGET:
                    local = store.budget_for_month(remote.month)

                if local is None:
                    # Deleted locally, delete not confirmed yet
                    if queue.has_pending(entity_type, remote.id):
                        continue
                    if (
                        entity_type == EntityType.SAVINGS_ENTRY
                        and self._delete_pending(EntityType.SAVINGS_BUCKET, remote.bucket_id)
                    ):
                        continue
                elif queue.has_pending(entity_type, local.id):
                    if not same_content(local, remote):
                        self._record_conflict(entity_type, local, remote, report)
                    if local.id != remote.id:
                        remote_ids.add(local.id)
                    continue

                if (
                    local is not None
                    and local.sync_status == EntitySyncStatus.ERROR
                    and not same_content(local, remote)
                ):
                    # Keep the rejected local version visible until the
                    # user discards or edits it
                    continue

                if local is not None and local.id != remote.id:
                    store.remap_id(entity_type, local.id, remote.id)
                store.upsert_local(entity_type, remote, EntitySyncStatus.SYNCED)
                counts[entity_type.value] += 1

            for local in store.query_local(entity_type):
                if local.id in remote_ids:
                    continue
                if local.sync_status != EntitySyncStatus.SYNCED:
                    continue
                if queue.has_pending(entity_type, local.id):
                    continue
                if store.delete_local(entity_type, local.id):
                    report.removed.append(f"{entity_type.value}:{local.id}")

        return counts

    def _delete_pending(self, entity_type: EntityType, entity_id: str) -> bool:
        return any(
            op.kind == OperationKind.DELETE
            for op in self._store.queue.operations_for(entity_type, entity_id)
        )

    def _record_conflict(
        self,
        entity_type: EntityType,
        local: LocalRecord,
        remote: LocalRecord,
        report: SyncReport,
    ) -> None:
        conflict = ReconciliationConflict(
            entity_type=entity_type,
            entity_id=local.id,
            local_status=local.sync_status,
            local_content=local.content(),
            remote_content=remote.content(),
        )
        report.conflicts.append(conflict)
        self._audit.log(AuditEventBuilder.reconciliation_conflict(
            entity_type.value, local.id, local.sync_status.value, report.correlation_id,
        ))


def same_content(local: LocalRecord, remote: LocalRecord) -> bool:
    """True if both records hold the same user-visible values (ids aside)."""
    exclude = {"id", "sync_status", "created_at"}
    return local.model_dump(exclude=exclude) == remote.model_dump(exclude=exclude)
