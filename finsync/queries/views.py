"""
Live Views

A LiveQuery holds a derived value and recomputes it whenever one of
the store topics it depends on publishes a change. Recomputation runs
inside the publish, so by the time a store write returns, every live
view that depends on it already holds the new value.

Usage:
    queries = ReactiveQueries(store)
    view = queries.category_budget("Groceries", "2025-01")
    view.subscribe(render)
    ...
    view.close()
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Generic, Iterable, Optional, TypeVar, Union

from finsync.models.entities import EntityType
from finsync.models.sync import StatusSnapshot
from finsync.models.views import (
    BucketView,
    CategoryBudgetView,
    DashboardSummary,
    TransactionsPage,
    TransactionsQuery,
)
from finsync.queries.calculations import (
    bucket_progress,
    category_budget,
    compute_bucket_stats,
    dashboard_summary,
    list_transactions,
)
from finsync.store import METADATA_TOPIC, QUEUE_TOPIC, ChangeEvent, LocalStore


T = TypeVar("T")
Listener = Callable[[T], None]


class LiveQuery(Generic[T]):
    """A derived value that stays current with the local store."""

    def __init__(
        self,
        store: LocalStore,
        topics: Iterable[Union[str, EntityType]],
        compute: Callable[[], T],
    ):
        self._compute = compute
        self._listeners: list[Listener] = []
        self._value: T = compute()
        self._unsubscribe: Optional[Callable[[], None]] = store.subscribe(topics, self._on_change)

    @property
    def value(self) -> T:
        return self._value

    @property
    def closed(self) -> bool:
        return self._unsubscribe is None

    def subscribe(self, listener: Listener, emit_current: bool = True) -> Callable[[], None]:
        """
        Register a listener for recomputed values.

        With emit_current, the listener is called once right away.
        """
        self._listeners.append(listener)
        if emit_current:
            listener(self._value)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def refresh(self) -> T:
        """Recompute now, e.g. after the date rolled over."""
        self._value = self._compute()
        for listener in list(self._listeners):
            listener(self._value)
        return self._value

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    def __enter__(self) -> "LiveQuery[T]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _on_change(self, event: ChangeEvent) -> None:
        self.refresh()


class ReactiveQueries:
    """
    Factory for the live views the UI reads.

    `today` is injectable so interest accrual can be pinned in tests.
    """

    def __init__(self, store: LocalStore, today: Optional[Callable[[], date]] = None):
        self._store = store
        self._today = today or date.today

    def collection(
        self,
        entity_type: EntityType,
        predicate: Optional[Callable] = None,
    ) -> LiveQuery[list]:
        entity_type = EntityType(entity_type)
        return LiveQuery(
            self._store,
            [entity_type],
            lambda: self._store.query_local(entity_type, predicate),
        )

    def category_budget(
        self,
        category: str,
        month: str,
        budget_amount: Optional[Decimal] = None,
    ) -> LiveQuery[CategoryBudgetView]:
        """
        Spent and remaining for a category.

        Budgets are kept per month, not per category. Without
        budget_amount the whole month's budget is used and the view
        says so with budget_source="month_total".
        """
        def compute() -> CategoryBudgetView:
            amount = budget_amount
            source = "category"
            if amount is None:
                budget = self._store.budget_for_month(month)
                amount = budget.amount if budget else Decimal("0")
                source = "month_total"
            return category_budget(
                category,
                month,
                amount,
                self._store.query_local(EntityType.EXPENSE),
                budget_source=source,
            )

        return LiveQuery(self._store, [EntityType.EXPENSE, EntityType.BUDGET], compute)

    def _bucket_view(self, bucket) -> BucketView:
        entries = sorted(
            self._store.entries_for_bucket(bucket.id),
            key=lambda e: (e.date, e.created_at),
            reverse=True,
        )
        stats = compute_bucket_stats(bucket, entries, self._today())
        return BucketView(
            bucket=bucket,
            stats=stats,
            progress=bucket_progress(bucket, stats),
            entries=entries,
        )

    def bucket(self, bucket_id: str) -> LiveQuery[Optional[BucketView]]:
        """One bucket with its balance; None once the bucket is gone."""
        def compute() -> Optional[BucketView]:
            bucket = self._store.get_local(EntityType.SAVINGS_BUCKET, bucket_id)
            return self._bucket_view(bucket) if bucket else None

        return LiveQuery(
            self._store,
            [EntityType.SAVINGS_BUCKET, EntityType.SAVINGS_ENTRY],
            compute,
        )

    def buckets(self) -> LiveQuery[list[BucketView]]:
        def compute() -> list[BucketView]:
            buckets = sorted(
                self._store.query_local(EntityType.SAVINGS_BUCKET),
                key=lambda b: b.created_at,
            )
            return [self._bucket_view(bucket) for bucket in buckets]

        return LiveQuery(
            self._store,
            [EntityType.SAVINGS_BUCKET, EntityType.SAVINGS_ENTRY],
            compute,
        )

    def dashboard(self, month: str) -> LiveQuery[DashboardSummary]:
        return LiveQuery(
            self._store,
            [EntityType.EXPENSE, EntityType.BUDGET],
            lambda: dashboard_summary(
                month,
                self._store.query_local(EntityType.EXPENSE),
                self._store.query_local(EntityType.BUDGET),
            ),
        )

    def transactions(self, query: Optional[TransactionsQuery] = None) -> LiveQuery[TransactionsPage]:
        return LiveQuery(
            self._store,
            [EntityType.EXPENSE],
            lambda: list_transactions(self._store.query_local(EntityType.EXPENSE), query),
        )

    def status(self) -> LiveQuery[StatusSnapshot]:
        return LiveQuery(
            self._store,
            [QUEUE_TOPIC, METADATA_TOPIC],
            self._store.status_snapshot,
        )
