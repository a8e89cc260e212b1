"""
Reactive Query Layer

Pure calculations over local records, and live views that recompute
them whenever the local store changes.
"""

from finsync.queries.calculations import (
    bucket_progress,
    budget_for_dashboard,
    category_budget,
    compute_bucket_stats,
    dashboard_summary,
    days_held,
    list_transactions,
    signed_balance,
)
from finsync.queries.views import LiveQuery, ReactiveQueries

__all__ = [
    # Calculations
    "bucket_progress",
    "budget_for_dashboard",
    "category_budget",
    "compute_bucket_stats",
    "dashboard_summary",
    "days_held",
    "list_transactions",
    "signed_balance",
    # Live views
    "LiveQuery",
    "ReactiveQueries",
]
