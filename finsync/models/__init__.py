"""
Data Models Package

This package contains all Pydantic models used in finsync.
Every record entering the local store must conform to these schemas.
"""

from finsync.models.entities import (
    COLOR_OPTIONS,
    ENTITY_MODELS,
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    Budget,
    EntitySyncStatus,
    EntityType,
    EntryType,
    Expense,
    ExpenseKind,
    LocalRecord,
    SavingsBucket,
    SavingsEntry,
    model_for,
    new_id,
    utcnow,
)
from finsync.models.sync import (
    OperationKind,
    ReconciliationConflict,
    RemoteErrorKind,
    RemoteSnapshot,
    StatusSnapshot,
    SyncFailure,
    SyncMetadata,
    SyncNotification,
    SyncOperation,
    SyncReport,
    SyncStatus,
)
from finsync.models.validation import ValidationIssue, ValidationResult
from finsync.models.views import (
    BucketStats,
    BucketView,
    CategoryBudgetView,
    DailySpending,
    DashboardSummary,
    TransactionsPage,
    TransactionsQuery,
)
from finsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Entity models
    "COLOR_OPTIONS",
    "ENTITY_MODELS",
    "EXPENSE_CATEGORIES",
    "INCOME_CATEGORIES",
    "Budget",
    "EntitySyncStatus",
    "EntityType",
    "EntryType",
    "Expense",
    "ExpenseKind",
    "LocalRecord",
    "SavingsBucket",
    "SavingsEntry",
    "model_for",
    "new_id",
    "utcnow",
    # Sync models
    "OperationKind",
    "ReconciliationConflict",
    "RemoteErrorKind",
    "RemoteSnapshot",
    "StatusSnapshot",
    "SyncFailure",
    "SyncMetadata",
    "SyncNotification",
    "SyncOperation",
    "SyncReport",
    "SyncStatus",
    # View models
    "BucketStats",
    "BucketView",
    "CategoryBudgetView",
    "DailySpending",
    "DashboardSummary",
    "TransactionsPage",
    "TransactionsQuery",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
