"""
Entity Models for finsync

Local mirrors of the four server-owned record types. Every record
carries the owner it belongs to and a sync status flag that drives
the "will sync when online" affordances in the UI.

DESIGN DECISION: We use Pydantic v2 models for every record that
enters the local store. A record that does not fit its schema is
rejected at the store boundary instead of being mirrored half-formed.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# Field name `date` would shadow the type inside the class body.
CalendarDate = date


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Client-generated globally unique record id."""
    return str(uuid4())


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntityType(str, Enum):
    """
    Record types mirrored locally.

    The value doubles as the change-notification topic for the table.
    """
    EXPENSE = "expense"
    BUDGET = "budget"
    SAVINGS_BUCKET = "savings_bucket"
    SAVINGS_ENTRY = "savings_entry"


class EntitySyncStatus(str, Enum):
    """
    Remote-confirmation state of a single local record.

    CRITICAL: PENDING and ERROR are only cleared by a confirmed replay
    or by a reconciliation that proves the change already landed.
    """
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class ExpenseKind(str, Enum):
    """Whether a transaction takes money out or brings it in."""
    EXPENSE = "expense"
    INCOME = "income"


class EntryType(str, Enum):
    """Savings entry direction."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


EXPENSE_CATEGORIES = (
    "Dining",
    "Entertainment",
    "Groceries",
    "Healthcare",
    "Housing",
    "Transportation",
    "Utilities",
)

INCOME_CATEGORIES = (
    "Salary",
    "Freelance",
    "Investment",
    "Gift",
    "Money back",
    "Other",
)

# Colour tags a savings bucket may carry (id -> UI swatch)
COLOR_OPTIONS = {
    "peach": "#fcd5ce",
    "mint": "#d8f3dc",
    "sky": "#e0f2fe",
    "lavender": "#ede9fe",
    "gold": "#fef3c7",
    "rose": "#ffe4e6",
    "sage": "#e4f1e1",
    "denim": "#e3e8ff",
    "coral": "#ffe5d9",
    "plum": "#f3e8ff",
}


# =============================================================================
# BASE RECORD
# =============================================================================

class LocalRecord(BaseModel):
    """
    Fields shared by every mirrored record.

    `id` is either generated here (offline creation) or assigned by
    the server and written back after a confirmed replay.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_id,
        min_length=1,
        description="Globally unique record id"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Account the record belongs to"
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        description="When the record was first created"
    )
    sync_status: EntitySyncStatus = Field(
        default=EntitySyncStatus.PENDING,
        description="Remote confirmation state"
    )

    def to_payload(self) -> dict[str, Any]:
        """JSON-compatible snapshot, as stored in a queued operation."""
        return self.model_dump(mode="json")

    def content(self) -> dict[str, Any]:
        """
        The user-visible content of the record.

        Two records with equal content represent the same state even
        if their sync flags or server-side timestamps differ.
        """
        return self.model_dump(
            mode="json",
            exclude={"sync_status", "created_at"},
        )


# =============================================================================
# ENTITIES
# =============================================================================

class Expense(LocalRecord):
    """
    A single expense or income transaction.

    `date` has calendar-day semantics: no time of day, no timezone.
    """

    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Positive amount"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Category name"
    )
    date: CalendarDate = Field(
        ...,
        description="Day the transaction happened"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000
    )
    kind: ExpenseKind = Field(
        default=ExpenseKind.EXPENSE,
        description="expense or income"
    )

    @property
    def month(self) -> str:
        return self.date.strftime("%Y-%m")


class Budget(LocalRecord):
    """
    Monthly budget.

    DESIGN DECISION: Upsert by month. Setting a budget for a month
    either creates it or overwrites the amount; no history is kept.
    """

    month: str = Field(
        ...,
        pattern=r"^\d{4}-(0[1-9]|1[0-2])$",
        description="Month key, YYYY-MM"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Budget amount for the month"
    )


class SavingsBucket(LocalRecord):
    """A named savings pot, optionally with a goal and a yearly interest rate."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=100
    )
    color: str = Field(
        ...,
        description="Colour tag, one of COLOR_OPTIONS"
    )
    goal_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        decimal_places=2
    )
    interest_yearly_percent: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        description="Yearly interest in percent, compounded daily"
    )

    @field_validator('color')
    @classmethod
    def validate_color(cls, v: str) -> str:
        if v not in COLOR_OPTIONS:
            raise ValueError(
                f"Unknown colour tag: {v}. Allowed: {', '.join(COLOR_OPTIONS)}"
            )
        return v


class SavingsEntry(LocalRecord):
    """
    A deposit into or withdrawal from a savings bucket.

    Withdrawals may exceed the bucket balance (overdraft is allowed).
    """

    bucket_id: str = Field(
        ...,
        min_length=1,
        description="Bucket this entry belongs to"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2
    )
    entry_type: EntryType = Field(
        default=EntryType.DEPOSIT
    )
    date: CalendarDate = Field(
        ...,
        description="Day the money moved"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000
    )


ENTITY_MODELS: dict[EntityType, type[LocalRecord]] = {
    EntityType.EXPENSE: Expense,
    EntityType.BUDGET: Budget,
    EntityType.SAVINGS_BUCKET: SavingsBucket,
    EntityType.SAVINGS_ENTRY: SavingsEntry,
}


def model_for(entity_type: EntityType) -> type[LocalRecord]:
    """Model class for an entity type."""
    return ENTITY_MODELS[EntityType(entity_type)]
