"""
Derived View Models

Read-only results computed from the local store. None of these are
persisted; they are recomputed whenever the records they derive from
change.
"""

from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from finsync.models.entities import (
    Budget,
    Expense,
    ExpenseKind,
    SavingsBucket,
    SavingsEntry,
)


class CategoryBudgetView(BaseModel):
    """Spend against one category's budget for a month."""

    category: str
    month: str
    budget: Decimal
    budget_source: Literal["category", "month_total"] = Field(
        "category",
        description="'month_total' when no category amount was given and the whole month's budget stands in",
    )
    spent: Decimal
    remaining: Decimal
    is_over_budget: bool


class BucketStats(BaseModel):
    """
    Balance figures for a savings bucket.

    total_balance includes interest accrued on deposits up to `as_of`.
    """

    total_contributed: Decimal
    total_balance: Decimal
    interest_earned: Decimal
    deposits: Decimal
    withdrawals: Decimal
    as_of: date


class BucketView(BaseModel):
    bucket: SavingsBucket
    stats: BucketStats
    progress: int = Field(..., ge=0, le=100, description="Goal progress in percent")
    entries: list[SavingsEntry] = Field(default_factory=list)


class DailySpending(BaseModel):
    day: int = Field(..., ge=1, le=31)
    amount: Decimal


class DashboardSummary(BaseModel):
    """
    Month overview.

    `budget` is the month's budget, or the most recent earlier one when
    the month has none.
    """

    month: str
    budget: Optional[Budget] = None
    total_spent: Decimal
    total_income: Decimal
    remaining: Decimal
    daily_spending: list[DailySpending]
    days_in_month: int
    expenses: list[Expense] = Field(default_factory=list)


class TransactionsQuery(BaseModel):
    """Filters, sort and paging for the transactions list."""

    kind: Optional[ExpenseKind] = Field(
        default=None,
        description="Only expenses or only income"
    )
    category: Optional[str] = None
    month: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-(0[1-9]|1[0-2])$"
    )
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)
    sort_by: Literal["date", "amount"] = "date"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=500)


class TransactionsPage(BaseModel):
    transactions: list[Expense] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
    total_pages: int = 0
