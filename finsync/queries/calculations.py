"""
Derived Financial Figures

DESIGN DECISION: Every figure here is a pure function of records
passed in. Nothing reads the store, nothing is cached, nothing is
persisted. The live views in finsync.queries.views call these on each
change notification.

Money is summed in Decimal. Interest growth uses float exponentiation
and is converted back to Decimal, rounded to cents.
"""

import calendar
import math
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from finsync.models.entities import (
    Budget,
    EntryType,
    Expense,
    ExpenseKind,
    SavingsBucket,
    SavingsEntry,
)
from finsync.models.views import (
    BucketStats,
    CategoryBudgetView,
    DailySpending,
    DashboardSummary,
    TransactionsPage,
    TransactionsQuery,
)


CENTS = Decimal("0.01")
ZERO = Decimal("0")


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def category_budget(
    category: str,
    month: str,
    budget_amount: Decimal,
    expenses: Iterable[Expense],
    budget_source: str = "category",
) -> CategoryBudgetView:
    """Spent and remaining for one category in one month; income is ignored."""
    spent = sum(
        (
            e.amount for e in expenses
            if e.category == category
            and e.month == month
            and e.kind != ExpenseKind.INCOME
        ),
        ZERO,
    )
    budget = Decimal(str(budget_amount))
    remaining = budget - spent
    return CategoryBudgetView(
        category=category,
        month=month,
        budget=budget,
        budget_source=budget_source,
        spent=spent,
        remaining=remaining,
        is_over_budget=remaining < 0,
    )


def days_held(entry_date: date, today: date) -> int:
    """Whole days between the entry and today, never negative."""
    return max(0, (today - entry_date).days)


def compute_bucket_stats(
    bucket: SavingsBucket,
    entries: Iterable[SavingsEntry],
    today: Optional[date] = None,
) -> BucketStats:
    """
    Balance of a bucket as of `today`.

    Deposits grow by (1 + rate/100) ** (days_held / 365). Withdrawals
    never earn or lose interest. With no rate (or 0) the balance is the
    plain signed sum.
    """
    today = today or date.today()
    rate = float(bucket.interest_yearly_percent or 0)

    deposits = ZERO
    withdrawals = ZERO
    balance = 0.0

    for entry in entries:
        if entry.bucket_id != bucket.id:
            continue
        if entry.entry_type == EntryType.WITHDRAWAL:
            withdrawals += entry.amount
            balance -= float(entry.amount)
            continue

        deposits += entry.amount
        if rate > 0:
            growth = math.pow(1 + rate / 100, days_held(entry.date, today) / 365)
            balance += float(entry.amount) * growth
        else:
            balance += float(entry.amount)

    total_contributed = deposits - withdrawals
    total_balance = to_cents(Decimal(str(balance)))
    return BucketStats(
        total_contributed=total_contributed,
        total_balance=total_balance,
        interest_earned=total_balance - total_contributed,
        deposits=deposits,
        withdrawals=withdrawals,
        as_of=today,
    )


def bucket_progress(bucket: SavingsBucket, stats: BucketStats) -> int:
    """Percent of the goal reached, capped at 100; 0 without a positive goal."""
    if not bucket.goal_amount or bucket.goal_amount <= 0:
        return 0
    percent = (stats.total_balance / bucket.goal_amount * 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return max(0, min(100, int(percent)))


def signed_balance(entries: Iterable[SavingsEntry]) -> Decimal:
    """Deposits minus withdrawals, no interest. Negative means overdraft."""
    balance = ZERO
    for entry in entries:
        if entry.entry_type == EntryType.DEPOSIT:
            balance += entry.amount
        else:
            balance -= entry.amount
    return balance


def budget_for_dashboard(month: str, budgets: Iterable[Budget]) -> Optional[Budget]:
    """The month's budget, else the most recent budget before it."""
    earlier = None
    for budget in budgets:
        if budget.month == month:
            return budget
        if budget.month < month and (earlier is None or budget.month > earlier.month):
            earlier = budget
    return earlier


def dashboard_summary(
    month: str,
    expenses: Iterable[Expense],
    budgets: Iterable[Budget],
) -> DashboardSummary:
    """
    Month overview: totals, remaining and spending per day.

    remaining = budget + income - spent, so income tops up the month.
    """
    year, month_number = (int(part) for part in month.split("-"))
    days_in_month = calendar.monthrange(year, month_number)[1]

    month_expenses = sorted(
        (e for e in expenses if e.month == month),
        key=lambda e: (e.date, e.created_at),
        reverse=True,
    )
    spending = [e for e in month_expenses if e.kind == ExpenseKind.EXPENSE]
    income = [e for e in month_expenses if e.kind == ExpenseKind.INCOME]

    total_spent = sum((e.amount for e in spending), ZERO)
    total_income = sum((e.amount for e in income), ZERO)

    budget = budget_for_dashboard(month, budgets)
    budget_amount = budget.amount if budget else ZERO

    per_day = {day: ZERO for day in range(1, days_in_month + 1)}
    for expense in spending:
        per_day[expense.date.day] += expense.amount

    return DashboardSummary(
        month=month,
        budget=budget,
        total_spent=total_spent,
        total_income=total_income,
        remaining=budget_amount + total_income - total_spent,
        daily_spending=[DailySpending(day=day, amount=amount) for day, amount in per_day.items()],
        days_in_month=days_in_month,
        expenses=month_expenses,
    )


def list_transactions(
    expenses: Iterable[Expense],
    query: Optional[TransactionsQuery] = None,
) -> TransactionsPage:
    """Filter, sort and paginate transactions."""
    query = query or TransactionsQuery()
    results = list(expenses)

    # Apply filters
    if query.kind:
        results = [e for e in results if e.kind == query.kind]
    if query.category:
        results = [e for e in results if e.category == query.category]
    if query.month:
        results = [e for e in results if e.month == query.month]
    if query.start_date:
        results = [e for e in results if e.date >= query.start_date]
    if query.end_date:
        results = [e for e in results if e.date <= query.end_date]
    if query.min_amount is not None:
        results = [e for e in results if e.amount >= query.min_amount]
    if query.max_amount is not None:
        results = [e for e in results if e.amount <= query.max_amount]

    if query.sort_by == "amount":
        key = lambda e: (e.amount, e.date, e.created_at)
    else:
        key = lambda e: (e.date, e.created_at)
    results.sort(key=key, reverse=query.sort_order == "desc")

    total = len(results)
    start = (query.page - 1) * query.limit
    return TransactionsPage(
        transactions=results[start:start + query.limit],
        total=total,
        page=query.page,
        limit=query.limit,
        total_pages=math.ceil(total / query.limit),
    )
