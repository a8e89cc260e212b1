"""
Mutation Input Validation

DESIGN DECISION: Validation happens at the mutation entry point,
before anything is written locally or queued.

Checks are split the same way for every entity:
- Presence and format (amount parses, date parses, month key shape)
- Domain rules (amount positive, colour tag known, rate within 0-100)

Errors block the mutation and raise ValidationError synchronously.
Warnings (e.g. a category we have never seen) are reported but the
mutation goes through.

IMPORTANT: Validation NEVER silently fixes issues. It reports them.
Overdraft on a withdrawal is NOT a validation issue.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from finsync.models.entities import (
    COLOR_OPTIONS,
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    EntryType,
    ExpenseKind,
)
from finsync.models.validation import ValidationIssue, ValidationResult


MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
MAX_AMOUNT = Decimal("1000000000")


class ValidationError(Exception):
    """
    Malformed mutation input or record.

    This is a programmer/input error raised synchronously to the
    caller. It is never queued and never retried.
    """

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        self.issues = issues or []
        super().__init__(message)

    @classmethod
    def from_result(cls, result: ValidationResult) -> "ValidationError":
        errors = [issue for issue in result.issues if issue.severity == "error"]
        summary = "; ".join(f"{issue.field}: {issue.message}" for issue in errors)
        return cls(f"Invalid {result.action}: {summary}", result.issues)

    @classmethod
    def single(cls, field: str, issue_type: str, message: str) -> "ValidationError":
        issue = ValidationIssue(
            field=field,
            issue_type=issue_type,
            message=message,
            severity="error",
        )
        return cls(f"{field}: {message}", [issue])


class MutationValidator:
    """
    Validates user input for every mutation entry point.

    Each check_* method returns a ValidationResult whose `values` hold
    the cleaned input; require() raises when the result has errors.
    """

    def _error(
        self,
        issues: list[ValidationIssue],
        field: str,
        issue_type: str,
        message: str,
        suggested_fix: Optional[str] = None,
    ) -> None:
        issues.append(ValidationIssue(
            field=field,
            issue_type=issue_type,
            message=message,
            severity="error",
            suggested_fix=suggested_fix,
        ))

    def _amount(
        self,
        value: Any,
        field: str,
        issues: list[ValidationIssue],
        allow_zero: bool = False,
        required: bool = True,
    ) -> Optional[Decimal]:
        if value is None or value == "":
            if required:
                self._error(issues, field, "missing", "Amount is required")
            return None
        if isinstance(value, float):
            value = str(value)
        try:
            amount = Decimal(value)
        except (InvalidOperation, TypeError, ValueError):
            self._error(issues, field, "invalid_format", f"Not a number: {value!r}")
            return None
        if not amount.is_finite():
            self._error(issues, field, "invalid_format", "Amount must be a finite number")
            return None
        if amount < 0 or (amount == 0 and not allow_zero):
            self._error(
                issues, field, "invalid_value",
                "Amount must be zero or more" if allow_zero else "Amount must be greater than zero",
            )
            return None
        if amount > MAX_AMOUNT:
            self._error(issues, field, "suspicious_value", "Amount is unreasonably large")
            return None
        if amount.as_tuple().exponent < -2:
            self._error(
                issues, field, "invalid_format",
                "Amount has more than two decimal places",
                suggested_fix="Round to cents",
            )
            return None
        return amount

    def _date(self, value: Any, field: str, issues: list[ValidationIssue]) -> Optional[date]:
        if value is None or value == "":
            self._error(issues, field, "missing", "Date is required")
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value[:10])
            except ValueError:
                pass
        self._error(issues, field, "invalid_format", f"Not a calendar date: {value!r}",
                    suggested_fix="Use YYYY-MM-DD")
        return None

    def _notes(self, value: Optional[str], issues: list[ValidationIssue]) -> Optional[str]:
        if value is None:
            return None
        notes = str(value).strip()
        if len(notes) > 1000:
            self._error(issues, "notes", "too_long", "Notes must be 1000 characters or fewer")
            return None
        return notes or None

    def check_expense(
        self,
        amount: Any,
        category: Optional[str],
        expense_date: Any,
        notes: Optional[str] = None,
        kind: Any = ExpenseKind.EXPENSE,
    ) -> ValidationResult:
        """Check input for adding or updating an expense/income row."""
        issues: list[ValidationIssue] = []
        values: dict[str, Any] = {}

        values["amount"] = self._amount(amount, "amount", issues)
        values["date"] = self._date(expense_date, "date", issues)
        values["notes"] = self._notes(notes, issues)

        try:
            values["kind"] = ExpenseKind(kind)
        except ValueError:
            self._error(issues, "kind", "invalid_value", f"Unknown kind: {kind!r}")

        cleaned_category = (category or "").strip()
        if not cleaned_category:
            self._error(issues, "category", "missing", "Category is required")
        else:
            values["category"] = cleaned_category
            known = INCOME_CATEGORIES if values.get("kind") == ExpenseKind.INCOME else EXPENSE_CATEGORIES
            if cleaned_category not in known:
                issues.append(ValidationIssue(
                    field="category",
                    issue_type="unknown_category",
                    message=f"'{cleaned_category}' is not a standard category",
                    severity="warning",
                ))

        return ValidationResult(action="expense", issues=issues, values=values)

    def check_budget(self, month: Optional[str], amount: Any) -> ValidationResult:
        """Check input for setting a monthly budget."""
        issues: list[ValidationIssue] = []
        values: dict[str, Any] = {}

        if not month or not MONTH_PATTERN.match(month):
            self._error(issues, "month", "invalid_format", f"Month must be YYYY-MM, got {month!r}")
        else:
            values["month"] = month
        values["amount"] = self._amount(amount, "amount", issues, allow_zero=True)

        return ValidationResult(action="budget", issues=issues, values=values)

    def check_bucket(
        self,
        name: Optional[str],
        color: Optional[str],
        goal_amount: Any = None,
        interest_yearly_percent: Any = None,
    ) -> ValidationResult:
        """Check input for adding or updating a savings bucket."""
        issues: list[ValidationIssue] = []
        values: dict[str, Any] = {}

        cleaned_name = (name or "").strip()
        if not cleaned_name:
            self._error(issues, "name", "missing", "Name is required")
        elif len(cleaned_name) > 100:
            self._error(issues, "name", "too_long", "Name must be 100 characters or fewer")
        else:
            values["name"] = cleaned_name

        if color not in COLOR_OPTIONS:
            self._error(
                issues, "color", "invalid_value", f"Invalid color: {color!r}",
                suggested_fix=f"Pick one of {', '.join(COLOR_OPTIONS)}",
            )
        else:
            values["color"] = color

        values["goal_amount"] = self._amount(
            goal_amount, "goal_amount", issues, allow_zero=True, required=False
        )
        rate = self._amount(
            interest_yearly_percent, "interest_yearly_percent", issues,
            allow_zero=True, required=False,
        )
        if rate is not None and rate > 100:
            self._error(issues, "interest_yearly_percent", "invalid_value",
                        "Yearly interest must be between 0 and 100 percent")
            rate = None
        values["interest_yearly_percent"] = rate

        return ValidationResult(action="savings_bucket", issues=issues, values=values)

    def check_entry(
        self,
        amount: Any,
        entry_date: Any,
        entry_type: Any = EntryType.DEPOSIT,
        notes: Optional[str] = None,
    ) -> ValidationResult:
        """Check input for adding or updating a savings entry."""
        issues: list[ValidationIssue] = []
        values: dict[str, Any] = {}

        values["amount"] = self._amount(amount, "amount", issues)
        values["date"] = self._date(entry_date, "date", issues)
        values["notes"] = self._notes(notes, issues)
        try:
            values["entry_type"] = EntryType(entry_type)
        except ValueError:
            self._error(issues, "entry_type", "invalid_value", f"Unknown entry type: {entry_type!r}")

        return ValidationResult(action="savings_entry", issues=issues, values=values)

    def require(self, result: ValidationResult) -> dict[str, Any]:
        """Return the cleaned values, or raise ValidationError."""
        if result.has_errors:
            raise ValidationError.from_result(result)
        return result.values
