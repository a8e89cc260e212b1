"""Tests for mutation input validation."""

import pytest
from datetime import date, datetime
from decimal import Decimal

from finsync.models.entities import EntryType, ExpenseKind
from finsync.validation import MutationValidator, ValidationError


@pytest.fixture
def validator():
    return MutationValidator()


class TestExpenseValidation:
    """Tests for expense/income input."""

    def test_valid_expense(self, validator):
        result = validator.check_expense("12.50", "Groceries", "2025-01-03")
        assert not result.has_errors
        assert result.values["amount"] == Decimal("12.50")
        assert result.values["date"] == date(2025, 1, 3)
        assert result.values["kind"] == ExpenseKind.EXPENSE

    def test_datetime_is_reduced_to_calendar_day(self, validator):
        result = validator.check_expense(5, "Dining", datetime(2025, 1, 3, 23, 59))
        assert result.values["date"] == date(2025, 1, 3)

    @pytest.mark.parametrize("amount", [None, "", "abc", "0", "-3", "1.005"])
    def test_bad_amounts_are_errors(self, validator, amount):
        result = validator.check_expense(amount, "Dining", date(2025, 1, 3))
        assert result.has_errors
        assert any(issue.field == "amount" for issue in result.issues)

    def test_missing_category(self, validator):
        result = validator.check_expense("5", "   ", date(2025, 1, 3))
        assert result.has_errors

    def test_unknown_category_is_only_a_warning(self, validator):
        result = validator.check_expense("5", "Pets", date(2025, 1, 3))
        assert not result.has_errors
        assert result.warnings

    def test_income_categories_checked_for_income(self, validator):
        result = validator.check_expense("5", "Salary", date(2025, 1, 3), kind=ExpenseKind.INCOME)
        assert not result.issues

    def test_bad_date(self, validator):
        result = validator.check_expense("5", "Dining", "03/01/2025")
        assert result.has_errors


class TestOtherValidation:
    """Tests for budgets, buckets and entries."""

    def test_budget_allows_zero(self, validator):
        result = validator.check_budget("2025-01", "0")
        assert not result.has_errors

    def test_budget_month_format(self, validator):
        assert validator.check_budget("2025-1", "10").has_errors

    def test_bucket_color_and_rate(self, validator):
        result = validator.check_bucket("Trip", "neon", interest_yearly_percent="150")
        fields = {issue.field for issue in result.issues}
        assert {"color", "interest_yearly_percent"} <= fields

    def test_bucket_optional_fields(self, validator):
        result = validator.check_bucket("Trip", "sky")
        assert not result.has_errors
        assert result.values["goal_amount"] is None

    def test_entry_type(self, validator):
        result = validator.check_entry("20", date(2025, 1, 1), "withdrawal")
        assert result.values["entry_type"] == EntryType.WITHDRAWAL
        assert validator.check_entry("20", date(2025, 1, 1), "transfer").has_errors

    def test_require_raises_with_issues(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.require(validator.check_entry(None, None))
        assert len(exc_info.value.issues) == 2
