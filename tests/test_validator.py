"""Tests for two-stage transaction validation."""

from decimal import Decimal

import pytest

from finance_tracker.config import LedgerSettings
from finance_tracker.models.transaction import (
    NewTransaction,
    TransactionKind,
    TransactionUpdate,
)
from finance_tracker.validation import TransactionValidator

from conftest import make_transaction


@pytest.fixture
def validator():
    return TransactionValidator(LedgerSettings(max_transaction_amount=1000.0))


class TestParsing:
    """Tests for turning caller input into request models."""

    def test_parse_new_collects_pydantic_errors(self, validator):
        """Test that malformed input becomes issues instead of an exception."""
        parsed, result = validator.parse_new({"item_name": "", "unit_cost": "abc"})
        assert parsed is None
        assert result.has_errors
        fields = {issue.field for issue in result.issues}
        assert "item_name" in fields
        assert "unit_cost" in fields

    def test_parse_new_passes_models_through(self, validator):
        """Test that an already-built request is returned as is."""
        fields = NewTransaction(item_name="Tea", unit_cost=Decimal("2"))
        parsed, result = validator.parse_new(fields)
        assert parsed is fields
        assert result.is_valid

    def test_parse_update_rejects_immutable_fields(self, validator):
        """Test that owner and kind cannot be changed."""
        parsed, result = validator.parse_update({"owner_id": "someone-else", "kind": "deposit"})
        assert parsed is None
        assert {issue.issue_type for issue in result.issues} == {"not_updatable"}
        assert {issue.field for issue in result.issues} == {"kind", "owner_id"}


class TestFieldValidation:
    """Stage 1 tests."""

    def test_valid_expense(self, validator):
        """Test that an ordinary expense passes."""
        fields = NewTransaction(item_name="Lunch", quantity=2, unit_cost=Decimal("8.50"))
        assert validator.validate_new(fields).is_valid

    def test_zero_total_rejected(self, validator):
        """Test that a free item is not a transaction."""
        fields = NewTransaction(item_name="Sample", unit_cost=Decimal("0"))
        result = validator.validate_new(fields)
        assert not result.is_valid
        assert result.issues[0].field == "total_cost"

    def test_amount_above_limit_rejected(self, validator):
        """Test the configured sanity limit."""
        fields = NewTransaction(item_name="Car", unit_cost=Decimal("1000.01"))
        result = validator.validate_new(fields)
        assert [issue.issue_type for issue in result.issues] == ["too_large"]

    def test_overflowing_total_rejected(self, validator):
        """Test that a total too large for cent precision is an issue, not an exception."""
        fields = NewTransaction(item_name="Rice", quantity=10**30, unit_cost=Decimal("1"))
        result = validator.validate_new(fields)
        assert [issue.issue_type for issue in result.issues] == ["too_large"]

    def test_empty_update_rejected(self, validator):
        """Test that an update must change something."""
        result = validator.validate_update(make_transaction(), TransactionUpdate())
        assert [issue.issue_type for issue in result.issues] == ["empty"]

    def test_update_checks_merged_values(self, validator):
        """Test that an update pushing the total past the limit is rejected."""
        existing = make_transaction(quantity=1, unit_cost="600.00")
        result = validator.validate_update(existing, TransactionUpdate(quantity=2))
        assert result.has_errors


class TestFundsValidation:
    """Stage 2 tests."""

    def test_can_afford_boundary(self, validator):
        """Test that spending exactly the balance is allowed."""
        assert validator.can_afford(Decimal("50.00"), Decimal("50.00"))
        assert not validator.can_afford(Decimal("50.01"), Decimal("50.00"))

    def test_insufficient_funds_message(self, validator):
        """Test the issue raised when the balance cannot cover the cost."""
        result = validator.check_affordability(Decimal("30"), Decimal("20"))
        issue = result.issues[0]
        assert issue.issue_type == "insufficient_funds"
        assert issue.message == "Insufficient funds: $30.00 needed, $20.00 available"

    def test_cost_delta(self, validator):
        """Test the delta between new and old totals."""
        existing = make_transaction(quantity=2, unit_cost="10.00")
        assert validator.cost_delta(existing, TransactionUpdate(quantity=3)) == Decimal("10.00")
        assert validator.cost_delta(existing, TransactionUpdate(unit_cost=Decimal("4"))) == Decimal("-12.00")
        assert validator.cost_delta(existing, TransactionUpdate(item_name="Tea")) == Decimal("0.00")

    def test_deposit_delta_ignores_quantity(self, validator):
        """Test that a deposit's delta only follows the unit cost."""
        existing = make_transaction(kind=TransactionKind.DEPOSIT, unit_cost="100.00")
        delta = validator.cost_delta(existing, TransactionUpdate(quantity=5))
        assert delta == Decimal("0.00")


class TestFriendlySummary:
    """Tests for user-facing summaries."""

    def test_all_passed(self, validator):
        fields = NewTransaction(item_name="Tea", unit_cost=Decimal("2"))
        assert validator.get_user_friendly_summary(validator.validate_new(fields)) == "All checks passed."

    def test_errors_listed(self, validator):
        result = validator.check_affordability(Decimal("30"), Decimal("20"))
        summary = validator.get_user_friendly_summary(result)
        assert "Please fix the following:" in summary
        assert "Insufficient funds" in summary
        assert "Add funds or lower the amount" in summary
