"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - FIELD VALIDATION:
- Type checking and required fields (delegated to the Pydantic models)
- Quantity, unit cost and total cost constraints
- Deposit quantity fixed at 1

STAGE 2 - FUNDS VALIDATION:
- An expense may not cost more than the current balance
- Edits are checked on the cost *increase* only, so lowering the
  cost of an expense is never blocked
- Deposits are never checked

IMPORTANT: Validation NEVER raises and NEVER fixes input.
It returns a ValidationResult so the caller can correct and retry
while the ledger stays exactly as it was.
"""

from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import ValidationError

from finance_tracker.config import LedgerSettings, get_settings
from finance_tracker.models.transaction import (
    NewTransaction,
    Transaction,
    TransactionKind,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
    to_money,
)


def issues_from_pydantic(error: ValidationError) -> list[ValidationIssue]:
    """Translate Pydantic errors into validation issues."""
    issues = []
    for err in error.errors():
        field = ".".join(str(part) for part in err.get("loc", ())) or "transaction"
        issues.append(ValidationIssue(
            field=field,
            issue_type=err.get("type", "invalid_value"),
            message=f"{field}: {err.get('msg', 'invalid value')}",
            severity="error",
        ))
    return issues


class TransactionValidator:
    """
    Validates ledger mutations before they reach the store.

    Stage 1 needs only the candidate fields.
    Stage 2 needs the current balance.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    # -------------------------------------------------------------------------
    # Parsing raw input
    # -------------------------------------------------------------------------

    def parse_new(
        self,
        data: Union[NewTransaction, dict[str, Any]],
    ) -> tuple[Optional[NewTransaction], ValidationResult]:
        """Build a NewTransaction from caller input, collecting errors."""
        if isinstance(data, NewTransaction):
            return data, ValidationResult()
        try:
            return NewTransaction.model_validate(data), ValidationResult()
        except ValidationError as e:
            return None, ValidationResult(issues=issues_from_pydantic(e))

    def parse_update(
        self,
        data: Union[TransactionUpdate, dict[str, Any]],
    ) -> tuple[Optional[TransactionUpdate], ValidationResult]:
        """Build a TransactionUpdate from caller input, collecting errors."""
        if isinstance(data, TransactionUpdate):
            return data, ValidationResult()
        unknown = set(data) - set(TransactionUpdate.model_fields)
        if unknown:
            return None, ValidationResult(issues=[
                ValidationIssue(
                    field=name,
                    issue_type="not_updatable",
                    message=f"{name} cannot be changed",
                    severity="error",
                )
                for name in sorted(unknown)
            ])
        try:
            return TransactionUpdate.model_validate(data), ValidationResult()
        except ValidationError as e:
            return None, ValidationResult(issues=issues_from_pydantic(e))

    # -------------------------------------------------------------------------
    # Stage 1: fields
    # -------------------------------------------------------------------------

    def _validate_fields(
        self,
        item_name: str,
        quantity: int,
        unit_cost: Decimal,
        kind: TransactionKind,
    ) -> list[ValidationIssue]:
        issues = []

        if not item_name or not item_name.strip():
            issues.append(ValidationIssue(
                field="item_name",
                issue_type="missing",
                message="Item name is required",
                suggested_fix="Describe what the money was spent on",
            ))

        if kind == TransactionKind.EXPENSE and quantity < 1:
            issues.append(ValidationIssue(
                field="quantity",
                issue_type="invalid_value",
                message="Quantity must be at least 1",
            ))
        if kind == TransactionKind.DEPOSIT and quantity != 1:
            issues.append(ValidationIssue(
                field="quantity",
                issue_type="invalid_value",
                message="Deposits always have a quantity of 1",
            ))

        if unit_cost < 0:
            issues.append(ValidationIssue(
                field="unit_cost",
                issue_type="invalid_value",
                message="Unit cost cannot be negative",
            ))

        try:
            total_cost = to_money(unit_cost * quantity)
        except ValueError:
            issues.append(ValidationIssue(
                field="total_cost",
                issue_type="too_large",
                message="Total cost is too large to record",
                suggested_fix="Please enter a smaller quantity or unit cost",
            ))
            return issues

        if total_cost <= 0:
            issues.append(ValidationIssue(
                field="total_cost",
                issue_type="invalid_value",
                message="Total cost must be greater than zero",
                suggested_fix="Please enter a valid amount",
            ))

        max_amount = to_money(self._settings.max_transaction_amount)
        if total_cost > max_amount:
            issues.append(ValidationIssue(
                field="total_cost",
                issue_type="too_large",
                message=(
                    f"Total cost ({self._settings.format_amount(total_cost)}) exceeds "
                    f"the limit of {self._settings.format_amount(max_amount)}"
                ),
            ))

        return issues

    def validate_new(self, fields: NewTransaction) -> ValidationResult:
        """Field constraints for a transaction about to be created."""
        return ValidationResult(issues=self._validate_fields(
            fields.item_name,
            fields.quantity,
            fields.unit_cost,
            fields.kind,
        ))

    def validate_update(
        self,
        existing: Transaction,
        changes: TransactionUpdate,
    ) -> ValidationResult:
        """Field constraints on the merged result of an update."""
        if changes.is_empty:
            return ValidationResult(issues=[ValidationIssue(
                field="update",
                issue_type="empty",
                message="No fields to update",
                severity="error",
            )])

        quantity = 1 if existing.is_deposit else (
            changes.quantity if changes.quantity is not None else existing.quantity
        )
        return ValidationResult(issues=self._validate_fields(
            changes.item_name if changes.item_name is not None else existing.item_name,
            quantity,
            changes.unit_cost if changes.unit_cost is not None else existing.unit_cost,
            existing.kind,
        ))

    # -------------------------------------------------------------------------
    # Stage 2: funds
    # -------------------------------------------------------------------------

    @staticmethod
    def can_afford(candidate_cost: Decimal, balance: Decimal) -> bool:
        """True iff the cost does not exceed the balance."""
        return to_money(candidate_cost) <= to_money(balance)

    def check_affordability(
        self,
        candidate_cost: Decimal,
        balance: Decimal,
    ) -> ValidationResult:
        """Insufficient-funds issue when the balance cannot cover the cost."""
        if self.can_afford(candidate_cost, balance):
            return ValidationResult()
        return ValidationResult(issues=[ValidationIssue(
            field="total_cost",
            issue_type="insufficient_funds",
            message=(
                f"Insufficient funds: {self._settings.format_amount(to_money(candidate_cost))} "
                f"needed, {self._settings.format_amount(to_money(balance))} available"
            ),
            suggested_fix="Add funds or lower the amount",
        )])

    @staticmethod
    def cost_delta(existing: Transaction, changes: TransactionUpdate) -> Decimal:
        """New total cost minus old total cost."""
        quantity = 1 if existing.is_deposit else (
            changes.quantity if changes.quantity is not None else existing.quantity
        )
        unit_cost = changes.unit_cost if changes.unit_cost is not None else existing.unit_cost
        return to_money(unit_cost * quantity) - existing.total_cost

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Summarize validation results for display.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        if result.has_errors:
            lines.append("Please fix the following:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
