"""
Core Data Models for the Finance Tracker

These models define the strict schemas for all data flowing through the ledger.
They are designed to:
1. Enforce the transaction invariants at construction time
2. Provide clear validation error messages
3. Be serializable for the remote store, the local cache and logging

DESIGN DECISION: Transactions are frozen Pydantic v2 models.
An update never mutates a transaction in place; it builds a replacement
through TransactionUpdate.apply_to, which re-runs every validator.
total_cost is a computed field so it cannot drift from quantity * unit_cost.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_money(value: Any) -> Decimal:
    """
    Coerce a number to a currency-precision Decimal.

    Floats go through str() first so 0.1 becomes Decimal("0.10")
    rather than its binary expansion.
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        try:
            amount = Decimal(value)
        except (InvalidOperation, TypeError) as e:
            raise ValueError(f"Not a valid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not a valid amount: {value!r}")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValueError(f"Amount out of range: {value!r}") from e


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """Expenses decrease the balance, deposits increase it."""
    EXPENSE = "expense"
    DEPOSIT = "deposit"


class TransactionCategory(str, Enum):
    """
    Supported expense categories.

    Categories are only used for expense aggregation.
    Rows loaded from a store may carry a category outside this set;
    those keep their literal string.
    """
    FOOD = "food"
    TRANSPORT = "transport"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    BILLS = "bills"
    HEALTHCARE = "healthcare"
    EDUCATION = "education"
    TRAVEL = "travel"
    OTHER = "other"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS = {
    TransactionCategory.FOOD: "Food & Dining",
    TransactionCategory.TRANSPORT: "Transportation",
    TransactionCategory.SHOPPING: "Shopping",
    TransactionCategory.ENTERTAINMENT: "Entertainment",
    TransactionCategory.BILLS: "Bills & Utilities",
    TransactionCategory.HEALTHCARE: "Healthcare",
    TransactionCategory.EDUCATION: "Education",
    TransactionCategory.TRAVEL: "Travel",
    TransactionCategory.OTHER: "Other",
}


def _category_value(v: Any) -> Any:
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, str):
        return v.strip().lower() or TransactionCategory.OTHER.value
    return v


# =============================================================================
# CORE TRANSACTION MODEL
# =============================================================================

class Transaction(BaseModel):
    """
    A single ledger entry owned by exactly one user.

    CRITICAL: total_cost is derived, never stored independently.
    Any total_cost present in input data (e.g. a cached row) is ignored
    and recomputed from quantity and unit_cost.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID, never reused"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="ID of the owning user"
    )

    # Content
    item_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display label"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=1000,
    )
    quantity: int = Field(
        default=1,
        ge=1,
        description="Number of units; always 1 for deposits"
    )
    unit_cost: Decimal = Field(
        ...,
        ge=0,
        description="Cost per unit, 2 decimal places"
    )
    category: str = Field(
        default=TransactionCategory.OTHER.value,
        description="Category value; unknown strings are preserved"
    )
    kind: TransactionKind = Field(
        default=TransactionKind.EXPENSE,
    )

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('unit_cost', mode='before')
    @classmethod
    def quantize_unit_cost(cls, v: Any) -> Decimal:
        return to_money(v)

    @field_validator('category', mode='before')
    @classmethod
    def normalize_category(cls, v: Any) -> Any:
        return _category_value(v)

    @field_validator('description', mode='before')
    @classmethod
    def empty_description_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def validate_deposit_quantity(self) -> 'Transaction':
        """Deposits represent a single lump sum."""
        if self.kind == TransactionKind.DEPOSIT and self.quantity != 1:
            raise ValueError("Deposits must have a quantity of 1")
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be before created_at")
        return self

    @computed_field
    @property
    def total_cost(self) -> Decimal:
        return (self.unit_cost * self.quantity).quantize(CENT, rounding=ROUND_HALF_UP)

    @property
    def is_expense(self) -> bool:
        return self.kind == TransactionKind.EXPENSE

    @property
    def is_deposit(self) -> bool:
        return self.kind == TransactionKind.DEPOSIT

    @property
    def signed_amount(self) -> Decimal:
        """Contribution of this transaction to the balance."""
        return self.total_cost if self.is_deposit else -self.total_cost

    @property
    def known_category(self) -> Optional[TransactionCategory]:
        try:
            return TransactionCategory(self.category)
        except ValueError:
            return None


class NewTransaction(BaseModel):
    """
    Fields supplied by the caller when recording a transaction.

    The store assigns id, owner and timestamps.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    item_name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    quantity: int = Field(default=1, ge=1)
    unit_cost: Decimal = Field(..., ge=0)
    category: TransactionCategory = TransactionCategory.OTHER
    kind: TransactionKind = TransactionKind.EXPENSE

    @field_validator('unit_cost', mode='before')
    @classmethod
    def quantize_unit_cost(cls, v: Any) -> Decimal:
        return to_money(v)

    @model_validator(mode='before')
    @classmethod
    def force_deposit_quantity(cls, data: Any) -> Any:
        """A deposit is a lump sum: quantity is fixed at 1."""
        if isinstance(data, dict):
            kind = data.get("kind")
            if kind in (TransactionKind.DEPOSIT, TransactionKind.DEPOSIT.value):
                data = {**data, "quantity": 1}
        return data

    @property
    def total_cost(self) -> Decimal:
        return (self.unit_cost * self.quantity).quantize(CENT, rounding=ROUND_HALF_UP)

    @classmethod
    def deposit(cls, amount: Any, item_name: str = "Deposit", description: Optional[str] = None) -> 'NewTransaction':
        """Build a deposit of a single lump sum."""
        return cls(
            item_name=item_name,
            description=description,
            quantity=1,
            unit_cost=amount,
            kind=TransactionKind.DEPOSIT,
        )

    def to_transaction(
        self,
        owner_id: str,
        transaction_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> Transaction:
        """Materialize the request as a stored transaction."""
        now = now or utc_now()
        return Transaction(
            id=transaction_id or uuid4(),
            owner_id=owner_id,
            item_name=self.item_name,
            description=self.description,
            quantity=self.quantity,
            unit_cost=self.unit_cost,
            category=self.category,
            kind=self.kind,
            created_at=now,
            updated_at=now,
        )


class TransactionUpdate(BaseModel):
    """
    A partial update request.

    Every updatable field is listed explicitly. A field left as None is
    unchanged. owner_id and kind cannot be changed after creation.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    item_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    quantity: Optional[int] = Field(default=None, ge=1)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    category: Optional[TransactionCategory] = None

    @field_validator('unit_cost', mode='before')
    @classmethod
    def quantize_unit_cost(cls, v: Any) -> Optional[Decimal]:
        if v is None:
            return None
        return to_money(v)

    def changed_fields(self) -> dict[str, Any]:
        """Fields explicitly carried by this update."""
        return {
            name: value
            for name, value in self.model_dump(exclude_none=True).items()
        }

    @property
    def is_empty(self) -> bool:
        return not self.changed_fields()

    @property
    def affects_cost(self) -> bool:
        return self.quantity is not None or self.unit_cost is not None

    def apply_to(self, existing: Transaction, now: Optional[datetime] = None) -> Transaction:
        """
        Merge this update into an existing transaction.

        Returns a new, fully validated Transaction; total_cost follows
        from the merged quantity and unit_cost. A deposit keeps quantity 1.
        """
        merged = existing.model_dump(exclude={"total_cost"})
        merged.update(self.changed_fields())
        if existing.is_deposit:
            merged["quantity"] = 1
        merged["updated_at"] = max(now or utc_now(), existing.created_at)
        return Transaction.model_validate(merged)


# =============================================================================
# SUMMARY MODELS
# =============================================================================

class CategoryTotal(BaseModel):
    """Expense count and total for one category."""

    count: int = Field(default=0, ge=0)
    total: Decimal = Field(default=ZERO)


class SpendingSummary(BaseModel):
    """
    Period-bounded spending and deposit totals.

    Derived and ephemeral: recomputed for every query.
    """

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    total_spent: Decimal = ZERO
    total_deposits: Decimal = ZERO
    transaction_count: int = Field(default=0, ge=0)
    expense_count: int = Field(default=0, ge=0)
    average_expense: Decimal = ZERO

    categories: dict[str, CategoryTotal] = Field(default_factory=dict)

    period_description: str = Field(
        default="all time",
        description="Human-readable description of the window"
    )

    @property
    def net(self) -> Decimal:
        return self.total_deposits - self.total_spent

    def top_categories(self, limit: int = 3) -> list[tuple[str, CategoryTotal]]:
        """Categories ordered by total spent, largest first."""
        ranked = sorted(
            self.categories.items(),
            key=lambda item: (item[1].total, item[0]),
            reverse=True,
        )
        return ranked[:limit]


class DailyTotal(BaseModel):
    """Expense total for one calendar day."""

    day: date
    total: Decimal = ZERO
    count: int = 0


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'insufficient_funds')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """Outcome of validating a candidate ledger mutation."""

    validated_at: datetime = Field(default_factory=utc_now)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]

    def merge(self, other: 'ValidationResult') -> 'ValidationResult':
        return ValidationResult(issues=[*self.issues, *other.issues])


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class LedgerOperationResult(BaseModel):
    """
    What a ledger operation hands back to the presentation layer.

    success=False means the operation was rejected and nothing changed.
    degraded=True means it succeeded against the local cache only.
    """

    success: bool
    message: str = ""
    transaction: Optional[Transaction] = None
    issues: list[ValidationIssue] = Field(default_factory=list)
    degraded: bool = False
    affected_count: int = Field(default=0, ge=0)

    @classmethod
    def rejected(cls, issues: list[ValidationIssue], message: Optional[str] = None) -> 'LedgerOperationResult':
        return cls(
            success=False,
            issues=issues,
            message=message or "; ".join(issue.message for issue in issues),
        )
