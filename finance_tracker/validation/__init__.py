"""Transaction validation package."""

from finance_tracker.validation.validator import (
    TransactionValidator,
    issues_from_pydantic,
)

__all__ = ["TransactionValidator", "issues_from_pydantic"]
