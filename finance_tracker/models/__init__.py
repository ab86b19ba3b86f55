"""
Data Models Package

This package contains all Pydantic models used by the finance tracker.
All data flowing through the ledger must conform to these schemas.
"""

from finance_tracker.models.transaction import (
    CATEGORY_LABELS,
    CategoryTotal,
    DailyTotal,
    LedgerOperationResult,
    NewTransaction,
    SpendingSummary,
    Transaction,
    TransactionCategory,
    TransactionKind,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
    to_money,
    utc_now,
)
from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Transaction models
    "CATEGORY_LABELS",
    "CategoryTotal",
    "DailyTotal",
    "LedgerOperationResult",
    "NewTransaction",
    "SpendingSummary",
    "Transaction",
    "TransactionCategory",
    "TransactionKind",
    "TransactionUpdate",
    "ValidationIssue",
    "ValidationResult",
    "to_money",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
