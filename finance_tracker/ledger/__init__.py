"""Ledger state, balance and session package."""

from finance_tracker.ledger.balance import compute_balance, totals_by_kind
from finance_tracker.ledger.service import (
    Ledger,
    LedgerError,
    LedgerService,
    LedgerSnapshot,
    NoActiveSessionError,
    SnapshotListener,
)
from finance_tracker.ledger.session import FinanceSession

__all__ = [
    "FinanceSession",
    "Ledger",
    "LedgerError",
    "LedgerService",
    "LedgerSnapshot",
    "NoActiveSessionError",
    "SnapshotListener",
    "compute_balance",
    "totals_by_kind",
]
