"""
Balance Calculator

The balance is always folded from the full transaction list after a
mutation. It is never patched incrementally, so a partially applied
update cannot leave it drifting from the list it describes.
"""

from decimal import Decimal
from typing import Iterable

from finance_tracker.models.transaction import ZERO, Transaction


def compute_balance(transactions: Iterable[Transaction]) -> Decimal:
    """Sum of deposits minus sum of expenses; 0.00 for no transactions."""
    return sum((t.signed_amount for t in transactions), ZERO)


def totals_by_kind(transactions: Iterable[Transaction]) -> tuple[Decimal, Decimal]:
    """(total deposits, total expenses) in one pass."""
    deposits = ZERO
    expenses = ZERO
    for transaction in transactions:
        if transaction.is_deposit:
            deposits += transaction.total_cost
        else:
            expenses += transaction.total_cost
    return deposits, expenses
