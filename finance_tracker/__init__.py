"""
Finance Tracker - Ledger Engine

Transaction ledger for a personal finance tracker: expenses and deposits,
a running balance, spending summaries over time windows, and a remote
store backed by a local cache.

DESIGN PRINCIPLES:
1. The balance is always derived from the transaction list
2. Rejected mutations leave the ledger untouched
3. No silent corrections
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Tracker Team"
