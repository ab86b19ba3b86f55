"""
Storage Services Package

Provides the abstract transaction store interface and its implementations:
Google Sheets as the remote store, a local JSON cache as the fallback,
an in-memory store, and the resilient decorator that composes them.
"""

from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    AuthorizationError,
    ConnectionError,
    NotFoundError,
    StorageError,
    TransactionStoreInterface,
    sort_newest_first,
)
from finance_tracker.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStore,
)
from finance_tracker.services.storage.in_memory import InMemoryTransactionStore
from finance_tracker.services.storage.local_cache import (
    LocalTransactionCache,
    PendingChanges,
)
from finance_tracker.services.storage.resilient import (
    DegradedListener,
    DegradedNotice,
    ResilientTransactionStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "TransactionStoreInterface",
    "sort_newest_first",
    # Exceptions
    "AuthorizationError",
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTransactionStore",
    # Local implementations
    "InMemoryTransactionStore",
    "LocalTransactionCache",
    "PendingChanges",
    # Fallback composition
    "DegradedListener",
    "DegradedNotice",
    "ResilientTransactionStore",
]
