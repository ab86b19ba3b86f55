"""Services package."""

from finance_tracker.services.storage import (
    AuditStorageInterface,
    AuthorizationError,
    ConnectionError,
    DegradedNotice,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStore,
    InMemoryTransactionStore,
    LocalTransactionCache,
    NotFoundError,
    ResilientTransactionStore,
    StorageError,
    TransactionStoreInterface,
)

__all__ = [
    "AuditStorageInterface",
    "AuthorizationError",
    "ConnectionError",
    "DegradedNotice",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTransactionStore",
    "InMemoryTransactionStore",
    "LocalTransactionCache",
    "NotFoundError",
    "ResilientTransactionStore",
    "StorageError",
    "TransactionStoreInterface",
]
