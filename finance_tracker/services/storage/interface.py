"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for transaction storage.
This allows us to:
1. Use Google Sheets as the remote authoritative store
2. Keep a local JSON cache with exactly the same contract
3. Compose the two behind a resilient decorator without the ledger
   knowing which one actually served a call
4. Use in-memory storage for testing

Every operation is scoped by owner_id. Touching a transaction that
belongs to someone else raises AuthorizationError; it is never a
silent no-op.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from finance_tracker.models.audit import AuditEvent
from finance_tracker.models.transaction import (
    NewTransaction,
    Transaction,
    TransactionUpdate,
)


class TransactionStoreInterface(ABC):
    """
    Abstract interface for transaction storage operations.

    Any storage implementation (Google Sheets, local cache, in-memory)
    must implement these methods.
    """

    @abstractmethod
    async def create(self, owner_id: str, fields: NewTransaction) -> Transaction:
        """
        Persist a new transaction for an owner.

        The store assigns the id and timestamps and computes total_cost.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        transaction_id: UUID,
        owner_id: str,
        changes: TransactionUpdate,
    ) -> Transaction:
        """
        Apply a partial update and return the replacement transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
            AuthorizationError: If it belongs to another owner
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, transaction_id: UUID, owner_id: str) -> None:
        """
        Delete a transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
            AuthorizationError: If it belongs to another owner
            StorageError: If the delete fails
        """
        pass

    @abstractmethod
    async def delete_many(self, transaction_ids: Iterable[UUID], owner_id: str) -> None:
        """
        Delete exactly the given transactions, all or nothing.

        Ids that no longer exist are skipped. If any id belongs to
        another owner nothing is deleted.

        Raises:
            AuthorizationError: If any id belongs to another owner
            StorageError: If the delete fails
        """
        pass

    @abstractmethod
    async def delete_all(self, owner_id: str) -> None:
        """Delete every transaction of an owner."""
        pass

    @abstractmethod
    async def restore(self, transaction: Transaction) -> Transaction:
        """
        Insert or replace a transaction exactly as given, keeping its id
        and timestamps. Used to replay writes made while offline.

        Raises:
            AuthorizationError: If the id exists under another owner
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get(self, transaction_id: UUID, owner_id: str) -> Optional[Transaction]:
        """
        Retrieve one transaction.

        Returns:
            The transaction if found, None otherwise

        Raises:
            AuthorizationError: If it belongs to another owner
        """
        pass

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> list[Transaction]:
        """
        List all transactions of an owner, newest first.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass


def sort_newest_first(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Order transactions by creation time, newest first."""
    return sorted(transactions, key=lambda t: t.created_at, reverse=True)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class AuthorizationError(StorageError):
    """Operation targets a transaction owned by another user."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
