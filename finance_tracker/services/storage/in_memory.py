"""
In-Memory Storage Implementation

A dict-backed transaction store with the same ownership and
not-found semantics as the remote store. Used when Google Sheets
is not configured and as the remote store in tests.
"""

from typing import Iterable, Optional
from uuid import UUID

from finance_tracker.models.transaction import (
    NewTransaction,
    Transaction,
    TransactionUpdate,
)
from finance_tracker.services.storage.interface import (
    AuthorizationError,
    NotFoundError,
    TransactionStoreInterface,
    sort_newest_first,
)


class InMemoryTransactionStore(TransactionStoreInterface):
    """Transactions of every owner held in one dict keyed by id."""

    def __init__(self, transactions: Optional[Iterable[Transaction]] = None):
        self._rows: dict[UUID, Transaction] = {}
        for transaction in transactions or []:
            self._rows[transaction.id] = transaction

    def _owned(self, transaction_id: UUID, owner_id: str) -> Transaction:
        row = self._rows.get(transaction_id)
        if row is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        if row.owner_id != owner_id:
            raise AuthorizationError(
                f"Transaction {transaction_id} does not belong to {owner_id}"
            )
        return row

    async def create(self, owner_id: str, fields: NewTransaction) -> Transaction:
        transaction = fields.to_transaction(owner_id)
        self._rows[transaction.id] = transaction
        return transaction

    async def update(
        self,
        transaction_id: UUID,
        owner_id: str,
        changes: TransactionUpdate,
    ) -> Transaction:
        existing = self._owned(transaction_id, owner_id)
        updated = changes.apply_to(existing)
        self._rows[transaction_id] = updated
        return updated

    async def delete(self, transaction_id: UUID, owner_id: str) -> None:
        self._owned(transaction_id, owner_id)
        del self._rows[transaction_id]

    async def delete_many(self, transaction_ids: Iterable[UUID], owner_id: str) -> None:
        targets = []
        for transaction_id in set(transaction_ids):
            try:
                targets.append(self._owned(transaction_id, owner_id).id)
            except NotFoundError:
                continue
        for transaction_id in targets:
            del self._rows[transaction_id]

    async def delete_all(self, owner_id: str) -> None:
        for transaction_id in [t.id for t in self._rows.values() if t.owner_id == owner_id]:
            del self._rows[transaction_id]

    async def restore(self, transaction: Transaction) -> Transaction:
        existing = self._rows.get(transaction.id)
        if existing is not None and existing.owner_id != transaction.owner_id:
            raise AuthorizationError(
                f"Transaction {transaction.id} does not belong to {transaction.owner_id}"
            )
        self._rows[transaction.id] = transaction
        return transaction

    async def get(self, transaction_id: UUID, owner_id: str) -> Optional[Transaction]:
        try:
            return self._owned(transaction_id, owner_id)
        except NotFoundError:
            return None

    async def list_by_owner(self, owner_id: str) -> list[Transaction]:
        return sort_newest_first(t for t in self._rows.values() if t.owner_id == owner_id)
