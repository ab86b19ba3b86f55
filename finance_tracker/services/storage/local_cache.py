"""
Local Cache Storage Implementation

DESIGN DECISION: The local cache is a key-value store of
owner_id -> serialized transaction list, one JSON file per owner.
It serves two purposes:
1. Fallback store when the remote store is unreachable
2. Write-through copy of the latest known state, so a later
   remote outage never loses what the user last saw

Writes that only reached the cache are recorded in a pending
journal stored alongside the transactions, so they can be replayed
to the remote store once it is reachable again.

Files are written to a temporary path and renamed into place,
so a crash mid-write leaves the previous file intact.
"""

import hashlib
import json
import os
from pathlib import Path
from typing import Iterable, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, Field, ValidationError

from finance_tracker.config import get_settings
from finance_tracker.models.transaction import (
    NewTransaction,
    Transaction,
    TransactionUpdate,
)
from finance_tracker.services.storage.interface import (
    AuthorizationError,
    NotFoundError,
    StorageError,
    TransactionStoreInterface,
    sort_newest_first,
)


logger = structlog.get_logger(__name__)

CACHE_FORMAT_VERSION = 1


class PendingChanges(BaseModel):
    """Writes that reached the local cache but not the remote store."""

    wipe: bool = Field(
        default=False,
        description="All remote rows of the owner must be deleted first"
    )
    deletes: set[UUID] = Field(default_factory=set)
    upserts: set[UUID] = Field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not (self.wipe or self.deletes or self.upserts)


class LocalTransactionCache(TransactionStoreInterface):
    """
    JSON-file cache of each owner's transactions.

    Partitions are loaded lazily and kept in memory once read.
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        if directory is None:
            directory = get_settings().local_cache.path
        self._directory = Path(directory)
        self._partitions: dict[str, dict[UUID, Transaction]] = {}
        self._pending: dict[str, PendingChanges] = {}

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, owner_id: str) -> Path:
        digest = hashlib.sha256(owner_id.encode("utf-8")).hexdigest()[:32]
        return self._directory / f"{digest}.json"

    def _read_file(self, path: Path) -> tuple[Optional[str], list[Transaction], PendingChanges]:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None, [], PendingChanges()
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read local cache {path.name}: {e}")
        if not isinstance(payload, dict):
            raise StorageError(f"Unexpected local cache layout in {path.name}")

        transactions = []
        for row in payload.get("transactions", []):
            try:
                transactions.append(Transaction.model_validate(row))
            except ValidationError as e:
                logger.warning(
                    "local_cache_row_skipped",
                    file=path.name,
                    row_id=row.get("id") if isinstance(row, dict) else None,
                    error=str(e),
                )
        try:
            pending = PendingChanges.model_validate(payload.get("pending") or {})
        except ValidationError as e:
            raise StorageError(f"Corrupt pending journal in {path.name}: {e}")
        return payload.get("owner_id"), transactions, pending

    def _partition(self, owner_id: str) -> dict[UUID, Transaction]:
        if owner_id not in self._partitions:
            _, transactions, pending = self._read_file(self._path(owner_id))
            self._partitions[owner_id] = {
                t.id: t for t in transactions if t.owner_id == owner_id
            }
            self._pending[owner_id] = pending
        return self._partitions[owner_id]

    def _journal(self, owner_id: str) -> PendingChanges:
        self._partition(owner_id)
        return self._pending[owner_id]

    def _save(self, owner_id: str) -> None:
        partition = self._partition(owner_id)
        payload = {
            "version": CACHE_FORMAT_VERSION,
            "owner_id": owner_id,
            "pending": self._pending[owner_id].model_dump(mode="json"),
            "transactions": [
                t.model_dump(mode="json") for t in sort_newest_first(partition.values())
            ],
        }
        path = self._path(owner_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write local cache for {owner_id}: {e}")

    def _owner_elsewhere(self, transaction_id: UUID, owner_id: str) -> Optional[str]:
        """Find which other owner's partition holds a transaction id, if any."""
        for other_owner, partition in self._partitions.items():
            if other_owner != owner_id and transaction_id in partition:
                return other_owner
        if not self._directory.exists():
            return None
        own_path = self._path(owner_id)
        for path in self._directory.glob("*.json"):
            if path == own_path:
                continue
            other_owner, transactions, _ = self._read_file(path)
            if any(t.id == transaction_id for t in transactions):
                return other_owner
        return None

    def _owned(self, transaction_id: UUID, owner_id: str) -> Transaction:
        row = self._partition(owner_id).get(transaction_id)
        if row is not None:
            return row
        if self._owner_elsewhere(transaction_id, owner_id) is not None:
            raise AuthorizationError(
                f"Transaction {transaction_id} does not belong to {owner_id}"
            )
        raise NotFoundError(f"Transaction not found in local cache: {transaction_id}")

    # -------------------------------------------------------------------------
    # Store contract
    # -------------------------------------------------------------------------

    async def create(self, owner_id: str, fields: NewTransaction) -> Transaction:
        transaction = fields.to_transaction(owner_id)
        self._partition(owner_id)[transaction.id] = transaction
        self._save(owner_id)
        return transaction

    async def update(
        self,
        transaction_id: UUID,
        owner_id: str,
        changes: TransactionUpdate,
    ) -> Transaction:
        existing = self._owned(transaction_id, owner_id)
        updated = changes.apply_to(existing)
        self._partition(owner_id)[transaction_id] = updated
        self._save(owner_id)
        return updated

    async def delete(self, transaction_id: UUID, owner_id: str) -> None:
        self._owned(transaction_id, owner_id)
        del self._partition(owner_id)[transaction_id]
        self._save(owner_id)

    async def delete_many(self, transaction_ids: Iterable[UUID], owner_id: str) -> None:
        partition = self._partition(owner_id)
        targets = set(transaction_ids)
        # Check every id before removing any
        for transaction_id in targets - partition.keys():
            if self._owner_elsewhere(transaction_id, owner_id) is not None:
                raise AuthorizationError(
                    f"Transaction {transaction_id} does not belong to {owner_id}"
                )
        for transaction_id in targets & partition.keys():
            del partition[transaction_id]
        self._save(owner_id)

    async def delete_all(self, owner_id: str) -> None:
        self._partition(owner_id).clear()
        self._save(owner_id)

    async def restore(self, transaction: Transaction) -> Transaction:
        if transaction.id not in self._partition(transaction.owner_id):
            if self._owner_elsewhere(transaction.id, transaction.owner_id) is not None:
                raise AuthorizationError(
                    f"Transaction {transaction.id} does not belong to {transaction.owner_id}"
                )
        self.upsert(transaction)
        return transaction

    async def get(self, transaction_id: UUID, owner_id: str) -> Optional[Transaction]:
        try:
            return self._owned(transaction_id, owner_id)
        except NotFoundError:
            return None

    async def list_by_owner(self, owner_id: str) -> list[Transaction]:
        return sort_newest_first(self._partition(owner_id).values())

    # -------------------------------------------------------------------------
    # Write-through helpers
    # -------------------------------------------------------------------------

    def upsert(self, transaction: Transaction) -> None:
        """Store a transaction exactly as the remote store returned it."""
        self._partition(transaction.owner_id)[transaction.id] = transaction
        self._save(transaction.owner_id)

    def discard(self, owner_id: str, transaction_ids: Iterable[UUID]) -> None:
        """Remove ids from an owner's partition, ignoring missing ones."""
        partition = self._partition(owner_id)
        for transaction_id in transaction_ids:
            partition.pop(transaction_id, None)
        self._save(owner_id)

    def replace_all(self, owner_id: str, transactions: Iterable[Transaction]) -> None:
        """Overwrite an owner's partition with the authoritative list."""
        self._journal(owner_id)
        self._partitions[owner_id] = {
            t.id: t for t in transactions if t.owner_id == owner_id
        }
        self._save(owner_id)

    def forget(self, owner_id: str) -> None:
        """Drop the in-memory copy of a partition; the file stays on disk."""
        self._partitions.pop(owner_id, None)
        self._pending.pop(owner_id, None)

    # -------------------------------------------------------------------------
    # Pending journal
    # -------------------------------------------------------------------------

    def pending(self, owner_id: str) -> PendingChanges:
        """Copy of the writes not yet replayed to the remote store."""
        return self._journal(owner_id).model_copy(deep=True)

    def record_upserts(self, owner_id: str, transaction_ids: Iterable[UUID]) -> None:
        journal = self._journal(owner_id)
        journal.upserts.update(transaction_ids)
        self._save(owner_id)

    def record_deletes(self, owner_id: str, transaction_ids: Iterable[UUID]) -> None:
        journal = self._journal(owner_id)
        for transaction_id in transaction_ids:
            journal.upserts.discard(transaction_id)
            journal.deletes.add(transaction_id)
        self._save(owner_id)

    def record_wipe(self, owner_id: str) -> None:
        # A wipe supersedes everything journaled before it
        self._partition(owner_id)
        self._pending[owner_id] = PendingChanges(wipe=True)
        self._save(owner_id)

    def clear_pending(self, owner_id: str) -> None:
        self._partition(owner_id)
        self._pending[owner_id] = PendingChanges()
        self._save(owner_id)
