"""
Resilient Storage Decorator

DESIGN DECISION: Remote and local storage are two implementations of
the same TransactionStoreInterface, composed here:

1. Replay any writes journaled while offline to the primary store
2. Try the primary (remote) store
3. On a remote failure, run the same operation on the local cache
   and emit exactly one degraded-mode notice for that call
4. After every success, write the result through to the local cache

AuthorizationError and NotFoundError are answers from the primary
store, not failures, and are never masked by the fallback.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from finance_tracker.models.transaction import (
    NewTransaction,
    Transaction,
    TransactionUpdate,
    utc_now,
)
from finance_tracker.services.storage.interface import (
    AuthorizationError,
    NotFoundError,
    StorageError,
    TransactionStoreInterface,
)
from finance_tracker.services.storage.local_cache import LocalTransactionCache


logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Transport-level failures that trigger the fallback path
REMOTE_FAILURES = (StorageError, OSError, asyncio.TimeoutError)
REMOTE_ANSWERS = (AuthorizationError, NotFoundError)


class DegradedNotice(BaseModel):
    """Signal that an operation succeeded against the local cache only."""

    owner_id: str
    operation: str
    error_message: str
    occurred_at: str = Field(default_factory=lambda: utc_now().isoformat())


DegradedListener = Callable[[DegradedNotice], None]


class ResilientTransactionStore(TransactionStoreInterface):
    """
    Primary store with a local cache as fallback and write-through copy.
    """

    def __init__(
        self,
        primary: TransactionStoreInterface,
        cache: LocalTransactionCache,
        on_degraded: Optional[DegradedListener] = None,
    ):
        self._primary = primary
        self._cache = cache
        self._listeners: list[DegradedListener] = []
        if on_degraded is not None:
            self._listeners.append(on_degraded)
        self._degraded_owners: set[str] = set()

    @property
    def cache(self) -> LocalTransactionCache:
        return self._cache

    def add_listener(self, listener: DegradedListener) -> None:
        self._listeners.append(listener)

    def is_degraded(self, owner_id: str) -> bool:
        """True while the last call for this owner was served by the cache."""
        return owner_id in self._degraded_owners

    def forget(self, owner_id: str) -> None:
        """Release in-memory state for an owner; cached files stay on disk."""
        self._cache.forget(owner_id)
        self._degraded_owners.discard(owner_id)

    def _notify(self, owner_id: str, operation: str, error: BaseException) -> None:
        notice = DegradedNotice(
            owner_id=owner_id,
            operation=operation,
            error_message=str(error) or type(error).__name__,
        )
        logger.warning(
            "degraded_mode",
            owner_id=owner_id,
            operation=operation,
            error=notice.error_message,
        )
        for listener in self._listeners:
            listener(notice)

    def _write_through(self, owner_id: str, operation: str, action: Callable[[], None]) -> None:
        """Mirror a primary result into the cache without failing the call."""
        try:
            action()
        except StorageError as e:
            logger.error(
                "local_cache_write_through_failed",
                owner_id=owner_id,
                operation=operation,
                error=str(e),
            )

    async def _replay_pending(self, owner_id: str) -> None:
        """
        Push writes made while offline to the primary store.

        Raises whatever the primary raises; the journal is only cleared
        once every pending write has been accepted.
        """
        pending = self._cache.pending(owner_id)
        if pending.is_empty:
            return

        if pending.wipe:
            await self._primary.delete_all(owner_id)
        if pending.deletes:
            await self._primary.delete_many(pending.deletes, owner_id)
        for transaction_id in pending.upserts:
            transaction = await self._cache.get(transaction_id, owner_id)
            if transaction is None:
                continue
            try:
                await self._primary.restore(transaction)
            except AuthorizationError as e:
                logger.error(
                    "pending_write_rejected",
                    owner_id=owner_id,
                    transaction_id=str(transaction_id),
                    error=str(e),
                )

        self._cache.clear_pending(owner_id)
        logger.info(
            "pending_writes_replayed",
            owner_id=owner_id,
            wipe=pending.wipe,
            deletes=len(pending.deletes),
            upserts=len(pending.upserts),
        )

    async def _call(
        self,
        owner_id: str,
        operation: str,
        primary_call: Callable[[], Awaitable[T]],
        fallback_call: Callable[[], Awaitable[T]],
    ) -> tuple[T, bool]:
        """
        Run an operation on the primary, falling back to the cache.

        Returns (result, served_by_fallback).
        """
        try:
            await self._replay_pending(owner_id)
            result = await primary_call()
        except REMOTE_ANSWERS:
            self._degraded_owners.discard(owner_id)
            raise
        except REMOTE_FAILURES as remote_error:
            try:
                result = await fallback_call()
            except REMOTE_ANSWERS:
                raise
            except StorageError as cache_error:
                raise StorageError(
                    f"{operation} failed on remote store ({remote_error}) "
                    f"and local cache ({cache_error})"
                ) from cache_error
            self._degraded_owners.add(owner_id)
            self._notify(owner_id, operation, remote_error)
            return result, True

        self._degraded_owners.discard(owner_id)
        return result, False

    # -------------------------------------------------------------------------
    # Store contract
    # -------------------------------------------------------------------------

    async def create(self, owner_id: str, fields: NewTransaction) -> Transaction:
        transaction, degraded = await self._call(
            owner_id,
            "create",
            lambda: self._primary.create(owner_id, fields),
            lambda: self._cache.create(owner_id, fields),
        )
        if degraded:
            self._cache.record_upserts(owner_id, [transaction.id])
        else:
            self._write_through(owner_id, "create", lambda: self._cache.upsert(transaction))
        return transaction

    async def update(
        self,
        transaction_id: UUID,
        owner_id: str,
        changes: TransactionUpdate,
    ) -> Transaction:
        transaction, degraded = await self._call(
            owner_id,
            "update",
            lambda: self._primary.update(transaction_id, owner_id, changes),
            lambda: self._cache.update(transaction_id, owner_id, changes),
        )
        if degraded:
            self._cache.record_upserts(owner_id, [transaction.id])
        else:
            self._write_through(owner_id, "update", lambda: self._cache.upsert(transaction))
        return transaction

    async def _delete_locally(self, transaction_id: UUID, owner_id: str) -> None:
        """
        Cache side of an offline delete.

        The remote copy may still exist even when the cache has no row,
        so a miss here is still journaled for replay.
        """
        try:
            await self._cache.delete(transaction_id, owner_id)
        except NotFoundError:
            logger.info(
                "local_delete_row_missing",
                owner_id=owner_id,
                transaction_id=str(transaction_id),
            )

    async def delete(self, transaction_id: UUID, owner_id: str) -> None:
        try:
            _, degraded = await self._call(
                owner_id,
                "delete",
                lambda: self._primary.delete(transaction_id, owner_id),
                lambda: self._delete_locally(transaction_id, owner_id),
            )
        except NotFoundError:
            # Gone upstream; make sure the cache agrees before reporting it
            self._write_through(
                owner_id, "delete", lambda: self._cache.discard(owner_id, [transaction_id])
            )
            raise
        if degraded:
            self._cache.record_deletes(owner_id, [transaction_id])
        else:
            self._write_through(
                owner_id, "delete", lambda: self._cache.discard(owner_id, [transaction_id])
            )

    async def delete_many(self, transaction_ids: Iterable[UUID], owner_id: str) -> None:
        targets = set(transaction_ids)
        _, degraded = await self._call(
            owner_id,
            "delete_many",
            lambda: self._primary.delete_many(targets, owner_id),
            lambda: self._cache.delete_many(targets, owner_id),
        )
        if degraded:
            self._cache.record_deletes(owner_id, targets)
        else:
            self._write_through(owner_id, "delete_many", lambda: self._cache.discard(owner_id, targets))

    async def delete_all(self, owner_id: str) -> None:
        _, degraded = await self._call(
            owner_id,
            "delete_all",
            lambda: self._primary.delete_all(owner_id),
            lambda: self._cache.delete_all(owner_id),
        )
        if degraded:
            self._cache.record_wipe(owner_id)
        else:
            self._write_through(owner_id, "delete_all", lambda: self._cache.replace_all(owner_id, []))

    async def restore(self, transaction: Transaction) -> Transaction:
        owner_id = transaction.owner_id
        restored, degraded = await self._call(
            owner_id,
            "restore",
            lambda: self._primary.restore(transaction),
            lambda: self._cache.restore(transaction),
        )
        if degraded:
            self._cache.record_upserts(owner_id, [restored.id])
        else:
            self._write_through(owner_id, "restore", lambda: self._cache.upsert(restored))
        return restored

    async def get(self, transaction_id: UUID, owner_id: str) -> Optional[Transaction]:
        transaction, degraded = await self._call(
            owner_id,
            "get",
            lambda: self._primary.get(transaction_id, owner_id),
            lambda: self._cache.get(transaction_id, owner_id),
        )
        if transaction is not None and not degraded:
            self._write_through(owner_id, "get", lambda: self._cache.upsert(transaction))
        return transaction

    async def list_by_owner(self, owner_id: str) -> list[Transaction]:
        transactions, degraded = await self._call(
            owner_id,
            "list_by_owner",
            lambda: self._primary.list_by_owner(owner_id),
            lambda: self._cache.list_by_owner(owner_id),
        )
        if not degraded:
            self._write_through(
                owner_id, "list_by_owner", lambda: self._cache.replace_all(owner_id, transactions)
            )
        return transactions
