"""
Ledger Service

DESIGN DECISION: The ledger service is the ONLY writer of ledger state.
Every mutation follows the same path:

1. Parse and validate (fields, then funds) against the current ledger
2. Persist through the transaction store (remote, with local fallback)
3. Apply the stored result to the in-memory list
4. Recompute the balance from the whole list
5. Audit and notify subscribers

Steps 1-4 run under a per-owner asyncio.Lock. Two expenses that each fit
the balance but not together can't both pass the funds check, because the
second one is validated against the balance the first one produced.

A rejected mutation returns LedgerOperationResult(success=False) and
leaves the ledger exactly as it was. Storage failures that the local
cache could not absorb are raised after the ledger has been left (or put
back) in a state that matches the store.
"""

import asyncio
import random
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, TypeVar, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field

from finance_tracker.audit import AuditLogger, create_correlation_id
from finance_tracker.config import LedgerSettings, get_settings
from finance_tracker.ledger.balance import compute_balance
from finance_tracker.models.transaction import (
    ZERO,
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
from finance_tracker.services.storage import (
    AuthorizationError,
    DegradedNotice,
    NotFoundError,
    ResilientTransactionStore,
    StorageError,
    TransactionStoreInterface,
    sort_newest_first,
)
from finance_tracker.summary import SummaryPeriod, resolve_period, summarize
from finance_tracker.validation import TransactionValidator


logger = structlog.get_logger(__name__)

T = TypeVar("T")

SAMPLE_ITEMS = [
    "Coffee", "Lunch", "Gas", "Groceries", "Movie Ticket", "Book", "Snacks", "Parking",
    "Bus Fare", "Dinner", "Breakfast", "Uber Ride", "Magazine", "Water Bottle", "Candy",
    "Fast Food", "Taxi", "Newspaper", "Energy Drink", "Ice Cream", "Pizza Slice", "Sandwich",
    "Donut", "Soda", "Chips", "Gum", "Chocolate", "Tea", "Juice", "Muffin",
]

SAMPLE_CATEGORIES = [
    TransactionCategory.FOOD,
    TransactionCategory.TRANSPORT,
    TransactionCategory.SHOPPING,
    TransactionCategory.ENTERTAINMENT,
    TransactionCategory.OTHER,
]

SAMPLE_EXPENSE_COST = Decimal("10.00")


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class NoActiveSessionError(LedgerError):
    """A ledger operation was attempted with nobody signed in."""
    pass


class Ledger(BaseModel):
    """In-memory state of one owner's ledger."""

    owner_id: str
    transactions: list[Transaction] = Field(
        default_factory=list,
        description="Newest first"
    )
    balance: Decimal = ZERO
    loading: bool = False
    loaded: bool = False
    degraded: bool = False


class LedgerSnapshot(BaseModel):
    """Immutable view handed to subscribers after every change."""
    model_config = ConfigDict(frozen=True)

    owner_id: str
    balance: Decimal
    transactions: tuple[Transaction, ...]
    loading: bool
    degraded: bool
    taken_at: datetime = Field(default_factory=utc_now)


SnapshotListener = Callable[[LedgerSnapshot], None]


def _issue_dicts(issues: Iterable[ValidationIssue]) -> list[dict]:
    return [
        {"type": issue.issue_type, "field": issue.field, "message": issue.message}
        for issue in issues
    ]


class LedgerService:
    """
    Owns the per-owner ledgers and every operation on them.

    Usage:
        service = LedgerService(store)
        await service.load("user-1")
        result = await service.add_transaction("user-1", NewTransaction.deposit(100))
    """

    def __init__(
        self,
        store: TransactionStoreInterface,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._validator = validator or TransactionValidator(self._settings)
        self._audit = audit_logger or AuditLogger()

        self._ledgers: dict[str, Ledger] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._listeners: list[SnapshotListener] = []
        self._degraded_notices: list[DegradedNotice] = []

        if isinstance(store, ResilientTransactionStore):
            store.add_listener(self._degraded_notices.append)

    # -------------------------------------------------------------------------
    # State access
    # -------------------------------------------------------------------------

    def ledger(self, owner_id: str) -> Optional[Ledger]:
        return self._ledgers.get(owner_id)

    def transactions(self, owner_id: str) -> list[Transaction]:
        ledger = self._ledgers.get(owner_id)
        return list(ledger.transactions) if ledger else []

    def balance(self, owner_id: str) -> Decimal:
        ledger = self._ledgers.get(owner_id)
        return ledger.balance if ledger else ZERO

    def snapshot(self, owner_id: str) -> LedgerSnapshot:
        ledger = self._ledgers.get(owner_id) or Ledger(owner_id=owner_id)
        return LedgerSnapshot(
            owner_id=owner_id,
            balance=ledger.balance,
            transactions=tuple(ledger.transactions),
            loading=ledger.loading,
            degraded=ledger.degraded,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register an observer for ledger changes.

        Returns a callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, ledger: Ledger) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot(ledger.owner_id)
        for listener in list(self._listeners):
            listener(snapshot)

    @asynccontextmanager
    async def _lock(self, owner_id: str) -> AsyncIterator[None]:
        """
        Hold the owner's lock.

        The lock is dropped once no caller holds or awaits it, so signed-out
        owners leave nothing behind.
        """
        lock = self._locks.get(owner_id)
        if lock is None:
            lock = self._locks[owner_id] = asyncio.Lock()
        self._lock_users[owner_id] = self._lock_users.get(owner_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[owner_id] -= 1
            if not self._lock_users[owner_id]:
                del self._lock_users[owner_id]
                del self._locks[owner_id]

    def _served_locally(self, owner_id: str) -> bool:
        if isinstance(self._store, ResilientTransactionStore):
            return self._store.is_degraded(owner_id)
        return False

    def _apply(self, ledger: Ledger, transactions: list[Transaction], degraded: bool) -> None:
        """Replace the list and recompute the balance from it."""
        ledger.transactions = transactions
        ledger.balance = compute_balance(transactions)
        ledger.degraded = degraded
        ledger.loaded = True
        self._publish(ledger)

    def _fmt(self, amount: Decimal) -> str:
        return self._settings.format_amount(amount)

    # -------------------------------------------------------------------------
    # Store calls
    # -------------------------------------------------------------------------

    async def _flush_degraded(self) -> None:
        while self._degraded_notices:
            notice = self._degraded_notices.pop(0)
            await self._audit.log_degraded_mode(
                owner_id=notice.owner_id,
                operation=notice.operation,
                error_message=notice.error_message,
            )

    async def _persist(
        self,
        owner_id: str,
        operation: str,
        call: Callable[[], Awaitable[T]],
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None,
    ) -> T:
        """
        Run one store call, auditing how it ended.

        NotFoundError is passed through untouched for the caller to decide.
        Anything that is not a StorageError is audited as a system error
        and re-raised.
        """
        try:
            result = await call()
        except NotFoundError:
            raise
        except AuthorizationError as e:
            await self._audit.log_authorization_denied(
                owner_id=owner_id,
                operation=operation,
                error_message=str(e),
                correlation_id=correlation_id,
                transaction_id=transaction_id,
            )
            raise
        except StorageError as e:
            await self._audit.log_storage_error(
                owner_id=owner_id,
                operation=operation,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise
        except Exception as e:
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"owner_id": owner_id, "operation": operation},
                correlation_id=correlation_id,
            )
            raise
        finally:
            await self._flush_degraded()
        return result

    async def _reject(
        self,
        owner_id: str,
        operation: str,
        result: ValidationResult,
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None,
    ) -> LedgerOperationResult:
        await self._audit.log_validation_failed(
            owner_id=owner_id,
            operation=operation,
            issues=_issue_dicts(result.issues),
            correlation_id=correlation_id,
            transaction_id=transaction_id,
        )
        return LedgerOperationResult.rejected(result.issues)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def _load_unlocked(self, owner_id: str, correlation_id: UUID) -> Ledger:
        ledger = self._ledgers.setdefault(owner_id, Ledger(owner_id=owner_id))
        ledger.loading = True
        self._publish(ledger)
        try:
            stored = await self._persist(
                owner_id,
                "load",
                lambda: self._store.list_by_owner(owner_id),
                correlation_id,
            )
        except StorageError:
            ledger.loading = False
            self._publish(ledger)
            raise

        ledger.loading = False
        self._apply(ledger, sort_newest_first(stored), self._served_locally(owner_id))
        await self._audit.log_ledger_loaded(
            owner_id=owner_id,
            transaction_count=len(ledger.transactions),
            balance=str(ledger.balance),
            correlation_id=correlation_id,
        )
        return ledger

    async def _ensure_loaded(self, owner_id: str, correlation_id: UUID) -> Ledger:
        ledger = self._ledgers.get(owner_id)
        if ledger is not None and ledger.loaded:
            return ledger
        return await self._load_unlocked(owner_id, correlation_id)

    async def load(self, owner_id: str) -> LedgerOperationResult:
        """
        Populate the owner's ledger from the store.

        Falls back to the local cache when the remote store is unreachable.

        Raises:
            StorageError: Neither store could be read
        """
        correlation_id = create_correlation_id()
        async with self._lock(owner_id):
            ledger = await self._load_unlocked(owner_id, correlation_id)
        return LedgerOperationResult(
            success=True,
            message=f"Loaded {len(ledger.transactions)} transactions",
            degraded=ledger.degraded,
            affected_count=len(ledger.transactions),
        )

    async def refresh(self, owner_id: str) -> LedgerOperationResult:
        """Reload the ledger from the store, discarding in-memory state."""
        return await self.load(owner_id)

    async def _resynchronize(self, owner_id: str, correlation_id: UUID) -> None:
        """
        Reload after a failed bulk operation so memory matches the store.

        A failure here is logged; the caller re-raises the original error.
        """
        try:
            ledger = await self._load_unlocked(owner_id, correlation_id)
        except StorageError as e:
            logger.error("ledger_resync_failed", owner_id=owner_id, error=str(e))
            return
        await self._audit.log_resynchronized(
            owner_id=owner_id,
            transaction_count=len(ledger.transactions),
            correlation_id=correlation_id,
        )

    async def close(self, owner_id: str) -> None:
        """Drop the owner's in-memory ledger and cached partition (sign-out)."""
        async with self._lock(owner_id):
            ledger = self._ledgers.pop(owner_id, None)
            if isinstance(self._store, ResilientTransactionStore):
                self._store.forget(owner_id)
        if ledger is not None:
            self._publish(Ledger(owner_id=owner_id))
            await self._audit.log_ledger_cleared(owner_id)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def add_transaction(
        self,
        owner_id: str,
        fields: Union[NewTransaction, dict[str, Any]],
    ) -> LedgerOperationResult:
        """
        Record an expense or a deposit.

        An expense must fit the current balance in full. Deposits are
        never checked for funds.
        """
        correlation_id = create_correlation_id()
        parsed, result = self._validator.parse_new(fields)
        if parsed is None:
            return await self._reject(owner_id, "add_transaction", result, correlation_id)

        async with self._lock(owner_id):
            ledger = await self._ensure_loaded(owner_id, correlation_id)

            result = self._validator.validate_new(parsed)
            if result.is_valid and parsed.kind == TransactionKind.EXPENSE:
                result = result.merge(
                    self._validator.check_affordability(parsed.total_cost, ledger.balance)
                )
            if result.has_errors:
                return await self._reject(owner_id, "add_transaction", result, correlation_id)

            transaction = await self._persist(
                owner_id,
                "create",
                lambda: self._store.create(owner_id, parsed),
                correlation_id,
            )
            degraded = self._served_locally(owner_id)
            self._apply(ledger, [transaction, *ledger.transactions], degraded)
            balance = ledger.balance

        await self._audit.log_transaction_added(
            owner_id=owner_id,
            transaction_id=transaction.id,
            kind=transaction.kind.value,
            amount=str(transaction.total_cost),
            balance=str(balance),
            correlation_id=correlation_id,
        )

        message = (
            "Funds added successfully"
            if transaction.is_deposit
            else "Transaction recorded"
        )
        if degraded:
            message += " (saved locally, remote store unavailable)"

        return LedgerOperationResult(
            success=True,
            message=message,
            transaction=transaction,
            degraded=degraded,
            affected_count=1,
        )

    async def update_transaction(
        self,
        transaction_id: UUID,
        owner_id: str,
        changes: Union[TransactionUpdate, dict[str, Any]],
    ) -> LedgerOperationResult:
        """
        Edit an existing transaction.

        Only a cost increase on an expense is checked against the
        balance. Lowering a cost is never blocked.
        """
        correlation_id = create_correlation_id()
        parsed, result = self._validator.parse_update(changes)
        if parsed is None:
            return await self._reject(
                owner_id, "update_transaction", result, correlation_id, transaction_id
            )

        async with self._lock(owner_id):
            ledger = await self._ensure_loaded(owner_id, correlation_id)

            existing = next((t for t in ledger.transactions if t.id == transaction_id), None)
            if existing is None:
                return await self._reject(
                    owner_id,
                    "update_transaction",
                    ValidationResult(issues=[self._not_found_issue(transaction_id)]),
                    correlation_id,
                    transaction_id,
                )

            result = self._validator.validate_update(existing, parsed)
            delta = ZERO
            if result.is_valid:
                delta = self._validator.cost_delta(existing, parsed)
                if existing.is_expense and delta > 0:
                    result = result.merge(
                        self._validator.check_affordability(delta, ledger.balance)
                    )
            if result.has_errors:
                return await self._reject(
                    owner_id, "update_transaction", result, correlation_id, transaction_id
                )

            try:
                updated = await self._persist(
                    owner_id,
                    "update",
                    lambda: self._store.update(transaction_id, owner_id, parsed),
                    correlation_id,
                    transaction_id,
                )
            except NotFoundError:
                # Removed from the store behind our back
                remaining = [t for t in ledger.transactions if t.id != transaction_id]
                self._apply(ledger, remaining, ledger.degraded)
                return await self._reject(
                    owner_id,
                    "update_transaction",
                    ValidationResult(issues=[self._not_found_issue(transaction_id)]),
                    correlation_id,
                    transaction_id,
                )

            degraded = self._served_locally(owner_id)
            replaced = [updated if t.id == transaction_id else t for t in ledger.transactions]
            self._apply(ledger, sort_newest_first(replaced), degraded)
            balance = ledger.balance

        await self._audit.log_transaction_updated(
            owner_id=owner_id,
            transaction_id=transaction_id,
            changed_fields=sorted(parsed.changed_fields()),
            delta=str(delta),
            balance=str(balance),
            correlation_id=correlation_id,
        )

        message = "Transaction updated"
        if degraded:
            message += " (saved locally, remote store unavailable)"
        return LedgerOperationResult(
            success=True,
            message=message,
            transaction=updated,
            degraded=degraded,
            affected_count=1,
        )

    @staticmethod
    def _not_found_issue(transaction_id: UUID) -> ValidationIssue:
        return ValidationIssue(
            field="id",
            issue_type="not_found",
            message=f"Transaction {transaction_id} not found",
        )

    async def delete_transaction(
        self,
        transaction_id: UUID,
        owner_id: str,
    ) -> LedgerOperationResult:
        """
        Remove one transaction.

        Deleting an id that is already gone succeeds without changes.
        """
        correlation_id = create_correlation_id()
        async with self._lock(owner_id):
            ledger = await self._ensure_loaded(owner_id, correlation_id)

            already_absent = False
            try:
                await self._persist(
                    owner_id,
                    "delete",
                    lambda: self._store.delete(transaction_id, owner_id),
                    correlation_id,
                    transaction_id,
                )
            except NotFoundError:
                already_absent = True

            degraded = self._served_locally(owner_id)
            remaining = [t for t in ledger.transactions if t.id != transaction_id]
            removed = len(ledger.transactions) - len(remaining)
            self._apply(ledger, remaining, degraded)
            balance = ledger.balance

        await self._audit.log_transaction_deleted(
            owner_id=owner_id,
            transaction_id=transaction_id,
            already_absent=already_absent,
            balance=str(balance),
            correlation_id=correlation_id,
        )

        return LedgerOperationResult(
            success=True,
            message="Transaction already deleted" if already_absent else "Transaction deleted",
            degraded=degraded,
            affected_count=removed,
        )

    async def delete_all_transactions(
        self,
        owner_id: str,
        transaction_ids: Optional[Iterable[UUID]] = None,
    ) -> LedgerOperationResult:
        """
        Delete a set of transactions, or the whole ledger.

        When the given ids are exactly the ids currently in the ledger
        (or none are given) the store is wiped in one call. Otherwise
        only the given ids are deleted.

        Raises:
            StorageError: The store failed; the ledger has been reloaded
                          so it matches what the store still holds
        """
        correlation_id = create_correlation_id()
        async with self._lock(owner_id):
            ledger = await self._ensure_loaded(owner_id, correlation_id)

            current_ids = {t.id for t in ledger.transactions}
            targets = set(current_ids) if transaction_ids is None else set(transaction_ids)
            if not targets:
                return LedgerOperationResult(
                    success=True,
                    message="Nothing to delete",
                    degraded=ledger.degraded,
                )

            full_wipe = targets == current_ids
            try:
                if full_wipe:
                    await self._persist(
                        owner_id,
                        "delete_all",
                        lambda: self._store.delete_all(owner_id),
                        correlation_id,
                    )
                else:
                    await self._persist(
                        owner_id,
                        "delete_many",
                        lambda: self._store.delete_many(targets, owner_id),
                        correlation_id,
                    )
            except StorageError:
                await self._resynchronize(owner_id, correlation_id)
                raise

            degraded = self._served_locally(owner_id)
            remaining = [] if full_wipe else [
                t for t in ledger.transactions if t.id not in targets
            ]
            removed = len(ledger.transactions) - len(remaining)
            self._apply(ledger, remaining, degraded)
            balance = ledger.balance

        await self._audit.log_bulk_deleted(
            owner_id=owner_id,
            count=removed,
            full_wipe=full_wipe,
            balance=str(balance),
            correlation_id=correlation_id,
        )

        return LedgerOperationResult(
            success=True,
            message=f"{removed} transactions deleted",
            degraded=degraded,
            affected_count=removed,
        )

    async def generate_sample_data(
        self,
        owner_id: str,
        rng: Optional[random.Random] = None,
        now: Optional[datetime] = None,
    ) -> LedgerOperationResult:
        """
        Seed the ledger with an opening deposit and small random expenses.

        The deposit is dated at the start of the sample window and each
        expense lands on a random day and time inside it. Expenses that
        would overdraw the ledger are skipped.
        """
        correlation_id = create_correlation_id()
        rng = rng or random.Random()
        now = now or utc_now()
        days = self._settings.sample_days

        deposit = NewTransaction(
            item_name="Initial Deposit",
            description="Starting funds",
            unit_cost=to_money(self._settings.sample_initial_deposit),
            category=TransactionCategory.OTHER,
            kind=TransactionKind.DEPOSIT,
        ).to_transaction(owner_id, now=now - timedelta(days=days))

        samples = [deposit]
        for _ in range(self._settings.sample_expense_count):
            days_ago = rng.randrange(max(days - 1, 1))
            created_at = (now - timedelta(days=days_ago)).replace(
                hour=rng.randrange(24),
                minute=rng.randrange(60),
                second=0,
                microsecond=0,
            )
            samples.append(NewTransaction(
                item_name=rng.choice(SAMPLE_ITEMS),
                description="Sample transaction",
                quantity=1,
                unit_cost=SAMPLE_EXPENSE_COST,
                category=rng.choice(SAMPLE_CATEGORIES),
            ).to_transaction(owner_id, now=min(created_at, now)))

        async with self._lock(owner_id):
            ledger = await self._ensure_loaded(owner_id, correlation_id)

            balance = ledger.balance
            stored: list[Transaction] = []
            degraded = False
            for transaction in samples:
                if transaction.is_expense and not self._validator.can_afford(
                    transaction.total_cost, balance
                ):
                    continue
                try:
                    saved = await self._persist(
                        owner_id,
                        "generate_sample_data",
                        lambda: self._store.restore(transaction),
                        correlation_id,
                        transaction.id,
                    )
                except StorageError:
                    # Keep what was already written visible
                    self._apply(
                        ledger,
                        sort_newest_first([*ledger.transactions, *stored]),
                        degraded,
                    )
                    raise
                degraded = degraded or self._served_locally(owner_id)
                stored.append(saved)
                balance += saved.signed_amount

            self._apply(ledger, sort_newest_first([*ledger.transactions, *stored]), degraded)

        await self._audit.log_sample_data_generated(
            owner_id=owner_id,
            count=len(stored),
            correlation_id=correlation_id,
        )

        return LedgerOperationResult(
            success=True,
            message=f"Generated {len(stored)} sample transactions",
            degraded=degraded,
            affected_count=len(stored),
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def can_afford(self, owner_id: str, cost: Union[Decimal, float, int, str]) -> bool:
        """True iff the cost does not exceed the owner's current balance."""
        return self._validator.can_afford(to_money(cost), self.balance(owner_id))

    def get_spending_summary(
        self,
        owner_id: str,
        start: Union[date, datetime, None] = None,
        end: Union[date, datetime, None] = None,
    ) -> SpendingSummary:
        """Spending summary over the inclusive [start, end] window."""
        return summarize(self.transactions(owner_id), start, end)

    def get_period_summary(
        self,
        owner_id: str,
        period: Union[SummaryPeriod, str],
        now: Optional[datetime] = None,
        custom_start: Union[date, datetime, None] = None,
        custom_end: Union[date, datetime, None] = None,
    ) -> SpendingSummary:
        start, end = resolve_period(period, now, custom_start, custom_end)
        return self.get_spending_summary(owner_id, start, end)
