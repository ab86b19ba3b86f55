"""
Shared fixtures for the finance tracker tests.

No real network calls: the remote store is an InMemoryTransactionStore
or a fake that fails on demand, and the local cache lives in tmp_path.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import pytest

from finance_tracker.audit import AuditLogger
from finance_tracker.config import LedgerSettings
from finance_tracker.ledger import FinanceSession, LedgerService
from finance_tracker.models.transaction import (
    Transaction,
    TransactionCategory,
    TransactionKind,
)
from finance_tracker.services.storage import (
    ConnectionError,
    InMemoryTransactionStore,
    LocalTransactionCache,
    ResilientTransactionStore,
)
from finance_tracker.validation import TransactionValidator


OWNER = "user-1"
OTHER_OWNER = "user-2"


class FlakyRemoteStore(InMemoryTransactionStore):
    """In-memory remote store that raises ConnectionError while offline."""

    def __init__(self):
        super().__init__()
        self.offline = False
        self.calls: list[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.offline:
            raise ConnectionError(f"remote store unreachable during {operation}")

    async def create(self, owner_id, fields):
        self._check("create")
        return await super().create(owner_id, fields)

    async def update(self, transaction_id, owner_id, changes):
        self._check("update")
        return await super().update(transaction_id, owner_id, changes)

    async def delete(self, transaction_id, owner_id):
        self._check("delete")
        return await super().delete(transaction_id, owner_id)

    async def delete_many(self, transaction_ids, owner_id):
        self._check("delete_many")
        return await super().delete_many(transaction_ids, owner_id)

    async def delete_all(self, owner_id):
        self._check("delete_all")
        return await super().delete_all(owner_id)

    async def restore(self, transaction):
        self._check("restore")
        return await super().restore(transaction)

    async def get(self, transaction_id, owner_id):
        self._check("get")
        return await super().get(transaction_id, owner_id)

    async def list_by_owner(self, owner_id):
        self._check("list_by_owner")
        return await super().list_by_owner(owner_id)


def make_transaction(
    item_name: str = "Coffee",
    quantity: int = 1,
    unit_cost: str = "10.00",
    kind: TransactionKind = TransactionKind.EXPENSE,
    category: str = TransactionCategory.FOOD.value,
    owner_id: str = OWNER,
    created_at: Optional[datetime] = None,
) -> Transaction:
    """Build a stored transaction directly, bypassing any store."""
    created_at = created_at or datetime.now(timezone.utc)
    return Transaction(
        id=uuid4(),
        owner_id=owner_id,
        item_name=item_name,
        quantity=quantity,
        unit_cost=Decimal(unit_cost),
        category=category,
        kind=kind,
        created_at=created_at,
        updated_at=created_at,
    )


def day(n: int, hour: int = 12) -> datetime:
    """A fixed UTC timestamp on day n of January 2024."""
    return datetime(2024, 1, 1, hour, tzinfo=timezone.utc) + timedelta(days=n - 1)


@pytest.fixture
def ledger_settings():
    return LedgerSettings(sample_expense_count=20, sample_days=30)


@pytest.fixture
def remote():
    return FlakyRemoteStore()


@pytest.fixture
def cache(tmp_path):
    return LocalTransactionCache(tmp_path / "cache")


@pytest.fixture
def resilient_store(remote, cache):
    return ResilientTransactionStore(remote, cache)


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.fixture
def service(resilient_store, audit_logger, ledger_settings):
    return LedgerService(
        store=resilient_store,
        validator=TransactionValidator(ledger_settings),
        audit_logger=audit_logger,
        settings=ledger_settings,
    )


@pytest.fixture
def session(service):
    return FinanceSession(service)
