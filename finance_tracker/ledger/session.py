"""
Finance Session

The boundary a presentation layer talks to. It binds the ledger service
to whoever is currently signed in, so callers never pass an owner id.

Authentication itself is external: the session only reacts to sign-in
and sign-out.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Union
from uuid import UUID

from finance_tracker.ledger.service import LedgerService, NoActiveSessionError
from finance_tracker.models.transaction import (
    ZERO,
    LedgerOperationResult,
    NewTransaction,
    SpendingSummary,
    Transaction,
    TransactionUpdate,
)


class FinanceSession:
    """
    Ledger operations for the signed-in user.

    Every call without a signed-in user raises NoActiveSessionError.
    """

    def __init__(self, service: LedgerService):
        self._service = service
        self._user_id: Optional[str] = None

    @property
    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def _require_user(self) -> str:
        if self._user_id is None:
            raise NoActiveSessionError("No user is signed in")
        return self._user_id

    async def on_sign_in(self, user_id: str) -> LedgerOperationResult:
        """Switch to a user and load their ledger."""
        if self._user_id is not None and self._user_id != user_id:
            await self.on_sign_out()
        self._user_id = user_id
        return await self._service.load(user_id)

    async def on_sign_out(self) -> None:
        """Forget the user and clear every bit of in-memory ledger state."""
        user_id, self._user_id = self._user_id, None
        if user_id is not None:
            await self._service.close(user_id)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def balance(self) -> Decimal:
        if self._user_id is None:
            return ZERO
        return self._service.balance(self._user_id)

    @property
    def transactions(self) -> list[Transaction]:
        if self._user_id is None:
            return []
        return self._service.transactions(self._user_id)

    @property
    def loading(self) -> bool:
        ledger = self._service.ledger(self._user_id) if self._user_id else None
        return bool(ledger and ledger.loading)

    @property
    def degraded(self) -> bool:
        ledger = self._service.ledger(self._user_id) if self._user_id else None
        return bool(ledger and ledger.degraded)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def add_transaction(
        self,
        fields: Union[NewTransaction, dict[str, Any]],
    ) -> LedgerOperationResult:
        return await self._service.add_transaction(self._require_user(), fields)

    async def update_transaction(
        self,
        transaction_id: UUID,
        changes: Union[TransactionUpdate, dict[str, Any]],
    ) -> LedgerOperationResult:
        return await self._service.update_transaction(
            transaction_id, self._require_user(), changes
        )

    async def delete_transaction(self, transaction_id: UUID) -> LedgerOperationResult:
        return await self._service.delete_transaction(transaction_id, self._require_user())

    async def delete_all_transactions(
        self,
        transaction_ids: Optional[Iterable[UUID]] = None,
    ) -> LedgerOperationResult:
        return await self._service.delete_all_transactions(
            self._require_user(), transaction_ids
        )

    def get_spending_summary(
        self,
        start: Union[date, datetime, None] = None,
        end: Union[date, datetime, None] = None,
    ) -> SpendingSummary:
        return self._service.get_spending_summary(self._require_user(), start, end)

    def can_afford(self, cost: Union[Decimal, float, int, str]) -> bool:
        return self._service.can_afford(self._require_user(), cost)

    async def refresh_data(self) -> LedgerOperationResult:
        return await self._service.refresh(self._require_user())

    async def generate_sample_data(self) -> LedgerOperationResult:
        return await self._service.generate_sample_data(self._require_user())
