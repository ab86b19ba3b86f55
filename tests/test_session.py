"""Tests for the signed-in session boundary and component wiring."""

from decimal import Decimal

import pytest

from finance_tracker.ledger import FinanceSession, NoActiveSessionError
from finance_tracker.models.transaction import NewTransaction
from finance_tracker.orchestrator import create_app_components

from conftest import OTHER_OWNER, OWNER


class TestFinanceSession:
    """Tests for FinanceSession."""

    @pytest.mark.asyncio
    async def test_calls_without_user_raise(self, session):
        """Test that operations need a signed-in user."""
        assert session.current_user_id is None
        assert session.balance == Decimal("0.00")
        assert session.transactions == []
        with pytest.raises(NoActiveSessionError):
            await session.add_transaction(NewTransaction.deposit(Decimal("10")))
        with pytest.raises(NoActiveSessionError):
            session.can_afford(1)

    @pytest.mark.asyncio
    async def test_sign_in_loads_and_operates(self, session):
        """Test that a signed-in session routes calls to the user's ledger."""
        await session.on_sign_in(OWNER)
        await session.add_transaction(NewTransaction.deposit(Decimal("100")))
        result = await session.add_transaction({"item_name": "Book", "unit_cost": "15"})

        assert result.success
        assert session.balance == Decimal("85.00")
        assert session.can_afford("85")
        assert not session.loading
        assert not session.degraded

        updated = await session.update_transaction(result.transaction.id, {"quantity": 2})
        assert updated.transaction.total_cost == Decimal("30.00")

        await session.delete_transaction(result.transaction.id)
        assert session.balance == Decimal("100.00")
        assert session.get_spending_summary().total_deposits == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_sign_out_clears_state(self, session, service):
        """Test that signing out forgets every in-memory transaction."""
        await session.on_sign_in(OWNER)
        await session.add_transaction(NewTransaction.deposit(Decimal("100")))

        await session.on_sign_out()

        assert session.current_user_id is None
        assert session.transactions == []
        assert service.ledger(OWNER) is None

    @pytest.mark.asyncio
    async def test_data_survives_sign_out(self, session):
        """Test that signing back in reloads from the store."""
        await session.on_sign_in(OWNER)
        await session.add_transaction(NewTransaction.deposit(Decimal("100")))
        await session.on_sign_out()

        await session.on_sign_in(OWNER)
        assert session.balance == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_switching_users(self, session, service):
        """Test that a new sign-in drops the previous user's ledger."""
        await session.on_sign_in(OWNER)
        await session.add_transaction(NewTransaction.deposit(Decimal("100")))

        await session.on_sign_in(OTHER_OWNER)

        assert session.current_user_id == OTHER_OWNER
        assert session.balance == Decimal("0.00")
        assert service.ledger(OWNER) is None

    @pytest.mark.asyncio
    async def test_bulk_delete_and_refresh(self, session):
        await session.on_sign_in(OWNER)
        await session.add_transaction(NewTransaction.deposit(Decimal("100")))
        await session.delete_all_transactions()
        await session.refresh_data()
        assert session.transactions == []

    @pytest.mark.asyncio
    async def test_generate_sample_data(self, session, ledger_settings):
        await session.on_sign_in(OWNER)
        result = await session.generate_sample_data()
        assert result.success
        assert len(session.transactions) == ledger_settings.sample_expense_count + 1


class TestComponentWiring:
    """Tests for the component factory."""

    @pytest.mark.asyncio
    async def test_create_without_remote_storage(self, tmp_path):
        """Test that the app works end to end with no Google Sheets configured."""
        session, service, sheets_client = create_app_components(
            use_storage=False,
            cache_directory=str(tmp_path),
        )
        assert isinstance(session, FinanceSession)
        assert sheets_client is None

        await session.on_sign_in(OWNER)
        result = await session.add_transaction(NewTransaction.deposit(Decimal("42")))
        assert result.success
        assert service.balance(OWNER) == Decimal("42.00")
        assert any(tmp_path.glob("*.json"))
