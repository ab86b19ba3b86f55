"""Tests for the transaction stores and the local-cache fallback."""

import json
from decimal import Decimal
from uuid import uuid4

import pytest

from finance_tracker.audit import AuditLogger
from finance_tracker.models.audit import AuditEventBuilder, AuditEventType
from finance_tracker.models.transaction import NewTransaction, TransactionUpdate
from finance_tracker.services.storage import (
    AuthorizationError,
    InMemoryTransactionStore,
    LocalTransactionCache,
    NotFoundError,
    ResilientTransactionStore,
    StorageError,
)
from finance_tracker.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    GoogleSheetsAuditStorage,
    GoogleSheetsTransactionStore,
    TRANSACTION_COLUMNS,
    row_to_transaction,
    transaction_to_row,
)

from conftest import OTHER_OWNER, OWNER, day, make_transaction


def lunch(quantity: int = 1) -> NewTransaction:
    return NewTransaction(item_name="Lunch", quantity=quantity, unit_cost=Decimal("12.00"))


class TestInMemoryStore:
    """Tests for the dict-backed store."""

    @pytest.mark.asyncio
    async def test_create_and_list_newest_first(self):
        """Test that rows are listed newest first."""
        older = make_transaction(item_name="Old", created_at=day(1))
        newer = make_transaction(item_name="New", created_at=day(2))
        store = InMemoryTransactionStore([older, newer])
        listed = await store.list_by_owner(OWNER)
        assert [t.item_name for t in listed] == ["New", "Old"]

    @pytest.mark.asyncio
    async def test_update_missing_raises_not_found(self):
        """Test that updating an unknown id raises NotFoundError."""
        store = InMemoryTransactionStore()
        with pytest.raises(NotFoundError):
            await store.update(uuid4(), OWNER, TransactionUpdate(quantity=2))

    @pytest.mark.asyncio
    async def test_foreign_row_raises_authorization(self):
        """Test that one owner cannot touch another owner's row."""
        store = InMemoryTransactionStore()
        created = await store.create(OWNER, lunch())
        with pytest.raises(AuthorizationError):
            await store.delete(created.id, OTHER_OWNER)
        with pytest.raises(AuthorizationError):
            await store.delete_many([created.id], OTHER_OWNER)
        assert await store.get(created.id, OWNER) == created

    @pytest.mark.asyncio
    async def test_delete_many_skips_missing(self):
        """Test that bulk deletes ignore ids that are already gone."""
        store = InMemoryTransactionStore()
        keep = await store.create(OWNER, lunch())
        drop = await store.create(OWNER, lunch(2))
        await store.delete_many([drop.id, uuid4()], OWNER)
        assert [t.id for t in await store.list_by_owner(OWNER)] == [keep.id]

    @pytest.mark.asyncio
    async def test_delete_all_only_touches_owner(self):
        """Test that a wipe leaves other owners alone."""
        store = InMemoryTransactionStore()
        await store.create(OWNER, lunch())
        theirs = await store.create(OTHER_OWNER, lunch())
        await store.delete_all(OWNER)
        assert await store.list_by_owner(OWNER) == []
        assert await store.list_by_owner(OTHER_OWNER) == [theirs]


class TestLocalCache:
    """Tests for the JSON-file cache."""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        """Test that a fresh cache instance reads what an earlier one wrote."""
        first = LocalTransactionCache(tmp_path)
        created = await first.create(OWNER, lunch(3))

        second = LocalTransactionCache(tmp_path)
        listed = await second.list_by_owner(OWNER)
        assert listed == [created]
        assert listed[0].total_cost == Decimal("36.00")

    @pytest.mark.asyncio
    async def test_partitions_by_owner(self, tmp_path):
        """Test that each owner only sees their own rows."""
        cache = LocalTransactionCache(tmp_path)
        mine = await cache.create(OWNER, lunch())
        await cache.create(OTHER_OWNER, lunch())
        assert await cache.list_by_owner(OWNER) == [mine]

    @pytest.mark.asyncio
    async def test_foreign_id_raises_authorization(self, tmp_path):
        """Test ownership enforcement across partitions, including ones only on disk."""
        created = await LocalTransactionCache(tmp_path).create(OTHER_OWNER, lunch())
        cache = LocalTransactionCache(tmp_path)
        with pytest.raises(AuthorizationError):
            await cache.update(created.id, OWNER, TransactionUpdate(quantity=2))
        with pytest.raises(NotFoundError):
            await cache.delete(uuid4(), OWNER)

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, tmp_path):
        """Test that one bad row does not hide the rest of the partition."""
        cache = LocalTransactionCache(tmp_path)
        created = await cache.create(OWNER, lunch())
        path = next(tmp_path.glob("*.json"))
        payload = json.loads(path.read_text())
        payload["transactions"].append({"id": "not-a-uuid", "owner_id": OWNER})
        path.write_text(json.dumps(payload))

        assert await LocalTransactionCache(tmp_path).list_by_owner(OWNER) == [created]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_error(self, tmp_path):
        """Test that an unreadable cache file is reported, not ignored."""
        cache = LocalTransactionCache(tmp_path)
        await cache.create(OWNER, lunch())
        next(tmp_path.glob("*.json")).write_text("{not json")
        with pytest.raises(StorageError):
            await LocalTransactionCache(tmp_path).list_by_owner(OWNER)

    def test_pending_journal(self, tmp_path):
        """Test that deletes cancel upserts and a wipe supersedes both."""
        cache = LocalTransactionCache(tmp_path)
        first, second = uuid4(), uuid4()
        cache.record_upserts(OWNER, [first, second])
        cache.record_deletes(OWNER, [first])

        pending = LocalTransactionCache(tmp_path).pending(OWNER)
        assert pending.upserts == {second}
        assert pending.deletes == {first}

        cache.record_wipe(OWNER)
        pending = cache.pending(OWNER)
        assert pending.wipe and not pending.upserts and not pending.deletes


class TestResilientStore:
    """Tests for the remote store with local fallback."""

    @pytest.mark.asyncio
    async def test_success_writes_through_to_cache(self, remote, cache, resilient_store):
        """Test that remote results are mirrored into the cache."""
        created = await resilient_store.create(OWNER, lunch())
        assert await cache.list_by_owner(OWNER) == [created]
        assert not resilient_store.is_degraded(OWNER)

    @pytest.mark.asyncio
    async def test_remote_create_failure_falls_back(self, remote, cache):
        """Test that a failed remote create lands in the cache with one degraded notice."""
        notices = []
        store = ResilientTransactionStore(remote, cache, on_degraded=notices.append)
        remote.offline = True

        created = await store.create(OWNER, lunch())

        assert store.is_degraded(OWNER)
        assert len(notices) == 1
        assert notices[0].operation == "create"
        assert created in await store.list_by_owner(OWNER)
        assert len(notices) == 2  # the listing was also served locally
        assert cache.pending(OWNER).upserts == {created.id}

    @pytest.mark.asyncio
    async def test_pending_writes_replayed_when_remote_returns(self, remote, cache, resilient_store):
        """Test that offline writes reach the remote store with their ids intact."""
        kept = await resilient_store.create(OWNER, lunch())
        remote.offline = True
        offline = await resilient_store.create(OWNER, lunch(2))
        await resilient_store.delete(kept.id, OWNER)

        remote.offline = False
        listed = await resilient_store.list_by_owner(OWNER)

        assert [t.id for t in listed] == [offline.id]
        assert await remote.get(offline.id, OWNER) == offline
        assert await remote.get(kept.id, OWNER) is None
        assert cache.pending(OWNER).is_empty
        assert not resilient_store.is_degraded(OWNER)

    @pytest.mark.asyncio
    async def test_offline_wipe_replayed(self, remote, cache, resilient_store):
        """Test that a wipe made offline is applied remotely first."""
        await resilient_store.create(OWNER, lunch())
        remote.offline = True
        await resilient_store.delete_all(OWNER)
        after_wipe = await resilient_store.create(OWNER, lunch(4))

        remote.offline = False
        listed = await resilient_store.list_by_owner(OWNER)
        assert [t.id for t in listed] == [after_wipe.id]

    @pytest.mark.asyncio
    async def test_authorization_error_never_falls_back(self, remote, cache, resilient_store):
        """Test that an ownership violation is raised instead of served from the cache."""
        theirs = await resilient_store.create(OTHER_OWNER, lunch())
        with pytest.raises(AuthorizationError):
            await resilient_store.update(theirs.id, OWNER, TransactionUpdate(quantity=2))
        assert not resilient_store.is_degraded(OWNER)

    @pytest.mark.asyncio
    async def test_not_found_delete_clears_cache(self, remote, cache, resilient_store):
        """Test that a row gone upstream is also dropped from the cache."""
        created = await resilient_store.create(OWNER, lunch())
        await remote.delete(created.id, OWNER)
        with pytest.raises(NotFoundError):
            await resilient_store.delete(created.id, OWNER)
        assert await cache.list_by_owner(OWNER) == []

    @pytest.mark.asyncio
    async def test_offline_delete_of_uncached_row_is_journaled(self, remote, cache):
        """Test that an offline delete still reaches the remote store when the cache lacks the row."""
        notices = []
        store = ResilientTransactionStore(remote, cache, on_degraded=notices.append)
        # Written remotely but never mirrored into the cache
        created = await remote.create(OWNER, lunch())
        remote.offline = True

        await store.delete(created.id, OWNER)

        assert store.is_degraded(OWNER)
        assert [notice.operation for notice in notices] == ["delete"]
        assert cache.pending(OWNER).deletes == {created.id}

        remote.offline = False
        assert await store.list_by_owner(OWNER) == []
        assert await remote.get(created.id, OWNER) is None

    @pytest.mark.asyncio
    async def test_both_stores_failing_raises(self, remote, tmp_path):
        """Test that a failure of both stores propagates as StorageError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where the cache directory should be")
        store = ResilientTransactionStore(remote, LocalTransactionCache(blocker / "cache"))
        remote.offline = True
        with pytest.raises(StorageError):
            await store.create(OWNER, lunch())


class TestSheetsRows:
    """Tests for the Google Sheets row mapping."""

    def test_row_layout(self):
        """Test that rows match the column header order."""
        transaction = make_transaction(quantity=2, unit_cost="3.50", created_at=day(5))
        row = transaction_to_row(transaction)
        assert len(row) == len(TRANSACTION_COLUMNS)
        assert row[TRANSACTION_COLUMNS.index("owner_id")] == OWNER

    def test_row_mapping_preserves_fields(self):
        """Test that a row read back describes the same transaction."""
        transaction = make_transaction(quantity=2, unit_cost="3.50", created_at=day(5))
        restored = row_to_transaction(transaction_to_row(transaction))
        assert restored.id == transaction.id
        assert restored.total_cost == Decimal("7.00")
        assert restored.created_at == transaction.created_at


class FakeWorksheet:
    """Minimal stand-in for a gspread worksheet."""

    def __init__(self, header=TRANSACTION_COLUMNS):
        self.rows = [list(header)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append(list(values))

    def update(self, range_name=None, values=None, value_input_option=None):
        index = int(range_name.split(":")[0][1:])
        self.rows[index - 1] = list(values[0])

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:
    def __init__(self):
        self.sheet = FakeWorksheet()
        self.audit_sheet = FakeWorksheet(AUDIT_COLUMNS)

    def get_transactions_sheet(self):
        return self.sheet

    def get_audit_sheet(self):
        return self.audit_sheet


class TestGoogleSheetsStore:
    """Tests for the Sheets store against a fake worksheet."""

    @pytest.fixture
    def sheets_store(self):
        return GoogleSheetsTransactionStore(FakeSheetsClient())

    @pytest.mark.asyncio
    async def test_create_update_list(self, sheets_store):
        """Test that rows are appended, rewritten in place and listed per owner."""
        created = await sheets_store.create(OWNER, lunch())
        await sheets_store.create(OTHER_OWNER, lunch())

        updated = await sheets_store.update(created.id, OWNER, TransactionUpdate(quantity=3))

        listed = await sheets_store.list_by_owner(OWNER)
        assert listed == [updated]
        assert listed[0].total_cost == Decimal("36.00")

    @pytest.mark.asyncio
    async def test_foreign_rows_are_protected(self, sheets_store):
        """Test that bulk deletes check every row before deleting any."""
        mine = await sheets_store.create(OWNER, lunch())
        theirs = await sheets_store.create(OTHER_OWNER, lunch())
        with pytest.raises(AuthorizationError):
            await sheets_store.delete_many([mine.id, theirs.id], OWNER)
        assert await sheets_store.get(mine.id, OWNER) == mine

    @pytest.mark.asyncio
    async def test_delete_all_and_not_found(self, sheets_store):
        """Test owner wipes and deletes of missing rows."""
        await sheets_store.create(OWNER, lunch())
        await sheets_store.create(OWNER, lunch(2))
        theirs = await sheets_store.create(OTHER_OWNER, lunch())

        await sheets_store.delete_all(OWNER)

        assert await sheets_store.list_by_owner(OWNER) == []
        assert await sheets_store.list_by_owner(OTHER_OWNER) == [theirs]
        with pytest.raises(NotFoundError):
            await sheets_store.delete(uuid4(), OWNER)

    @pytest.mark.asyncio
    async def test_restore_keeps_identity(self, sheets_store):
        """Test that restore inserts or replaces a row with its own id."""
        transaction = make_transaction(created_at=day(3))
        await sheets_store.restore(transaction)
        await sheets_store.restore(transaction)
        assert await sheets_store.list_by_owner(OWNER) == [transaction]


class TestGoogleSheetsAuditStorage:
    """Tests for the append-only audit sheet."""

    @pytest.mark.asyncio
    async def test_events_are_appended_in_column_order(self):
        """Test that audit events land as rows matching the audit header."""
        client = FakeSheetsClient()
        audit_logger = AuditLogger(GoogleSheetsAuditStorage(client))

        await audit_logger.log_ledger_cleared(OWNER)
        await audit_logger.log_error("RuntimeError", "row mapping bug", details={"operation": "create"})

        rows = client.audit_sheet.rows[1:]
        assert len(rows) == 2
        assert all(len(row) == len(AUDIT_COLUMNS) for row in rows)
        error_row = dict(zip(AUDIT_COLUMNS, rows[1]))
        assert error_row["event_type"] == AuditEventType.SYSTEM_ERROR.value
        assert error_row["severity"] == "error"
        assert error_row["error_message"] == "row mapping bug"
        assert json.loads(error_row["details_json"]) == {"operation": "create"}

    @pytest.mark.asyncio
    async def test_audit_sheet_failure_never_raises(self):
        """Test that an unreachable audit sheet only fails the write."""

        class NoAuditSheet(FakeSheetsClient):
            def get_audit_sheet(self):
                raise ConnectionRefusedError("sheets offline")

        audit_logger = AuditLogger(GoogleSheetsAuditStorage(NoAuditSheet()))

        assert await audit_logger.log(
            AuditEventBuilder.ledger_cleared(OWNER)
        ) is False
        assert len(audit_logger.recent_events) == 1
