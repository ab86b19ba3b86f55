"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the remote authoritative store because:
1. Users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (bulk deletes check ownership of every row first,
  then delete bottom-up so row indexes stay valid)
- Limited query capabilities (we filter by owner in Python)

The store, not the client, computes total_cost and stamps timestamps.
Any transport failure surfaces as StorageError so the resilient store
can fall back to the local cache.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finance_tracker.config import get_settings
from finance_tracker.models.audit import AuditEvent
from finance_tracker.models.transaction import (
    NewTransaction,
    Transaction,
    TransactionKind,
    TransactionUpdate,
)
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    AuthorizationError,
    ConnectionError,
    NotFoundError,
    StorageError,
    TransactionStoreInterface,
    sort_newest_first,
)


logger = structlog.get_logger(__name__)

# Column mappings for Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "owner_id",
    "item_name",
    "description",
    "quantity",
    "unit_cost",
    "total_cost",
    "category",
    "kind",
    "created_at",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "owner_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Ownership and not-found are answers, not transient failures
remote_retry = retry(
    retry=retry_if_not_exception_type((NotFoundError, AuthorizationError)),
    stop=stop_after_attempt(get_settings().ledger.remote_retry_attempts),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get or create the Transactions worksheet."""
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, 1000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000
        )


def transaction_to_row(transaction: Transaction) -> list:
    """Convert a Transaction to a spreadsheet row."""
    return [
        str(transaction.id),
        transaction.owner_id,
        transaction.item_name,
        transaction.description or "",
        str(transaction.quantity),
        str(transaction.unit_cost),
        str(transaction.total_cost),
        transaction.category,
        transaction.kind.value,
        transaction.created_at.isoformat(),
        transaction.updated_at.isoformat(),
    ]


def row_to_transaction(row: list) -> Transaction:
    """
    Convert a spreadsheet row to a Transaction.

    The total_cost column is informational; the model recomputes it.
    """
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default

    return Transaction(
        id=UUID(safe_get(0)),
        owner_id=safe_get(1),
        item_name=safe_get(2),
        description=safe_get(3) or None,
        quantity=int(safe_get(4, "1")),
        unit_cost=Decimal(safe_get(5, "0")),
        category=safe_get(7, "other"),
        kind=TransactionKind(safe_get(8, "expense")),
        created_at=datetime.fromisoformat(safe_get(9)),
        updated_at=datetime.fromisoformat(safe_get(10) or safe_get(9)),
    )


class GoogleSheetsTransactionStore(TransactionStoreInterface):
    """
    Google Sheets implementation of the transaction store.

    Transactions are stored as rows in a worksheet with one transaction
    per row, shared by all owners and filtered by the owner_id column.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _all_rows(self, sheet: gspread.Worksheet) -> list[tuple[int, list]]:
        """(sheet row number, values) for every non-empty data row."""
        rows = sheet.get_all_values()[1:]  # Skip header
        return [
            (index, row)
            for index, row in enumerate(rows, start=2)  # Row 1 is header
            if row and row[0]
        ]

    def _locate(
        self,
        sheet: gspread.Worksheet,
        transaction_id: UUID,
        owner_id: str,
    ) -> tuple[int, Transaction]:
        for index, row in self._all_rows(sheet):
            if row[0] == str(transaction_id):
                if len(row) < 2 or row[1] != owner_id:
                    raise AuthorizationError(
                        f"Transaction {transaction_id} does not belong to {owner_id}"
                    )
                return index, row_to_transaction(row)
        raise NotFoundError(f"Transaction not found: {transaction_id}")

    def _write_row(self, sheet: gspread.Worksheet, index: int, transaction: Transaction) -> None:
        sheet.update(
            range_name=f"A{index}:{rowcol_to_a1(index, len(TRANSACTION_COLUMNS))}",
            values=[transaction_to_row(transaction)],
            value_input_option="RAW",
        )

    @remote_retry
    async def create(self, owner_id: str, fields: NewTransaction) -> Transaction:
        """Append a new transaction row."""
        try:
            sheet = self._client.get_transactions_sheet()
            transaction = fields.to_transaction(owner_id)
            sheet.append_row(transaction_to_row(transaction), value_input_option="RAW")
            return transaction
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to create transaction: {e}")

    @remote_retry
    async def update(
        self,
        transaction_id: UUID,
        owner_id: str,
        changes: TransactionUpdate,
    ) -> Transaction:
        """Rewrite the whole row of an existing transaction."""
        try:
            sheet = self._client.get_transactions_sheet()
            index, existing = self._locate(sheet, transaction_id, owner_id)
            updated = changes.apply_to(existing)
            self._write_row(sheet, index, updated)
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    @remote_retry
    async def delete(self, transaction_id: UUID, owner_id: str) -> None:
        """Delete one transaction row."""
        try:
            sheet = self._client.get_transactions_sheet()
            index, _ = self._locate(sheet, transaction_id, owner_id)
            sheet.delete_rows(index)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    @remote_retry
    async def delete_many(self, transaction_ids: Iterable[UUID], owner_id: str) -> None:
        """Delete the given rows after checking ownership of every one."""
        targets = {str(transaction_id) for transaction_id in transaction_ids}
        try:
            sheet = self._client.get_transactions_sheet()
            indexes = []
            for index, row in self._all_rows(sheet):
                if row[0] not in targets:
                    continue
                if len(row) < 2 or row[1] != owner_id:
                    raise AuthorizationError(
                        f"Transaction {row[0]} does not belong to {owner_id}"
                    )
                indexes.append(index)
            # Bottom-up so earlier indexes stay valid
            for index in sorted(indexes, reverse=True):
                sheet.delete_rows(index)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete transactions: {e}")

    @remote_retry
    async def delete_all(self, owner_id: str) -> None:
        """Delete every row of an owner."""
        try:
            sheet = self._client.get_transactions_sheet()
            indexes = [
                index for index, row in self._all_rows(sheet)
                if len(row) > 1 and row[1] == owner_id
            ]
            for index in sorted(indexes, reverse=True):
                sheet.delete_rows(index)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete transactions: {e}")

    @remote_retry
    async def restore(self, transaction: Transaction) -> Transaction:
        """Write a transaction row as-is, replacing a row with the same id."""
        try:
            sheet = self._client.get_transactions_sheet()
            try:
                index, _ = self._locate(sheet, transaction.id, transaction.owner_id)
            except NotFoundError:
                sheet.append_row(transaction_to_row(transaction), value_input_option="RAW")
            else:
                self._write_row(sheet, index, transaction)
            return transaction
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to restore transaction: {e}")

    @remote_retry
    async def get(self, transaction_id: UUID, owner_id: str) -> Optional[Transaction]:
        """Retrieve one transaction by id."""
        try:
            sheet = self._client.get_transactions_sheet()
            _, transaction = self._locate(sheet, transaction_id, owner_id)
            return transaction
        except NotFoundError:
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    @remote_retry
    async def list_by_owner(self, owner_id: str) -> list[Transaction]:
        """List an owner's transactions, newest first."""
        try:
            sheet = self._client.get_transactions_sheet()
            transactions = []
            for index, row in self._all_rows(sheet):
                if len(row) < 2 or row[1] != owner_id:
                    continue
                try:
                    transactions.append(row_to_transaction(row))
                except (ValueError, TypeError) as e:
                    logger.warning("sheets_row_skipped", row=index, error=str(e))
            return sort_newest_first(transactions)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the ledger operation
            logger.warning("audit_event_write_failed", error=str(e), event_id=str(event.event_id))
            return False
