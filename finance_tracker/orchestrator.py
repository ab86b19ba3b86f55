"""
Component Wiring for the Finance Tracker

This module ties together the stores, validator, audit logger, ledger
service and session.

DESIGN DECISION: The remote store is always wrapped in the resilient
store with a local cache behind it. When Google Sheets is not
configured, an in-memory store stands in as the primary so the same
code path (cache write-through, degraded notices) runs everywhere.
"""

from typing import Optional

import structlog

from finance_tracker.audit import AuditLogger
from finance_tracker.config import get_settings
from finance_tracker.ledger import FinanceSession, LedgerService
from finance_tracker.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStore,
    InMemoryTransactionStore,
    LocalTransactionCache,
    ResilientTransactionStore,
    TransactionStoreInterface,
)
from finance_tracker.validation import TransactionValidator


logger = structlog.get_logger(__name__)


def create_app_components(
    use_storage: bool = True,
    cache_directory: Optional[str] = None,
) -> tuple[FinanceSession, LedgerService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for running without a remote store.
        cache_directory: Overrides the configured local cache directory.

    Returns:
        (session, ledger_service, sheets_client)
    """
    settings = get_settings()

    sheets_client = None
    primary: TransactionStoreInterface
    audit_logger: AuditLogger

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            primary = GoogleSheetsTransactionStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("remote_storage_not_configured", error=str(e))
            sheets_client = None
            primary = InMemoryTransactionStore()
            audit_logger = AuditLogger()  # Local-only logging
    else:
        primary = InMemoryTransactionStore()
        audit_logger = AuditLogger()  # Local-only logging

    cache = LocalTransactionCache(cache_directory or settings.local_cache.path)
    store = ResilientTransactionStore(primary, cache)

    ledger_settings = settings.ledger
    service = LedgerService(
        store=store,
        validator=TransactionValidator(ledger_settings),
        audit_logger=audit_logger,
        settings=ledger_settings,
    )

    return FinanceSession(service), service, sheets_client
