"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every rejection is logged.
This provides:
1. A trail for every balance change
2. Visibility into writes that only reached the local cache
3. Debugging capability when the remote store misbehaves

The audit logger:
- Is async so it can share the event loop with the ledger service
- Gracefully handles failures (a failed audit write never fails a ledger operation)
- Supports correlation IDs to trace the events of one operation
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_tracker.models.audit import AuditEvent, AuditEventBuilder
from finance_tracker.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store such as Google Sheets (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finance_tracker.audit")
        self._recent: list[AuditEvent] = []

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Events logged by this instance, oldest first."""
        return list(self._recent)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        self._recent.append(event)
        if len(self._recent) > 500:
            del self._recent[0]

        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_ledger_loaded(
        self,
        owner_id: str,
        transaction_count: int,
        balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a ledger load."""
        await self.log(AuditEventBuilder.ledger_loaded(
            owner_id=owner_id,
            transaction_count=transaction_count,
            balance=balance,
            correlation_id=correlation_id,
        ))

    async def log_ledger_cleared(self, owner_id: str) -> None:
        await self.log(AuditEventBuilder.ledger_cleared(owner_id))

    async def log_transaction_added(
        self,
        owner_id: str,
        transaction_id: UUID,
        kind: str,
        amount: str,
        balance: str,
        correlation_id: UUID,
    ) -> None:
        """Log a recorded expense or deposit."""
        await self.log(AuditEventBuilder.transaction_added(
            owner_id=owner_id,
            transaction_id=transaction_id,
            kind=kind,
            amount=amount,
            balance=balance,
            correlation_id=correlation_id,
        ))

    async def log_transaction_updated(
        self,
        owner_id: str,
        transaction_id: UUID,
        changed_fields: list[str],
        delta: str,
        balance: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(
            owner_id=owner_id,
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            delta=delta,
            balance=balance,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        owner_id: str,
        transaction_id: UUID,
        already_absent: bool,
        balance: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            owner_id=owner_id,
            transaction_id=transaction_id,
            already_absent=already_absent,
            balance=balance,
            correlation_id=correlation_id,
        ))

    async def log_bulk_deleted(
        self,
        owner_id: str,
        count: int,
        full_wipe: bool,
        balance: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transactions_bulk_deleted(
            owner_id=owner_id,
            count=count,
            full_wipe=full_wipe,
            balance=balance,
            correlation_id=correlation_id,
        ))

    async def log_sample_data_generated(
        self,
        owner_id: str,
        count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sample_data_generated(
            owner_id=owner_id,
            count=count,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        owner_id: str,
        operation: str,
        issues: list[dict],
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None,
    ) -> None:
        """Log a rejected mutation (field errors or insufficient funds)."""
        await self.log(AuditEventBuilder.validation_failed(
            owner_id=owner_id,
            operation=operation,
            issues=issues,
            correlation_id=correlation_id,
            transaction_id=transaction_id,
        ))

    async def log_authorization_denied(
        self,
        owner_id: str,
        operation: str,
        error_message: str,
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.authorization_denied(
            owner_id=owner_id,
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
            transaction_id=transaction_id,
        ))

    async def log_degraded_mode(
        self,
        owner_id: str,
        operation: str,
        error_message: str,
    ) -> None:
        """Log an operation served by the local cache."""
        await self.log(AuditEventBuilder.degraded_mode(
            owner_id=owner_id,
            operation=operation,
            error_message=error_message,
        ))

    async def log_storage_error(
        self,
        owner_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(
            owner_id=owner_id,
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_resynchronized(
        self,
        owner_id: str,
        transaction_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_resynchronized(
            owner_id=owner_id,
            transaction_count=transaction_count,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a ledger operation and pass it through
    every audit event the operation raises.
    """
    return uuid4()
