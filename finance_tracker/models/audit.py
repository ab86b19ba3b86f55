"""
Audit Models for the Finance Tracker

Every ledger mutation, rejection and storage degradation is logged.
This provides:
1. Traceability of every balance change
2. Debugging information when the remote store misbehaves
3. A record of which writes only reached the local cache

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finance_tracker.models.transaction import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Session lifecycle
    LEDGER_LOADED = "ledger_loaded"
    LEDGER_CLEARED = "ledger_cleared"

    # Mutations
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTIONS_BULK_DELETED = "transactions_bulk_deleted"
    SAMPLE_DATA_GENERATED = "sample_data_generated"

    # Rejections
    VALIDATION_FAILED = "validation_failed"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    AUTHORIZATION_DENIED = "authorization_denied"

    # Storage
    DEGRADED_MODE_ENGAGED = "degraded_mode_engaged"
    STORAGE_ERROR = "storage_error"
    LEDGER_RESYNCHRONIZED = "ledger_resynchronized"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - whose ledger and which entity
    owner_id: Optional[str] = Field(
        default=None,
        description="Owner of the ledger this event relates to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'ledger')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate events raised by one ledger operation"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, owner_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.owner_id or "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(owner_id, transaction_id, ...)
        event = AuditEventBuilder.degraded_mode(owner_id, "create", error)
    """

    @staticmethod
    def ledger_loaded(
        owner_id: str,
        transaction_count: int,
        balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_LOADED,
            owner_id=owner_id,
            entity_type="ledger",
            correlation_id=correlation_id,
            description=f"Ledger loaded with {transaction_count} transactions",
            details={
                "transaction_count": transaction_count,
                "balance": balance,
            },
        )

    @staticmethod
    def ledger_cleared(owner_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_CLEARED,
            owner_id=owner_id,
            entity_type="ledger",
            description="In-memory ledger cleared at session end",
            is_user_action=True,
        )

    @staticmethod
    def transaction_added(
        owner_id: str,
        transaction_id: UUID,
        kind: str,
        amount: str,
        balance: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{kind.capitalize()} recorded: {amount}",
            details={
                "kind": kind,
                "amount": amount,
                "balance": balance,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        owner_id: str,
        transaction_id: UUID,
        changed_fields: list[str],
        delta: str,
        balance: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction updated ({', '.join(changed_fields) or 'no fields'})",
            details={
                "changed_fields": changed_fields,
                "cost_delta": delta,
                "balance": balance,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        owner_id: str,
        transaction_id: UUID,
        already_absent: bool,
        balance: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=(
                "Transaction already absent, delete treated as success"
                if already_absent
                else "Transaction deleted"
            ),
            details={
                "already_absent": already_absent,
                "balance": balance,
            },
            is_user_action=True,
        )

    @staticmethod
    def transactions_bulk_deleted(
        owner_id: str,
        count: int,
        full_wipe: bool,
        balance: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_BULK_DELETED,
            owner_id=owner_id,
            entity_type="ledger",
            correlation_id=correlation_id,
            description=(
                f"All {count} transactions deleted"
                if full_wipe
                else f"{count} transactions deleted"
            ),
            details={
                "count": count,
                "full_wipe": full_wipe,
                "balance": balance,
            },
            is_user_action=True,
        )

    @staticmethod
    def sample_data_generated(
        owner_id: str,
        count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAMPLE_DATA_GENERATED,
            owner_id=owner_id,
            entity_type="ledger",
            correlation_id=correlation_id,
            description=f"Generated {count} sample transactions",
            details={"count": count},
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        owner_id: str,
        operation: str,
        issues: list[dict],
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None,
    ) -> AuditEvent:
        insufficient = any(i.get("type") == "insufficient_funds" for i in issues)
        return AuditEvent(
            event_type=(
                AuditEventType.INSUFFICIENT_FUNDS
                if insufficient
                else AuditEventType.VALIDATION_FAILED
            ),
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def authorization_denied(
        owner_id: str,
        operation: str,
        error_message: str,
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTHORIZATION_DENIED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{operation} denied: transaction belongs to another owner",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def degraded_mode(
        owner_id: str,
        operation: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEGRADED_MODE_ENGAGED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="ledger",
            description=f"Remote store failed during {operation}; using local cache",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def storage_error(
        owner_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="ledger",
            correlation_id=correlation_id,
            description=f"Storage failed during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def ledger_resynchronized(
        owner_id: str,
        transaction_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_RESYNCHRONIZED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="ledger",
            correlation_id=correlation_id,
            description=f"Ledger reloaded from store ({transaction_count} transactions)",
            details={"transaction_count": transaction_count},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
