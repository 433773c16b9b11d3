"""
Audit Models for Ledger Sync

Every mutation and every partial-failure state is recorded as an audit
event. The multi-step sequences (create + attachment commit, delete +
attachment delete) run without transactions, so the audit trail is where
an entry left without its attachment, or an orphaned binary object,
becomes visible.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger entries
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    MUTATION_FAILED = "mutation_failed"

    # Attachments
    ATTACHMENT_STAGED = "attachment_staged"
    ATTACHMENT_STAGE_FAILED = "attachment_stage_failed"
    ATTACHMENT_COMMITTED = "attachment_committed"
    ATTACHMENT_COMMIT_FAILED = "attachment_commit_failed"
    ATTACHMENT_DELETED = "attachment_deleted"
    ATTACHMENT_ORPHANED = "attachment_orphaned"
    TEMP_CLEANUP_FAILED = "temp_cleanup_failed"

    # Feed
    FEED_LOAD_FAILED = "feed_load_failed"


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

    One immutable row in the ledger audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about, and whose is it?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'entry', 'attachment', 'feed')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Entry id or object path this event relates to"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Caller identity the action ran under"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one create + attachment commit)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         user_id, correlation_id, description, details_json, error_code,
         error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.user_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Factory methods for each event type, so callers never assemble
    details dicts by hand.

    Usage:
        event = AuditEventBuilder.entry_created(user_id, entry_id, "expense", 1500, cid)
    """

    @staticmethod
    def entry_created(
        user_id: str,
        entry_id: str,
        kind: str,
        amount: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_CREATED,
            entity_type="entry",
            entity_id=entry_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Entry created: {kind} of {amount} minor units",
            details={"kind": kind, "amount": amount},
        )

    @staticmethod
    def entry_updated(
        user_id: str,
        entry_id: str,
        fields: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_UPDATED,
            entity_type="entry",
            entity_id=entry_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Entry updated: {', '.join(sorted(fields)) or 'no fields'}",
            details={"fields": sorted(fields)},
        )

    @staticmethod
    def entry_deleted(
        user_id: str,
        entry_id: str,
        existed: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_DELETED,
            entity_type="entry",
            entity_id=entry_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Entry deleted" if existed else "Entry already absent",
            details={"existed": existed},
        )

    @staticmethod
    def mutation_failed(
        user_id: str,
        operation: str,
        error_code: str,
        error_message: str,
        correlation_id: UUID,
        entry_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="entry",
            entity_id=entry_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"{operation} failed",
            details={"operation": operation},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def attachment_staged(
        user_id: str,
        path: str,
        size: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENT_STAGED,
            entity_type="attachment",
            entity_id=path,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Attachment staged ({size} bytes)",
            details={"size": size},
        )

    @staticmethod
    def attachment_stage_failed(
        user_id: str,
        file_name: str,
        error_code: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENT_STAGE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="attachment",
            user_id=user_id,
            description=f"Attachment upload failed: {file_name}",
            details={"file_name": file_name},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def attachment_committed(
        user_id: str,
        entry_id: str,
        temp_path: str,
        final_path: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENT_COMMITTED,
            entity_type="entry",
            entity_id=entry_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Staged attachment committed to its entry",
            details={"temp_path": temp_path, "final_path": final_path},
        )

    @staticmethod
    def attachment_commit_failed(
        user_id: str,
        entry_id: str,
        temp_path: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENT_COMMIT_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="entry",
            entity_id=entry_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Entry committed without its attachment",
            details={"temp_path": temp_path},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def attachment_deleted(
        user_id: str,
        path: str,
        outcome: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENT_DELETED,
            entity_type="attachment",
            entity_id=path,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Attachment delete: {outcome}",
            details={"outcome": outcome},
        )

    @staticmethod
    def attachment_orphaned(
        user_id: str,
        path: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENT_ORPHANED,
            severity=AuditSeverity.WARNING,
            entity_type="attachment",
            entity_id=path,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Binary object left behind after its entry changed",
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def temp_cleanup_failed(
        user_id: str,
        temp_path: str,
        error_code: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMP_CLEANUP_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="attachment",
            entity_id=temp_path,
            user_id=user_id,
            description="Temporary attachment could not be removed",
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def feed_load_failed(
        user_id: Optional[str],
        operation: str,
        error_code: str,
        error_message: str,
        filter_signature: str = "",
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FEED_LOAD_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="feed",
            user_id=user_id,
            description=f"Feed {operation} failed",
            details={"operation": operation, "filters": filter_signature},
            error_code=error_code,
            error_message=error_message,
        )
