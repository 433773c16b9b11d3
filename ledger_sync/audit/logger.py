"""
Audit Logger

DESIGN DECISION: Every mutation and every partial failure is logged.
This provides:
1. Traceability of multi-step sequences that run without transactions
2. A place where orphaned objects and attachment-less entries show up
3. Debugging capability

The audit logger:
- Is async to not block main flow
- Never raises (a failed audit write must not fail the user's action)
- Supports correlation IDs to trace the steps of one user action
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_sync.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from ledger_sync.models.result import LedgerError
from ledger_sync.services.storage.interface import AuditStorageInterface


def configure_logging(level: str = "INFO", json: bool = True) -> None:
    """
    Configure structlog for local logging.

    Called once by the service factory. Output goes through the standard
    library logging module so the level can be filtered there.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )
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
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Records audit events for ledger mutations and attachment lifecycle.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (Google Sheets in production) when configured
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
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Writes the structlog line first, then appends to the audit store if one
        is configured.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Storage failures never reach the caller
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_entry_created(
        self,
        user_id: str,
        entry_id: str,
        kind: str,
        amount: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.entry_created(
            user_id, entry_id, kind, amount, correlation_id
        ))

    async def log_entry_updated(
        self,
        user_id: str,
        entry_id: str,
        fields: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.entry_updated(
            user_id, entry_id, fields, correlation_id
        ))

    async def log_entry_deleted(
        self,
        user_id: str,
        entry_id: str,
        existed: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.entry_deleted(
            user_id, entry_id, existed, correlation_id
        ))

    async def log_mutation_failed(
        self,
        user_id: str,
        operation: str,
        error: LedgerError,
        correlation_id: UUID,
        entry_id: Optional[str] = None,
    ) -> None:
        """Log a create/update/delete that returned a failure."""
        await self.log(AuditEventBuilder.mutation_failed(
            user_id=user_id,
            operation=operation,
            error_code=error.code.value,
            error_message=error.message,
            correlation_id=correlation_id,
            entry_id=entry_id,
        ))

    async def log_attachment_staged(
        self,
        user_id: str,
        path: str,
        size: int,
    ) -> None:
        await self.log(AuditEventBuilder.attachment_staged(user_id, path, size))

    async def log_attachment_stage_failed(
        self,
        user_id: str,
        file_name: str,
        error: LedgerError,
    ) -> None:
        await self.log(AuditEventBuilder.attachment_stage_failed(
            user_id, file_name, error.code.value, error.message
        ))

    async def log_attachment_committed(
        self,
        user_id: str,
        entry_id: str,
        temp_path: str,
        final_path: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.attachment_committed(
            user_id, entry_id, temp_path, final_path, correlation_id
        ))

    async def log_attachment_commit_failed(
        self,
        user_id: str,
        entry_id: str,
        temp_path: str,
        error: LedgerError,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an entry that was committed without its attachment."""
        await self.log(AuditEventBuilder.attachment_commit_failed(
            user_id=user_id,
            entry_id=entry_id,
            temp_path=temp_path,
            error_code=error.code.value,
            error_message=error.message,
            correlation_id=correlation_id,
        ))

    async def log_attachment_deleted(
        self,
        user_id: str,
        path: str,
        outcome: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.attachment_deleted(
            user_id, path, outcome, correlation_id
        ))

    async def log_attachment_orphaned(
        self,
        user_id: str,
        path: str,
        error: LedgerError,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a binary object whose entry no longer references it."""
        await self.log(AuditEventBuilder.attachment_orphaned(
            user_id, path, error.code.value, error.message, correlation_id
        ))

    async def log_temp_cleanup_failed(
        self,
        user_id: str,
        temp_path: str,
        error: LedgerError,
    ) -> None:
        await self.log(AuditEventBuilder.temp_cleanup_failed(
            user_id, temp_path, error.code.value, error.message
        ))

    async def log_feed_load_failed(
        self,
        user_id: Optional[str],
        operation: str,
        error: LedgerError,
        filter_signature: str = "",
    ) -> None:
        await self.log(AuditEventBuilder.feed_load_failed(
            user_id, operation, error.code.value, error.message, filter_signature
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., create with attachment).
    Pass it through all subsequent operations.
    """
    return uuid4()
