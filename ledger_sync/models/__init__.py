"""
Data Models Package

This package contains the Pydantic models and result types used across
Ledger Sync. All data flowing through the system must conform to these schemas.
"""

from ledger_sync.models.entry import (
    AggregateTotals,
    Attachment,
    CategorySummary,
    EntryKind,
    EntryUpdate,
    FilterSpec,
    LedgerEntry,
    LedgerSnapshot,
    MonthSummary,
    NewEntry,
    Page,
    PageCursor,
    UploadProgress,
    is_temporary_path,
)
from ledger_sync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from ledger_sync.models.result import (
    Err,
    ErrorCode,
    LedgerError,
    Ok,
    Result,
)

__all__ = [
    # Ledger models
    "AggregateTotals",
    "Attachment",
    "CategorySummary",
    "EntryKind",
    "EntryUpdate",
    "FilterSpec",
    "LedgerEntry",
    "LedgerSnapshot",
    "MonthSummary",
    "NewEntry",
    "Page",
    "PageCursor",
    "UploadProgress",
    "is_temporary_path",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Results
    "Err",
    "ErrorCode",
    "LedgerError",
    "Ok",
    "Result",
]
