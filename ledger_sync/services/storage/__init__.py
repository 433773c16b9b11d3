"""
Storage Services Package

Provides abstract interfaces and the in-memory implementations for data
storage. The Google Sheets backends live in
`ledger_sync.services.storage.google_sheets` and are imported from there
directly, so that importing the interfaces never pulls in gspread.
"""

from ledger_sync.services.storage.interface import (
    AuditStorageInterface,
    DeleteOutcome,
    LedgerCollectionInterface,
    NotFoundError,
    ObjectStoreInterface,
    PayloadValidationError,
    PermissionDeniedError,
    ProgressCallback,
    StorageError,
    StoredObject,
    StoredObjectInfo,
    TransientError,
    UnauthenticatedError,
    UploadCancelledError,
)
from ledger_sync.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerCollection,
    InMemoryObjectStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerCollectionInterface",
    "ObjectStoreInterface",
    "DeleteOutcome",
    "ProgressCallback",
    "StoredObject",
    "StoredObjectInfo",
    # Exceptions
    "NotFoundError",
    "PayloadValidationError",
    "PermissionDeniedError",
    "StorageError",
    "TransientError",
    "UnauthenticatedError",
    "UploadCancelledError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerCollection",
    "InMemoryObjectStore",
]
