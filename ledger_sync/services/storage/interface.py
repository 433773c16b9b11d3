"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for every backend the core
consumes. This allows us to:
1. Swap Google Sheets / Cloudinary for other providers later
2. Use in-memory storage for testing
3. Keep the view controller and orchestrator decoupled from SDKs

Backends raise the StorageError hierarchy below. Translation into the
caller-facing taxonomy happens once, in ledger_sync.errors.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from ledger_sync.models.audit import AuditEvent
from ledger_sync.models.entry import (
    FilterSpec,
    LedgerEntry,
    NewEntry,
    PageCursor,
)
from ledger_sync.models.result import ErrorCode


# Progress callback: (bytes_transferred, total_bytes)
ProgressCallback = Callable[[int, int], None]


class DeleteOutcome(str, Enum):
    """Result of deleting a binary object."""
    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"


class StoredObjectInfo(BaseModel):
    """What the object store reports after a write."""

    path: str
    url: str
    size: int = Field(ge=0)
    written_at: datetime = Field(default_factory=datetime.utcnow)


class StoredObject(StoredObjectInfo):
    """A binary object read back from the store, with its metadata."""

    data: bytes
    content_type: str = "application/octet-stream"
    metadata: dict[str, str] = Field(default_factory=dict)


class LedgerCollectionInterface(ABC):
    """
    Abstract interface for the per-user ledger collection.

    Every method is scoped by user_id; one user's entries are never
    visible through another user's id.
    """

    @abstractmethod
    async def insert(self, user_id: str, draft: NewEntry) -> LedgerEntry:
        """
        Insert a new entry.

        The backend assigns the id and both timestamps.

        Returns:
            The committed entry
        """
        pass

    @abstractmethod
    async def get(self, user_id: str, entry_id: str) -> LedgerEntry:
        """
        Retrieve one entry.

        Raises:
            NotFoundError: If the entry doesn't exist
        """
        pass

    @abstractmethod
    async def update(self, user_id: str, entry_id: str, changes: dict) -> LedgerEntry:
        """
        Apply a partial merge.

        Args:
            changes: field -> value; a None value deletes the field

        Returns:
            The entry after the merge (updated_at refreshed)

        Raises:
            NotFoundError: If the entry doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, user_id: str, entry_id: str) -> bool:
        """
        Delete an entry.

        Returns:
            True if deleted, False if it was already absent (not an error)
        """
        pass

    @abstractmethod
    async def query(
        self,
        user_id: str,
        filters: FilterSpec,
        limit: int,
        start_after: Optional[PageCursor] = None,
    ) -> list[LedgerEntry]:
        """
        Filtered, ordered, limited query.

        Ordered by occurred_on descending, ties by id descending.
        `start_after` skips everything up to and including the cursor.
        """
        pass

    @abstractmethod
    async def recent(self, user_id: str, limit: int) -> list[LedgerEntry]:
        """Most recently created entries, newest first."""
        pass


class ObjectStoreInterface(ABC):
    """
    Abstract interface for the path-addressed binary object store.
    """

    @abstractmethod
    async def write(
        self,
        path: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> StoredObjectInfo:
        """
        Write an object.

        Args:
            on_progress: called as bytes transfer; may raise
                UploadCancelledError to abort the write

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def read(self, path: str) -> StoredObject:
        """
        Read an object and its stored metadata.

        Raises:
            NotFoundError: If no object exists at path
        """
        pass

    @abstractmethod
    async def delete(self, path: str) -> DeleteOutcome:
        """
        Delete an object.

        A missing object is reported as ALREADY_ABSENT, never as an error.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Returns True if logged successfully."""
        pass

    @abstractmethod
    async def get_events_by_correlation_id(self, correlation_id) -> list[AuditEvent]:
        """All events of one user action, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        """All events for one entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """The most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for backend operations."""
    code = ErrorCode.INTERNAL


class UnauthenticatedError(StorageError):
    """Backend rejected the credentials or no identity was supplied."""
    code = ErrorCode.UNAUTHENTICATED


class PermissionDeniedError(StorageError):
    """Backend refused the operation for this identity."""
    code = ErrorCode.PERMISSION_DENIED


class NotFoundError(StorageError):
    """Entity or object not found in storage."""
    code = ErrorCode.NOT_FOUND


class TransientError(StorageError):
    """Network or availability failure; retrying may succeed."""
    code = ErrorCode.TRANSIENT


class PayloadValidationError(StorageError):
    """Malformed filter, cursor or payload."""
    code = ErrorCode.VALIDATION


class UploadCancelledError(StorageError):
    """An upload was cancelled by its owner."""
    code = ErrorCode.CANCELLED
