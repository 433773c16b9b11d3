"""
In-Memory Storage Implementations

Local, non-persistent backends implementing the same interfaces as the
Google Sheets and Cloudinary ones. Used by the test suite and by the
`memory` backend setting for offline development.

They behave like the remote services where it matters to the core:
ids and timestamps are assigned here (never by the client), deleting a
missing entry is a no-op, deleting a missing object reports
ALREADY_ABSENT, and uploads report progress chunk by chunk.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID, uuid4

from ledger_sync.models.audit import AuditEvent
from ledger_sync.models.entry import (
    FilterSpec,
    LedgerEntry,
    NewEntry,
    PageCursor,
    ledger_sort_key,
)
from ledger_sync.services.storage.interface import (
    AuditStorageInterface,
    DeleteOutcome,
    LedgerCollectionInterface,
    NotFoundError,
    ObjectStoreInterface,
    ProgressCallback,
    StoredObject,
    StoredObjectInfo,
)


def _new_document_id() -> str:
    """20-character document id, the shape document stores hand out."""
    return uuid4().hex[:20]


class InMemoryLedgerCollection(LedgerCollectionInterface):
    """Per-user dict of entries, queried the same way the Sheets backend does."""

    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.utcnow,
        latency: float = 0.0,
    ):
        self._documents: dict[str, dict[str, LedgerEntry]] = {}
        self._clock = clock
        self._latency = latency

    async def _io(self) -> None:
        # Always yield so concurrent callers interleave like real network I/O
        await asyncio.sleep(self._latency)

    def _user_docs(self, user_id: str) -> dict[str, LedgerEntry]:
        return self._documents.setdefault(user_id, {})

    async def insert(self, user_id: str, draft: NewEntry) -> LedgerEntry:
        await self._io()
        now = self._clock()
        entry = LedgerEntry(
            **draft.model_dump(),
            id=_new_document_id(),
            created_at=now,
            updated_at=now,
        )
        self._user_docs(user_id)[entry.id] = entry
        return entry

    async def get(self, user_id: str, entry_id: str) -> LedgerEntry:
        await self._io()
        try:
            return self._user_docs(user_id)[entry_id]
        except KeyError:
            raise NotFoundError(f"Entry not found: {entry_id}")

    async def update(self, user_id: str, entry_id: str, changes: dict) -> LedgerEntry:
        await self._io()
        docs = self._user_docs(user_id)
        if entry_id not in docs:
            raise NotFoundError(f"Entry not found: {entry_id}")

        data = docs[entry_id].model_dump()
        for name, value in changes.items():
            if value is None:
                # Deleted field: the document falls back to the field default
                data.pop(name, None)
            else:
                data[name] = value
        data["updated_at"] = self._clock()

        entry = LedgerEntry.model_validate(data)
        docs[entry_id] = entry
        return entry

    async def delete(self, user_id: str, entry_id: str) -> bool:
        await self._io()
        return self._user_docs(user_id).pop(entry_id, None) is not None

    async def query(
        self,
        user_id: str,
        filters: FilterSpec,
        limit: int,
        start_after: Optional[PageCursor] = None,
    ) -> list[LedgerEntry]:
        await self._io()
        entries = [e for e in self._user_docs(user_id).values() if filters.matches(e)]
        entries.sort(key=ledger_sort_key, reverse=True)
        if start_after is not None:
            entries = [e for e in entries if start_after.precedes(e)]
        return entries[:limit]

    async def recent(self, user_id: str, limit: int) -> list[LedgerEntry]:
        await self._io()
        entries = sorted(
            self._user_docs(user_id).values(),
            key=lambda e: (e.created_at, e.id),
            reverse=True,
        )
        return entries[:limit]


class InMemoryObjectStore(ObjectStoreInterface):
    """Path-addressed dict of bytes with chunked, cancellable writes."""

    def __init__(
        self,
        base_url: str = "memory://objects/",
        chunk_size: int = 64 * 1024,
    ):
        self._objects: dict[str, StoredObject] = {}
        self._base_url = base_url
        self._chunk_size = chunk_size

    def url_for(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def exists(self, path: str) -> bool:
        return path in self._objects

    def paths(self) -> list[str]:
        return sorted(self._objects)

    async def write(
        self,
        path: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> StoredObjectInfo:
        total = len(data)
        sent = 0
        while sent < total:
            await asyncio.sleep(0)
            sent = min(total, sent + self._chunk_size)
            if on_progress is not None:
                # May raise UploadCancelledError; nothing is stored then
                on_progress(sent, total)
        if total == 0 and on_progress is not None:
            on_progress(0, 0)

        stored = StoredObject(
            path=path,
            url=self.url_for(path),
            size=total,
            data=bytes(data),
            content_type=content_type,
            metadata=dict(metadata),
        )
        self._objects[path] = stored
        return StoredObjectInfo(
            path=path,
            url=stored.url,
            size=total,
            written_at=stored.written_at,
        )

    async def read(self, path: str) -> StoredObject:
        await asyncio.sleep(0)
        try:
            return self._objects[path]
        except KeyError:
            raise NotFoundError(f"Object not found: {path}")

    async def delete(self, path: str) -> DeleteOutcome:
        await asyncio.sleep(0)
        if self._objects.pop(path, None) is None:
            return DeleteOutcome.ALREADY_ABSENT
        return DeleteOutcome.DELETED


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
