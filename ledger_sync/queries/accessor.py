"""
Remote Collection Accessor

DESIGN DECISION: This is the only component that talks to the ledger
collection. It:
1. Builds filtered, ordered, cursor-paginated queries
2. Translates every backend failure into the LedgerError taxonomy
3. Never lets an exception cross its boundary (every method returns a Result)

Feed order is occurred_on descending, ties broken by id descending, so a
cursor always identifies a stable position even when entries share a date.

`has_more` is a heuristic: a full page means more MAY exist. A feed whose
size is an exact multiple of the page size costs one extra, empty fetch.
We accept that instead of paying for a second count query on every page.
"""

import time
from datetime import date
from typing import Awaitable, Callable, Optional, Union

import structlog

from ledger_sync.errors import translate_exception
from ledger_sync.metrics import MetricsCollector
from ledger_sync.models.entry import (
    EntryKind,
    FilterSpec,
    LedgerEntry,
    NewEntry,
    Page,
    PageCursor,
)
from ledger_sync.models.result import Err, ErrorCode, Ok, Result, unauthenticated
from ledger_sync.services.storage.interface import LedgerCollectionInterface
from ledger_sync.validation import validate_filters, validate_page_size


logger = structlog.get_logger(__name__)

DEFAULT_FETCH_LIMIT = 1000


class RemoteCollectionAccessor:
    """
    Typed, failure-translating access to one user's ledger collection.

    GUARANTEES:
    - Every method returns Ok or Err, never raises
    - A missing user id yields `unauthenticated` without touching the backend
    - fetch_page returns at most page_size entries
    """

    def __init__(
        self,
        collection: LedgerCollectionInterface,
        metrics: Optional[MetricsCollector] = None,
        fetch_limit: int = DEFAULT_FETCH_LIMIT,
    ):
        self._collection = collection
        self._metrics = metrics
        self._fetch_limit = fetch_limit

    async def _call(
        self,
        operation: str,
        user_id: Optional[str],
        call: Callable[[str], Awaitable],
        **details,
    ) -> Result:
        if not user_id:
            return unauthenticated()

        if self._metrics is not None:
            self._metrics.log_request(f"RemoteCollectionAccessor.{operation}", details)

        try:
            return Ok(await call(user_id))
        except Exception as e:
            error = translate_exception(e)
            logger.warning(
                "collection_call_failed",
                operation=operation,
                user_id=user_id,
                error_code=error.code.value,
                error=error.message,
            )
            return Err(error)

    # =========================================================================
    # READS
    # =========================================================================

    async def fetch_page(
        self,
        user_id: Optional[str],
        filters: Optional[FilterSpec] = None,
        page_size: int = 12,
        cursor: Optional[Union[PageCursor, str]] = None,
    ) -> Result[Page]:
        """
        Fetch one page of the filtered feed.

        Args:
            filters: predicates to apply; None means the unfiltered feed
            page_size: maximum number of entries to return
            cursor: the previous page's next_cursor (or its encoded token);
                None starts at the top of the feed

        Returns:
            Ok(Page) with has_more true iff exactly page_size entries came back
        """
        filters = filters or FilterSpec()

        error = validate_page_size(page_size) or validate_filters(filters)
        if error is not None:
            return Err(error)

        if isinstance(cursor, str):
            try:
                cursor = PageCursor.decode(cursor)
            except ValueError as e:
                return Err.of(ErrorCode.VALIDATION, str(e))

        started = time.perf_counter()
        result = await self._call(
            "fetch_page",
            user_id,
            lambda uid: self._collection.query(uid, filters, page_size, start_after=cursor),
            filters=filters.signature(),
            page_size=page_size,
            has_cursor=cursor is not None,
        )
        if not result.is_ok:
            return result

        entries: list[LedgerEntry] = result.value
        if self._metrics is not None:
            self._metrics.log_load_time(
                "RemoteCollectionAccessor.fetch_page",
                (time.perf_counter() - started) * 1000,
            )

        return Ok(Page(
            entries=entries,
            next_cursor=PageCursor.after(entries[-1]) if entries else None,
            has_more=len(entries) == page_size,
        ))

    async def fetch_all(
        self,
        user_id: Optional[str],
        limit: Optional[int] = None,
    ) -> Result[list[LedgerEntry]]:
        """
        Fetch up to `limit` entries, ignoring every filter.

        Ordered the same way as the paginated feed. Used by the aggregator.
        """
        limit = limit or self._fetch_limit
        error = validate_page_size(limit)
        if error is not None:
            return Err(error)

        return await self._call(
            "fetch_all",
            user_id,
            lambda uid: self._collection.query(uid, FilterSpec(), limit),
            limit=limit,
        )

    async def get_entry(self, user_id: Optional[str], entry_id: str) -> Result[LedgerEntry]:
        """Fetch one entry by id. A missing entry is a `not_found` failure."""
        return await self._call(
            "get_entry",
            user_id,
            lambda uid: self._collection.get(uid, entry_id),
            entry_id=entry_id,
        )

    async def fetch_by_date_range(
        self,
        user_id: Optional[str],
        start: date,
        end: date,
        kind: Optional[EntryKind] = None,
    ) -> Result[list[LedgerEntry]]:
        """All entries between start and end (inclusive), optionally of one kind."""
        filters = FilterSpec(kind=kind, start_date=start, end_date=end)
        error = validate_filters(filters)
        if error is not None:
            return Err(error)

        return await self._call(
            "fetch_by_date_range",
            user_id,
            lambda uid: self._collection.query(uid, filters, self._fetch_limit),
            filters=filters.signature(),
        )

    async def fetch_recent(
        self,
        user_id: Optional[str],
        limit: int = 10,
    ) -> Result[list[LedgerEntry]]:
        """The most recently created entries, newest first."""
        error = validate_page_size(limit)
        if error is not None:
            return Err(error)

        return await self._call(
            "fetch_recent",
            user_id,
            lambda uid: self._collection.recent(uid, limit),
            limit=limit,
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    async def insert_entry(self, user_id: Optional[str], draft: NewEntry) -> Result[LedgerEntry]:
        return await self._call(
            "insert_entry",
            user_id,
            lambda uid: self._collection.insert(uid, draft),
        )

    async def update_entry(
        self,
        user_id: Optional[str],
        entry_id: str,
        changes: dict,
    ) -> Result[LedgerEntry]:
        """Partial merge; a None value in `changes` clears that field."""
        return await self._call(
            "update_entry",
            user_id,
            lambda uid: self._collection.update(uid, entry_id, changes),
            entry_id=entry_id,
            fields=sorted(changes),
        )

    async def delete_entry(self, user_id: Optional[str], entry_id: str) -> Result[bool]:
        """
        Delete an entry.

        Returns Ok(True) if it was deleted, Ok(False) if it was already gone.
        """
        return await self._call(
            "delete_entry",
            user_id,
            lambda uid: self._collection.delete(uid, entry_id),
            entry_id=entry_id,
        )
