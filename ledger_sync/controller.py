"""
Ledger View Controller

The stateful heart of the feed. It owns two independent views of the
ledger:

- the paginated, filtered list (`paged_entries`, `cursor`, `has_more`)
- the unfiltered aggregate view (`all_entries`, `totals`)

Every load re-fetches both, in parallel, instead of patching either
incrementally. That costs some redundant network traffic but keeps the
totals correct while the list is filtered down to a subset.

STALE RESPONSES: each load() bumps a generation counter and every request
remembers the generation it was issued under. A response from an older
generation (a load_more that was in flight when the filters changed, or
a superseded load) is dropped instead of being applied.

ERRORS: failures are recorded in `state.error` and never raised. Data
already on screen stays intact. load() clears a previous error when it
starts; load_more() leaves it in place; clear_error() is the explicit
reset.
"""

import asyncio
import time
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, Field

from ledger_sync.audit import AuditLogger
from ledger_sync.identity import IdentityProvider
from ledger_sync.metrics import MetricsCollector
from ledger_sync.models.entry import (
    AggregateTotals,
    FilterSpec,
    LedgerEntry,
    PageCursor,
)
from ledger_sync.models.result import LedgerError, unauthenticated
from ledger_sync.queries import LedgerAggregator, RemoteCollectionAccessor


logger = structlog.get_logger(__name__)

StateListener = Callable[["LedgerViewState"], None]


class LedgerViewState(BaseModel):
    """Everything the presentation layer renders."""

    paged_entries: list[LedgerEntry] = Field(default_factory=list)
    all_entries: list[LedgerEntry] = Field(default_factory=list)
    totals: AggregateTotals = Field(default_factory=AggregateTotals)
    active_filters: FilterSpec = Field(default_factory=FilterSpec)
    cursor: Optional[PageCursor] = None
    has_more: bool = False
    is_loading: bool = False
    is_loading_more: bool = False
    error: Optional[LedgerError] = None


def merge_unique(existing: list[LedgerEntry], incoming: list[LedgerEntry]) -> list[LedgerEntry]:
    """Append `incoming` to `existing`, skipping ids already present."""
    seen = {entry.id for entry in existing}
    merged = list(existing)
    for entry in incoming:
        if entry.id not in seen:
            seen.add(entry.id)
            merged.append(entry)
    return merged


class LedgerViewController:
    """
    Paginated list state plus aggregate state for one signed-in user.

    Listeners registered with subscribe() receive a snapshot of the state
    after every change.
    """

    def __init__(
        self,
        accessor: RemoteCollectionAccessor,
        aggregator: LedgerAggregator,
        identity: IdentityProvider,
        page_size: int = 12,
        audit: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._accessor = accessor
        self._aggregator = aggregator
        self._identity = identity
        self._page_size = page_size
        self._audit = audit or AuditLogger()
        self._metrics = metrics

        self._state = LedgerViewState()
        self._generation = 0
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> LedgerViewState:
        return self._state.model_copy()

    @property
    def page_size(self) -> int:
        return self._page_size

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes) -> None:
        self._state = self._state.model_copy(update=changes)
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("state_listener_failed")

    async def _record_failure(
        self,
        user_id: Optional[str],
        operation: str,
        error: LedgerError,
    ) -> None:
        logger.warning(
            "feed_operation_failed",
            operation=operation,
            error_code=error.code.value,
            error=error.message,
        )
        await self._audit.log_feed_load_failed(
            user_id, operation, error, self._state.active_filters.signature()
        )

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def load(self, filters: Optional[FilterSpec] = None) -> None:
        """
        (Re)load the first page for `filters` and recompute the totals.

        Pagination state is always discarded. When the filters change the
        old list is cleared immediately, so entries of two different
        filter sets are never shown together.
        """
        filters = filters or FilterSpec()
        self._generation += 1
        generation = self._generation

        user_id = self._identity.current_user_id()
        if not user_id:
            self._update(is_loading=False, is_loading_more=False, error=unauthenticated().error)
            return

        changes = dict(
            active_filters=filters,
            cursor=None,
            has_more=False,
            is_loading=True,
            is_loading_more=False,
            error=None,
        )
        # Pagination of a kept list is restored if the first page fails
        kept_pagination = None
        if filters != self._state.active_filters:
            changes["paged_entries"] = []
        else:
            kept_pagination = dict(cursor=self._state.cursor, has_more=self._state.has_more)
        self._update(**changes)

        started = time.perf_counter()
        page_result, snapshot_result = await asyncio.gather(
            self._accessor.fetch_page(user_id, filters, self._page_size),
            self._aggregator.snapshot(user_id),
        )

        if generation != self._generation:
            logger.debug("stale_load_discarded", generation=generation)
            return

        changes = {"is_loading": False}
        error: Optional[LedgerError] = None

        if page_result.is_ok:
            page = page_result.value
            changes.update(
                paged_entries=merge_unique([], page.entries),
                cursor=page.next_cursor,
                has_more=page.has_more,
            )
        else:
            error = page_result.error
            if kept_pagination is not None:
                changes.update(kept_pagination)
            await self._record_failure(user_id, "load", error)

        if snapshot_result.is_ok:
            snapshot = snapshot_result.value
            changes.update(all_entries=snapshot.entries, totals=snapshot.totals)
            if snapshot.truncated:
                logger.warning("aggregate_truncated", entries=len(snapshot.entries))
        else:
            await self._record_failure(user_id, "totals", snapshot_result.error)
            error = error or snapshot_result.error

        if error is not None:
            changes["error"] = error

        # A newer load may have started while the failures were audited
        if generation != self._generation:
            return

        self._update(**changes)

        if self._metrics is not None:
            self._metrics.log_load_time(
                "LedgerViewController.load", (time.perf_counter() - started) * 1000
            )

    async def load_more(self) -> None:
        """
        Append the next page of the ACTIVE filters.

        No-op when there is nothing more or a load is already in flight.
        """
        state = self._state
        if not state.has_more or state.is_loading or state.is_loading_more:
            return

        user_id = self._identity.current_user_id()
        if not user_id:
            self._update(error=unauthenticated().error)
            return

        generation = self._generation
        filters = state.active_filters
        cursor = state.cursor
        self._update(is_loading_more=True)

        result = await self._accessor.fetch_page(user_id, filters, self._page_size, cursor)

        if generation != self._generation:
            logger.debug("stale_load_more_discarded", generation=generation)
            return

        if not result.is_ok:
            await self._record_failure(user_id, "load_more", result.error)
            if generation == self._generation:
                self._update(is_loading_more=False, error=result.error)
            return

        page = result.value
        self._update(
            paged_entries=merge_unique(self._state.paged_entries, page.entries),
            cursor=page.next_cursor or cursor,
            has_more=page.has_more,
            is_loading_more=False,
        )

    async def refresh(self) -> None:
        """Re-run load() with the active filters; totals are always recomputed."""
        await self.load(self._state.active_filters)

    def clear_error(self) -> None:
        if self._state.error is not None:
            self._update(error=None)

    def reset(self) -> None:
        """Forget everything (sign-out). In-flight responses are discarded."""
        self._generation += 1
        fresh = LedgerViewState()
        self._update(**{name: getattr(fresh, name) for name in LedgerViewState.model_fields})
