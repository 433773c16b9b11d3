"""Tests for the paginated feed and aggregate state."""

import asyncio
from datetime import date, datetime, timedelta

import pytest

from ledger_sync.audit import AuditLogger
from ledger_sync.controller import LedgerViewController, LedgerViewState, merge_unique
from ledger_sync.models.audit import AuditEventType
from ledger_sync.models.entry import EntryKind, FilterSpec, LedgerEntry
from ledger_sync.models.result import ErrorCode
from ledger_sync.queries import LedgerAggregator, RemoteCollectionAccessor
from ledger_sync.services.storage import InMemoryLedgerCollection, TransientError


class FailingQueryCollection(InMemoryLedgerCollection):
    """Queries fail while `fail` is set."""

    def __init__(self):
        super().__init__()
        self.fail = False

    async def query(self, user_id, filters, limit, start_after=None):
        if self.fail:
            raise TransientError("network unreachable")
        return await super().query(user_id, filters, limit, start_after)


class CursorIgnoringCollection(InMemoryLedgerCollection):
    """A backend that always returns the first page."""

    async def query(self, user_id, filters, limit, start_after=None):
        return await super().query(user_id, filters, limit)


class GatedCollection(InMemoryLedgerCollection):
    """Continuation queries wait until the gate opens."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def query(self, user_id, filters, limit, start_after=None):
        if start_after is not None:
            self.entered.set()
            await self.gate.wait()
        return await super().query(user_id, filters, limit, start_after)


@pytest.fixture
def make_controller(identity, audit_storage, metrics):
    def _make(collection, page_size=12):
        accessor = RemoteCollectionAccessor(collection, metrics)
        return LedgerViewController(
            accessor,
            LedgerAggregator(accessor),
            identity,
            page_size,
            AuditLogger(audit_storage),
            metrics,
        )
    return _make


@pytest.fixture
def controller(make_controller, collection):
    return make_controller(collection)


async def _seed_into(collection, make_draft, count):
    for i in range(count):
        await collection.insert("user-1", make_draft(
            occurred_on=date(2024, 6, 30) - timedelta(days=i),
            kind=EntryKind.EXPENSE if i % 2 == 0 else EntryKind.INCOME,
            amount=100 * (i + 1),
        ))


def _ids(entries):
    return [e.id for e in entries]


class TestMergeUnique:
    """Tests for duplicate-free appends."""

    def test_skips_known_ids(self, make_draft):
        def entry(entry_id):
            return LedgerEntry(
                **make_draft().model_dump(),
                id=entry_id,
                created_at=datetime(2024, 1, 1),
                updated_at=datetime(2024, 1, 1),
            )

        merged = merge_unique([entry("a"), entry("b")], [entry("b"), entry("c"), entry("c")])
        assert _ids(merged) == ["a", "b", "c"]


class TestPagination:
    """Walking the feed page by page."""

    async def test_twenty_five_entries_in_pages_of_twelve(self, controller, seed):
        await seed(25)

        await controller.load()
        state = controller.state
        assert len(state.paged_entries) == 12
        assert state.has_more
        assert state.cursor is not None

        await controller.load_more()
        assert len(controller.state.paged_entries) == 24
        assert controller.state.has_more

        await controller.load_more()
        state = controller.state
        assert len(state.paged_entries) == 25
        assert not state.has_more
        assert len(set(_ids(state.paged_entries))) == 25

    async def test_feed_order_is_newest_first(self, controller, seed):
        await seed(5)
        await controller.load()

        dates = [e.occurred_on for e in controller.state.paged_entries]
        assert dates == sorted(dates, reverse=True)

    async def test_load_more_without_more_is_a_noop(self, controller, seed, metrics):
        await seed(3)
        await controller.load()
        requests = metrics.request_count

        await controller.load_more()
        assert metrics.request_count == requests
        assert len(controller.state.paged_entries) == 3

    async def test_exact_multiple_needs_one_empty_fetch(self, controller, seed):
        await seed(12)
        await controller.load()
        assert controller.state.has_more

        await controller.load_more()
        state = controller.state
        assert len(state.paged_entries) == 12
        assert not state.has_more

    async def test_no_duplicates_when_backend_repeats_a_page(
        self, make_controller, make_draft
    ):
        collection = CursorIgnoringCollection()
        await _seed_into(collection, make_draft, 20)
        controller = make_controller(collection)

        await controller.load()
        await controller.load_more()

        ids = _ids(controller.state.paged_entries)
        assert len(ids) == 12
        assert len(set(ids)) == len(ids)

    async def test_inserts_between_pages_do_not_duplicate(
        self, controller, seed, collection, make_draft, user_id
    ):
        await seed(25)
        await controller.load()

        await collection.insert(user_id, make_draft(occurred_on=date(2024, 7, 1)))
        await controller.load_more()
        await controller.load_more()

        ids = _ids(controller.state.paged_entries)
        assert len(ids) == len(set(ids)) == 25


class TestFilters:
    """Filter changes and the unfiltered aggregate view."""

    async def test_filtered_list_only_holds_matches(self, controller, seed):
        await seed(25)
        await controller.load(FilterSpec(kind="expense"))

        state = controller.state
        assert state.paged_entries
        assert all(e.kind == EntryKind.EXPENSE for e in state.paged_entries)
        assert state.active_filters == FilterSpec(kind="expense")

    async def test_totals_ignore_filters(self, controller, seed):
        await seed(25)

        await controller.load()
        unfiltered = controller.state.totals

        await controller.load(FilterSpec(kind="income", category_id="food"))
        assert controller.state.totals == unfiltered
        assert len(controller.state.all_entries) == 25

    async def test_filter_change_clears_list_immediately(self, controller, seed):
        await seed(25)
        await controller.load()

        seen = []
        controller.subscribe(seen.append)
        await controller.load(FilterSpec(kind="income"))

        loading = [s for s in seen if s.is_loading]
        assert loading
        assert loading[0].paged_entries == []
        assert loading[0].cursor is None

    async def test_filter_change_resets_pagination(self, controller, seed):
        await seed(25)
        await controller.load()
        await controller.load_more()

        await controller.load(FilterSpec(kind="income"))
        state = controller.state
        assert len(state.paged_entries) == 12
        assert all(e.kind == EntryKind.INCOME for e in state.paged_entries)

    async def test_refresh_keeps_list_while_loading(self, controller, seed):
        await seed(5)
        await controller.load()

        seen = []
        controller.subscribe(seen.append)
        await controller.refresh()

        loading = [s for s in seen if s.is_loading]
        assert len(loading[0].paged_entries) == 5

    async def test_inverted_range_is_reported(self, controller, seed):
        await seed(3)
        await controller.load(FilterSpec(start_date=date(2024, 6, 30), end_date=date(2024, 6, 1)))

        state = controller.state
        assert state.error.code == ErrorCode.VALIDATION
        # The aggregate view still loads
        assert len(state.all_entries) == 3


class TestStaleResponses:
    """Responses issued under superseded filters are discarded."""

    async def test_load_more_in_flight_during_filter_change(
        self, make_controller, make_draft
    ):
        collection = GatedCollection()
        await _seed_into(collection, make_draft, 25)
        controller = make_controller(collection)

        await controller.load()
        pending = asyncio.create_task(controller.load_more())
        await collection.entered.wait()

        # Only continuation queries are gated, so this load completes
        await controller.load(FilterSpec(kind="income"))
        collection.gate.set()
        await pending

        state = controller.state
        assert len(state.paged_entries) == 12
        assert all(e.kind == EntryKind.INCOME for e in state.paged_entries)
        assert not state.is_loading_more

    async def test_reset_discards_in_flight_load_more(self, make_controller, make_draft):
        collection = GatedCollection()
        await _seed_into(collection, make_draft, 25)
        controller = make_controller(collection)

        await controller.load()
        pending = asyncio.create_task(controller.load_more())
        await collection.entered.wait()

        controller.reset()
        collection.gate.set()
        await pending

        assert controller.state == LedgerViewState()


class TestErrors:
    """Failures are recorded in state and never raised."""

    async def test_failed_load_more_keeps_entries(self, make_controller, make_draft, audit_storage):
        collection = FailingQueryCollection()
        await _seed_into(collection, make_draft, 25)
        controller = make_controller(collection)

        await controller.load()
        collection.fail = True
        await controller.load_more()

        state = controller.state
        assert state.error.code == ErrorCode.TRANSIENT
        assert len(state.paged_entries) == 12
        assert state.has_more
        assert not state.is_loading_more
        assert AuditEventType.FEED_LOAD_FAILED in [e.event_type for e in audit_storage.events]

    async def test_failed_refresh_keeps_entries_and_totals(self, make_controller, make_draft):
        collection = FailingQueryCollection()
        await _seed_into(collection, make_draft, 5)
        controller = make_controller(collection)

        await controller.load()
        totals = controller.state.totals

        collection.fail = True
        await controller.refresh()

        state = controller.state
        assert state.error.code == ErrorCode.TRANSIENT
        assert len(state.paged_entries) == 5
        assert state.totals == totals
        assert not state.is_loading

    async def test_failed_refresh_keeps_pagination(self, make_controller, make_draft):
        collection = FailingQueryCollection()
        await _seed_into(collection, make_draft, 25)
        controller = make_controller(collection)

        await controller.load()
        await controller.load_more()
        cursor = controller.state.cursor

        collection.fail = True
        await controller.refresh()

        state = controller.state
        assert len(state.paged_entries) == 24
        assert state.has_more
        assert state.cursor == cursor

        collection.fail = False
        await controller.load_more()
        ids = _ids(controller.state.paged_entries)
        assert len(ids) == len(set(ids)) == 25
        assert not controller.state.has_more

    async def test_failed_load_with_new_filters_has_no_cursor(
        self, make_controller, make_draft
    ):
        collection = FailingQueryCollection()
        await _seed_into(collection, make_draft, 25)
        controller = make_controller(collection)

        await controller.load()
        collection.fail = True
        await controller.load(FilterSpec(kind="income"))

        state = controller.state
        assert state.paged_entries == []
        assert state.cursor is None
        assert not state.has_more

    async def test_clear_error_and_successful_load(self, make_controller, make_draft):
        collection = FailingQueryCollection()
        await _seed_into(collection, make_draft, 5)
        controller = make_controller(collection)

        collection.fail = True
        await controller.load()
        assert controller.state.error is not None

        controller.clear_error()
        assert controller.state.error is None

        await controller.load()
        assert controller.state.error is not None

        collection.fail = False
        await controller.load()
        assert controller.state.error is None
        assert len(controller.state.paged_entries) == 5

    async def test_signed_out(self, controller, seed, identity):
        await seed(3)
        identity.sign_out()

        await controller.load()
        state = controller.state
        assert state.error.code == ErrorCode.UNAUTHENTICATED
        assert state.paged_entries == []
        assert not state.is_loading

    async def test_users_are_isolated(self, controller, seed):
        await seed(4, user="someone-else")
        await controller.load()

        assert controller.state.paged_entries == []
        assert controller.state.totals.balance == 0


class TestSubscription:
    """Listeners and reset."""

    async def test_listener_sees_loading_then_loaded(self, controller, seed):
        await seed(3)
        seen = []
        controller.subscribe(seen.append)

        await controller.load()

        assert seen[0].is_loading
        assert not seen[-1].is_loading
        assert len(seen[-1].paged_entries) == 3

    async def test_unsubscribe(self, controller, seed):
        await seed(3)
        seen = []
        unsubscribe = controller.subscribe(seen.append)
        unsubscribe()

        await controller.load()
        assert seen == []

    async def test_failing_listener_does_not_break_others(self, controller, seed):
        await seed(3)
        seen = []

        def broken(state):
            raise RuntimeError("render failed")

        controller.subscribe(broken)
        controller.subscribe(seen.append)
        await controller.load()

        assert len(seen[-1].paged_entries) == 3

    async def test_state_is_a_snapshot(self, controller, seed):
        await seed(3)
        await controller.load()

        snapshot = controller.state
        await controller.load(FilterSpec(kind="income"))
        assert len(snapshot.paged_entries) == 3

    async def test_reset(self, controller, seed):
        await seed(3)
        await controller.load(FilterSpec(kind="expense"))

        controller.reset()
        assert controller.state == LedgerViewState()
