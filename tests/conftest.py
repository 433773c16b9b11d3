"""
Shared fixtures.

Everything runs against the in-memory backends; no network access.
"""

from datetime import date, timedelta

import pytest

from ledger_sync.config import Settings
from ledger_sync.config.settings import LedgerSettings
from ledger_sync.identity import StaticIdentityProvider
from ledger_sync.metrics import MetricsCollector
from ledger_sync.models.entry import EntryKind, NewEntry
from ledger_sync.orchestrator import build_ledger_service
from ledger_sync.queries import LedgerAggregator, RemoteCollectionAccessor
from ledger_sync.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerCollection,
    InMemoryObjectStore,
)


USER_ID = "user-1"


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        page_size=12,
        aggregate_limit=1000,
        temp_marker="temp_",
        attachments_folder="receipts",
        max_attachment_size_mb=10,
    )


@pytest.fixture
def collection():
    return InMemoryLedgerCollection()


@pytest.fixture
def store():
    # Small chunks so uploads report several progress events
    return InMemoryObjectStore(chunk_size=4)


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def identity():
    return StaticIdentityProvider(USER_ID)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def accessor(collection, metrics):
    return RemoteCollectionAccessor(collection, metrics)


@pytest.fixture
def aggregator(accessor):
    return LedgerAggregator(accessor)


@pytest.fixture
def service(collection, store, identity, audit_storage, metrics, monkeypatch):
    monkeypatch.setenv("LEDGER_PAGE_SIZE", "12")
    return build_ledger_service(
        collection, store, identity, Settings(), audit_storage, metrics
    )


@pytest.fixture
def make_draft():
    """Factory for valid drafts; keyword arguments override the defaults."""
    def _make(**overrides) -> NewEntry:
        data = dict(
            occurred_on=date(2024, 3, 15),
            kind=EntryKind.EXPENSE,
            amount=1500,
            category_id="food",
            method_id="cash",
        )
        data.update(overrides)
        return NewEntry(**data)
    return _make


@pytest.fixture
def seed(collection, make_draft):
    """
    Insert `count` entries for a user, one per day going back from
    `start`, alternating expense/income unless `kind` is given.
    """
    async def _seed(count, user=USER_ID, start=date(2024, 6, 30), kind=None, **overrides):
        entries = []
        for i in range(count):
            entry_kind = kind or (EntryKind.EXPENSE if i % 2 == 0 else EntryKind.INCOME)
            draft = make_draft(
                occurred_on=start - timedelta(days=i),
                kind=entry_kind,
                amount=100 * (i + 1),
                **overrides,
            )
            entries.append(await collection.insert(user, draft))
        return entries
    return _seed


class FlakyObjectStore(InMemoryObjectStore):
    """In-memory store whose operations fail once an exception is assigned."""

    def __init__(self):
        super().__init__(chunk_size=4)
        self.fail_write = None
        self.fail_read = None
        self.fail_delete = None

    async def write(self, path, data, content_type, metadata, on_progress=None):
        if self.fail_write:
            raise self.fail_write
        return await super().write(path, data, content_type, metadata, on_progress)

    async def read(self, path):
        if self.fail_read:
            raise self.fail_read
        return await super().read(path)

    async def delete(self, path):
        if self.fail_delete:
            raise self.fail_delete
        return await super().delete(path)


@pytest.fixture
def flaky_store():
    return FlakyObjectStore()
