"""
Google Sheets Storage Implementation

The remote ledger collection and the audit trail both live in one
spreadsheet the owner can open and edit directly.

Each user gets their own worksheet (`<prefix><user_id>`), the equivalent
of a per-user document collection. Ids and timestamps are assigned here,
never trusted from the client.

Limits: every query reads the whole worksheet, then filters, orders and
pages in Python. There are no transactions, so multi-step mutations are
best-effort.

gspread is synchronous, so every call runs in a worker thread and the
event loop stays free.
"""

import asyncio
import json
import threading
from datetime import date, datetime
from typing import Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledger_sync.config import get_settings
from ledger_sync.config.settings import GoogleSheetsSettings
from ledger_sync.errors import storage_error_for
from ledger_sync.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger_sync.models.entry import (
    Attachment,
    EntryKind,
    FilterSpec,
    LedgerEntry,
    NewEntry,
    PageCursor,
    ledger_sort_key,
)
from ledger_sync.services.storage.interface import (
    AuditStorageInterface,
    LedgerCollectionInterface,
    NotFoundError,
    TransientError,
    UnauthenticatedError,
)


logger = structlog.get_logger(__name__)


# Column mappings for the per-user ledger sheets
LEDGER_COLUMNS = [
    "id",
    "occurred_on",
    "kind",
    "amount",
    "category_id",
    "method_id",
    "card_id",
    "description",
    "tags_json",
    "attachment_json",
    "created_at",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "user_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]

# Retry transient failures only; everything else surfaces immediately
transient_retry = retry(
    retry=retry_if_exception_type(TransientError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Opens the spreadsheet and hands out per-user worksheets.

    Handles authentication and worksheet lookup/creation.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
        self._worksheets: dict[str, gspread.Worksheet] = {}
        # Worker threads share the cache; lookup and creation run under it
        self._lock = threading.Lock()

    def connect(self) -> gspread.Client:
        """
        Authorize with the service account and open the spreadsheet.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise UnauthenticatedError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise storage_error_for(e) from e

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise NotFoundError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        with self._lock:
            if title in self._worksheets:
                return self._worksheets[title]

            spreadsheet = self.get_spreadsheet()
            try:
                sheet = spreadsheet.worksheet(title)
            except gspread.WorksheetNotFound:
                sheet = self._create_sheet(spreadsheet, title, columns, rows)
            self._worksheets[title] = sheet
            return sheet

    def _create_sheet(
        self,
        spreadsheet: gspread.Spreadsheet,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        """Add a worksheet with its header row, or open it if another process won."""
        try:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
        except gspread.exceptions.APIError as e:
            if "already exists" not in str(e):
                raise
            logger.info("worksheet_created_elsewhere", title=title)
            return spreadsheet.worksheet(title)
        sheet.append_row(columns)
        return sheet

    def get_ledger_sheet(self, user_id: str) -> gspread.Worksheet:
        """Get or create the ledger worksheet of one user."""
        return self._get_or_create(
            f"{self._settings.ledger_sheet_prefix}{user_id}",
            LEDGER_COLUMNS,
            rows=1000,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


# =============================================================================
# ROW CODEC
# =============================================================================

def entry_to_row(entry: LedgerEntry) -> list:
    """Convert a LedgerEntry to a spreadsheet row."""
    return [
        entry.id,
        entry.occurred_on.isoformat(),
        entry.kind.value,
        str(entry.amount),
        entry.category_id,
        entry.method_id,
        entry.card_id or "",
        entry.description or "",
        json.dumps(entry.tags) if entry.tags else "",
        entry.attachment.model_dump_json() if entry.attachment else "",
        entry.created_at.isoformat(),
        entry.updated_at.isoformat(),
    ]


def row_to_entry(row: list) -> LedgerEntry:
    """Convert a spreadsheet row to a LedgerEntry."""
    # Handle missing columns gracefully
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default

    attachment_json = safe_get(9)
    tags_json = safe_get(8)

    return LedgerEntry(
        id=safe_get(0),
        occurred_on=date.fromisoformat(safe_get(1)),
        kind=EntryKind(safe_get(2)),
        amount=int(safe_get(3)),
        category_id=safe_get(4),
        method_id=safe_get(5),
        card_id=safe_get(6) or None,
        description=safe_get(7) or None,
        tags=json.loads(tags_json) if tags_json else [],
        attachment=Attachment.model_validate_json(attachment_json) if attachment_json else None,
        created_at=datetime.fromisoformat(safe_get(10)),
        updated_at=datetime.fromisoformat(safe_get(11)),
    )


class GoogleSheetsLedgerCollection(LedgerCollectionInterface):
    """
    Google Sheets implementation of the ledger collection.

    Entries are stored as rows, one entry per row. Tags and the attachment
    descriptor are JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except gspread.exceptions.GSpreadException as e:
            raise storage_error_for(e) from e
        except (ConnectionError, TimeoutError) as e:
            raise TransientError(str(e)) from e

    def _read_entries(self, sheet: gspread.Worksheet) -> list[tuple[int, LedgerEntry]]:
        """All parseable entries with their 1-based sheet row numbers."""
        entries = []
        # Row 1 is the header
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                entries.append((idx, row_to_entry(row)))
            except (ValueError, IndexError) as e:
                logger.warning("ledger_row_skipped", row=idx, error=str(e))
        return entries

    def _find(self, sheet: gspread.Worksheet, entry_id: str) -> tuple[int, LedgerEntry]:
        for idx, entry in self._read_entries(sheet):
            if entry.id == entry_id:
                return idx, entry
        raise NotFoundError(f"Entry not found: {entry_id}")

    def _insert_sync(self, user_id: str, draft: NewEntry) -> LedgerEntry:
        now = datetime.utcnow()
        entry = LedgerEntry(
            **draft.model_dump(),
            id=uuid4().hex[:20],
            created_at=now,
            updated_at=now,
        )
        sheet = self._client.get_ledger_sheet(user_id)
        sheet.append_row(entry_to_row(entry), value_input_option="RAW")
        return entry

    def _update_sync(self, user_id: str, entry_id: str, changes: dict) -> LedgerEntry:
        sheet = self._client.get_ledger_sheet(user_id)
        idx, existing = self._find(sheet, entry_id)

        data = existing.model_dump()
        for name, value in changes.items():
            if value is None:
                data.pop(name, None)
            else:
                data[name] = value
        data["updated_at"] = datetime.utcnow()
        entry = LedgerEntry.model_validate(data)

        row_range = f"A{idx}:{rowcol_to_a1(idx, len(LEDGER_COLUMNS))}"
        sheet.batch_update(
            [{"range": row_range, "values": [entry_to_row(entry)]}],
            value_input_option="RAW",
        )
        return entry

    def _delete_sync(self, user_id: str, entry_id: str) -> bool:
        sheet = self._client.get_ledger_sheet(user_id)
        try:
            idx, _ = self._find(sheet, entry_id)
        except NotFoundError:
            return False
        sheet.delete_rows(idx)
        return True

    def _query_sync(
        self,
        user_id: str,
        filters: FilterSpec,
        limit: int,
        start_after: Optional[PageCursor],
    ) -> list[LedgerEntry]:
        sheet = self._client.get_ledger_sheet(user_id)
        entries = [e for _, e in self._read_entries(sheet) if filters.matches(e)]
        entries.sort(key=ledger_sort_key, reverse=True)
        if start_after is not None:
            entries = [e for e in entries if start_after.precedes(e)]
        return entries[:limit]

    def _recent_sync(self, user_id: str, limit: int) -> list[LedgerEntry]:
        sheet = self._client.get_ledger_sheet(user_id)
        entries = [e for _, e in self._read_entries(sheet)]
        entries.sort(key=lambda e: (e.created_at, e.id), reverse=True)
        return entries[:limit]

    @transient_retry
    async def insert(self, user_id: str, draft: NewEntry) -> LedgerEntry:
        return await self._run(self._insert_sync, user_id, draft)

    @transient_retry
    async def get(self, user_id: str, entry_id: str) -> LedgerEntry:
        def _get_sync():
            return self._find(self._client.get_ledger_sheet(user_id), entry_id)[1]
        return await self._run(_get_sync)

    @transient_retry
    async def update(self, user_id: str, entry_id: str, changes: dict) -> LedgerEntry:
        return await self._run(self._update_sync, user_id, entry_id, changes)

    @transient_retry
    async def delete(self, user_id: str, entry_id: str) -> bool:
        return await self._run(self._delete_sync, user_id, entry_id)

    @transient_retry
    async def query(
        self,
        user_id: str,
        filters: FilterSpec,
        limit: int,
        start_after: Optional[PageCursor] = None,
    ) -> list[LedgerEntry]:
        return await self._run(self._query_sync, user_id, filters, limit, start_after)

    @transient_retry
    async def recent(self, user_id: str, limit: int) -> list[LedgerEntry]:
        return await self._run(self._recent_sync, user_id, limit)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            user_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
        )

    def _read_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.get_audit_sheet().get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, IndexError) as e:
                logger.warning("audit_row_skipped", error=str(e))
        return events

    async def _events(self) -> list[AuditEvent]:
        try:
            return await asyncio.to_thread(self._read_events)
        except gspread.exceptions.GSpreadException as e:
            raise storage_error_for(e) from e

    @transient_retry
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        def _append():
            self._client.get_audit_sheet().append_row(
                event.to_sheets_row(), value_input_option="RAW"
            )
        try:
            await asyncio.to_thread(_append)
            return True
        except gspread.exceptions.GSpreadException as e:
            raise storage_error_for(e) from e

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in await self._events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        events = [
            e for e in await self._events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = await self._events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
