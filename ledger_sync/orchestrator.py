"""
Main Orchestrator for Ledger Sync

This module ties together all the components and defines the
end-to-end flows for:
1. Create (insert -> commit staged attachment -> attach -> refresh)
2. Update (commit staged attachment -> partial merge -> drop old binary -> refresh)
3. Delete (delete binary -> delete entry -> refresh)

DESIGN DECISION: These are best-effort sequences. There is no
transaction spanning the collection and the object store, so a failure
between steps leaves a partial state:
- an entry committed without its attachment (commit failed after insert)
- an orphaned binary object (entry changed, old object not removed)
Neither fails the user-visible action. Both are written to the audit
trail so they can be found and reconciled later.

Every successful mutation refreshes both views of the controller.
"""

from datetime import date
from typing import Optional

import structlog

from ledger_sync.audit import AuditLogger, configure_logging, create_correlation_id
from ledger_sync.config import Settings, get_settings
from ledger_sync.controller import LedgerViewController, LedgerViewState, StateListener
from ledger_sync.identity import IdentityProvider, StaticIdentityProvider
from ledger_sync.metrics import MetricsCollector, init_metrics
from ledger_sync.models.entry import (
    Attachment,
    CategorySummary,
    EntryKind,
    EntryUpdate,
    FilterSpec,
    LedgerEntry,
    MonthSummary,
    NewEntry,
)
from ledger_sync.models.result import (
    Err,
    ErrorCode,
    LedgerError,
    Ok,
    Result,
    unauthenticated,
)
from ledger_sync.queries import (
    LedgerAggregator,
    RemoteCollectionAccessor,
    group_by_category,
    group_by_month,
)
from ledger_sync.services.attachments import (
    AttachmentCommitCoordinator,
    AttachmentStager,
    UploadTask,
)
from ledger_sync.services.attachments.stager import ProgressListener
from ledger_sync.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerCollection,
    InMemoryObjectStore,
    LedgerCollectionInterface,
    ObjectStoreInterface,
)
from ledger_sync.services.storage.cloudinary_store import CloudinaryObjectStore
from ledger_sync.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerCollection,
)
from ledger_sync.validation import validate_new_entry, validate_update


logger = structlog.get_logger(__name__)


class MutationOrchestrator:
    """
    Create/update/delete of entries combined with the attachment lifecycle.

    Flow guarantees:
    - A temporary attachment is never stored on a committed entry
    - Deleting an entry that is already gone succeeds
    - A failed attachment delete never blocks the entry delete
    """

    def __init__(
        self,
        accessor: RemoteCollectionAccessor,
        commit: AttachmentCommitCoordinator,
        controller: LedgerViewController,
        identity: IdentityProvider,
        audit: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._accessor = accessor
        self._commit = commit
        self._controller = controller
        self._identity = identity
        self._audit = audit or AuditLogger()
        self._metrics = metrics

    async def _fail(
        self,
        user_id: str,
        operation: str,
        error: LedgerError,
        correlation_id,
        entry_id: Optional[str] = None,
    ) -> Err:
        await self._audit.log_mutation_failed(
            user_id, operation, error, correlation_id, entry_id
        )
        return Err(error)

    async def _drop_binary(
        self,
        user_id: str,
        attachment: Attachment,
        correlation_id,
    ) -> None:
        """Best-effort delete; a failure only leaves an audited orphan."""
        result = await self._commit.delete(user_id, attachment, correlation_id)
        if not result.is_ok:
            logger.warning(
                "attachment_orphaned",
                path=attachment.path,
                error_code=result.code.value,
            )
            await self._audit.log_attachment_orphaned(
                user_id, attachment.path, result.error, correlation_id
            )

    async def _find_attachment(
        self,
        user_id: str,
        entry_id: str,
    ) -> Result[Optional[Attachment]]:
        """The entry's current attachment, from local state when possible."""
        state = self._controller.state
        for entry in (*state.all_entries, *state.paged_entries):
            if entry.id == entry_id:
                if self._metrics is not None:
                    self._metrics.log_cache_hit("MutationOrchestrator.find_attachment")
                return Ok(entry.attachment)

        result = await self._accessor.get_entry(user_id, entry_id)
        if not result.is_ok:
            return result
        return Ok(result.value.attachment)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_entry(self, draft: NewEntry) -> Result[LedgerEntry]:
        """
        Insert a draft; a staged attachment is committed under the new id.

        If the attachment commit fails, the entry stays committed WITHOUT an
        attachment and the create still succeeds. The gap is audited as
        attachment_commit_failed.
        """
        user_id = self._identity.current_user_id()
        if not user_id:
            return unauthenticated()

        correlation_id = create_correlation_id()

        error = validate_new_entry(draft)
        if error is not None:
            return await self._fail(user_id, "create_entry", error, correlation_id)

        staged = draft.attachment
        if staged is not None and self._commit.is_temporary(staged):
            # Stored without the temporary handle; attached after commit
            draft = draft.model_copy(update={"attachment": None})
        else:
            staged = None

        result = await self._accessor.insert_entry(user_id, draft)
        if not result.is_ok:
            return await self._fail(user_id, "create_entry", result.error, correlation_id)

        entry = result.value
        await self._audit.log_entry_created(
            user_id, entry.id, entry.kind.value, entry.amount, correlation_id
        )

        if staged is not None:
            entry = await self._attach_staged(user_id, entry, staged, correlation_id)

        await self._controller.refresh()
        return Ok(entry)

    async def _attach_staged(
        self,
        user_id: str,
        entry: LedgerEntry,
        staged: Attachment,
        correlation_id,
    ) -> LedgerEntry:
        committed = await self._commit.commit(user_id, entry.id, staged, correlation_id)
        if not committed.is_ok:
            logger.error(
                "entry_committed_without_attachment",
                entry_id=entry.id,
                temp_path=staged.path,
                error_code=committed.code.value,
            )
            await self._audit.log_attachment_commit_failed(
                user_id, entry.id, staged.path, committed.error, correlation_id
            )
            return entry

        attached = await self._accessor.update_entry(
            user_id, entry.id, {"attachment": committed.value}
        )
        if not attached.is_ok:
            logger.error(
                "entry_committed_without_attachment",
                entry_id=entry.id,
                final_path=committed.value.path,
                error_code=attached.code.value,
            )
            await self._audit.log_attachment_commit_failed(
                user_id, entry.id, staged.path, attached.error, correlation_id
            )
            await self._audit.log_attachment_orphaned(
                user_id, committed.value.path, attached.error, correlation_id
            )
            return entry

        return attached.value

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_entry(self, entry_id: str, update: EntryUpdate) -> Result[LedgerEntry]:
        """
        Apply a partial merge.

        `EntryUpdate(attachment=None)` removes the attachment server side;
        leaving `attachment` unset keeps it. A replaced or removed
        attachment's binary is deleted best-effort after the merge.
        """
        user_id = self._identity.current_user_id()
        if not user_id:
            return unauthenticated()

        correlation_id = create_correlation_id()

        error = validate_update(update)
        if error is not None:
            return await self._fail(user_id, "update_entry", error, correlation_id, entry_id)

        if update.is_empty:
            return await self._accessor.get_entry(user_id, entry_id)

        changes = update.changes()
        previous: Optional[Attachment] = None
        committed: Optional[Attachment] = None

        if update.touches_attachment:
            found = await self._find_attachment(user_id, entry_id)
            if not found.is_ok:
                return await self._fail(
                    user_id, "update_entry", found.error, correlation_id, entry_id
                )
            previous = found.value

            if update.attachment is not None and self._commit.is_temporary(update.attachment):
                result = await self._commit.commit(
                    user_id, entry_id, update.attachment, correlation_id
                )
                if not result.is_ok:
                    await self._audit.log_attachment_commit_failed(
                        user_id, entry_id, update.attachment.path, result.error, correlation_id
                    )
                    return await self._fail(
                        user_id, "update_entry", result.error, correlation_id, entry_id
                    )
                committed = result.value
                changes["attachment"] = committed

        result = await self._accessor.update_entry(user_id, entry_id, changes)
        if not result.is_ok:
            if committed is not None:
                await self._drop_binary(user_id, committed, correlation_id)
            return await self._fail(
                user_id, "update_entry", result.error, correlation_id, entry_id
            )

        entry = result.value
        await self._audit.log_entry_updated(user_id, entry_id, list(changes), correlation_id)

        if previous is not None:
            current_path = entry.attachment.path if entry.attachment else None
            if previous.path != current_path:
                await self._drop_binary(user_id, previous, correlation_id)

        await self._controller.refresh()
        return Ok(entry)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_entry(
        self,
        entry_id: str,
        attachment: Optional[Attachment] = None,
    ) -> Result[bool]:
        """
        Delete an entry and its attachment binary.

        Returns:
            Ok(True) if the entry was deleted, Ok(False) if it was already gone
        """
        user_id = self._identity.current_user_id()
        if not user_id:
            return unauthenticated()

        correlation_id = create_correlation_id()

        if attachment is None:
            found = await self._find_attachment(user_id, entry_id)
            if found.is_ok:
                attachment = found.value
            elif found.code != ErrorCode.NOT_FOUND:
                return await self._fail(
                    user_id, "delete_entry", found.error, correlation_id, entry_id
                )

        if attachment is not None:
            await self._drop_binary(user_id, attachment, correlation_id)

        result = await self._accessor.delete_entry(user_id, entry_id)
        if not result.is_ok:
            return await self._fail(
                user_id, "delete_entry", result.error, correlation_id, entry_id
            )

        await self._audit.log_entry_deleted(user_id, entry_id, result.value, correlation_id)
        await self._controller.refresh()
        return Ok(result.value)


class LedgerService:
    """
    The object the presentation layer holds.

    Construct it with create_ledger_service() and pass it to whatever
    needs the ledger; nothing here is looked up globally.
    """

    def __init__(
        self,
        controller: LedgerViewController,
        orchestrator: MutationOrchestrator,
        stager: AttachmentStager,
        accessor: RemoteCollectionAccessor,
        identity: IdentityProvider,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._controller = controller
        self._accessor = accessor
        self._orchestrator = orchestrator
        self._stager = stager
        self._identity = identity
        self._metrics = metrics

    @property
    def state(self) -> LedgerViewState:
        return self._controller.state

    @property
    def metrics(self) -> Optional[MetricsCollector]:
        return self._metrics

    def subscribe(self, listener: StateListener):
        return self._controller.subscribe(listener)

    # Feed
    async def load(self, filters: Optional[FilterSpec] = None) -> None:
        await self._controller.load(filters)

    async def load_more(self) -> None:
        await self._controller.load_more()

    async def refresh(self) -> None:
        await self._controller.refresh()

    def clear_error(self) -> None:
        self._controller.clear_error()

    def sign_out(self) -> None:
        """Clear all state; the identity provider is left to the caller."""
        self._controller.reset()

    # Direct reads, outside the paginated feed
    async def get_entry(self, entry_id: str) -> Result[LedgerEntry]:
        return await self._accessor.get_entry(self._identity.current_user_id(), entry_id)

    async def fetch_by_date_range(
        self,
        start: date,
        end: date,
        kind: Optional[EntryKind] = None,
    ) -> Result[list[LedgerEntry]]:
        """Entries between start and end (inclusive), for period reports."""
        return await self._accessor.fetch_by_date_range(
            self._identity.current_user_id(), start, end, kind
        )

    async def fetch_recent(self, limit: int = 10) -> Result[list[LedgerEntry]]:
        """The most recently recorded entries, for a dashboard strip."""
        return await self._accessor.fetch_recent(self._identity.current_user_id(), limit)

    # Mutations
    async def create_entry(self, draft: NewEntry) -> Result[LedgerEntry]:
        return await self._orchestrator.create_entry(draft)

    async def update_entry(self, entry_id: str, update: EntryUpdate) -> Result[LedgerEntry]:
        return await self._orchestrator.update_entry(entry_id, update)

    async def delete_entry(
        self,
        entry_id: str,
        attachment: Optional[Attachment] = None,
    ) -> Result[bool]:
        return await self._orchestrator.delete_entry(entry_id, attachment)

    # Attachments
    def new_placeholder_id(self) -> str:
        return self._stager.new_placeholder_id()

    def start_upload(
        self,
        owner_id: str,
        data: bytes,
        file_name: str,
        mime_type: str,
    ) -> UploadTask:
        """Stage an attachment in the background; see UploadTask."""
        return self._stager.start(
            self._identity.current_user_id(), owner_id, data, file_name, mime_type
        )

    async def stage_attachment(
        self,
        owner_id: str,
        data: bytes,
        file_name: str,
        mime_type: str,
        on_progress: Optional[ProgressListener] = None,
    ) -> Result[Attachment]:
        return await self._stager.stage(
            self._identity.current_user_id(),
            owner_id,
            data,
            file_name,
            mime_type,
            on_progress=on_progress,
        )

    # Analytics over the aggregate view
    def category_breakdown(
        self,
        kind: Optional[EntryKind] = EntryKind.EXPENSE,
    ) -> list[CategorySummary]:
        return group_by_category(self._controller.state.all_entries, kind)

    def monthly_summary(self) -> list[MonthSummary]:
        return group_by_month(self._controller.state.all_entries)


def build_ledger_service(
    collection: LedgerCollectionInterface,
    store: ObjectStoreInterface,
    identity: IdentityProvider,
    settings: Settings,
    audit_storage: Optional[AuditStorageInterface] = None,
    metrics: Optional[MetricsCollector] = None,
) -> LedgerService:
    """Wire a LedgerService around already-constructed backends."""
    ledger = settings.ledger
    audit = AuditLogger(audit_storage)

    accessor = RemoteCollectionAccessor(collection, metrics, ledger.aggregate_limit)
    aggregator = LedgerAggregator(accessor, ledger.aggregate_limit)
    controller = LedgerViewController(
        accessor, aggregator, identity, ledger.page_size, audit, metrics
    )
    stager = AttachmentStager(store, ledger, audit, metrics)
    commit = AttachmentCommitCoordinator(store, ledger, audit, metrics)
    orchestrator = MutationOrchestrator(
        accessor, commit, controller, identity, audit, metrics
    )
    return LedgerService(controller, orchestrator, stager, accessor, identity, metrics)


def create_ledger_service(
    settings: Optional[Settings] = None,
    identity: Optional[IdentityProvider] = None,
    metrics: Optional[MetricsCollector] = None,
) -> LedgerService:
    """
    Factory function to create the service from configuration.

    Args:
        settings: defaults to get_settings()
        identity: defaults to a signed-out StaticIdentityProvider
        metrics: defaults to a freshly initialized collector

    The `backend` app setting picks Google Sheets + Cloudinary ("google")
    or the in-memory backends ("memory").
    """
    settings = settings or get_settings()
    app = settings.app
    configure_logging(app.log_level, json=not app.debug_mode)

    metrics = metrics or init_metrics()
    identity = identity or StaticIdentityProvider()

    if app.backend == "memory":
        collection = InMemoryLedgerCollection()
        store = InMemoryObjectStore()
        audit_storage = InMemoryAuditStorage()
    else:
        sheets_client = GoogleSheetsClient(settings.google_sheets)
        collection = GoogleSheetsLedgerCollection(sheets_client)
        audit_storage = GoogleSheetsAuditStorage(sheets_client)
        store = CloudinaryObjectStore(settings.cloudinary)

    logger.info("ledger_service_created", backend=app.backend, environment=app.app_environment)
    return build_ledger_service(
        collection, store, identity, settings, audit_storage, metrics
    )
