"""
Attachment Commit Coordinator

Promotes a staged attachment to its permanent, owner-keyed location once
the owning entry has an id:

1. Read the temporary object's bytes and stored metadata
2. Write them under <folder>/<user_id>/<entry_id>/<stamp>.<ext>
3. Return the new Attachment (new path and URL, same name/type/size,
   new upload timestamp)
4. Best-effort delete of the temporary object

If steps 1-3 fail the commit fails. A failure in step 4 is logged and
audited but never fails the commit; an entry must not lose its
attachment because cleanup failed.

Deleting a missing object is success (ALREADY_ABSENT), here and in
delete().
"""

from typing import Optional
from uuid import UUID

import structlog

from ledger_sync.audit import AuditLogger
from ledger_sync.config.settings import LedgerSettings
from ledger_sync.errors import translate_exception
from ledger_sync.metrics import MetricsCollector
from ledger_sync.models.entry import Attachment
from ledger_sync.models.result import Err, ErrorCode, Ok, Result, unauthenticated
from ledger_sync.services.attachments.stager import (
    PathStamper,
    file_extension,
    object_path,
)
from ledger_sync.services.storage.interface import DeleteOutcome, ObjectStoreInterface


logger = structlog.get_logger(__name__)


class AttachmentCommitCoordinator:
    """Moves staged attachments to permanent paths and deletes attachments."""

    def __init__(
        self,
        store: ObjectStoreInterface,
        settings: LedgerSettings,
        audit: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None,
        stamper: Optional[PathStamper] = None,
    ):
        self._store = store
        self._settings = settings
        self._audit = audit or AuditLogger()
        self._metrics = metrics
        self._stamper = stamper or PathStamper()

    def is_temporary(self, attachment: Attachment) -> bool:
        return attachment.is_temporary(self._settings.temp_marker)

    async def commit(
        self,
        user_id: Optional[str],
        owner_id: str,
        staged: Attachment,
        correlation_id: Optional[UUID] = None,
    ) -> Result[Attachment]:
        """
        Promote `staged` to a path keyed by `owner_id`.

        A non-temporary attachment is already committed and comes back
        unchanged.
        """
        if not user_id:
            return unauthenticated()

        if not self.is_temporary(staged):
            return Ok(staged)

        if self._metrics is not None:
            self._metrics.log_request(
                "AttachmentCommitCoordinator.commit",
                {"owner_id": owner_id, "temp_path": staged.path},
            )

        try:
            stored = await self._store.read(staged.path)

            name = stored.metadata.get("original_name") or staged.name
            mime_type = stored.content_type or staged.mime_type
            final_path = object_path(
                self._settings.attachments_folder,
                user_id,
                owner_id,
                self._stamper.next(),
                file_extension(name, mime_type),
            )

            info = await self._store.write(
                final_path,
                stored.data,
                mime_type,
                {"original_name": name, "owner_id": owner_id},
            )
        except Exception as e:
            error = translate_exception(e)
            logger.error(
                "attachment_commit_failed",
                owner_id=owner_id,
                temp_path=staged.path,
                error_code=error.code.value,
                error=error.message,
            )
            return Err(error)

        committed = Attachment(
            url=info.url,
            path=final_path,
            name=name,
            mime_type=mime_type,
            size=len(stored.data),
            uploaded_at=info.written_at,
        )

        await self._remove_temporary(user_id, staged.path)
        await self._audit.log_attachment_committed(
            user_id, owner_id, staged.path, final_path, correlation_id
        )
        return Ok(committed)

    async def _remove_temporary(self, user_id: str, temp_path: str) -> None:
        try:
            await self._store.delete(temp_path)
        except Exception as e:
            error = translate_exception(e)
            if error.code == ErrorCode.NOT_FOUND:
                return
            logger.warning(
                "temp_cleanup_failed",
                temp_path=temp_path,
                error_code=error.code.value,
                error=error.message,
            )
            await self._audit.log_temp_cleanup_failed(user_id, temp_path, error)

    async def delete(
        self,
        user_id: Optional[str],
        attachment: Attachment,
        correlation_id: Optional[UUID] = None,
    ) -> Result[DeleteOutcome]:
        """
        Delete an attachment's binary object.

        Idempotent: an object that is already gone is Ok(ALREADY_ABSENT).
        """
        if not user_id:
            return unauthenticated()

        try:
            outcome = await self._store.delete(attachment.path)
        except Exception as e:
            error = translate_exception(e)
            if error.code != ErrorCode.NOT_FOUND:
                return Err(error)
            outcome = DeleteOutcome.ALREADY_ABSENT

        await self._audit.log_attachment_deleted(
            user_id, attachment.path, outcome.value, correlation_id
        )
        return Ok(outcome)
