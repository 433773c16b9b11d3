"""
Attachment Stager

Uploads a receipt BEFORE its owning entry exists. The entry id is not
known yet, so the object is written under a placeholder owner segment
(`temp_<epoch-ms>`) and the returned Attachment carries that temporary
path until the commit coordinator promotes it.

Path layout: <folder>/<user_id>/<owner_id>/<stamp>.<ext>
where <stamp> is a strictly increasing epoch-millisecond value, so two
uploads for the same owner never collide.

Progress is advisory. Completion is signalled by the returned Result,
never by the last progress event.
"""

import asyncio
import mimetypes
import threading
import time
from pathlib import PurePosixPath
from typing import AsyncIterator, Callable, Optional

import structlog

from ledger_sync.audit import AuditLogger
from ledger_sync.config.settings import LedgerSettings
from ledger_sync.errors import translate_exception
from ledger_sync.metrics import MetricsCollector
from ledger_sync.models.entry import Attachment, UploadProgress
from ledger_sync.models.result import Err, ErrorCode, Ok, Result, unauthenticated
from ledger_sync.services.storage.interface import (
    ObjectStoreInterface,
    UploadCancelledError,
)
from ledger_sync.validation import validate_upload


logger = structlog.get_logger(__name__)

ProgressListener = Callable[[UploadProgress], None]


def file_extension(file_name: str, mime_type: str) -> str:
    """Extension of the file name, else one guessed from the MIME type."""
    suffix = PurePosixPath(file_name).suffix.lstrip(".").lower()
    if suffix:
        return suffix
    guessed = mimetypes.guess_extension(mime_type) or ".bin"
    return guessed.lstrip(".")


class PathStamper:
    """Strictly increasing epoch-millisecond stamps."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            stamp = max(int(self._clock() * 1000), self._last + 1)
            self._last = stamp
            return stamp


def object_path(folder: str, user_id: str, owner_id: str, stamp: int, extension: str) -> str:
    return f"{folder}/{user_id}/{owner_id}/{stamp}.{extension}"


class UploadTask:
    """
    Handle on one in-flight upload.

    Usage:
        task = stager.start(user_id, placeholder, data, "receipt.jpg", "image/jpeg")
        async for progress in task.progress():
            show(progress.fraction)
        result = await task.result()

    progress() is meant for a single consumer. cancel() is honoured at the
    next chunk boundary; the task then resolves with a `cancelled` failure
    and nothing is left in the object store.
    """

    def __init__(self, file_name: str, total_bytes: int):
        self.file_name = file_name
        self.total_bytes = total_bytes
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[Optional[UploadProgress]] = asyncio.Queue()
        self._cancel_requested = threading.Event()
        self._task: Optional[asyncio.Task] = None

    def _attach(self, task: asyncio.Task) -> None:
        self._task = task

    def _report(self, progress: UploadProgress) -> None:
        # May run on a worker thread (blocking SDK uploads)
        if self._cancel_requested.is_set():
            raise UploadCancelledError(f"Upload of {self.file_name} cancelled")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, progress)

    def _finish(self) -> None:
        # Queued behind any progress reports still pending on the loop
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        """Request cancellation; a completed upload is not affected."""
        self._cancel_requested.set()

    async def progress(self) -> AsyncIterator[UploadProgress]:
        """Progress reports until the upload finishes, succeeded or not."""
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item

    async def result(self) -> Result[Attachment]:
        return await self._task


class AttachmentStager:
    """
    Writes attachments to their temporary location.

    Flow:
    1. Check size and MIME type against LedgerSettings
    2. Write to <folder>/<user>/<placeholder>/<stamp>.<ext>
    3. Return a temporary Attachment (path contains the temp marker)
    """

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

    def new_placeholder_id(self) -> str:
        """Owner id to stage under while the entry has no id: temp_<epoch-ms>."""
        return f"{self._settings.temp_marker}{self._stamper.next()}"

    def path_for(self, user_id: str, owner_id: str, file_name: str, mime_type: str) -> str:
        return object_path(
            self._settings.attachments_folder,
            user_id,
            owner_id,
            self._stamper.next(),
            file_extension(file_name, mime_type),
        )

    async def stage(
        self,
        user_id: Optional[str],
        owner_id: str,
        data: bytes,
        file_name: str,
        mime_type: str,
        on_progress: Optional[ProgressListener] = None,
    ) -> Result[Attachment]:
        """
        Upload `data` under `owner_id` (normally a placeholder id).

        Returns:
            Ok(Attachment) once every byte is stored, or Err with the
            translated failure; partial progress is never a success
        """
        if not user_id:
            return unauthenticated()

        error = validate_upload(len(data), mime_type, self._settings)
        if error is not None:
            await self._audit.log_attachment_stage_failed(user_id, file_name, error)
            return Err(error)

        path = self.path_for(user_id, owner_id, file_name, mime_type)

        def report(transferred: int, total: int) -> None:
            if on_progress is not None:
                on_progress(UploadProgress(bytes_transferred=transferred, total_bytes=total))

        if self._metrics is not None:
            self._metrics.log_request(
                "AttachmentStager.stage", {"owner_id": owner_id, "size": len(data)}
            )

        try:
            info = await self._store.write(
                path,
                data,
                mime_type,
                {"original_name": file_name, "owner_id": owner_id},
                on_progress=report,
            )
        except Exception as e:
            error = translate_exception(e)
            logger.warning(
                "attachment_stage_failed",
                path=path,
                error_code=error.code.value,
                error=error.message,
            )
            await self._audit.log_attachment_stage_failed(user_id, file_name, error)
            return Err(error)

        attachment = Attachment(
            url=info.url,
            path=path,
            name=file_name,
            mime_type=mime_type,
            size=len(data),
            uploaded_at=info.written_at,
        )
        await self._audit.log_attachment_staged(user_id, path, attachment.size)
        return Ok(attachment)

    def start(
        self,
        user_id: Optional[str],
        owner_id: str,
        data: bytes,
        file_name: str,
        mime_type: str,
    ) -> UploadTask:
        """
        Start an upload in the background and return its handle.

        Must be called from a running event loop.
        """
        task = UploadTask(file_name, len(data))
        task._attach(asyncio.create_task(
            self._run(task, user_id, owner_id, data, file_name, mime_type)
        ))
        return task

    async def _run(
        self,
        task: UploadTask,
        user_id: Optional[str],
        owner_id: str,
        data: bytes,
        file_name: str,
        mime_type: str,
    ) -> Result[Attachment]:
        try:
            result = await self.stage(
                user_id, owner_id, data, file_name, mime_type, on_progress=task._report
            )
            if result.is_ok and task.cancel_requested:
                # Cancelled after the last chunk: drop what was written
                await self._discard(result.value.path)
                result = Err.of(ErrorCode.CANCELLED, f"Upload of {file_name} cancelled")
            return result
        finally:
            task._finish()

    async def _discard(self, path: str) -> None:
        try:
            await self._store.delete(path)
        except Exception as e:
            logger.warning("cancelled_upload_not_removed", path=path, error=str(e))
