"""
Binary Object Store using Cloudinary

DESIGN DECISION: We use Cloudinary because:
1. Reliable cloud infrastructure with delivery URLs out of the box
2. Chunked uploads, so progress can be reported while bytes transfer
3. Free tier sufficient for personal use

Objects are stored as `raw` resources whose public id is the full object
path (e.g. receipts/<user>/<entry>/<epoch-ms>.jpg), so the path doubles as
the handle for read and delete. Original name and content type travel in
the resource context metadata.

The Cloudinary SDK is synchronous; every call runs in a worker thread.
"""

import asyncio
import urllib.error
import urllib.request
from datetime import datetime
from io import BytesIO
from typing import Optional

import cloudinary
import cloudinary.api
import cloudinary.uploader
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledger_sync.config import get_settings
from ledger_sync.config.settings import CloudinarySettings
from ledger_sync.errors import storage_error_for
from ledger_sync.services.storage.interface import (
    DeleteOutcome,
    NotFoundError,
    ObjectStoreInterface,
    ProgressCallback,
    StorageError,
    StoredObject,
    StoredObjectInfo,
    TransientError,
)


logger = structlog.get_logger(__name__)

RESOURCE_TYPE = "raw"
DOWNLOAD_TIMEOUT_SECONDS = 30

transient_retry = retry(
    retry=retry_if_exception_type(TransientError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class ProgressReader(BytesIO):
    """
    In-memory file handed to the chunked uploader.

    The uploader pulls one chunk per read() call; each read reports the
    running byte count. The callback may raise to abort the upload
    between chunks.
    """

    def __init__(self, data: bytes, on_progress: Optional[ProgressCallback] = None):
        super().__init__(data)
        self._total = len(data)
        self._on_progress = on_progress

    def read(self, size: Optional[int] = -1) -> bytes:
        chunk = super().read(size)
        if chunk and self._on_progress is not None:
            self._on_progress(self.tell(), self._total)
        return chunk


class CloudinaryObjectStore(ObjectStoreInterface):
    """
    Cloudinary implementation of the path-addressed object store.

    Flow of a write:
    1. Wrap the bytes in a ProgressReader
    2. upload_large() streams it chunk by chunk
    3. Return the delivery URL and size Cloudinary reports
    """

    def __init__(self, settings: Optional[CloudinarySettings] = None):
        self._settings = settings or get_settings().cloudinary
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    async def _run(self, func, *args):
        self._configure()
        try:
            return await asyncio.to_thread(func, *args)
        except StorageError:
            raise
        except Exception as e:
            raise storage_error_for(e) from e

    def _write_sync(
        self,
        path: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
        on_progress: Optional[ProgressCallback],
    ) -> StoredObjectInfo:
        if not data and on_progress is not None:
            on_progress(0, 0)

        result = cloudinary.uploader.upload_large(
            ProgressReader(data, on_progress),
            public_id=path,
            resource_type=RESOURCE_TYPE,
            chunk_size=self._settings.upload_chunk_size,
            filename=metadata.get("original_name", path.rsplit("/", 1)[-1]),
            context={**metadata, "content_type": content_type},
            overwrite=True,
        )

        url = result.get("secure_url", result.get("url", ""))
        if not url:
            raise StorageError(f"No URL returned from Cloudinary for {path}")

        return StoredObjectInfo(
            path=path,
            url=url,
            size=int(result.get("bytes", len(data))),
            written_at=_parse_timestamp(result.get("created_at")),
        )

    def _read_sync(self, path: str) -> StoredObject:
        resource = cloudinary.api.resource(
            path,
            resource_type=RESOURCE_TYPE,
            context=True,
        )
        url = resource.get("secure_url", resource.get("url", ""))
        metadata = dict(resource.get("context", {}).get("custom", {}))
        content_type = metadata.pop("content_type", "application/octet-stream")

        try:
            with urllib.request.urlopen(url, timeout=DOWNLOAD_TIMEOUT_SECONDS) as response:
                data = response.read()
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise NotFoundError(f"Object not found: {path}") from e
            raise TransientError(f"Download of {path} failed with HTTP {e.code}") from e
        except urllib.error.URLError as e:
            raise TransientError(f"Download of {path} failed: {e.reason}") from e

        return StoredObject(
            path=path,
            url=url,
            size=len(data),
            written_at=_parse_timestamp(resource.get("created_at")),
            data=data,
            content_type=content_type,
            metadata=metadata,
        )

    def _delete_sync(self, path: str) -> DeleteOutcome:
        result = cloudinary.uploader.destroy(
            path,
            resource_type=RESOURCE_TYPE,
            invalidate=True,
        )
        status = result.get("result")
        if status == "ok":
            return DeleteOutcome.DELETED
        if status == "not found":
            return DeleteOutcome.ALREADY_ABSENT
        raise StorageError(f"Unexpected destroy result for {path}: {status}")

    @transient_retry
    async def write(
        self,
        path: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> StoredObjectInfo:
        info = await self._run(
            self._write_sync, path, data, content_type, metadata, on_progress
        )
        logger.info("object_written", path=path, size=info.size)
        return info

    @transient_retry
    async def read(self, path: str) -> StoredObject:
        return await self._run(self._read_sync, path)

    @transient_retry
    async def delete(self, path: str) -> DeleteOutcome:
        try:
            outcome = await self._run(self._delete_sync, path)
        except NotFoundError:
            outcome = DeleteOutcome.ALREADY_ABSENT
        logger.info("object_deleted", path=path, outcome=outcome.value)
        return outcome


def _parse_timestamp(value: Optional[str]) -> datetime:
    """Cloudinary reports ISO-8601 UTC timestamps such as 2024-01-01T10:00:00Z."""
    if not value:
        return datetime.utcnow()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return datetime.utcnow()
