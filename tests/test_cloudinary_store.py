"""
Tests for the Cloudinary object store.

The SDK calls are monkeypatched; no network access.
"""

import io
import urllib.error

import cloudinary.api
import cloudinary.uploader
import pytest
from cloudinary import exceptions as cloudinary_exceptions

from ledger_sync.config.settings import CloudinarySettings
from ledger_sync.services.storage import (
    DeleteOutcome,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
)
from ledger_sync.services.storage import cloudinary_store
from ledger_sync.services.storage.cloudinary_store import (
    CloudinaryObjectStore,
    ProgressReader,
)


@pytest.fixture
def cloudinary_settings():
    return CloudinarySettings(
        cloud_name="demo",
        api_key="key",
        api_secret="secret",
        upload_chunk_size=5 * 1024 * 1024,
    )


@pytest.fixture
def object_store(cloudinary_settings):
    return CloudinaryObjectStore(cloudinary_settings)


class FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class TestProgressReader:
    """Tests for chunk-by-chunk progress reporting."""

    def test_reports_running_total(self):
        reports = []
        reader = ProgressReader(b"x" * 10, lambda sent, total: reports.append((sent, total)))

        while reader.read(4):
            pass

        assert reports == [(4, 10), (8, 10), (10, 10)]

    def test_callback_can_abort(self):
        def cancel(sent, total):
            raise RuntimeError("cancelled")

        reader = ProgressReader(b"abc", cancel)
        with pytest.raises(RuntimeError):
            reader.read(1)


class TestWrite:
    """Tests for uploads."""

    async def test_upload_as_raw_resource(self, object_store, monkeypatch):
        calls = {}

        def fake_upload_large(file, **options):
            calls.update(options)
            calls["data"] = file.read()
            return {
                "secure_url": "https://res.cloudinary.com/demo/raw/upload/receipts/u/e/1.pdf",
                "bytes": 3,
                "created_at": "2024-03-15T10:00:00Z",
            }

        monkeypatch.setattr(cloudinary.uploader, "upload_large", fake_upload_large)
        reports = []

        info = await object_store.write(
            "receipts/u/e/1.pdf",
            b"pdf",
            "application/pdf",
            {"original_name": "scan.pdf"},
            on_progress=lambda sent, total: reports.append(sent),
        )

        assert info.url.startswith("https://")
        assert info.size == 3
        assert info.written_at.year == 2024
        assert calls["public_id"] == "receipts/u/e/1.pdf"
        assert calls["resource_type"] == "raw"
        assert calls["filename"] == "scan.pdf"
        assert calls["context"] == {"original_name": "scan.pdf", "content_type": "application/pdf"}
        assert calls["data"] == b"pdf"
        assert reports == [3]

    async def test_sdk_errors_are_classified(self, object_store, monkeypatch):
        def forbidden(file, **options):
            raise cloudinary_exceptions.NotAllowed("upload preset forbids raw")

        monkeypatch.setattr(cloudinary.uploader, "upload_large", forbidden)

        with pytest.raises(PermissionDeniedError):
            await object_store.write("receipts/u/e/1.pdf", b"pdf", "application/pdf", {})


class TestRead:
    """Tests for downloads."""

    async def test_read_returns_bytes_and_metadata(self, object_store, monkeypatch):
        def fake_resource(path, **options):
            return {
                "secure_url": "https://res.cloudinary.com/demo/raw/upload/" + path,
                "created_at": "2024-03-15T10:00:00Z",
                "context": {"custom": {"original_name": "scan.pdf", "content_type": "application/pdf"}},
            }

        monkeypatch.setattr(cloudinary.api, "resource", fake_resource)
        monkeypatch.setattr(
            cloudinary_store.urllib.request, "urlopen",
            lambda url, timeout: FakeResponse(b"%PDF"),
        )

        stored = await object_store.read("receipts/u/temp_1/1.pdf")

        assert stored.data == b"%PDF"
        assert stored.size == 4
        assert stored.content_type == "application/pdf"
        assert stored.metadata == {"original_name": "scan.pdf"}

    async def test_missing_resource(self, object_store, monkeypatch):
        def fake_resource(path, **options):
            raise cloudinary_exceptions.NotFound(f"Resource not found - {path}")

        monkeypatch.setattr(cloudinary.api, "resource", fake_resource)

        with pytest.raises(NotFoundError):
            await object_store.read("receipts/u/temp_1/1.pdf")

    async def test_download_404(self, object_store, monkeypatch):
        monkeypatch.setattr(
            cloudinary.api, "resource",
            lambda path, **options: {"secure_url": "https://example.invalid/x"},
        )

        def gone(url, timeout):
            raise urllib.error.HTTPError(url, 404, "Not Found", {}, None)

        monkeypatch.setattr(cloudinary_store.urllib.request, "urlopen", gone)

        with pytest.raises(NotFoundError):
            await object_store.read("receipts/u/temp_1/1.pdf")


class TestDelete:
    """Tests for idempotent deletes."""

    @pytest.mark.parametrize("status, outcome", [
        ("ok", DeleteOutcome.DELETED),
        ("not found", DeleteOutcome.ALREADY_ABSENT),
    ])
    async def test_destroy_result(self, object_store, monkeypatch, status, outcome):
        calls = []

        def fake_destroy(path, **options):
            calls.append((path, options))
            return {"result": status}

        monkeypatch.setattr(cloudinary.uploader, "destroy", fake_destroy)

        assert await object_store.delete("receipts/u/e/1.pdf") == outcome
        assert calls[0][1]["resource_type"] == "raw"

    async def test_unexpected_result(self, object_store, monkeypatch):
        monkeypatch.setattr(
            cloudinary.uploader, "destroy", lambda path, **options: {"result": "error"}
        )

        with pytest.raises(StorageError):
            await object_store.delete("receipts/u/e/1.pdf")

    async def test_sdk_not_found_is_already_absent(self, object_store, monkeypatch):
        def fake_destroy(path, **options):
            raise cloudinary_exceptions.NotFound("gone")

        monkeypatch.setattr(cloudinary.uploader, "destroy", fake_destroy)

        assert await object_store.delete("receipts/u/e/1.pdf") == DeleteOutcome.ALREADY_ABSENT
