"""Tests for attachment staging, commit and deletion."""

import pytest

from ledger_sync.audit import AuditLogger
from ledger_sync.models.audit import AuditEventType
from ledger_sync.models.result import ErrorCode
from ledger_sync.services.attachments import (
    AttachmentCommitCoordinator,
    AttachmentStager,
    PathStamper,
)
from ledger_sync.services.attachments.stager import file_extension
from ledger_sync.services.storage import (
    DeleteOutcome,
    PermissionDeniedError,
    TransientError,
)


RECEIPT = b"\xff\xd8\xff" + b"x" * 97  # 100 bytes


@pytest.fixture
def audit(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def stager(store, ledger_settings, audit, metrics):
    return AttachmentStager(store, ledger_settings, audit, metrics)


@pytest.fixture
def coordinator(store, ledger_settings, audit):
    return AttachmentCommitCoordinator(store, ledger_settings, audit)


def _event_types(audit_storage):
    return [e.event_type for e in audit_storage.events]


class TestPaths:
    """Tests for object path construction."""

    def test_stamps_strictly_increase(self):
        stamper = PathStamper(clock=lambda: 1700000000.0)
        assert [stamper.next() for _ in range(3)] == [
            1700000000000, 1700000000001, 1700000000002,
        ]

    def test_placeholder_id(self, stager):
        placeholder = stager.new_placeholder_id()
        assert placeholder.startswith("temp_")
        assert placeholder[len("temp_"):].isdigit()

    def test_file_extension(self):
        assert file_extension("Receipt.JPG", "image/jpeg") == "jpg"
        assert file_extension("scan", "application/pdf") == "pdf"


class TestStage:
    """Tests for staging uploads to the temporary location."""

    async def test_stage_writes_under_placeholder(self, stager, store, user_id):
        placeholder = stager.new_placeholder_id()
        result = await stager.stage(user_id, placeholder, RECEIPT, "receipt.jpg", "image/jpeg")

        attachment = result.value
        folder, user, owner, name = attachment.path.split("/")
        assert (folder, user, owner) == ("receipts", user_id, placeholder)
        assert name.endswith(".jpg")
        assert attachment.is_temporary()
        assert attachment.size == len(RECEIPT)
        assert attachment.name == "receipt.jpg"
        assert store.exists(attachment.path)

    async def test_two_uploads_never_collide(self, stager, user_id):
        first = await stager.stage(user_id, "temp_1", RECEIPT, "a.jpg", "image/jpeg")
        second = await stager.stage(user_id, "temp_1", RECEIPT, "a.jpg", "image/jpeg")
        assert first.value.path != second.value.path

    async def test_progress_is_reported(self, stager, user_id):
        reports = []
        result = await stager.stage(
            user_id, "temp_1", RECEIPT, "a.jpg", "image/jpeg", on_progress=reports.append
        )

        assert result.is_ok
        transferred = [p.bytes_transferred for p in reports]
        assert transferred == sorted(transferred)
        assert len(reports) > 1
        assert reports[-1].bytes_transferred == len(RECEIPT)
        assert reports[-1].fraction == 1.0

    async def test_rejects_unsupported_type(self, stager, store, user_id):
        result = await stager.stage(user_id, "temp_1", b"MZ", "tool.exe", "application/x-msdownload")
        assert result.code == ErrorCode.VALIDATION
        assert store.paths() == []

    async def test_rejects_oversized_file(self, stager, ledger_settings, user_id):
        data = b"x" * (ledger_settings.max_attachment_size_bytes + 1)
        result = await stager.stage(user_id, "temp_1", data, "big.jpg", "image/jpeg")
        assert result.code == ErrorCode.VALIDATION

    async def test_missing_identity(self, stager):
        result = await stager.stage(None, "temp_1", RECEIPT, "a.jpg", "image/jpeg")
        assert result.code == ErrorCode.UNAUTHENTICATED

    async def test_transport_failure(
        self, flaky_store, ledger_settings, audit, audit_storage, user_id
    ):
        flaky_store.fail_write = TransientError("offline")
        stager = AttachmentStager(flaky_store, ledger_settings, audit)
        result = await stager.stage(user_id, "temp_1", RECEIPT, "a.jpg", "image/jpeg")

        assert result.code == ErrorCode.TRANSIENT
        assert AuditEventType.ATTACHMENT_STAGE_FAILED in _event_types(audit_storage)


class TestUploadTask:
    """Tests for the progress stream and cancellation."""

    async def test_progress_stream_then_result(self, stager, user_id):
        task = stager.start(user_id, "temp_1", RECEIPT, "a.jpg", "image/jpeg")

        reports = [p async for p in task.progress()]
        result = await task.result()

        assert result.is_ok
        assert task.done()
        assert reports[-1].bytes_transferred == len(RECEIPT)

    async def test_cancel_aborts_upload(self, stager, store, user_id):
        task = stager.start(user_id, "temp_1", b"x" * 1000, "a.jpg", "image/jpeg")
        progress = task.progress()

        first = await progress.__anext__()
        task.cancel()
        result = await task.result()

        assert first.bytes_transferred < 1000
        assert result.code == ErrorCode.CANCELLED
        assert store.paths() == []
        # The stream still terminates
        remaining = [p async for p in progress]
        assert all(p.bytes_transferred < 1000 for p in remaining)

    async def test_cancel_after_completion_leaves_nothing_behind(self, stager, store, user_id):
        task = stager.start(user_id, "temp_1", RECEIPT, "a.jpg", "image/jpeg")
        [p async for p in task.progress()]
        task.cancel()

        result = await task.result()
        # The upload had already finished; cancel() has no effect on it
        assert result.is_ok
        assert store.exists(result.value.path)


class TestCommit:
    """Tests for promoting staged attachments."""

    async def test_commit_moves_to_owner_path(self, stager, coordinator, store, user_id):
        staged = (await stager.stage(user_id, "temp_1", RECEIPT, "receipt.jpg", "image/jpeg")).value
        committed = (await coordinator.commit(user_id, "entry-42", staged)).value

        assert not committed.is_temporary()
        assert committed.path.startswith(f"receipts/{user_id}/entry-42/")
        assert (committed.name, committed.mime_type, committed.size) == (
            staged.name, staged.mime_type, staged.size,
        )
        assert (await store.read(committed.path)).data == RECEIPT
        assert not store.exists(staged.path)

    async def test_permanent_attachment_is_unchanged(self, stager, coordinator, user_id):
        permanent = (await stager.stage(user_id, "entry-42", RECEIPT, "a.jpg", "image/jpeg")).value
        result = await coordinator.commit(user_id, "entry-42", permanent)
        assert result.value == permanent

    async def test_missing_temporary_object_fails(self, stager, coordinator, store, user_id):
        staged = (await stager.stage(user_id, "temp_1", RECEIPT, "a.jpg", "image/jpeg")).value
        await store.delete(staged.path)

        result = await coordinator.commit(user_id, "entry-42", staged)
        assert result.code == ErrorCode.NOT_FOUND

    async def test_cleanup_failure_does_not_fail_commit(
        self, flaky_store, ledger_settings, audit, audit_storage, user_id
    ):
        store = flaky_store
        stager = AttachmentStager(store, ledger_settings, audit)
        coordinator = AttachmentCommitCoordinator(store, ledger_settings, audit)
        staged = (await stager.stage(user_id, "temp_1", RECEIPT, "a.jpg", "image/jpeg")).value

        store.fail_delete = PermissionDeniedError("read-only bucket")
        result = await coordinator.commit(user_id, "entry-42", staged)

        assert result.is_ok
        assert store.exists(staged.path)
        assert AuditEventType.TEMP_CLEANUP_FAILED in _event_types(audit_storage)


class TestDelete:
    """Attachment deletion is idempotent."""

    async def test_delete_then_delete_again(self, stager, coordinator, user_id):
        attachment = (await stager.stage(user_id, "entry-1", RECEIPT, "a.jpg", "image/jpeg")).value

        assert (await coordinator.delete(user_id, attachment)).value == DeleteOutcome.DELETED
        assert (await coordinator.delete(user_id, attachment)).value == DeleteOutcome.ALREADY_ABSENT

    async def test_delete_failure_is_reported(self, flaky_store, ledger_settings, stager, user_id):
        attachment = (await stager.stage(user_id, "entry-1", RECEIPT, "a.jpg", "image/jpeg")).value
        flaky_store.fail_delete = TransientError("offline")
        coordinator = AttachmentCommitCoordinator(flaky_store, ledger_settings)
        result = await coordinator.delete(user_id, attachment)
        assert result.code == ErrorCode.TRANSIENT
