"""Attachment staging and commit package."""

from ledger_sync.services.attachments.commit import AttachmentCommitCoordinator
from ledger_sync.services.attachments.stager import (
    AttachmentStager,
    PathStamper,
    UploadTask,
)

__all__ = [
    "AttachmentCommitCoordinator",
    "AttachmentStager",
    "PathStamper",
    "UploadTask",
]
