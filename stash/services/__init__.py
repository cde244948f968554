"""Service layer for business logic."""

from stash.services.settings_service import SettingsService, TransferSettings
from stash.services.upload_orchestrator import UploadOrchestrator, UploadOutcome, CancellationToken
from stash.services.download_reconstructor import DownloadReconstructor
from stash.services.transfer_slots import KeyedLocks, TransferSlots
from stash.services.file_service import FileService
from stash.services.folder_service import FolderService

__all__ = [
    "SettingsService",
    "TransferSettings",
    "UploadOrchestrator",
    "UploadOutcome",
    "CancellationToken",
    "DownloadReconstructor",
    "TransferSlots",
    "KeyedLocks",
    "FileService",
    "FolderService",
]
