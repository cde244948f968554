"""Repository layer for data access."""

from stash.repositories.file_repository import FileRepository
from stash.repositories.chunk_repository import ChunkRepository
from stash.repositories.folder_repository import FolderRepository
from stash.repositories.transfer_log_repository import TransferLogRepository
from stash.repositories.settings_repository import SettingsRepository
from stash.repositories.orphan_repository import OrphanRepository

__all__ = [
    "FileRepository",
    "ChunkRepository",
    "FolderRepository",
    "TransferLogRepository",
    "SettingsRepository",
    "OrphanRepository",
]
