"""Folder service: thin wrapper over backend containers."""

from typing import List, Optional

from common.logging_config import get_logger
from stash.backend.adapter import StorageBackendAdapter
from stash.exceptions import BackendUnavailableError, FolderNotFoundError, TransferStateError
from stash.repositories.file_repository import FileRepository
from stash.repositories.folder_repository import Folder, FolderRepository

logger = get_logger(__name__)


class FolderService:
    """
    One backend container per folder; the container id is the folder id.
    """

    def __init__(self, backend: StorageBackendAdapter):
        self.backend = backend

    def _require_backend(self) -> None:
        if not self.backend.is_ready:
            raise BackendUnavailableError("Storage backend is not connected")

    def get_folder(self, folder_id: str, owner_id: str) -> Folder:
        folder = FolderRepository.get_owned(folder_id, owner_id)
        if folder is None:
            raise FolderNotFoundError(f"Folder {folder_id} not found")
        return folder

    def list_folders(self, owner_id: str) -> List[Folder]:
        return FolderRepository.list_by_owner(owner_id)

    async def create_folder(self, owner_id: str, name: str, parent_id: Optional[str] = None) -> Folder:
        self._require_backend()
        if parent_id is not None:
            self.get_folder(parent_id, owner_id)

        container_id = await self.backend.create_container(parent_id, name)
        return FolderRepository.create_folder(container_id, owner_id, name, parent_id)

    async def rename_folder(self, folder_id: str, owner_id: str, name: str) -> Folder:
        folder = self.get_folder(folder_id, owner_id)
        self._require_backend()

        await self.backend.rename_container(folder_id, name)
        FolderRepository.rename_folder(folder_id, name)
        logger.info(f"Folder renamed [folder_id={folder_id}] {folder.name} -> {name}")
        folder.name = name
        return folder

    async def delete_folder(self, folder_id: str, owner_id: str) -> None:
        """
        Only empty folders can be deleted; files must be removed first.
        """
        self.get_folder(folder_id, owner_id)
        if FileRepository.list_by_folder(owner_id, folder_id):
            raise TransferStateError(f"Folder {folder_id} still contains files")
        self._require_backend()

        await self.backend.delete_container(folder_id)
        FolderRepository.delete_folder(folder_id)
