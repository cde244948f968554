"""File service for listing and deleting stored files."""

from typing import List

from common.logging_config import get_logger
from common.types import TransferType
from stash.backend.adapter import StorageBackendAdapter
from stash.database import get_db_connection
from stash.exceptions import FileNotFoundError, FolderNotFoundError, TransferStateError
from stash.repositories.chunk_repository import ChunkRepository
from stash.repositories.file_repository import File, FileRepository
from stash.repositories.folder_repository import FolderRepository
from stash.repositories.orphan_repository import OrphanRepository
from stash.telemetry import TransferTelemetry

logger = get_logger(__name__)


class FileService:
    def __init__(self, backend: StorageBackendAdapter, telemetry: TransferTelemetry):
        self.backend = backend
        self.telemetry = telemetry

    def get_file(self, file_id: str, owner_id: str) -> File:
        file = FileRepository.get_owned(file_id, owner_id)
        if file is None:
            raise FileNotFoundError(f"File {file_id} not found")
        return file

    def list_files(self, folder_id: str, owner_id: str) -> List[File]:
        if FolderRepository.get_owned(folder_id, owner_id) is None:
            raise FolderNotFoundError(f"Folder {folder_id} not found")
        return FileRepository.list_by_folder(owner_id, folder_id)

    async def delete_file(self, file_id: str, owner_id: str) -> File:
        """
        Delete the backend post first, then the file and chunk rows.
        A backend failure leaves the local rows in place.
        """
        file = self.get_file(file_id, owner_id)
        if self.telemetry.manager.find_by_file(file_id) is not None:
            raise TransferStateError(f"File {file_id} has a transfer in progress")

        transfer = self.telemetry.create_transfer(
            owner_id=owner_id,
            transfer_type=TransferType.DELETE,
            file_name=file.name,
            file_size=file.size,
            mime_type=file.mime_type,
            file_id=file_id,
        )

        try:
            await self.backend.delete_post(file_id)

            with get_db_connection() as conn:
                try:
                    message_ids = ChunkRepository.delete_chunks(file_id, conn=conn)
                    FileRepository.delete_file(file_id, conn=conn)
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except Exception as e:
            logger.error(f"Failed to delete file {file_id}: {e}")
            self.telemetry.fail(transfer.transfer_id, str(e), type(e).__name__)
            raise

        OrphanRepository.remove(file_id)
        self.telemetry.complete_empty(transfer, file_id)
        logger.info(f"Deleted file {file_id} ({file.name}) with {len(message_ids)} chunks")
        return file
