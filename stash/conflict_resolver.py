"""Duplicate detection and the keep/replace/rename collision protocol."""

from dataclasses import dataclass
from typing import Optional, Union

from common.logging_config import get_logger
from common.types import ConflictAction
from stash.backend.adapter import StorageBackendAdapter
from stash.database import get_db_connection
from stash.exceptions import InvalidConflictActionError
from stash.repositories.chunk_repository import ChunkRepository
from stash.repositories.file_repository import File, FileRepository
from stash.utils import split_file_name

logger = get_logger(__name__)

MAX_RENAME_ATTEMPTS = 10000


@dataclass(frozen=True)
class UploadCandidate:
    """
    What the caller wants to store, before any backend resource exists.
    """
    owner_id: str
    folder_id: str
    name: str
    size: int
    mime_type: str


@dataclass(frozen=True)
class Conflict:
    """
    Detection outcome: the upload collides with an existing file.
    Returned to the caller, who later picks a ConflictAction.
    """
    existing: File
    candidate: UploadCandidate


class ConflictResolver:
    """
    Two-phase collision handling: detect() before committing backend
    resources, then one of keep / replace / rename once a decision arrives.
    """

    def __init__(self, backend: StorageBackendAdapter):
        self.backend = backend

    def detect(self, candidate: UploadCandidate, enabled: bool) -> Optional[Conflict]:
        """
        Look for a file with the same owner, folder, name and size.

        Args:
            candidate: Upload about to start
            enabled: Owner's duplicate-detection setting

        Returns:
            Conflict when enabled and a match exists, otherwise None
        """
        if not enabled:
            return None

        existing = FileRepository.find_duplicate(
            owner_id=candidate.owner_id,
            folder_id=candidate.folder_id,
            name=candidate.name,
            size=candidate.size,
        )
        if existing is None:
            return None

        logger.info(
            f"Duplicate detected for {candidate.name} ({candidate.size} bytes) "
            f"in folder {candidate.folder_id}: existing post {existing.post_id}"
        )
        return Conflict(existing=existing, candidate=candidate)

    @staticmethod
    def parse_action(action: Union[str, ConflictAction]) -> ConflictAction:
        try:
            return ConflictAction(action)
        except ValueError:
            raise InvalidConflictActionError(
                f"Unknown conflict action '{action}', expected one of: keep, replace, rename"
            )

    async def discard_existing(self, existing: File) -> None:
        """
        Replace resolution: remove the existing post from the backend, then
        its chunk and file rows. Backend failure leaves local rows untouched.
        """
        await self.backend.delete_post(existing.post_id)

        with get_db_connection() as conn:
            try:
                ChunkRepository.delete_chunks(existing.post_id, conn=conn)
                FileRepository.delete_file(existing.post_id, conn=conn)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

        logger.info(f"Discarded existing file {existing.post_id} ({existing.name}) for replacement")

    @staticmethod
    def available_name(owner_id: str, folder_id: str, name: str) -> str:
        """
        Rename resolution: first free variant 'stem (n).ext' in the folder.
        """
        taken = FileRepository.list_names_in_folder(owner_id, folder_id)
        if name not in taken:
            return name

        stem, extension = split_file_name(name)
        for counter in range(1, MAX_RENAME_ATTEMPTS):
            variant = f"{stem} ({counter}){extension}"
            if variant not in taken:
                return variant

        raise InvalidConflictActionError(f"No free name left for {name} in folder {folder_id}")
