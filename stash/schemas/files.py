"""Pydantic schemas for file operation endpoints."""

from typing import List, Optional

from pydantic import BaseModel

from stash.repositories.file_repository import File


class FileResponse(BaseModel):
    """Response model for a stored file."""
    file_id: str
    name: str
    original_name: str
    size: int
    mime_type: str
    folder_id: str
    owner_id: str
    upload_status: str
    hash: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_file(cls, file: File) -> "FileResponse":
        return cls(
            file_id=file.post_id,
            name=file.name,
            original_name=file.original_name,
            size=file.size,
            mime_type=file.mime_type,
            folder_id=file.folder_id,
            owner_id=file.owner_id,
            upload_status=file.upload_status.value,
            hash=file.hash,
            created_at=file.created_at.isoformat(),
            updated_at=file.updated_at.isoformat(),
        )


class UploadedFileInfo(BaseModel):
    """The incoming upload as seen at conflict time."""
    name: str
    size: int
    mime_type: str


class ConflictData(BaseModel):
    pending_id: str
    transfer_id: str
    existingFile: FileResponse
    uploadedFile: UploadedFileInfo


class ResolveConflictRequest(BaseModel):
    """Request model for resolving an upload conflict."""
    pending_id: str
    action: str


class ListFilesResponse(BaseModel):
    """Response model for file listing."""
    files: List[FileResponse]


class DeleteFileResponse(BaseModel):
    """Response model for file deletion."""
    file_id: str
    deleted: bool
