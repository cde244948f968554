"""Pydantic schemas for folder endpoints."""

from typing import List, Optional

from pydantic import BaseModel, Field

from stash.repositories.folder_repository import Folder


class CreateFolderRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    parent_id: Optional[str] = None


class RenameFolderRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class FolderResponse(BaseModel):
    """Response model for a folder."""
    folder_id: str
    name: str
    parent_id: Optional[str] = None
    created_at: str

    @classmethod
    def from_folder(cls, folder: Folder) -> "FolderResponse":
        return cls(
            folder_id=folder.folder_id,
            name=folder.name,
            parent_id=folder.parent_id,
            created_at=folder.created_at.isoformat(),
        )


class ListFoldersResponse(BaseModel):
    folders: List[FolderResponse]
