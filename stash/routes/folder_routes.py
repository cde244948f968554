"""Folder API routes."""

from fastapi import APIRouter, Depends, Response, status

from stash.auth import get_current_owner
from stash.schemas.folders import (
    CreateFolderRequest,
    FolderResponse,
    ListFoldersResponse,
    RenameFolderRequest
)
from stash.service_locator import get_folder_service
from stash.services.folder_service import FolderService

router = APIRouter(prefix="/folders", tags=["Folders"])


@router.get("", response_model=ListFoldersResponse)
async def list_folders(
    current_owner: str = Depends(get_current_owner),
    folder_service: FolderService = Depends(get_folder_service)
):
    folders = folder_service.list_folders(current_owner)
    return ListFoldersResponse(folders=[FolderResponse.from_folder(f) for f in folders])


@router.post("", response_model=FolderResponse, status_code=status.HTTP_201_CREATED)
async def create_folder(
    request: CreateFolderRequest,
    current_owner: str = Depends(get_current_owner),
    folder_service: FolderService = Depends(get_folder_service)
):
    """
    Create a folder backed by a new backend container.
    """
    folder = await folder_service.create_folder(current_owner, request.name, request.parent_id)
    return FolderResponse.from_folder(folder)


@router.patch("/{folder_id}", response_model=FolderResponse)
async def rename_folder(
    folder_id: str,
    request: RenameFolderRequest,
    current_owner: str = Depends(get_current_owner),
    folder_service: FolderService = Depends(get_folder_service)
):
    folder = await folder_service.rename_folder(folder_id, current_owner, request.name)
    return FolderResponse.from_folder(folder)


@router.delete("/{folder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_folder(
    folder_id: str,
    current_owner: str = Depends(get_current_owner),
    folder_service: FolderService = Depends(get_folder_service)
):
    """
    Delete an empty folder.

    Raises:
        - 404: Folder not found
        - 409: Folder still contains files
    """
    await folder_service.delete_folder(folder_id, current_owner)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
