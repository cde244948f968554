"""Pydantic schemas for API requests and responses."""

from stash.schemas.common import ErrorResponse
from stash.schemas.files import (
    FileResponse,
    UploadedFileInfo,
    ConflictData,
    ResolveConflictRequest,
    ListFilesResponse,
    DeleteFileResponse
)
from stash.schemas.folders import (
    CreateFolderRequest,
    RenameFolderRequest,
    FolderResponse,
    ListFoldersResponse
)
from stash.schemas.transfers import TransferResponse, ListTransfersResponse, CancelTransferResponse
from stash.schemas.settings import SettingsResponse, UpdateSettingsRequest

__all__ = [
    "ErrorResponse",
    "FileResponse",
    "UploadedFileInfo",
    "ConflictData",
    "ResolveConflictRequest",
    "ListFilesResponse",
    "DeleteFileResponse",
    "CreateFolderRequest",
    "RenameFolderRequest",
    "FolderResponse",
    "ListFoldersResponse",
    "TransferResponse",
    "ListTransfersResponse",
    "CancelTransferResponse",
    "SettingsResponse",
    "UpdateSettingsRequest"
]
