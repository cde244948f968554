"""File operation API routes."""

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse

from stash.auth import get_current_owner
from stash.schemas.files import (
    ConflictData,
    DeleteFileResponse,
    FileResponse,
    ListFilesResponse,
    ResolveConflictRequest,
    UploadedFileInfo
)
from stash.service_locator import (
    get_download_reconstructor,
    get_file_service,
    get_upload_orchestrator
)
from stash.services.download_reconstructor import DownloadReconstructor
from stash.services.file_service import FileService
from stash.services.upload_orchestrator import UploadOrchestrator

router = APIRouter(prefix="/files", tags=["Files"])


@router.post("/upload", response_model=FileResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    folder_id: str = Form(...),
    current_owner: str = Depends(get_current_owner),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator)
):
    """
    Upload a file into a folder.

    Parameters:
        - file: File to upload (multipart/form-data)
        - folder_id: Target folder
        - X-Owner-Id header (required)

    Returns:
        - 201 with the stored file
        - 409 FILE_CONFLICT when a file with the same name and size exists;
          data.pending_id must be passed to /files/upload/resolve

    Raises:
        - 404: Folder not found
        - 502: Backend call failed after all retries
        - 503: Backend unavailable
    """
    outcome = await orchestrator.upload(
        owner_id=current_owner,
        folder_id=folder_id,
        file_name=file.filename,
        source=file.file,
        mime_type=file.content_type,
    )

    if outcome.is_conflict:
        conflict = outcome.conflict
        data = ConflictData(
            pending_id=outcome.pending_id,
            transfer_id=outcome.transfer_id,
            existingFile=FileResponse.from_file(conflict.existing),
            uploadedFile=UploadedFileInfo(
                name=conflict.candidate.name,
                size=conflict.candidate.size,
                mime_type=conflict.candidate.mime_type,
            ),
        )
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "detail": f"A file named {conflict.candidate.name} with the same size already exists",
                "code": "FILE_CONFLICT",
                "data": data.model_dump(),
            }
        )

    return FileResponse.from_file(outcome.file)


@router.post("/upload/resolve", response_model=FileResponse)
async def resolve_upload_conflict(
    request: ResolveConflictRequest,
    current_owner: str = Depends(get_current_owner),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator)
):
    """
    Resume a conflicting upload with keep, replace or rename.

    Raises:
        - 400: Unknown action
        - 404: Unknown or expired pending_id
    """
    file = await orchestrator.resolve(current_owner, request.pending_id, request.action)
    return FileResponse.from_file(file)


@router.get("", response_model=ListFilesResponse)
async def list_files(
    folder_id: str = Query(..., description="Folder to list"),
    current_owner: str = Depends(get_current_owner),
    file_service: FileService = Depends(get_file_service)
):
    files = file_service.list_files(folder_id, current_owner)
    return ListFilesResponse(files=[FileResponse.from_file(f) for f in files])


@router.get("/{file_id}", response_model=FileResponse)
async def get_file(
    file_id: str,
    current_owner: str = Depends(get_current_owner),
    file_service: FileService = Depends(get_file_service)
):
    return FileResponse.from_file(file_service.get_file(file_id, current_owner))


@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    current_owner: str = Depends(get_current_owner),
    reconstructor: DownloadReconstructor = Depends(get_download_reconstructor)
):
    """
    Download a file by file_id.

    Returns:
        - StreamingResponse with file data and Content-Length

    Raises:
        - 404: File not found, not owned, or not fully uploaded
        - 500: Chunk records incomplete
        - 503: Backend unavailable
    """
    file, total_length, stream = await reconstructor.download(file_id, current_owner)

    return StreamingResponse(
        stream,
        media_type=file.mime_type or "application/octet-stream",
        headers={
            "Content-Disposition": f'attachment; filename="{file.name}"',
            "Content-Length": str(total_length),
        }
    )


@router.delete("/{file_id}", response_model=DeleteFileResponse)
async def delete_file(
    file_id: str,
    current_owner: str = Depends(get_current_owner),
    file_service: FileService = Depends(get_file_service)
):
    """
    Delete a file: its backend post first, then its records.

    Raises:
        - 404: File not found
        - 409: An upload of this file is still running
        - 502: Backend refused the delete
    """
    file = await file_service.delete_file(file_id, current_owner)
    return DeleteFileResponse(file_id=file.post_id, deleted=True)
