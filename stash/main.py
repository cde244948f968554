"""Entry point for the stash service."""

import time
import uuid
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from stash import service_locator
from stash.backend.http_adapter import HttpBackendAdapter
from stash.broadcaster import TransferBroadcaster
from stash.cleanup_task import OrphanedPostCleaner
from stash.config import (
    BACKEND_API_URL,
    BACKEND_GUILD_ID,
    BACKEND_REQUEST_TIMEOUT,
    BACKEND_TOKEN,
    STASH_HOST,
    STASH_PORT
)
from stash.database import get_db_connection, init_database
from stash.exceptions import (
    StashException,
    TransferIOError,
    MissingChunkError,
    BackendUnavailableError,
    ConfigurationError,
    FileNotFoundError,
    FolderNotFoundError,
    PendingUploadNotFoundError,
    InvalidConflictActionError,
    TransferStateError,
    TransferCancelledError
)
from stash.routes import file_router, folder_router, settings_router, transfer_router
from stash.services.download_reconstructor import DownloadReconstructor
from stash.services.file_service import FileService
from stash.services.folder_service import FolderService
from stash.services.settings_service import SettingsService
from stash.services.upload_orchestrator import UploadOrchestrator
from stash.telemetry import TransferChannel, TransferTelemetry

logger = setup_logging('stash')

app = FastAPI(
    title="Stash",
    description="Chunked file storage on top of a message-channel backend",
    version="1.0.0"
)

cleanup_task: Optional[OrphanedPostCleaner] = None
broadcaster: Optional[TransferBroadcaster] = None

ERROR_RESPONSES = {
    TransferIOError: (status.HTTP_502_BAD_GATEWAY, "TRANSFER_IO_ERROR"),
    MissingChunkError: (status.HTTP_500_INTERNAL_SERVER_ERROR, "MISSING_CHUNK"),
    BackendUnavailableError: (status.HTTP_503_SERVICE_UNAVAILABLE, "BACKEND_UNAVAILABLE"),
    ConfigurationError: (status.HTTP_400_BAD_REQUEST, "CONFIGURATION_ERROR"),
    FileNotFoundError: (status.HTTP_404_NOT_FOUND, "FILE_NOT_FOUND"),
    FolderNotFoundError: (status.HTTP_404_NOT_FOUND, "FOLDER_NOT_FOUND"),
    PendingUploadNotFoundError: (status.HTTP_404_NOT_FOUND, "PENDING_UPLOAD_NOT_FOUND"),
    InvalidConflictActionError: (status.HTTP_400_BAD_REQUEST, "INVALID_CONFLICT_ACTION"),
    TransferStateError: (status.HTTP_409_CONFLICT, "INVALID_TRANSFER_STATE"),
    TransferCancelledError: (status.HTTP_409_CONFLICT, "TRANSFER_CANCELLED"),
}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    owner_id = request.headers.get("X-Owner-Id")

    logger.info(
        f"Request started: {request.method} {request.url.path} [request_id={request_id}] [owner_id={owner_id or 'anonymous'}]"
    )

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Initialize database, connect the backend and start background tasks.
    """
    global cleanup_task, broadcaster

    logger.info("Stash service starting up...")

    init_database()
    logger.info("Database initialized")

    backend = service_locator.get_backend()
    if backend is None:
        backend = HttpBackendAdapter(
            api_url=BACKEND_API_URL,
            token=BACKEND_TOKEN,
            guild_id=BACKEND_GUILD_ID,
            timeout=BACKEND_REQUEST_TIMEOUT,
        )
        service_locator.set_backend(backend)

    try:
        await backend.connect()
        logger.info("Storage backend connected")
    except BackendUnavailableError as e:
        logger.error(f"Failed to connect storage backend: {e}")
        logger.info("Continuing without backend; transfers will be refused until it is reachable")

    channel = TransferChannel()
    telemetry = TransferTelemetry(channel)
    settings_service = SettingsService()
    broadcaster = TransferBroadcaster(channel)

    service_locator.register_services(
        telemetry=telemetry,
        settings_service=settings_service,
        upload_orchestrator=UploadOrchestrator(backend, telemetry, settings_service),
        download_reconstructor=DownloadReconstructor(backend, telemetry, settings_service),
        file_service=FileService(backend, telemetry),
        folder_service=FolderService(backend),
        broadcaster=broadcaster,
    )

    cleanup_task = OrphanedPostCleaner(backend)
    cleanup_task.recover_interrupted()

    await broadcaster.start()
    await cleanup_task.start()
    logger.info("Background tasks started")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Cleanup resources on application shutdown.
    """
    logger.info("Stash service shutting down...")

    if cleanup_task:
        await cleanup_task.stop()
        logger.info("Cleanup task stopped")

    if broadcaster:
        await broadcaster.stop()
        logger.info("Broadcaster stopped")

    backend = service_locator.get_backend()
    if backend:
        await backend.disconnect()
        logger.info("Storage backend disconnected")


@app.exception_handler(StashException)
async def stash_exception_handler(request: Request, exc: StashException):
    request_id = getattr(request.state, 'request_id', 'unknown')
    status_code, code = status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR"
    for exc_type in type(exc).__mro__:
        if exc_type in ERROR_RESPONSES:
            status_code, code = ERROR_RESPONSES[exc_type]
            break

    if status_code >= 500:
        logger.error(
            f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}",
            exc_info=True
        )
    else:
        logger.warning(
            f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}"
        )

    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": code}
    )


app.include_router(file_router)
app.include_router(folder_router)
app.include_router(transfer_router)
app.include_router(settings_router)


@app.get("/")
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "Stash API", "status": "running"}


@app.get("/health")
async def health_check():
    """
    Health check endpoint for Docker healthcheck.
    Returns 200 if service is alive.
    """
    return {"status": "healthy", "service": "stash"}


@app.get("/ready")
async def ready_check():
    """
    Readiness check endpoint.
    Verifies database and storage backend connectivity.
    """
    try:
        with get_db_connection() as conn:
            conn.execute("SELECT 1")
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {str(e)}"

    backend = service_locator.get_backend()
    backend_status = "ok" if backend is not None and backend.is_ready else "not connected"

    ready = db_status == "ok" and backend_status == "ok"
    status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "ready": ready,
            "database": db_status,
            "backend": backend_status
        }
    )


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "stash.main:app",
        host=STASH_HOST,
        port=STASH_PORT,
        log_level="info"
    )


if __name__ == "__main__":
    main()
