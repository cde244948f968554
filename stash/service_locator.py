"""Service locator for the long-lived components shared by all requests."""

from typing import Optional

from stash.backend.adapter import StorageBackendAdapter
from stash.broadcaster import TransferBroadcaster
from stash.exceptions import BackendUnavailableError
from stash.services.download_reconstructor import DownloadReconstructor
from stash.services.file_service import FileService
from stash.services.folder_service import FolderService
from stash.services.settings_service import SettingsService
from stash.services.upload_orchestrator import UploadOrchestrator
from stash.telemetry import TransferTelemetry

_backend: Optional[StorageBackendAdapter] = None
_telemetry: Optional[TransferTelemetry] = None
_settings_service: Optional[SettingsService] = None
_upload_orchestrator: Optional[UploadOrchestrator] = None
_download_reconstructor: Optional[DownloadReconstructor] = None
_file_service: Optional[FileService] = None
_folder_service: Optional[FolderService] = None
_broadcaster: Optional[TransferBroadcaster] = None


def set_backend(backend: Optional[StorageBackendAdapter]):
    """Set the storage backend; startup builds the HTTP adapter when none was set"""
    global _backend
    _backend = backend


def get_backend() -> Optional[StorageBackendAdapter]:
    """Get the storage backend"""
    return _backend


def register_services(
    telemetry: TransferTelemetry,
    settings_service: SettingsService,
    upload_orchestrator: UploadOrchestrator,
    download_reconstructor: DownloadReconstructor,
    file_service: FileService,
    folder_service: FolderService,
    broadcaster: TransferBroadcaster,
):
    """Install the service graph built at startup"""
    global _telemetry, _settings_service, _upload_orchestrator, _download_reconstructor
    global _file_service, _folder_service, _broadcaster
    _telemetry = telemetry
    _settings_service = settings_service
    _upload_orchestrator = upload_orchestrator
    _download_reconstructor = download_reconstructor
    _file_service = file_service
    _folder_service = folder_service
    _broadcaster = broadcaster


def reset():
    """Forget every registered component"""
    set_backend(None)
    register_services(None, None, None, None, None, None, None)


def _require(component, name: str):
    if component is None:
        raise BackendUnavailableError(f"{name} is not initialized")
    return component


def get_settings_service() -> SettingsService:
    return _require(_settings_service, "Settings service")


def get_upload_orchestrator() -> UploadOrchestrator:
    return _require(_upload_orchestrator, "Upload orchestrator")


def get_download_reconstructor() -> DownloadReconstructor:
    return _require(_download_reconstructor, "Download reconstructor")


def get_file_service() -> FileService:
    return _require(_file_service, "File service")


def get_folder_service() -> FolderService:
    return _require(_folder_service, "Folder service")


def get_broadcaster() -> TransferBroadcaster:
    return _require(_broadcaster, "Broadcaster")
