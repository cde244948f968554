"""Reassembles a stored file from its chunk messages."""

import asyncio
import hashlib
from typing import AsyncIterator, List, Tuple

from common.logging_config import get_logger
from common.types import TransferType, UploadStatus
from stash.backend.adapter import StorageBackendAdapter
from stash.exceptions import BackendUnavailableError, FileNotFoundError, MissingChunkError, TransferIOError
from stash.repositories.chunk_repository import Chunk, ChunkRepository
from stash.repositories.file_repository import File, FileRepository
from stash.services.settings_service import SettingsService, TransferSettings
from stash.services.transfer_slots import TransferSlots
from stash.telemetry import TransferTelemetry

logger = get_logger(__name__)


class DownloadReconstructor:
    """
    Streams a file's chunks back in index order, one chunk fetched per
    request for more data from the consumer.
    """

    def __init__(
        self,
        backend: StorageBackendAdapter,
        telemetry: TransferTelemetry,
        settings_service: SettingsService,
    ):
        self.backend = backend
        self.telemetry = telemetry
        self.settings_service = settings_service
        self._download_slots = TransferSlots()

    async def download(self, file_id: str, owner_id: str) -> Tuple[File, int, AsyncIterator[bytes]]:
        """
        Prepare a download.

        Args:
            file_id: Post id of the file
            owner_id: Caller; must own the file

        Returns:
            (file, total length in bytes, async iterator of chunk bytes)

        Raises:
            FileNotFoundError: Missing, not owned, or not fully uploaded
            MissingChunkError: Chunk records are not contiguous or don't add up
            BackendUnavailableError: Backend not connected
        """
        file = FileRepository.get_owned(file_id, owner_id)
        if file is None or file.upload_status != UploadStatus.COMPLETED:
            raise FileNotFoundError(f"File {file_id} not found")

        if not self.backend.is_ready:
            raise BackendUnavailableError("Storage backend is not connected")

        chunks = ChunkRepository.get_chunks_by_file(file_id)
        self.validate_chunks(file, chunks)

        settings = self.settings_service.get_settings(owner_id)

        logger.info(f"Prepared download of file {file_id} ({len(chunks)} chunks, {file.size} bytes)")
        return file, file.size, self._stream(file, chunks, settings)

    @staticmethod
    def validate_chunks(file: File, chunks: List[Chunk]) -> None:
        """
        Chunk indices must be exactly 0..N-1 and sizes must sum to the file size.
        """
        indices = [chunk.chunk_index for chunk in chunks]
        if indices != list(range(len(chunks))):
            missing = sorted(set(range(max(indices, default=-1) + 1)) - set(indices))
            raise MissingChunkError(f"File {file.post_id} is missing chunks {missing}")

        total = sum(chunk.size for chunk in chunks)
        if total != file.size:
            raise MissingChunkError(
                f"File {file.post_id} chunks hold {total} bytes, expected {file.size}"
            )

    async def _stream(
        self,
        file: File,
        chunks: List[Chunk],
        settings: TransferSettings,
    ) -> AsyncIterator[bytes]:
        """
        The download transfer is created on the first pull, so a stream that
        is never iterated leaves no log behind. Every exit path that does not
        complete the transfer cancels or fails it.
        """
        transfer = self.telemetry.create_transfer(
            owner_id=file.owner_id,
            transfer_type=TransferType.DOWNLOAD,
            file_name=file.name,
            file_size=file.size,
            mime_type=file.mime_type,
            file_id=file.post_id,
        )
        bytes_streamed = 0

        try:
            async with self._download_slots.hold(file.owner_id, settings.max_concurrent_downloads):
                if not chunks:
                    self.telemetry.complete_empty(transfer, file.post_id)
                    return

                self.telemetry.activate(transfer, file.post_id, file.size, len(chunks))
                for chunk in chunks:
                    data = await self._fetch_chunk(chunk, settings)
                    bytes_streamed += len(data)
                    await self.telemetry.record_chunk(transfer.transfer_id, len(data))
                    yield data
        except (GeneratorExit, asyncio.CancelledError):
            if self.telemetry.is_open(transfer.transfer_id):
                self.telemetry.cancel(
                    transfer.transfer_id,
                    f"Client went away after {bytes_streamed}/{file.size} bytes",
                )
            raise
        except Exception as e:
            logger.error(
                f"Error streaming chunk of file {file.post_id}: {e}. "
                f"Downloaded {bytes_streamed}/{file.size} bytes before failure."
            )
            if self.telemetry.is_open(transfer.transfer_id):
                self.telemetry.fail(transfer.transfer_id, str(e), "TRANSFER_IO_ERROR")
            raise

        logger.info(f"Successfully streamed file {file.post_id}: {bytes_streamed} bytes total")

    async def _fetch_chunk(self, chunk: Chunk, settings: TransferSettings) -> bytes:
        try:
            data = await asyncio.wait_for(
                self.backend.download_chunk(chunk.retrieval_url),
                timeout=settings.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise TransferIOError(
                f"Fetching chunk {chunk.chunk_index} timed out after {settings.timeout_seconds}s"
            )

        if len(data) != chunk.size:
            raise TransferIOError(
                f"Chunk {chunk.chunk_index} returned {len(data)} bytes, expected {chunk.size}"
            )
        if chunk.checksum and hashlib.sha256(data).hexdigest() != chunk.checksum:
            raise TransferIOError(f"Checksum mismatch on chunk {chunk.chunk_index}")
        return data
