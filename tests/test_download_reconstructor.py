"""Tests for download validation and streaming."""

import asyncio
import hashlib

import pytest

from common.types import TransferStatus, UploadStatus
from stash.exceptions import BackendUnavailableError, FileNotFoundError, MissingChunkError, TransferIOError
from stash.repositories.chunk_repository import Chunk, ChunkRepository
from stash.repositories.file_repository import FileRepository
from stash.repositories.transfer_log_repository import TransferLogRepository
from stash.services.download_reconstructor import DownloadReconstructor

from conftest import FOLDER, OTHER_OWNER, OWNER, make_content


@pytest.fixture
def reconstructor(test_db, backend, telemetry, settings_service):
    return DownloadReconstructor(backend, telemetry, settings_service)


def _store(backend, post_id, pieces, indices=None, status=UploadStatus.COMPLETED, size=None):
    """Put a file row plus chunk rows (and backend attachments) in place directly."""
    FileRepository.create_file(
        post_id=post_id,
        name=f"{post_id}.bin",
        original_name=f"{post_id}.bin",
        size=sum(len(p) for p in pieces) if size is None else size,
        mime_type="application/octet-stream",
        folder_id=FOLDER,
        owner_id=OWNER,
        upload_status=status,
    )
    indices = list(range(len(pieces))) if indices is None else indices
    for index, piece in zip(indices, pieces):
        url = f"https://cdn.test/attachments/{post_id}/m{index}/chunk"
        backend.attachments[url] = piece
        ChunkRepository.create_chunk(Chunk(
            message_id=f"{post_id}-m{index}",
            file_id=post_id,
            chunk_index=index,
            size=len(piece),
            attachment_id=f"{post_id}-a{index}",
            retrieval_url=url,
            checksum=hashlib.sha256(piece).hexdigest(),
        ))


async def _collect(stream):
    return b"".join([piece async for piece in stream])


class TestValidation:

    @pytest.mark.asyncio
    async def test_missing_middle_chunk_is_refused(self, reconstructor, folder, backend):
        pieces = [make_content(100, seed=i) for i in range(3)]
        _store(backend, "post-x", [pieces[0], pieces[2]], indices=[0, 2], size=300)

        with pytest.raises(MissingChunkError, match=r"\[1\]"):
            await reconstructor.download("post-x", OWNER)

        assert backend.download_calls == 0

    @pytest.mark.asyncio
    async def test_size_mismatch_is_refused(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(100)], size=150)

        with pytest.raises(MissingChunkError):
            await reconstructor.download("post-x", OWNER)

    @pytest.mark.asyncio
    async def test_file_without_chunks_is_refused(self, reconstructor, folder, backend):
        _store(backend, "post-x", [], size=10)

        with pytest.raises(MissingChunkError):
            await reconstructor.download("post-x", OWNER)

    @pytest.mark.asyncio
    async def test_unknown_file(self, reconstructor, folder):
        with pytest.raises(FileNotFoundError):
            await reconstructor.download("nope", OWNER)

    @pytest.mark.asyncio
    async def test_other_owner(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(10)])

        with pytest.raises(FileNotFoundError):
            await reconstructor.download("post-x", OTHER_OWNER)

    @pytest.mark.asyncio
    async def test_incomplete_upload_is_not_downloadable(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(10)], status=UploadStatus.FAILED)

        with pytest.raises(FileNotFoundError):
            await reconstructor.download("post-x", OWNER)

    @pytest.mark.asyncio
    async def test_backend_unavailable(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(10)])
        backend._ready = False

        with pytest.raises(BackendUnavailableError):
            await reconstructor.download("post-x", OWNER)


class TestStreaming:

    @pytest.mark.asyncio
    async def test_chunks_stream_in_order(self, reconstructor, folder, backend):
        pieces = [make_content(100, seed=i) for i in range(3)]
        _store(backend, "post-x", pieces)

        file, length, stream = await reconstructor.download("post-x", OWNER)

        assert length == 300
        assert file.post_id == "post-x"
        assert await _collect(stream) == b"".join(pieces)

    @pytest.mark.asyncio
    async def test_chunks_fetched_only_on_demand(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(100, seed=i) for i in range(3)])

        _, _, stream = await reconstructor.download("post-x", OWNER)
        assert backend.download_calls == 0

        await stream.__anext__()
        assert backend.download_calls == 1

        await stream.__anext__()
        assert backend.download_calls == 2
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_download_transfer_is_logged(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(100, seed=i) for i in range(2)])

        _, _, stream = await reconstructor.download("post-x", OWNER)
        await _collect(stream)

        log = TransferLogRepository.list_by_file("post-x")[0]
        assert log.type.value == "download"
        assert log.status == TransferStatus.COMPLETED
        assert log.progress_percentage == 100
        assert log.bytes_transferred == 200

    @pytest.mark.asyncio
    async def test_empty_file(self, reconstructor, folder, backend):
        _store(backend, "post-x", [])

        _, length, stream = await reconstructor.download("post-x", OWNER)

        assert length == 0
        assert await _collect(stream) == b""
        assert TransferLogRepository.list_by_file("post-x")[0].status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_fetch_failure_fails_transfer(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(100, seed=i) for i in range(2)])
        del backend.attachments["https://cdn.test/attachments/post-x/m1/chunk"]

        _, _, stream = await reconstructor.download("post-x", OWNER)
        with pytest.raises(TransferIOError):
            await _collect(stream)

        assert TransferLogRepository.list_by_file("post-x")[0].status == TransferStatus.FAILED

    @pytest.mark.asyncio
    async def test_corrupted_chunk_detected(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(100)])
        url = "https://cdn.test/attachments/post-x/m0/chunk"
        backend.attachments[url] = bytes(100)

        _, _, stream = await reconstructor.download("post-x", OWNER)
        with pytest.raises(TransferIOError, match="Checksum"):
            await _collect(stream)

    @pytest.mark.asyncio
    async def test_abandoned_stream_cancels_transfer(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(100, seed=i) for i in range(3)])

        _, _, stream = await reconstructor.download("post-x", OWNER)
        await stream.__anext__()
        await stream.aclose()

        assert TransferLogRepository.list_by_file("post-x")[0].status == TransferStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_stream_never_iterated_leaves_no_transfer(self, reconstructor, folder, backend):
        _store(backend, "post-x", [make_content(100)])

        _, _, stream = await reconstructor.download("post-x", OWNER)
        await stream.aclose()

        assert TransferLogRepository.list_by_file("post-x") == []
        assert backend.download_calls == 0

    @pytest.mark.asyncio
    async def test_consumer_cancelled_during_fetch(self, reconstructor, folder, backend, telemetry):
        _store(backend, "post-x", [make_content(100, seed=i) for i in range(3)])
        backend.download_delay = 1
        _, _, stream = await reconstructor.download("post-x", OWNER)

        consumer = asyncio.create_task(_collect(stream))
        for _ in range(100):
            if backend.download_calls:
                break
            await asyncio.sleep(0.01)
        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer

        assert len(telemetry.manager) == 0
        assert TransferLogRepository.list_by_file("post-x")[0].status == TransferStatus.CANCELLED
        assert reconstructor._download_slots.in_use(OWNER) == 0
