"""Tests for the upload state machine, conflicts, retries and cancellation."""

import asyncio
import hashlib
import io

import pytest

from common.types import TransferStatus, UploadStatus
from stash.exceptions import (
    BackendUnavailableError,
    FolderNotFoundError,
    InvalidConflictActionError,
    PendingUploadNotFoundError,
    TransferCancelledError,
    TransferIOError,
    TransferStateError,
)
from stash.repositories.chunk_repository import ChunkRepository
from stash.repositories.file_repository import FileRepository
from stash.repositories.orphan_repository import OrphanRepository
from stash.repositories.transfer_log_repository import TransferLogRepository
from stash.services.download_reconstructor import DownloadReconstructor
from stash.telemetry import TRANSFER_PROGRESS

from conftest import FOLDER, OTHER_OWNER, OWNER, make_content


async def _upload(orchestrator, content, name="data.bin", owner_id=OWNER):
    return await orchestrator.upload(owner_id, FOLDER, name, io.BytesIO(content))


async def _download(backend, telemetry, settings_service, file_id, owner_id=OWNER):
    reconstructor = DownloadReconstructor(backend, telemetry, settings_service)
    _, length, stream = await reconstructor.download(file_id, owner_id)
    data = b"".join([piece async for piece in stream])
    assert len(data) == length
    return data


class TestSuccessfulUpload:

    @pytest.mark.asyncio
    async def test_upload_stores_contiguous_chunks(self, orchestrator, folder, backend):
        content = make_content(2500)

        outcome = await _upload(orchestrator, content)

        assert not outcome.is_conflict
        file = outcome.file
        assert file.upload_status == UploadStatus.COMPLETED
        assert file.size == 2500
        assert file.hash == hashlib.sha256(content).hexdigest()

        chunks = ChunkRepository.get_chunks_by_file(file.post_id)
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert [c.size for c in chunks] == [1024, 1024, 452]
        assert sum(c.size for c in chunks) == file.size
        assert backend.upload_calls == 3

    @pytest.mark.asyncio
    async def test_chunk_checksums_recorded(self, orchestrator, folder):
        content = make_content(1500)

        outcome = await _upload(orchestrator, content)

        chunks = ChunkRepository.get_chunks_by_file(outcome.file.post_id)
        assert chunks[0].checksum == hashlib.sha256(content[:1024]).hexdigest()
        assert chunks[1].checksum == hashlib.sha256(content[1024:]).hexdigest()

    @pytest.mark.asyncio
    async def test_round_trip_is_byte_identical(self, orchestrator, folder, backend, telemetry, settings_service):
        content = make_content(5000, seed=7)

        outcome = await _upload(orchestrator, content)
        downloaded = await _download(backend, telemetry, settings_service, outcome.file.post_id)

        assert downloaded == content

    @pytest.mark.asyncio
    async def test_progress_is_monotone_and_reaches_100_only_at_completion(self, orchestrator, folder, channel):
        outcome = await _upload(orchestrator, make_content(4000))

        events = [e for e in channel.drain() if e.data["transfer_id"] == outcome.transfer_id]
        progress_events = [e for e in events if e.event == TRANSFER_PROGRESS]
        percentages = [e.data["progress_percentage"] for e in progress_events]

        assert percentages == sorted(percentages)
        assert percentages[-1] == 100
        assert progress_events[-1].data["status"] == TransferStatus.COMPLETED.value
        assert all(p < 100 for p in percentages[:-1])

    @pytest.mark.asyncio
    async def test_transfer_log_completed(self, orchestrator, folder):
        outcome = await _upload(orchestrator, make_content(2048))

        log = TransferLogRepository.get_by_id(outcome.transfer_id)
        assert log.status == TransferStatus.COMPLETED
        assert log.file_id == outcome.file.post_id
        assert log.chunks_total == 2
        assert log.chunks_completed == 2
        assert log.bytes_transferred == 2048
        assert log.completed_at is not None

    @pytest.mark.asyncio
    async def test_empty_file_completes_without_chunks(self, orchestrator, folder, backend):
        outcome = await _upload(orchestrator, b"", name="empty.txt")

        assert outcome.file.upload_status == UploadStatus.COMPLETED
        assert outcome.file.size == 0
        assert backend.upload_calls == 0
        assert ChunkRepository.get_chunks_by_file(outcome.file.post_id) == []

        log = TransferLogRepository.get_by_id(outcome.transfer_id)
        assert log.status == TransferStatus.COMPLETED
        assert log.progress_percentage == 100

    @pytest.mark.asyncio
    async def test_duplicate_detection_off_creates_independent_files(self, orchestrator, folder, settings_service):
        settings_service.update_settings(OWNER, {"duplicate_detection": False})
        content = make_content(1200)

        first = await _upload(orchestrator, content)
        second = await _upload(orchestrator, content)

        assert not second.is_conflict
        assert first.file.post_id != second.file.post_id
        assert len(FileRepository.list_by_folder(OWNER, FOLDER)) == 2


class TestUploadPreconditions:

    @pytest.mark.asyncio
    async def test_unknown_folder(self, orchestrator, test_db):
        with pytest.raises(FolderNotFoundError):
            await _upload(orchestrator, b"abc")

    @pytest.mark.asyncio
    async def test_folder_of_other_owner(self, orchestrator, folder):
        with pytest.raises(FolderNotFoundError):
            await _upload(orchestrator, b"abc", owner_id=OTHER_OWNER)

    @pytest.mark.asyncio
    async def test_backend_unavailable_fails_before_creating_anything(self, orchestrator, folder, backend):
        backend._ready = False

        with pytest.raises(BackendUnavailableError):
            await _upload(orchestrator, make_content(100))

        assert backend.posts == {}
        assert FileRepository.list_by_folder(OWNER, FOLDER) == []
        assert TransferLogRepository.list_recent(OWNER)[0].status == TransferStatus.FAILED


class TestFailedUpload:

    @pytest.mark.asyncio
    async def test_second_of_three_chunks_failing(self, orchestrator, folder, backend):
        backend.fail_uploads_after = 1

        with pytest.raises(TransferIOError):
            await _upload(orchestrator, make_content(2500))

        files = FileRepository.list_by_folder(OWNER, FOLDER)
        assert len(files) == 1
        assert files[0].upload_status == UploadStatus.FAILED

        chunks = ChunkRepository.get_chunks_by_file(files[0].post_id)
        assert [c.chunk_index for c in chunks] == [0]

        log = TransferLogRepository.list_recent(OWNER)[0]
        assert log.status == TransferStatus.FAILED
        assert log.error_message
        assert log.progress_percentage < 100

    @pytest.mark.asyncio
    async def test_failed_post_is_queued_for_cleanup(self, orchestrator, folder, backend):
        backend.fail_uploads_after = 0

        with pytest.raises(TransferIOError):
            await _upload(orchestrator, make_content(100))

        post_id = FileRepository.list_by_folder(OWNER, FOLDER)[0].post_id
        assert [o.post_id for o in OrphanRepository.list_pending(5)] == [post_id]

    @pytest.mark.asyncio
    async def test_failed_post_not_queued_when_auto_cleanup_off(self, orchestrator, folder, backend, settings_service):
        settings_service.update_settings(OWNER, {"auto_cleanup_failed_uploads": False})
        backend.fail_uploads_after = 0

        with pytest.raises(TransferIOError):
            await _upload(orchestrator, make_content(100))

        assert OrphanRepository.list_pending(5) == []

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, orchestrator, folder, backend):
        backend.failing_calls = {2}

        outcome = await _upload(orchestrator, make_content(2500))

        assert outcome.file.upload_status == UploadStatus.COMPLETED
        assert backend.upload_calls == 4
        assert len(ChunkRepository.get_chunks_by_file(outcome.file.post_id)) == 3

    @pytest.mark.asyncio
    async def test_retry_attempts_bound_total_attempts(self, orchestrator, folder, backend, settings_service):
        settings_service.update_settings(OWNER, {"retry_attempts": 2})
        backend.fail_uploads_after = 0

        with pytest.raises(TransferIOError):
            await _upload(orchestrator, make_content(100))

        assert backend.upload_calls == 2

    @pytest.mark.asyncio
    async def test_chunk_timeout_counts_as_failure(self, orchestrator, folder, backend, settings_service):
        settings_service.update_settings(OWNER, {"retry_attempts": 1, "timeout_seconds": 1})
        backend.upload_delay = 1.5

        with pytest.raises(TransferIOError, match="timed out"):
            await _upload(orchestrator, make_content(100))


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_stops_between_chunks(self, orchestrator, folder, backend):
        def cancel_after_first(call):
            if call == 1:
                transfer_id = TransferLogRepository.list_recent(OWNER)[0].transfer_id
                assert orchestrator.cancel(transfer_id, OWNER) is True

        backend.after_upload = cancel_after_first

        with pytest.raises(TransferCancelledError):
            await _upload(orchestrator, make_content(3000))

        assert backend.upload_calls == 1
        log = TransferLogRepository.list_recent(OWNER)[0]
        assert log.status == TransferStatus.CANCELLED
        file = FileRepository.list_by_folder(OWNER, FOLDER)[0]
        assert file.upload_status == UploadStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel_of_other_owner_is_rejected(self, orchestrator, folder):
        outcome = await _upload(orchestrator, make_content(10))

        with pytest.raises(TransferStateError):
            orchestrator.cancel(outcome.transfer_id, OTHER_OWNER)

    @pytest.mark.asyncio
    async def test_cancel_of_finished_transfer_is_rejected(self, orchestrator, folder):
        outcome = await _upload(orchestrator, make_content(10))

        with pytest.raises(TransferStateError):
            orchestrator.cancel(outcome.transfer_id, OWNER)


class TestConflicts:

    @pytest.mark.asyncio
    async def test_duplicate_is_reported_not_stored(self, orchestrator, folder, backend):
        content = make_content(1500)
        first = await _upload(orchestrator, content)
        calls_before = backend.upload_calls

        second = await _upload(orchestrator, content)

        assert second.is_conflict
        assert second.pending_id
        assert second.conflict.existing.post_id == first.file.post_id
        assert len(FileRepository.list_by_folder(OWNER, FOLDER)) == 1
        assert backend.upload_calls == calls_before
        assert TransferLogRepository.get_by_id(second.transfer_id).status == TransferStatus.PENDING

    @pytest.mark.asyncio
    async def test_keep_leaves_existing_untouched(self, orchestrator, folder):
        content = make_content(1500)
        first = await _upload(orchestrator, content)
        before = FileRepository.get_by_id(first.file.post_id)
        second = await _upload(orchestrator, content)

        kept = await orchestrator.resolve(OWNER, second.pending_id, "keep")

        assert kept.post_id == first.file.post_id
        files = FileRepository.list_by_folder(OWNER, FOLDER)
        assert len(files) == 1
        assert files[0].updated_at == before.updated_at
        assert TransferLogRepository.get_by_id(second.transfer_id).status == TransferStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_replace_leaves_single_file_with_new_content(
        self, orchestrator, folder, backend, telemetry, settings_service
    ):
        old_content = make_content(1500, seed=1)
        new_content = make_content(1500, seed=2)
        first = await _upload(orchestrator, old_content)
        second = await _upload(orchestrator, new_content)

        replaced = await orchestrator.resolve(OWNER, second.pending_id, "replace")

        files = FileRepository.list_by_folder(OWNER, FOLDER)
        assert [f.post_id for f in files] == [replaced.post_id]
        assert replaced.size == len(new_content)
        assert replaced.name == "data.bin"
        assert ChunkRepository.get_chunks_by_file(first.file.post_id) == []
        assert first.file.post_id in backend.deleted_posts
        assert await _download(backend, telemetry, settings_service, replaced.post_id) == new_content

    @pytest.mark.asyncio
    async def test_rename_stores_under_free_name(self, orchestrator, folder):
        content = make_content(1500)
        await _upload(orchestrator, content, name="photo.jpg")
        second = await _upload(orchestrator, content, name="photo.jpg")

        renamed = await orchestrator.resolve(OWNER, second.pending_id, "rename")

        assert renamed.name == "photo (1).jpg"
        assert renamed.upload_status == UploadStatus.COMPLETED
        names = sorted(f.name for f in FileRepository.list_by_folder(OWNER, FOLDER))
        assert names == ["photo (1).jpg", "photo.jpg"]

    @pytest.mark.asyncio
    async def test_invalid_action_keeps_pending_upload(self, orchestrator, folder):
        content = make_content(100)
        await _upload(orchestrator, content)
        second = await _upload(orchestrator, content)

        with pytest.raises(InvalidConflictActionError):
            await orchestrator.resolve(OWNER, second.pending_id, "merge")

        renamed = await orchestrator.resolve(OWNER, second.pending_id, "rename")
        assert renamed.name == "data (1).bin"

    @pytest.mark.asyncio
    async def test_unknown_pending_id(self, orchestrator, folder):
        with pytest.raises(PendingUploadNotFoundError):
            await orchestrator.resolve(OWNER, "does-not-exist", "keep")

    @pytest.mark.asyncio
    async def test_pending_upload_of_other_owner(self, orchestrator, folder):
        content = make_content(100)
        await _upload(orchestrator, content)
        second = await _upload(orchestrator, content)

        with pytest.raises(PendingUploadNotFoundError):
            await orchestrator.resolve(OTHER_OWNER, second.pending_id, "keep")

    @pytest.mark.asyncio
    async def test_expired_pending_upload_is_cancelled(self, orchestrator, folder):
        content = make_content(100)
        await _upload(orchestrator, content)
        second = await _upload(orchestrator, content)
        orchestrator.pending_store.ttl_seconds = -1

        with pytest.raises(PendingUploadNotFoundError):
            await orchestrator.resolve(OWNER, second.pending_id, "rename")

        assert TransferLogRepository.get_by_id(second.transfer_id).status == TransferStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_pending_upload(self, orchestrator, folder):
        content = make_content(100)
        await _upload(orchestrator, content)
        second = await _upload(orchestrator, content)

        assert orchestrator.cancel(second.transfer_id, OWNER) is True

        assert TransferLogRepository.get_by_id(second.transfer_id).status == TransferStatus.CANCELLED
        with pytest.raises(PendingUploadNotFoundError):
            await orchestrator.resolve(OWNER, second.pending_id, "keep")


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_uploads_bounded_per_owner(self, orchestrator, folder, backend, settings_service):
        settings_service.update_settings(OWNER, {"max_concurrent_uploads": 2})
        backend.upload_delay = 0.01

        outcomes = await asyncio.gather(*[
            _upload(orchestrator, make_content(2048, seed=i), name=f"file-{i}.bin")
            for i in range(5)
        ])

        assert all(o.file.upload_status == UploadStatus.COMPLETED for o in outcomes)
        assert 1 <= backend.max_in_flight <= 2
        assert len({o.file.post_id for o in outcomes}) == 5

    @pytest.mark.asyncio
    async def test_concurrent_identical_uploads_store_one_file(self, orchestrator, folder, backend):
        backend.post_delay = 0.01
        content = make_content(3000)

        outcomes = await asyncio.gather(
            _upload(orchestrator, content, name="same.bin"),
            _upload(orchestrator, content, name="same.bin"),
        )

        assert sorted(o.is_conflict for o in outcomes) == [False, True]
        assert len(FileRepository.list_by_folder(OWNER, FOLDER)) == 1
        assert len(orchestrator._name_locks) == 0

    @pytest.mark.asyncio
    async def test_concurrent_renames_pick_distinct_names(self, orchestrator, folder, backend):
        await _upload(orchestrator, make_content(100), name="doc.txt")
        first = await _upload(orchestrator, make_content(100), name="doc.txt")
        second = await _upload(orchestrator, make_content(100), name="doc.txt")
        backend.post_delay = 0.01

        renamed = await asyncio.gather(
            orchestrator.resolve(OWNER, first.pending_id, "rename"),
            orchestrator.resolve(OWNER, second.pending_id, "rename"),
        )

        assert sorted(f.name for f in renamed) == ["doc (1).txt", "doc (2).txt"]


class TestUploadCleanup:

    @pytest.mark.asyncio
    async def test_spool_removed_when_detection_raises(self, orchestrator, folder, tmp_path, monkeypatch):
        def broken_detect(candidate, enabled):
            raise RuntimeError("lookup failed")

        monkeypatch.setattr(orchestrator.conflict_resolver, "detect", broken_detect)

        with pytest.raises(RuntimeError):
            await _upload(orchestrator, make_content(500))

        assert list(tmp_path.glob("stash-*.part")) == []
        assert TransferLogRepository.list_recent(OWNER)[0].status == TransferStatus.FAILED
        assert len(orchestrator._name_locks) == 0

    @pytest.mark.asyncio
    async def test_spool_removed_after_upload(self, orchestrator, folder, tmp_path):
        await _upload(orchestrator, make_content(2500))

        assert list(tmp_path.glob("stash-*.part")) == []

    @pytest.mark.asyncio
    async def test_cancelled_upload_task_finalizes_transfer(self, orchestrator, folder, backend, telemetry):
        backend.upload_delay = 1

        task = asyncio.create_task(_upload(orchestrator, make_content(2500)))
        for _ in range(100):
            if backend.upload_calls:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        log = TransferLogRepository.list_recent(OWNER)[0]
        assert log.status == TransferStatus.CANCELLED
        assert len(telemetry.manager) == 0
        [stored] = FileRepository.list_by_folder(OWNER, FOLDER)
        assert stored.upload_status == UploadStatus.FAILED
        assert OrphanRepository.list_pending(5)[0].post_id == stored.post_id
