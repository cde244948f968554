"""Drives a file upload chunk by chunk through the storage backend."""

import asyncio
import hashlib
import time
from dataclasses import dataclass, replace
from typing import BinaryIO, Dict, Optional, Tuple, Union

from common.constants import BACKEND_ATTACHMENT_CAP_BYTES, RETRY_BASE_DELAY_SECONDS
from common.logging_config import get_logger
from common.types import ChunkReceipt, ConflictAction, TransferType, UploadStatus
from stash.backend.adapter import StorageBackendAdapter, chunk_label
from stash.chunk_planner import plan_chunks
from stash.config import PENDING_UPLOAD_TTL_SECONDS, SPOOL_DIR
from stash.conflict_resolver import Conflict, ConflictResolver, UploadCandidate
from stash.exceptions import (
    BackendUnavailableError,
    FolderNotFoundError,
    PendingUploadNotFoundError,
    StashException,
    TransferCancelledError,
    TransferIOError,
    TransferStateError,
)
from stash.repositories.chunk_repository import Chunk, ChunkRepository
from stash.repositories.file_repository import File, FileRepository
from stash.repositories.folder_repository import FolderRepository
from stash.repositories.orphan_repository import OrphanRepository
from stash.repositories.transfer_log_repository import TransferLog, TransferLogRepository
from stash.services.settings_service import SettingsService, TransferSettings
from stash.services.transfer_slots import KeyedLocks, TransferSlots
from stash.spool import SpooledUpload
from stash.telemetry import TransferTelemetry
from stash.utils import format_file_size, generate_uuid, guess_mime_type

logger = get_logger(__name__)


class CancellationToken:
    """
    Cancellation signal checked by the chunk loop between chunks.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Cancelled by user") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise TransferCancelledError(self.reason or "Transfer cancelled")

    async def sleep(self, delay: float) -> None:
        """Sleep for delay seconds, waking early on cancellation."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass


@dataclass
class PendingUpload:
    pending_id: str
    conflict: Conflict
    transfer: TransferLog
    source: SpooledUpload
    created_at: float


@dataclass
class UploadOutcome:
    """
    Result of an upload request: either the stored file or a conflict
    waiting for a resolution under pending_id.
    """
    transfer_id: str
    file: Optional[File] = None
    conflict: Optional[Conflict] = None
    pending_id: Optional[str] = None

    @property
    def is_conflict(self) -> bool:
        return self.conflict is not None


class PendingUploadStore:
    """
    Uploads suspended at 'pending' until someone resolves their conflict.
    """

    def __init__(self, ttl_seconds: float = PENDING_UPLOAD_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._pending: Dict[str, PendingUpload] = {}

    def put(self, pending: PendingUpload) -> None:
        self._pending[pending.pending_id] = pending

    def pop(self, pending_id: str, owner_id: str) -> PendingUpload:
        pending = self._pending.get(pending_id)
        if pending is None or pending.conflict.candidate.owner_id != owner_id:
            raise PendingUploadNotFoundError(f"No pending upload {pending_id}")
        return self._pending.pop(pending_id)

    def find_by_transfer(self, transfer_id: str) -> Optional[PendingUpload]:
        for pending in self._pending.values():
            if pending.transfer.transfer_id == transfer_id:
                return pending
        return None

    def discard(self, pending_id: str) -> Optional[PendingUpload]:
        return self._pending.pop(pending_id, None)

    def expired(self, now: float) -> list:
        stale = [p for p in self._pending.values() if now - p.created_at > self.ttl_seconds]
        for pending in stale:
            del self._pending[pending.pending_id]
        return stale

    def __len__(self) -> int:
        return len(self._pending)


class UploadOrchestrator:
    """
    Runs uploads through pending -> in_progress -> completed | failed | cancelled.

    Chunks of one file go strictly one after another; separate files run
    concurrently, at most max_concurrent_uploads at a time per owner.
    """

    def __init__(
        self,
        backend: StorageBackendAdapter,
        telemetry: TransferTelemetry,
        settings_service: SettingsService,
        conflict_resolver: Optional[ConflictResolver] = None,
        pending_store: Optional[PendingUploadStore] = None,
        hard_cap_bytes: int = BACKEND_ATTACHMENT_CAP_BYTES,
        retry_base_delay: float = RETRY_BASE_DELAY_SECONDS,
        spool_dir: Optional[str] = SPOOL_DIR,
    ):
        self.backend = backend
        self.telemetry = telemetry
        self.settings_service = settings_service
        self.conflict_resolver = conflict_resolver or ConflictResolver(backend)
        self.pending_store = pending_store or PendingUploadStore()
        self.hard_cap_bytes = hard_cap_bytes
        self.retry_base_delay = retry_base_delay
        self.spool_dir = spool_dir
        self._upload_slots = TransferSlots()
        self._name_locks = KeyedLocks()
        self._tokens: Dict[str, CancellationToken] = {}

    async def upload(
        self,
        owner_id: str,
        folder_id: str,
        file_name: str,
        source: BinaryIO,
        mime_type: Optional[str] = None,
    ) -> UploadOutcome:
        """
        Start an upload. Returns the stored file, or a conflict outcome that
        must later be passed to resolve() with its pending_id.

        Raises:
            FolderNotFoundError: Target folder missing or not owned
            BackendUnavailableError: Backend not connected
            TransferIOError: A chunk could not be stored after all retries
            TransferCancelledError: The transfer was cancelled between chunks
        """
        if FolderRepository.get_owned(folder_id, owner_id) is None:
            raise FolderNotFoundError(f"Folder {folder_id} not found")

        self._expire_pending()

        spooled = await asyncio.to_thread(SpooledUpload.from_stream, source, self.spool_dir)

        # held until the file row exists, so a concurrent twin sees it as a duplicate
        name_key = (owner_id, folder_id, file_name)
        try:
            await self._name_locks.acquire(name_key)
        except BaseException:
            spooled.close()
            raise

        transfer: Optional[TransferLog] = None
        try:
            candidate = UploadCandidate(
                owner_id=owner_id,
                folder_id=folder_id,
                name=file_name,
                size=spooled.size,
                mime_type=guess_mime_type(file_name, mime_type),
            )
            transfer = self.telemetry.create_transfer(
                owner_id=owner_id,
                transfer_type=TransferType.UPLOAD,
                file_name=file_name,
                file_size=spooled.size,
                mime_type=candidate.mime_type,
            )
            settings = self.settings_service.get_settings(owner_id)
            conflict = self.conflict_resolver.detect(candidate, settings.duplicate_detection)
        except BaseException as e:
            self._name_locks.release(name_key)
            spooled.close()
            if transfer is not None:
                self.telemetry.fail(transfer.transfer_id, str(e) or type(e).__name__, _error_code(e))
            raise

        if conflict is not None:
            self._name_locks.release(name_key)
            pending = PendingUpload(
                pending_id=generate_uuid(),
                conflict=conflict,
                transfer=transfer,
                source=spooled,
                created_at=time.monotonic(),
            )
            self.pending_store.put(pending)
            logger.info(
                f"Upload of {file_name} suspended on conflict [pending_id={pending.pending_id}] "
                f"[transfer_id={transfer.transfer_id}]"
            )
            return UploadOutcome(transfer_id=transfer.transfer_id, conflict=conflict, pending_id=pending.pending_id)

        try:
            stored = await self._run_transfer(candidate, spooled, transfer, settings, name_key)
        finally:
            spooled.close()

        return UploadOutcome(transfer_id=transfer.transfer_id, file=stored)

    async def resolve(self, owner_id: str, pending_id: str, action: Union[str, ConflictAction]) -> File:
        """
        Resume a suspended upload with the caller's decision.

        keep: abandon the new upload and return the existing file unchanged
        replace: delete the existing file, then upload under the same name
        rename: upload under the first free 'name (n).ext' variant
        """
        action = self.conflict_resolver.parse_action(action)
        self._expire_pending()
        pending = self.pending_store.pop(pending_id, owner_id)
        candidate = pending.conflict.candidate
        existing = pending.conflict.existing

        logger.info(f"Resolving conflict [pending_id={pending_id}] with action={action.value}")

        held_key = None
        try:
            if action == ConflictAction.KEEP:
                self.telemetry.cancel(pending.transfer.transfer_id, f"Kept existing file {existing.name}")
                return FileRepository.get_by_id(existing.post_id) or existing

            name_key = (owner_id, candidate.folder_id, candidate.name)
            await self._name_locks.acquire(name_key)
            held_key = name_key

            if action == ConflictAction.REPLACE:
                try:
                    await self.conflict_resolver.discard_existing(existing)
                except StashException as e:
                    self.telemetry.fail(pending.transfer.transfer_id, str(e), _error_code(e))
                    raise
            else:
                new_name = self.conflict_resolver.available_name(owner_id, candidate.folder_id, candidate.name)
                logger.info(f"Renaming upload {candidate.name} -> {new_name}")
                candidate = replace(candidate, name=new_name)

            settings = self.settings_service.get_settings(owner_id)
            held_key = None
            return await self._run_transfer(candidate, pending.source, pending.transfer, settings, name_key)
        finally:
            if held_key is not None:
                self._name_locks.release(held_key)
            pending.source.close()

    def cancel(self, transfer_id: str, owner_id: str) -> bool:
        """
        Ask a transfer to stop. Running uploads stop before their next chunk;
        uploads parked on a conflict are cancelled immediately.

        Returns:
            True if the transfer was running or pending and is now cancelling
        """
        transfer = TransferLogRepository.get_by_id(transfer_id)
        if transfer is None or transfer.owner_id != owner_id:
            raise TransferStateError(f"Transfer {transfer_id} not found")

        token = self._tokens.get(transfer_id)
        if token is not None:
            token.cancel()
            logger.info(f"Cancellation requested [transfer_id={transfer_id}]")
            return True

        pending = self.pending_store.find_by_transfer(transfer_id)
        if pending is not None:
            self.pending_store.discard(pending.pending_id)
            pending.source.close()
            self.telemetry.cancel(transfer_id, "Cancelled while waiting for conflict resolution")
            return True

        raise TransferStateError(f"Transfer {transfer_id} is {transfer.status.value} and cannot be cancelled")

    def _expire_pending(self) -> None:
        for pending in self.pending_store.expired(time.monotonic()):
            logger.warning(f"Pending upload {pending.pending_id} expired without a resolution")
            pending.source.close()
            self.telemetry.cancel(pending.transfer.transfer_id, "Conflict was not resolved in time")

    async def _run_transfer(
        self,
        candidate: UploadCandidate,
        source: SpooledUpload,
        transfer: TransferLog,
        settings: TransferSettings,
        name_key: Optional[Tuple[str, str, str]] = None,
    ) -> File:
        """
        Store the candidate chunk by chunk. name_key, if given, is a held name
        lock; it is released once the file row exists.
        """
        token = CancellationToken()
        self._tokens[transfer.transfer_id] = token
        stored: Optional[File] = None

        try:
            async with self._upload_slots.hold(candidate.owner_id, settings.max_concurrent_uploads):
                token.raise_if_cancelled()
                if not self.backend.is_ready:
                    raise BackendUnavailableError("Storage backend is not connected")

                plan = plan_chunks(candidate.size, settings.chunk_size_bytes, self.hard_cap_bytes)
                post_id = await self.backend.create_post(
                    candidate.folder_id,
                    candidate.name,
                    f"{candidate.name}\n{format_file_size(candidate.size)} in {len(plan)} chunks",
                )
                stored = FileRepository.create_file(
                    post_id=post_id,
                    name=candidate.name,
                    original_name=candidate.name,
                    size=candidate.size,
                    mime_type=candidate.mime_type,
                    folder_id=candidate.folder_id,
                    owner_id=candidate.owner_id,
                    upload_status=UploadStatus.IN_PROGRESS,
                    file_hash=source.sha256,
                )
                if name_key is not None:
                    self._name_locks.release(name_key)
                    name_key = None

                if len(plan) == 0:
                    FileRepository.update_status(post_id, UploadStatus.COMPLETED)
                    self.telemetry.complete_empty(transfer, post_id)
                    stored.upload_status = UploadStatus.COMPLETED
                    logger.info(f"Stored empty file {candidate.name} as post {post_id}")
                    return stored

                self.telemetry.activate(transfer, post_id, candidate.size, len(plan))
                logger.info(
                    f"Uploading {candidate.name} ({format_file_size(candidate.size)}) as {len(plan)} chunks "
                    f"of up to {format_file_size(plan.chunk_size)} [post_id={post_id}]"
                )

                for chunk_range in plan:
                    token.raise_if_cancelled()
                    data = await asyncio.to_thread(source.read_range, chunk_range.start, chunk_range.end)
                    receipt = await self._upload_chunk_with_retry(
                        post_id, data, chunk_label(candidate.name, chunk_range.index), settings, token
                    )
                    ChunkRepository.create_chunk(Chunk(
                        message_id=receipt.message_id,
                        file_id=post_id,
                        chunk_index=chunk_range.index,
                        size=len(data),
                        attachment_id=receipt.attachment_id,
                        retrieval_url=receipt.retrieval_url,
                        checksum=hashlib.sha256(data).hexdigest(),
                    ))
                    if chunk_range.index == len(plan) - 1:
                        FileRepository.update_status(post_id, UploadStatus.COMPLETED)
                    await self.telemetry.record_chunk(transfer.transfer_id, len(data))
                    logger.debug(f"Stored chunk {chunk_range.index + 1}/{len(plan)} of {candidate.name}")

                stored.upload_status = UploadStatus.COMPLETED
                logger.info(f"Upload completed: {candidate.name} [post_id={post_id}]")
                return stored

        except (TransferCancelledError, asyncio.CancelledError) as e:
            reason = str(e) or "Upload task was cancelled"
            self._abandon(stored, candidate, reason, settings)
            self.telemetry.cancel(transfer.transfer_id, reason)
            raise
        except Exception as e:
            logger.error(f"Upload failed for {candidate.name} [transfer_id={transfer.transfer_id}]: {e}")
            self._abandon(stored, candidate, str(e), settings)
            self.telemetry.fail(transfer.transfer_id, str(e), _error_code(e))
            raise
        finally:
            self._tokens.pop(transfer.transfer_id, None)
            if name_key is not None:
                self._name_locks.release(name_key)

    async def _upload_chunk_with_retry(
        self,
        post_id: str,
        data: bytes,
        label: str,
        settings: TransferSettings,
        token: CancellationToken,
    ) -> ChunkReceipt:
        """
        Upload one chunk, retrying I/O failures with exponential backoff.
        retry_attempts is the total number of attempts.
        """
        attempts = max(1, settings.retry_attempts)
        last_error: Optional[TransferIOError] = None

        for attempt in range(attempts):
            token.raise_if_cancelled()
            try:
                return await asyncio.wait_for(
                    self.backend.upload_chunk(post_id, data, label),
                    timeout=settings.timeout_seconds,
                )
            except asyncio.TimeoutError:
                last_error = TransferIOError(f"Uploading {label} timed out after {settings.timeout_seconds}s")
            except TransferIOError as e:
                last_error = e

            if attempt < attempts - 1:
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(
                    f"Chunk {label} failed, retrying in {delay}s (attempt {attempt + 1}/{attempts}): {last_error}"
                )
                await token.sleep(delay)

        logger.error(f"Chunk {label} failed after {attempts} attempts: {last_error}")
        raise last_error

    def _abandon(
        self,
        stored: Optional[File],
        candidate: UploadCandidate,
        reason: str,
        settings: TransferSettings,
    ) -> None:
        """
        Mark a half-written file as failed. Its post and chunk rows stay; the
        post is either queued for background cleanup or only logged.
        """
        if stored is None:
            return

        FileRepository.update_status(stored.post_id, UploadStatus.FAILED)
        stored.upload_status = UploadStatus.FAILED
        uploaded = len(ChunkRepository.get_chunks_by_file(stored.post_id))

        if settings.auto_cleanup_failed_uploads:
            OrphanRepository.record(stored.post_id, candidate.owner_id, reason)
            logger.warning(
                f"Post {stored.post_id} left with {uploaded} uploaded chunks; queued for background cleanup"
            )
        else:
            logger.warning(
                f"Post {stored.post_id} left with {uploaded} uploaded chunks; needs manual cleanup"
            )


def _error_code(error: Exception) -> str:
    if isinstance(error, TransferIOError):
        return "TRANSFER_IO_ERROR"
    if isinstance(error, BackendUnavailableError):
        return "BACKEND_UNAVAILABLE"
    if isinstance(error, StashException):
        return type(error).__name__
    return "INTERNAL_ERROR"
