"""Background task for cleaning up posts left behind by failed uploads."""

import asyncio
from typing import Optional

from common.logging_config import get_logger
from common.types import UploadStatus
from stash.backend.adapter import StorageBackendAdapter
from stash.config import ORPHAN_CLEANUP_INTERVAL_SECONDS, ORPHAN_MAX_ATTEMPTS
from stash.database import get_db_connection
from stash.repositories.chunk_repository import ChunkRepository
from stash.repositories.file_repository import FileRepository
from stash.repositories.orphan_repository import OrphanRepository
from stash.repositories.transfer_log_repository import TransferLogRepository

logger = get_logger(__name__)


class OrphanedPostCleaner:
    """
    Background task that periodically deletes orphaned backend posts and
    the rows of their failed files.
    """

    def __init__(
        self,
        backend: StorageBackendAdapter,
        interval_seconds: int = ORPHAN_CLEANUP_INTERVAL_SECONDS,
        max_attempts: int = ORPHAN_MAX_ATTEMPTS,
    ):
        """
        Initialize cleaner task.

        Args:
            backend: Adapter used to delete posts
            interval_seconds: Time between cleanup attempts (default 6 hours)
            max_attempts: Orphans that failed this many times are left for manual cleanup
        """
        self.backend = backend
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the background cleanup task."""
        if self._running:
            logger.warning("Cleanup task already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started orphaned post cleanup task (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the background cleanup task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("Stopped orphaned post cleanup task")

    def recover_interrupted(self) -> int:
        """
        Fail uploads and transfers a previous process left unfinished and
        queue their posts for cleanup. Call once at startup.

        Returns:
            Number of interrupted files found
        """
        interrupted = (
            FileRepository.list_by_status(UploadStatus.IN_PROGRESS)
            + FileRepository.list_by_status(UploadStatus.PENDING)
        )
        for file in interrupted:
            FileRepository.update_status(file.post_id, UploadStatus.FAILED)
            OrphanRepository.record(file.post_id, file.owner_id, "Upload interrupted by restart")
            logger.warning(f"Upload of {file.name} was interrupted [post_id={file.post_id}]")

        stale = TransferLogRepository.fail_unfinished("Interrupted by restart")
        if interrupted or stale:
            logger.info(f"Recovered {len(interrupted)} interrupted uploads and {stale} unfinished transfers")
        return len(interrupted)

    async def _run(self) -> None:
        """Main loop for cleanup task."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                await self.cleanup_cycle()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in cleanup task: {e}", exc_info=True)

    async def cleanup_cycle(self) -> int:
        """
        Execute one cleanup cycle.

        Returns:
            Number of posts cleaned
        """
        if not self.backend.is_ready:
            logger.debug("Backend not ready, skipping cleanup cycle")
            return 0

        orphans = OrphanRepository.list_pending(self.max_attempts)
        if not orphans:
            logger.debug("No orphaned posts to clean")
            return 0

        logger.info(f"Starting cleanup cycle for {len(orphans)} orphaned posts")
        cleaned_count = 0

        for orphan in orphans:
            file = FileRepository.get_by_id(orphan.post_id)
            if file is not None and file.upload_status == UploadStatus.COMPLETED:
                OrphanRepository.remove(orphan.post_id)
                continue

            try:
                await self.backend.delete_post(orphan.post_id)
            except Exception as e:
                logger.warning(f"Error cleaning orphaned post {orphan.post_id}: {e}")
                OrphanRepository.increment_attempts(orphan.post_id)
                continue

            with get_db_connection() as conn:
                try:
                    ChunkRepository.delete_chunks(orphan.post_id, conn=conn)
                    FileRepository.delete_file(orphan.post_id, conn=conn)
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise

            OrphanRepository.remove(orphan.post_id)
            cleaned_count += 1
            logger.info(f"Cleaned orphaned post {orphan.post_id}")

        logger.info(f"Cleanup cycle complete: {cleaned_count} cleaned, {len(orphans) - cleaned_count} remaining")
        return cleaned_count
