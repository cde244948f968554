"""Per-transfer progress aggregation and event publication."""

import asyncio
import time
from datetime import datetime
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from common.logging_config import get_logger
from common.types import TransferStatus, TransferType
from stash.exceptions import TransferStateError
from stash.repositories.transfer_log_repository import TransferLog, TransferLogRepository
from stash.utils import generate_uuid

logger = get_logger(__name__)

TRANSFER_CREATED = "transfer_created"
TRANSFER_PROGRESS = "transfer_progress"

DEFAULT_CHANNEL_SIZE = 1000


@dataclass(frozen=True)
class TransferEvent:
    """
    Outbound event for one owner, carrying a full TransferLog snapshot.
    """
    event: str
    owner_id: str
    data: Dict[str, Any]


class TransferChannel:
    """
    Bounded outbound queue between telemetry (producer) and the broadcaster
    (consumer). Publishing never blocks; when full the oldest event is dropped.
    """

    def __init__(self, max_size: int = DEFAULT_CHANNEL_SIZE):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)

    def publish(self, event: TransferEvent) -> None:
        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.warning(f"Transfer channel full, dropped {dropped.event} for owner {dropped.owner_id}")
        self._queue.put_nowait(event)

    async def get(self) -> TransferEvent:
        return await self._queue.get()

    def drain(self) -> List[TransferEvent]:
        """Take every queued event without waiting."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def __len__(self) -> int:
        return self._queue.qsize()


@dataclass
class TransferAggregate:
    transfer_id: str
    owner_id: str
    transfer_type: TransferType
    file_id: Optional[str]
    file_name: str
    file_size: int
    chunks_total: int
    start_time: float
    last_update_time: float
    chunks_completed: int = 0
    bytes_transferred: int = 0
    progress_percentage: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class ActiveTransferManager:
    """
    Owns the in-memory aggregates of transfers that are still running.
    Keyed by transfer id; uploads can also be looked up by file id.
    """

    def __init__(self):
        self._transfers: Dict[str, TransferAggregate] = {}

    def add(self, aggregate: TransferAggregate) -> None:
        if aggregate.transfer_id in self._transfers:
            raise TransferStateError(f"Transfer {aggregate.transfer_id} is already active")
        self._transfers[aggregate.transfer_id] = aggregate

    def get(self, transfer_id: str) -> Optional[TransferAggregate]:
        return self._transfers.get(transfer_id)

    def find_by_file(self, file_id: str) -> Optional[TransferAggregate]:
        for aggregate in self._transfers.values():
            if aggregate.file_id == file_id:
                return aggregate
        return None

    def remove(self, transfer_id: str) -> Optional[TransferAggregate]:
        return self._transfers.pop(transfer_id, None)

    def __contains__(self, transfer_id: str) -> bool:
        return transfer_id in self._transfers

    def __len__(self) -> int:
        return len(self._transfers)


class TransferTelemetry:
    """
    Turns chunk-level events into per-transfer progress, speed and ETA,
    persists them onto the TransferLog row and publishes them.
    """

    def __init__(
        self,
        channel: TransferChannel,
        manager: Optional[ActiveTransferManager] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.channel = channel
        self.manager = manager or ActiveTransferManager()
        self._clock = clock

    def _publish(self, event: str, log: TransferLog) -> None:
        self.channel.publish(TransferEvent(event=event, owner_id=log.owner_id, data=log.to_dict()))

    def create_transfer(
        self,
        owner_id: str,
        transfer_type: TransferType,
        file_name: str,
        file_size: Optional[int] = None,
        mime_type: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> TransferLog:
        """
        Persist a new pending TransferLog and announce it.
        """
        log = TransferLogRepository.create(
            transfer_id=generate_uuid(),
            owner_id=owner_id,
            transfer_type=transfer_type,
            file_name=file_name,
            file_size=file_size,
            mime_type=mime_type,
            file_id=file_id,
        )
        self._publish(TRANSFER_CREATED, log)
        logger.info(f"Transfer created [transfer_id={log.transfer_id}] type={transfer_type.value} file={file_name}")
        return log

    def activate(self, transfer: TransferLog, file_id: str, file_size: int, chunks_total: int) -> TransferAggregate:
        """
        Move a pending transfer to in_progress and start tracking it.
        """
        if transfer.status != TransferStatus.PENDING:
            raise TransferStateError(
                f"Transfer {transfer.transfer_id} cannot start from status {transfer.status.value}"
            )

        now = self._clock()
        aggregate = TransferAggregate(
            transfer_id=transfer.transfer_id,
            owner_id=transfer.owner_id,
            transfer_type=transfer.type,
            file_id=file_id,
            file_name=transfer.file_name,
            file_size=file_size,
            chunks_total=chunks_total,
            start_time=now,
            last_update_time=now,
        )
        self.manager.add(aggregate)

        log = TransferLogRepository.update(
            transfer.transfer_id,
            file_id=file_id,
            status=TransferStatus.IN_PROGRESS,
            chunks_total=chunks_total,
            started_at=datetime.utcnow(),
        )
        self._publish(TRANSFER_PROGRESS, log)
        return aggregate

    async def record_chunk(self, transfer_id: str, chunk_size: int) -> TransferLog:
        """
        Account for one finished chunk. Completes the transfer when it was the last one.
        """
        aggregate = self.manager.get(transfer_id)
        if aggregate is None:
            raise TransferStateError(f"Transfer {transfer_id} is not active")

        async with aggregate.lock:
            aggregate.chunks_completed += 1
            aggregate.bytes_transferred += chunk_size
            aggregate.last_update_time = self._clock()

            finished = aggregate.chunks_completed >= aggregate.chunks_total
            aggregate.progress_percentage = self._progress(aggregate, finished)

            elapsed = aggregate.last_update_time - aggregate.start_time
            speed = aggregate.bytes_transferred / elapsed if elapsed > 0 else 0
            remaining = max(aggregate.file_size - aggregate.bytes_transferred, 0)
            eta = round(remaining / speed) if speed > 0 else None

            fields: Dict[str, Any] = {
                "status": TransferStatus.COMPLETED if finished else TransferStatus.IN_PROGRESS,
                "bytes_transferred": aggregate.bytes_transferred,
                "progress_percentage": aggregate.progress_percentage,
                "chunks_completed": aggregate.chunks_completed,
                "transfer_speed": round(speed),
                "estimated_time_remaining": eta,
            }
            if finished:
                fields["completed_at"] = datetime.utcnow()
            log = TransferLogRepository.update(transfer_id, **fields)

            if finished:
                self.manager.remove(transfer_id)
                logger.info(
                    f"Transfer completed [transfer_id={transfer_id}] "
                    f"{aggregate.bytes_transferred} bytes in {aggregate.chunks_completed} chunks"
                )

        self._publish(TRANSFER_PROGRESS, log)
        return log

    @staticmethod
    def _progress(aggregate: TransferAggregate, finished: bool) -> int:
        if finished:
            return 100
        if aggregate.file_size > 0:
            raw = round(aggregate.bytes_transferred / aggregate.file_size * 100)
        else:
            raw = 0
        # 100 is reserved for the completed state
        return max(aggregate.progress_percentage, min(raw, 99))

    def complete_empty(self, transfer: TransferLog, file_id: str) -> TransferLog:
        """
        Finalize a transfer that had nothing to move (zero-byte file).
        """
        if transfer.status.is_terminal:
            raise TransferStateError(f"Transfer {transfer.transfer_id} is already {transfer.status.value}")

        now = datetime.utcnow()
        log = TransferLogRepository.update(
            transfer.transfer_id,
            file_id=file_id,
            status=TransferStatus.COMPLETED,
            chunks_total=0,
            progress_percentage=100,
            started_at=now,
            completed_at=now,
        )
        self._publish(TRANSFER_PROGRESS, log)
        return log

    def fail(self, transfer_id: str, error_message: str, error_code: Optional[str] = None) -> TransferLog:
        return self._finalize(transfer_id, TransferStatus.FAILED, error_message, error_code)

    def cancel(self, transfer_id: str, reason: str) -> TransferLog:
        return self._finalize(transfer_id, TransferStatus.CANCELLED, reason, "CANCELLED")

    def _finalize(
        self,
        transfer_id: str,
        status: TransferStatus,
        error_message: str,
        error_code: Optional[str],
    ) -> TransferLog:
        current = TransferLogRepository.get_by_id(transfer_id)
        if current is None:
            raise TransferStateError(f"Transfer {transfer_id} does not exist")
        if current.status.is_terminal:
            raise TransferStateError(f"Transfer {transfer_id} is already {current.status.value}")

        self.manager.remove(transfer_id)
        log = TransferLogRepository.update(
            transfer_id,
            status=status,
            error_message=error_message,
            error_code=error_code,
        )
        self._publish(TRANSFER_PROGRESS, log)
        logger.info(f"Transfer {status.value} [transfer_id={transfer_id}]: {error_message}")
        return log

    def is_open(self, transfer_id: str) -> bool:
        """True while the transfer exists and has not reached a terminal status."""
        current = TransferLogRepository.get_by_id(transfer_id)
        return current is not None and not current.status.is_terminal

    def snapshot(self, transfer_id: str) -> Optional[TransferAggregate]:
        return self.manager.get(transfer_id)