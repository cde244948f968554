"""Transfer log repository for database operations."""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from common.logging_config import get_logger
from common.types import TransferStatus, TransferType
from stash.database import get_db_connection

logger = get_logger(__name__)

_TRANSFER_COLUMNS = """
    transfer_id, file_id, owner_id, type, status, file_name, file_size, mime_type,
    bytes_transferred, progress_percentage, transfer_speed, estimated_time_remaining,
    chunks_total, chunks_completed, error_message, error_code,
    created_at, updated_at, started_at, completed_at
"""

_UPDATABLE_COLUMNS = {
    "file_id",
    "status",
    "bytes_transferred",
    "progress_percentage",
    "transfer_speed",
    "estimated_time_remaining",
    "chunks_total",
    "chunks_completed",
    "error_message",
    "error_code",
    "started_at",
    "completed_at",
}


@dataclass
class TransferLog:
    transfer_id: str
    owner_id: str
    type: TransferType
    status: TransferStatus
    file_name: str
    created_at: datetime
    updated_at: datetime
    file_id: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    bytes_transferred: int = 0
    progress_percentage: int = 0
    transfer_speed: Optional[int] = None
    estimated_time_remaining: Optional[int] = None
    chunks_total: Optional[int] = None
    chunks_completed: int = 0
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready snapshot of the row."""
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        for key in ("created_at", "updated_at", "started_at", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_transfer(row) -> TransferLog:
    return TransferLog(
        transfer_id=row["transfer_id"],
        file_id=row["file_id"],
        owner_id=row["owner_id"],
        type=TransferType(row["type"]),
        status=TransferStatus(row["status"]),
        file_name=row["file_name"],
        file_size=row["file_size"],
        mime_type=row["mime_type"],
        bytes_transferred=row["bytes_transferred"],
        progress_percentage=row["progress_percentage"],
        transfer_speed=row["transfer_speed"],
        estimated_time_remaining=row["estimated_time_remaining"],
        chunks_total=row["chunks_total"],
        chunks_completed=row["chunks_completed"],
        error_message=row["error_message"],
        error_code=row["error_code"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        started_at=_parse_ts(row["started_at"]),
        completed_at=_parse_ts(row["completed_at"]),
    )


class TransferLogRepository:
    @staticmethod
    def create(
        transfer_id: str,
        owner_id: str,
        transfer_type: TransferType,
        file_name: str,
        file_size: Optional[int] = None,
        mime_type: Optional[str] = None,
        file_id: Optional[str] = None,
        chunks_total: Optional[int] = None,
    ) -> TransferLog:
        now = datetime.utcnow()
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO transfer_logs (transfer_id, file_id, owner_id, type, status, file_name,
                                           file_size, mime_type, bytes_transferred, progress_percentage,
                                           chunks_total, chunks_completed, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?, 0, ?, ?)
                """,
                (transfer_id, file_id, owner_id, transfer_type.value, TransferStatus.PENDING.value, file_name,
                 file_size, mime_type, chunks_total, now.isoformat(), now.isoformat())
            )
            conn.commit()

        logger.debug(f"Transfer log created [transfer_id={transfer_id}] type={transfer_type.value}")
        return TransferLog(
            transfer_id=transfer_id,
            file_id=file_id,
            owner_id=owner_id,
            type=transfer_type,
            status=TransferStatus.PENDING,
            file_name=file_name,
            file_size=file_size,
            mime_type=mime_type,
            chunks_total=chunks_total,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def update(transfer_id: str, **fields: Any) -> Optional[TransferLog]:
        """
        Update the given columns and return the fresh row.
        """
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update transfer log columns: {sorted(unknown)}")

        values = {}
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, TransferStatus):
                value = value.value
            values[key] = value
        values["updated_at"] = datetime.utcnow().isoformat()

        assignments = ", ".join(f"{key} = ?" for key in values)
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE transfer_logs SET {assignments} WHERE transfer_id = ?",
                list(values.values()) + [transfer_id]
            )
            conn.commit()
            cursor.execute(f"SELECT {_TRANSFER_COLUMNS} FROM transfer_logs WHERE transfer_id = ?", (transfer_id,))
            row = cursor.fetchone()
            return _row_to_transfer(row) if row else None

    @staticmethod
    def get_by_id(transfer_id: str) -> Optional[TransferLog]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_TRANSFER_COLUMNS} FROM transfer_logs WHERE transfer_id = ?", (transfer_id,))
            row = cursor.fetchone()
            return _row_to_transfer(row) if row else None

    @staticmethod
    def list_recent(owner_id: str, limit: int = 20) -> List[TransferLog]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_TRANSFER_COLUMNS} FROM transfer_logs
                WHERE owner_id = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (owner_id, limit)
            )
            return [_row_to_transfer(row) for row in cursor.fetchall()]

    @staticmethod
    def list_by_file(file_id: str) -> List[TransferLog]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_TRANSFER_COLUMNS} FROM transfer_logs WHERE file_id = ? ORDER BY created_at",
                (file_id,)
            )
            return [_row_to_transfer(row) for row in cursor.fetchall()]

    @staticmethod
    def fail_unfinished(error_message: str) -> int:
        """
        Mark every pending or in-progress transfer as failed.
        Used at startup, when no transfer from a previous run can still be alive.
        """
        now = datetime.utcnow().isoformat()
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE transfer_logs
                SET status = ?, error_message = ?, error_code = 'INTERRUPTED', updated_at = ?
                WHERE status IN (?, ?)
                """,
                (TransferStatus.FAILED.value, error_message, now,
                 TransferStatus.PENDING.value, TransferStatus.IN_PROGRESS.value)
            )
            conn.commit()
            return cursor.rowcount
