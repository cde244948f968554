"""Shared data type definitions (ChunkRange, ChunkReceipt, status enums)."""

from dataclasses import dataclass
from enum import Enum


class UploadStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TransferType(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    SHARE_CREATE = "share_create"
    SHARE_ACCESS = "share_access"


class TransferStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.COMPLETED, TransferStatus.FAILED, TransferStatus.CANCELLED)


class ConflictAction(str, Enum):
    KEEP = "keep"
    REPLACE = "replace"
    RENAME = "rename"


@dataclass(frozen=True)
class ChunkRange:
    """
    Byte range of a single chunk: [start, end).
    """
    index: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class ChunkReceipt:
    """
    What the backend hands back after storing one chunk.
    """
    message_id: str
    attachment_id: str
    retrieval_url: str
