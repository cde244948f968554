"""Pydantic schemas for transfer history endpoints."""

from typing import List, Optional

from pydantic import BaseModel


class TransferResponse(BaseModel):
    """Full TransferLog snapshot, the same shape pushed over the socket."""
    transfer_id: str
    owner_id: str
    file_id: Optional[str] = None
    type: str
    status: str
    file_name: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    bytes_transferred: int
    progress_percentage: int
    transfer_speed: Optional[int] = None
    estimated_time_remaining: Optional[int] = None
    chunks_total: Optional[int] = None
    chunks_completed: int
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    created_at: str
    updated_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class ListTransfersResponse(BaseModel):
    transfers: List[TransferResponse]


class CancelTransferResponse(BaseModel):
    transfer_id: str
    cancelling: bool
