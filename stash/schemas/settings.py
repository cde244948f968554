"""Pydantic schemas for transfer settings endpoints."""

from typing import Optional

from pydantic import BaseModel, Field


class SettingsResponse(BaseModel):
    chunk_size_mb: int
    duplicate_detection: bool
    retry_attempts: int
    timeout_seconds: int
    max_concurrent_uploads: int
    max_concurrent_downloads: int
    auto_cleanup_failed_uploads: bool


class UpdateSettingsRequest(BaseModel):
    """
    Partial update; omitted fields keep their current value.
    chunk_size_mb is stored as given and capped at transfer time.
    """
    chunk_size_mb: Optional[int] = Field(None, ge=1, le=500)
    duplicate_detection: Optional[bool] = None
    retry_attempts: Optional[int] = Field(None, ge=1, le=10)
    timeout_seconds: Optional[int] = Field(None, ge=1, le=600)
    max_concurrent_uploads: Optional[int] = Field(None, ge=1, le=20)
    max_concurrent_downloads: Optional[int] = Field(None, ge=1, le=20)
    auto_cleanup_failed_uploads: Optional[bool] = None
