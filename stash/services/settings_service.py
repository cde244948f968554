"""Per-owner transfer settings, read by the transfer core."""

import time
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Tuple

from common.constants import (
    DEFAULT_CHUNK_SIZE_MB,
    DEFAULT_MAX_CONCURRENT_DOWNLOADS,
    DEFAULT_MAX_CONCURRENT_UPLOADS,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_TIMEOUT_SECONDS,
    MEGABYTE,
)
from common.logging_config import get_logger
from stash.repositories.settings_repository import SettingsRepository

logger = get_logger(__name__)

SETTINGS_CACHE_SECONDS = 5 * 60

_BOOLEAN_FIELDS = {"duplicate_detection", "auto_cleanup_failed_uploads"}


@dataclass(frozen=True)
class TransferSettings:
    chunk_size_mb: int = DEFAULT_CHUNK_SIZE_MB
    duplicate_detection: bool = True
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_concurrent_uploads: int = DEFAULT_MAX_CONCURRENT_UPLOADS
    max_concurrent_downloads: int = DEFAULT_MAX_CONCURRENT_DOWNLOADS
    auto_cleanup_failed_uploads: bool = True

    @property
    def chunk_size_bytes(self) -> int:
        return self.chunk_size_mb * MEGABYTE

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class SettingsService:
    """
    Reads owner settings with defaults for anything never set.
    Values are passed through as stored; only the chunk planner caps sizes.
    """

    def __init__(self, cache_seconds: float = SETTINGS_CACHE_SECONDS):
        self.cache_seconds = cache_seconds
        self._cache: Dict[str, Tuple[TransferSettings, float]] = {}

    def get_settings(self, owner_id: str) -> TransferSettings:
        cached = self._cache.get(owner_id)
        if cached and time.monotonic() - cached[1] < self.cache_seconds:
            return cached[0]

        row = SettingsRepository.get(owner_id) or {}
        overrides = {}
        for key, value in row.items():
            if value is None:
                continue
            overrides[key] = bool(value) if key in _BOOLEAN_FIELDS else value

        settings = replace(TransferSettings(), **overrides)
        self._cache[owner_id] = (settings, time.monotonic())
        return settings

    def update_settings(self, owner_id: str, values: Dict[str, Any]) -> TransferSettings:
        stored = {
            key: int(value) if key in _BOOLEAN_FIELDS else value
            for key, value in values.items()
            if value is not None
        }
        SettingsRepository.upsert(owner_id, stored)
        self._cache.pop(owner_id, None)
        return self.get_settings(owner_id)
