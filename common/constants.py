"""Project-wide constants (chunk sizing, backend limits, setting defaults)."""

MEGABYTE: int = 1024 * 1024

BACKEND_ATTACHMENT_CAP_BYTES: int = 7 * MEGABYTE  # per-message attachment ceiling

DEFAULT_CHUNK_SIZE_MB: int = 25
DEFAULT_RETRY_ATTEMPTS: int = 3
DEFAULT_TIMEOUT_SECONDS: int = 30
DEFAULT_MAX_CONCURRENT_UPLOADS: int = 3
DEFAULT_MAX_CONCURRENT_DOWNLOADS: int = 5

RETRY_BASE_DELAY_SECONDS: float = 1.0

RECENT_TRANSFERS_LIMIT: int = 20
