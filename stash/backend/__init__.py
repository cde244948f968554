"""Storage backend adapters."""

from stash.backend.adapter import StorageBackendAdapter, chunk_label
from stash.backend.http_adapter import HttpBackendAdapter

__all__ = [
    "StorageBackendAdapter",
    "HttpBackendAdapter",
    "chunk_label",
]
