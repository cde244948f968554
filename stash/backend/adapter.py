"""Narrow interface over the message-channel object store."""

from abc import ABC, abstractmethod
from typing import Optional

from common.types import ChunkReceipt


class StorageBackendAdapter(ABC):
    """
    Storage backend seen by the transfer core.

    Containers group posts (one per folder); a post holds the ordered chunk
    messages of one file. Instances are constructed explicitly and passed
    to the services that need them; connect() must succeed before use.

    Implementations raise:
        BackendUnavailableError: connect() failed or the adapter is not connected
        TransferIOError: a call reached the backend (or tried to) and failed
    """

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """True once connect() succeeded and until disconnect()."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def create_container(self, parent_id: Optional[str], name: str) -> str:
        """Create a container and return its id."""

    @abstractmethod
    async def create_post(self, container_id: str, title: str, body: str) -> str:
        """Create a post inside a container and return its id."""

    @abstractmethod
    async def upload_chunk(self, post_id: str, data: bytes, chunk_label: str) -> ChunkReceipt:
        """Store one chunk as a message attachment on the post."""

    @abstractmethod
    async def download_chunk(self, retrieval_url: str) -> bytes:
        """Fetch the bytes of a previously uploaded chunk."""

    @abstractmethod
    async def delete_post(self, post_id: str) -> bool:
        ...

    @abstractmethod
    async def delete_container(self, container_id: str) -> bool:
        ...

    @abstractmethod
    async def rename_container(self, container_id: str, new_name: str) -> bool:
        ...


def chunk_label(file_name: str, chunk_index: int) -> str:
    """
    Attachment name for a chunk, e.g. 'report.pdf.chunk007'.
    """
    return f"{file_name}.chunk{chunk_index:03d}"
