"""Splits a file size into ordered, bounded chunk ranges."""

from dataclasses import dataclass
from typing import Iterator

from common.types import ChunkRange
from stash.exceptions import ConfigurationError


@dataclass(frozen=True)
class ChunkPlan:
    """
    Restartable plan covering [0, file_size) with no gaps or overlaps.
    Iterating it twice yields the same ranges.
    """
    file_size: int
    chunk_size: int

    @property
    def num_chunks(self) -> int:
        return -(-self.file_size // self.chunk_size)

    def __len__(self) -> int:
        return self.num_chunks

    def __iter__(self) -> Iterator[ChunkRange]:
        for index in range(self.num_chunks):
            start = index * self.chunk_size
            yield ChunkRange(index=index, start=start, end=min(start + self.chunk_size, self.file_size))


def effective_chunk_size(configured_chunk_size: int, hard_cap_bytes: int) -> int:
    """
    Chunk size actually used: the configured size, never above the backend cap.

    Raises:
        ConfigurationError: If either value is not positive
    """
    if configured_chunk_size <= 0:
        raise ConfigurationError(f"Chunk size must be positive, got {configured_chunk_size}")
    if hard_cap_bytes <= 0:
        raise ConfigurationError(f"Backend size cap must be positive, got {hard_cap_bytes}")
    return min(configured_chunk_size, hard_cap_bytes)


def plan_chunks(file_size: int, configured_chunk_size: int, hard_cap_bytes: int) -> ChunkPlan:
    """
    Plan the chunk boundaries for a file.

    An empty file yields a plan with zero chunks; callers handle that case.

    Args:
        file_size: Total file size in bytes
        configured_chunk_size: Chunk size from the owner's settings, in bytes
        hard_cap_bytes: Backend-imposed attachment ceiling, in bytes

    Returns:
        Lazy ChunkPlan of (index, start, end) ranges

    Raises:
        ConfigurationError: If the size is negative or the chunk size/cap is not positive
    """
    if file_size < 0:
        raise ConfigurationError(f"File size cannot be negative, got {file_size}")
    return ChunkPlan(file_size=file_size, chunk_size=effective_chunk_size(configured_chunk_size, hard_cap_bytes))
