"""On-disk spooling of upload bodies so they can outlive the request."""

import hashlib
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional

from common.logging_config import get_logger

logger = get_logger(__name__)

COPY_BLOCK_SIZE = 1024 * 1024


class SpooledUpload:
    """
    Upload body copied to a temp file. Byte ranges are read back on demand,
    so only one chunk is held in memory at a time.
    """

    def __init__(self, path: Path, size: int, sha256: str):
        self.path = path
        self.size = size
        self.sha256 = sha256

    @classmethod
    def from_stream(cls, stream: BinaryIO, spool_dir: Optional[str] = None) -> "SpooledUpload":
        digest = hashlib.sha256()
        size = 0

        with tempfile.NamedTemporaryFile(prefix="stash-", suffix=".part", dir=spool_dir, delete=False) as spool:
            try:
                while True:
                    block = stream.read(COPY_BLOCK_SIZE)
                    if not block:
                        break
                    digest.update(block)
                    spool.write(block)
                    size += len(block)
            except Exception:
                spool.close()
                Path(spool.name).unlink(missing_ok=True)
                raise

        logger.debug(f"Spooled {size} bytes to {spool.name}")
        return cls(Path(spool.name), size, digest.hexdigest())

    def read_range(self, start: int, end: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(start)
            return f.read(end - start)

    def close(self) -> None:
        self.path.unlink(missing_ok=True)
