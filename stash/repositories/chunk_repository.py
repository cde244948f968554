"""Chunk repository for database operations."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from common.logging_config import get_logger
from stash.database import get_db_connection, open_connection

logger = get_logger(__name__)


@dataclass
class Chunk:
    message_id: str
    file_id: str
    chunk_index: int
    size: int
    attachment_id: str
    retrieval_url: str
    checksum: Optional[str] = None
    uploaded_at: datetime = field(default_factory=datetime.utcnow)


class ChunkRepository:
    @staticmethod
    def create_chunk(chunk: Chunk, conn=None) -> None:
        logger.debug(f"Creating chunk {chunk.chunk_index} for file_id={chunk.file_id}")
        should_close = conn is None
        if conn is None:
            conn = open_connection()

        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO chunks (message_id, file_id, chunk_index, size, attachment_id,
                                    retrieval_url, checksum, uploaded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (chunk.message_id, chunk.file_id, chunk.chunk_index, chunk.size, chunk.attachment_id,
                 chunk.retrieval_url, chunk.checksum, chunk.uploaded_at.isoformat())
            )
            if should_close:
                conn.commit()
        except Exception as e:
            logger.error(f"Failed to create chunk {chunk.chunk_index} [file_id={chunk.file_id}]: {e}", exc_info=True)
            raise
        finally:
            if should_close:
                conn.close()

    @staticmethod
    def get_chunks_by_file(file_id: str) -> List[Chunk]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT message_id, file_id, chunk_index, size, attachment_id,
                       retrieval_url, checksum, uploaded_at
                FROM chunks
                WHERE file_id = ?
                ORDER BY chunk_index
                """,
                (file_id,)
            )
            rows = cursor.fetchall()

            return [
                Chunk(
                    message_id=row["message_id"],
                    file_id=row["file_id"],
                    chunk_index=row["chunk_index"],
                    size=row["size"],
                    attachment_id=row["attachment_id"],
                    retrieval_url=row["retrieval_url"],
                    checksum=row["checksum"],
                    uploaded_at=datetime.fromisoformat(row["uploaded_at"]),
                )
                for row in rows
            ]

    @staticmethod
    def total_size(file_id: str) -> int:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COALESCE(SUM(size), 0) AS total FROM chunks WHERE file_id = ?", (file_id,))
            return cursor.fetchone()["total"]

    @staticmethod
    def delete_chunks(file_id: str, conn=None) -> List[str]:
        logger.debug(f"Deleting chunks [file_id={file_id}]")
        should_close = conn is None
        if conn is None:
            conn = open_connection()

        try:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT message_id FROM chunks WHERE file_id = ?",
                (file_id,)
            )
            message_ids = [row["message_id"] for row in cursor.fetchall()]

            cursor.execute("DELETE FROM chunks WHERE file_id = ?", (file_id,))
            if should_close:
                conn.commit()

            logger.info(f"Deleted {len(message_ids)} chunks [file_id={file_id}]")
            return message_ids
        except Exception as e:
            logger.error(f"Failed to delete chunks [file_id={file_id}]: {e}", exc_info=True)
            raise
        finally:
            if should_close:
                conn.close()
