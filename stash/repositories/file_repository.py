"""File repository for database operations."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Set

from common.logging_config import get_logger
from common.types import UploadStatus
from stash.database import get_db_connection, open_connection

logger = get_logger(__name__)

_FILE_COLUMNS = """
    post_id, name, original_name, size, mime_type, folder_id, owner_id,
    upload_status, is_starred, hash, share_token, share_expires_at,
    created_at, updated_at
"""


@dataclass
class File:
    post_id: str
    name: str
    original_name: str
    size: int
    mime_type: str
    folder_id: str
    owner_id: str
    upload_status: UploadStatus
    created_at: datetime
    updated_at: datetime
    is_starred: bool = False
    hash: Optional[str] = None
    share_token: Optional[str] = None
    share_expires_at: Optional[datetime] = None

    @property
    def file_id(self) -> str:
        return self.post_id


def _row_to_file(row) -> File:
    return File(
        post_id=row["post_id"],
        name=row["name"],
        original_name=row["original_name"],
        size=row["size"],
        mime_type=row["mime_type"],
        folder_id=row["folder_id"],
        owner_id=row["owner_id"],
        upload_status=UploadStatus(row["upload_status"]),
        is_starred=bool(row["is_starred"]),
        hash=row["hash"],
        share_token=row["share_token"],
        share_expires_at=datetime.fromisoformat(row["share_expires_at"]) if row["share_expires_at"] else None,
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class FileRepository:
    @staticmethod
    def create_file(
        post_id: str,
        name: str,
        original_name: str,
        size: int,
        mime_type: str,
        folder_id: str,
        owner_id: str,
        upload_status: UploadStatus = UploadStatus.PENDING,
        file_hash: Optional[str] = None,
        conn=None,
    ) -> File:
        logger.debug(f"Creating file record [post_id={post_id}] name={name} size={size}")
        should_close = conn is None
        if conn is None:
            conn = open_connection()

        now = datetime.utcnow()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO files (post_id, name, original_name, size, mime_type, folder_id, owner_id,
                                   upload_status, is_starred, hash, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (post_id, name, original_name, size, mime_type, folder_id, owner_id,
                 upload_status.value, file_hash, now.isoformat(), now.isoformat())
            )
            if should_close:
                conn.commit()

            return File(
                post_id=post_id,
                name=name,
                original_name=original_name,
                size=size,
                mime_type=mime_type,
                folder_id=folder_id,
                owner_id=owner_id,
                upload_status=upload_status,
                hash=file_hash,
                created_at=now,
                updated_at=now,
            )
        finally:
            if should_close:
                conn.close()

    @staticmethod
    def get_by_id(post_id: str) -> Optional[File]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_FILE_COLUMNS} FROM files WHERE post_id = ?", (post_id,))
            row = cursor.fetchone()
            return _row_to_file(row) if row else None

    @staticmethod
    def get_owned(post_id: str, owner_id: str) -> Optional[File]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_FILE_COLUMNS} FROM files WHERE post_id = ? AND owner_id = ?",
                (post_id, owner_id)
            )
            row = cursor.fetchone()
            return _row_to_file(row) if row else None

    @staticmethod
    def find_duplicate(owner_id: str, folder_id: str, name: str, size: int) -> Optional[File]:
        """
        Find an existing file with the same owner, folder, name and size.
        Failed uploads never count as duplicates.
        """
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_FILE_COLUMNS} FROM files
                WHERE owner_id = ? AND folder_id = ? AND name = ? AND size = ?
                AND upload_status != ?
                ORDER BY created_at
                LIMIT 1
                """,
                (owner_id, folder_id, name, size, UploadStatus.FAILED.value)
            )
            row = cursor.fetchone()
            return _row_to_file(row) if row else None

    @staticmethod
    def list_names_in_folder(owner_id: str, folder_id: str) -> Set[str]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT name FROM files WHERE owner_id = ? AND folder_id = ?",
                (owner_id, folder_id)
            )
            return {row["name"] for row in cursor.fetchall()}

    @staticmethod
    def list_by_folder(owner_id: str, folder_id: str) -> List[File]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_FILE_COLUMNS} FROM files
                WHERE owner_id = ? AND folder_id = ?
                ORDER BY created_at DESC
                """,
                (owner_id, folder_id)
            )
            return [_row_to_file(row) for row in cursor.fetchall()]

    @staticmethod
    def list_by_status(upload_status: UploadStatus) -> List[File]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_FILE_COLUMNS} FROM files WHERE upload_status = ?",
                (upload_status.value,)
            )
            return [_row_to_file(row) for row in cursor.fetchall()]

    @staticmethod
    def update_status(
        post_id: str,
        upload_status: UploadStatus,
        file_hash: Optional[str] = None,
        conn=None,
    ) -> None:
        should_close = conn is None
        if conn is None:
            conn = open_connection()

        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE files
                SET upload_status = ?, hash = COALESCE(?, hash), updated_at = ?
                WHERE post_id = ?
                """,
                (upload_status.value, file_hash, datetime.utcnow().isoformat(), post_id)
            )
            if should_close:
                conn.commit()
            logger.debug(f"File status updated [post_id={post_id}] status={upload_status.value}")
        finally:
            if should_close:
                conn.close()

    @staticmethod
    def delete_file(post_id: str, conn=None) -> None:
        logger.debug(f"Deleting file [post_id={post_id}]")
        should_close = conn is None
        if conn is None:
            conn = open_connection()

        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM files WHERE post_id = ?", (post_id,))
            if should_close:
                conn.commit()
            logger.info(f"File deleted successfully [post_id={post_id}]")
        except Exception as e:
            logger.error(f"Failed to delete file [post_id={post_id}]: {e}", exc_info=True)
            raise
        finally:
            if should_close:
                conn.close()
