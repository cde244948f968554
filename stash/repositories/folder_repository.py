"""Folder repository for database operations."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from common.logging_config import get_logger
from stash.database import get_db_connection, open_connection

logger = get_logger(__name__)


@dataclass
class Folder:
    folder_id: str
    owner_id: str
    name: str
    parent_id: Optional[str]
    created_at: datetime


def _row_to_folder(row) -> Folder:
    return Folder(
        folder_id=row["folder_id"],
        owner_id=row["owner_id"],
        name=row["name"],
        parent_id=row["parent_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class FolderRepository:
    @staticmethod
    def create_folder(folder_id: str, owner_id: str, name: str, parent_id: Optional[str] = None) -> Folder:
        created_at = datetime.utcnow()
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO folders (folder_id, owner_id, name, parent_id, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (folder_id, owner_id, name, parent_id, created_at.isoformat())
            )
            conn.commit()

        logger.info(f"Folder created [folder_id={folder_id}] name={name}")
        return Folder(folder_id=folder_id, owner_id=owner_id, name=name, parent_id=parent_id, created_at=created_at)

    @staticmethod
    def get_owned(folder_id: str, owner_id: str) -> Optional[Folder]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT folder_id, owner_id, name, parent_id, created_at FROM folders WHERE folder_id = ? AND owner_id = ?",
                (folder_id, owner_id)
            )
            row = cursor.fetchone()
            return _row_to_folder(row) if row else None

    @staticmethod
    def list_by_owner(owner_id: str) -> List[Folder]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT folder_id, owner_id, name, parent_id, created_at FROM folders WHERE owner_id = ? ORDER BY name",
                (owner_id,)
            )
            return [_row_to_folder(row) for row in cursor.fetchall()]

    @staticmethod
    def rename_folder(folder_id: str, name: str) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("UPDATE folders SET name = ? WHERE folder_id = ?", (name, folder_id))
            conn.commit()

    @staticmethod
    def delete_folder(folder_id: str, conn=None) -> None:
        should_close = conn is None
        if conn is None:
            conn = open_connection()

        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM folders WHERE folder_id = ?", (folder_id,))
            if should_close:
                conn.commit()
            logger.info(f"Folder deleted [folder_id={folder_id}]")
        finally:
            if should_close:
                conn.close()
