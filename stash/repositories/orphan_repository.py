"""Bookkeeping for backend posts left behind by failed uploads."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from common.logging_config import get_logger
from stash.database import get_db_connection

logger = get_logger(__name__)


@dataclass
class OrphanedPost:
    post_id: str
    owner_id: str
    reason: Optional[str]
    recorded_at: datetime
    attempts: int


class OrphanRepository:
    @staticmethod
    def record(post_id: str, owner_id: str, reason: Optional[str]) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO orphaned_posts (post_id, owner_id, reason, recorded_at, attempts)
                VALUES (?, ?, ?, ?, 0)
                ON CONFLICT(post_id) DO UPDATE SET reason = excluded.reason
                """,
                (post_id, owner_id, reason, datetime.utcnow().isoformat())
            )
            conn.commit()

    @staticmethod
    def list_pending(max_attempts: int) -> List[OrphanedPost]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT post_id, owner_id, reason, recorded_at, attempts
                FROM orphaned_posts
                WHERE attempts < ?
                ORDER BY recorded_at
                """,
                (max_attempts,)
            )
            return [
                OrphanedPost(
                    post_id=row["post_id"],
                    owner_id=row["owner_id"],
                    reason=row["reason"],
                    recorded_at=datetime.fromisoformat(row["recorded_at"]),
                    attempts=row["attempts"],
                )
                for row in cursor.fetchall()
            ]

    @staticmethod
    def increment_attempts(post_id: str) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("UPDATE orphaned_posts SET attempts = attempts + 1 WHERE post_id = ?", (post_id,))
            conn.commit()

    @staticmethod
    def remove(post_id: str) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM orphaned_posts WHERE post_id = ?", (post_id,))
            conn.commit()
