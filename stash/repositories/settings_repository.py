"""Per-owner transfer settings storage."""

from datetime import datetime
from typing import Any, Dict, Optional

from common.logging_config import get_logger
from stash.database import get_db_connection, row_to_dict

logger = get_logger(__name__)

SETTINGS_COLUMNS = (
    "chunk_size_mb",
    "duplicate_detection",
    "retry_attempts",
    "timeout_seconds",
    "max_concurrent_uploads",
    "max_concurrent_downloads",
    "auto_cleanup_failed_uploads",
)


class SettingsRepository:
    @staticmethod
    def get(owner_id: str) -> Optional[Dict[str, Any]]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {', '.join(SETTINGS_COLUMNS)} FROM user_settings WHERE owner_id = ?",
                (owner_id,)
            )
            return row_to_dict(cursor.fetchone())

    @staticmethod
    def upsert(owner_id: str, values: Dict[str, Any]) -> None:
        unknown = set(values) - set(SETTINGS_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown settings columns: {sorted(unknown)}")
        if not values:
            return

        columns = list(values)
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{column} = excluded.{column}" for column in columns)

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO user_settings (owner_id, {', '.join(columns)}, updated_at)
                VALUES (?, {placeholders}, ?)
                ON CONFLICT(owner_id) DO UPDATE SET {updates}, updated_at = excluded.updated_at
                """,
                [owner_id] + [values[column] for column in columns] + [datetime.utcnow().isoformat()]
            )
            conn.commit()

        logger.info(f"Settings updated [owner_id={owner_id}] fields={columns}")
