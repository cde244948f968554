"""Database schema and connection management for SQLite."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from stash.config import DATABASE_PATH


def init_database() -> None:
    """
    Initialize database and create tables if they don't exist.
    """
    db_path = Path(DATABASE_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db_connection() as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS folders (
                folder_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL,
                parent_id TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS files (
                post_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                original_name TEXT NOT NULL,
                size INTEGER NOT NULL,
                mime_type TEXT NOT NULL,
                folder_id TEXT NOT NULL,
                owner_id TEXT NOT NULL,
                upload_status TEXT NOT NULL DEFAULT 'pending',
                is_starred INTEGER NOT NULL DEFAULT 0,
                hash TEXT,
                share_token TEXT UNIQUE,
                share_expires_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(folder_id) REFERENCES folders(folder_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                message_id TEXT PRIMARY KEY,
                file_id TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                size INTEGER NOT NULL,
                attachment_id TEXT NOT NULL,
                retrieval_url TEXT NOT NULL,
                checksum TEXT,
                uploaded_at TEXT NOT NULL,
                UNIQUE(file_id, chunk_index),
                FOREIGN KEY(file_id) REFERENCES files(post_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transfer_logs (
                transfer_id TEXT PRIMARY KEY,
                file_id TEXT,
                owner_id TEXT NOT NULL,
                type TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                file_name TEXT NOT NULL,
                file_size INTEGER,
                mime_type TEXT,
                bytes_transferred INTEGER NOT NULL DEFAULT 0,
                progress_percentage INTEGER NOT NULL DEFAULT 0,
                transfer_speed INTEGER,
                estimated_time_remaining INTEGER,
                chunks_total INTEGER,
                chunks_completed INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                error_code TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS user_settings (
                owner_id TEXT PRIMARY KEY,
                chunk_size_mb INTEGER,
                duplicate_detection INTEGER,
                retry_attempts INTEGER,
                timeout_seconds INTEGER,
                max_concurrent_uploads INTEGER,
                max_concurrent_downloads INTEGER,
                auto_cleanup_failed_uploads INTEGER,
                updated_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orphaned_posts (
                post_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                reason TEXT,
                recorded_at TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_files_duplicate_lookup ON files(owner_id, folder_id, name, size)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_files_folder ON files(folder_id)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_file_order ON chunks(file_id, chunk_index)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_transfers_owner_created ON transfer_logs(owner_id, created_at)
        """)

        conn.commit()


def open_connection() -> sqlite3.Connection:
    """
    Open a connection the caller must close.
    """
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_db_connection() -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database connections.
    """
    conn = open_connection()
    try:
        yield conn
    finally:
        conn.close()


def row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    """
    Convert a sqlite3.Row into a plain dict (None passes through).
    """
    if row is None:
        return None
    return {key: row[key] for key in row.keys()}


def get_row_value(row: sqlite3.Row, column: str, default: Any = None) -> Any:
    """
    Read a column from a row, falling back to default for missing or NULL columns.
    """
    if column not in row.keys():
        return default
    value = row[column]
    return default if value is None else value
