"""Configuration settings for the stash service."""

import os


DATABASE_PATH = os.environ.get("STASH_DATABASE_PATH", "/app/data/stash.db")

STASH_HOST = os.environ.get("STASH_HOST", "0.0.0.0")

STASH_PORT = int(os.environ.get("STASH_PORT", "8000"))

BACKEND_API_URL = os.environ.get("STASH_BACKEND_API_URL", "https://discord.com/api/v10")

BACKEND_TOKEN = os.environ.get("STASH_BACKEND_TOKEN", "")

BACKEND_GUILD_ID = os.environ.get("STASH_BACKEND_GUILD_ID", "")

BACKEND_REQUEST_TIMEOUT = float(os.environ.get("STASH_BACKEND_REQUEST_TIMEOUT", "60"))

SPOOL_DIR = os.environ.get("STASH_SPOOL_DIR") or None

PENDING_UPLOAD_TTL_SECONDS = int(os.environ.get("STASH_PENDING_UPLOAD_TTL", "900"))

ORPHAN_CLEANUP_INTERVAL_SECONDS = int(os.environ.get("STASH_ORPHAN_CLEANUP_INTERVAL", str(6 * 3600)))

ORPHAN_MAX_ATTEMPTS = int(os.environ.get("STASH_ORPHAN_MAX_ATTEMPTS", "5"))
