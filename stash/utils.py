"""Utility helper functions for the stash service."""

import mimetypes
import uuid
from pathlib import PurePosixPath
from typing import Optional, Tuple


def generate_uuid() -> str:
    """
    Generate a new UUID4 string.

    Returns:
        UUID4 string
    """
    return str(uuid.uuid4())


def split_file_name(name: str) -> Tuple[str, str]:
    """
    Split a file name into stem and extension ('a.tar.gz' -> ('a.tar', '.gz')).
    Dotfiles without another dot keep their full name as the stem.
    """
    suffix = PurePosixPath(name).suffix
    if not suffix or suffix == name:
        return name, ""
    return name[: -len(suffix)], suffix


def guess_mime_type(file_name: str, declared: Optional[str] = None) -> str:
    """
    Pick a MIME type: the declared one if meaningful, else guess from the name.
    """
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or "application/octet-stream"


def format_file_size(size_bytes: int) -> str:
    """
    Human readable size for log lines (e.g. '7.0 MB').
    """
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.1f} GB"
