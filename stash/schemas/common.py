"""Common schemas used across multiple endpoints."""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str
    code: str
    data: Optional[Dict[str, Any]] = None
