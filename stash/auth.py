"""Owner identification for incoming requests."""

from fastapi import Header, HTTPException, Request, status

OWNER_HEADER = "X-Owner-Id"


async def get_current_owner(request: Request, x_owner_id: str = Header(None)) -> str:
    """
    FastAPI dependency returning the owner id of the caller.

    Sessions are handled by the gateway in front of this service, which
    forwards the authenticated owner in the X-Owner-Id header.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {OWNER_HEADER} header"
        )

    owner_id = x_owner_id.strip()
    request.state.owner_id = owner_id
    return owner_id
