"""FastAPI dependencies for cookie-authenticated HTTP endpoints."""
from fastapi import HTTPException, Request, status

from chatrelay.realtime.hub import get_hub

from .credentials import AuthError, Identity


async def get_current_identity(request: Request) -> Identity:
    """Identity from the session cookie, or 401."""
    result = get_hub().validator.validate(request.headers.get("cookie"))
    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No Token" if result.error == AuthError.MISSING_TOKEN else "Invalid Token",
        )
    return result.identity
