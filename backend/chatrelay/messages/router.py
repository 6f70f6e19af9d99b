"""Message history router."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from chatrelay.auth.credentials import Identity
from chatrelay.auth.dependencies import get_current_identity
from chatrelay.errors import MessagePersistenceError
from chatrelay.realtime.hub import get_hub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/{user_id}")
async def get_conversation(
    user_id: str,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Messages between the caller and ``user_id``, oldest first.

    Args:
        user_id: The other participant.

    Returns:
        JSON array of message records (``_id``, sender, to, text, file, createdAt).
    """
    try:
        records = get_hub().store.find_conversation(user_id, identity.id)
    except MessagePersistenceError as e:
        logger.error(f"[messages] History for {identity.id}/{user_id} failed: {e.message}")
        raise HTTPException(status_code=500, detail="Internal Server Error")
    return JSONResponse([r.to_frame() for r in records])
