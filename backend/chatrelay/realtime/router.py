"""Relay router providing the WebSocket endpoint and presence HTTP endpoints.

This module provides:
    - WebSocket /ws: Presence and message relay
    - GET /presence: Current presence snapshot
    - PUT /presence/username: Push a username change to live connections

Protocol (server -> client):
    - {online: [{id, username}, ...]}            presence, on every join/leave
    - {text, sender, to, file, createdAt, _id}   relayed message
    - {type: "updateUsername", id, username}     own identity changed
    - {type: "ping"}                             heartbeat, answer with pong

Protocol (client -> server):
    - {to, text?, file?: {name, data}}           chat message
    - {type: "pong"}                             heartbeat reply
"""
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from chatrelay.auth.credentials import Identity
from chatrelay.auth.dependencies import get_current_identity

from .hub import get_hub

logger = logging.getLogger(__name__)

router = APIRouter()


class UsernameUpdate(BaseModel):
    newUsername: str = Field(..., min_length=1, description="New display name")


async def _receive_frame(websocket: WebSocket):
    """Next text or binary payload; raises WebSocketDisconnect on close."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    if message.get("text") is not None:
        return message["text"]
    return message.get("bytes") or b""


@router.websocket("/ws")
async def relay_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for presence and message relay.

    The ``token`` cookie on the upgrade request identifies the client. A
    missing or invalid token does not reject the connection: it joins
    anonymously, shows up in presence with null fields, and its messages
    are stored with a null sender.
    """
    hub = get_hub()
    connection = await hub.open(websocket)
    logger.info(f"[WS] {connection!r} connected ({len(hub.registry)} live)")

    try:
        while True:
            raw = await _receive_frame(websocket)
            await hub.handle(connection, raw)
    except WebSocketDisconnect as e:
        logger.info(f"[WS] {connection!r} closed with code {e.code} and reason: {e.reason}")
    finally:
        await hub.close(connection)


@router.get("/presence")
async def get_presence() -> JSONResponse:
    """Current presence snapshot, same shape as the broadcast frame."""
    return JSONResponse(get_hub().broadcaster.frame())


@router.put("/presence/username")
async def update_username(
    body: UsernameUpdate,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Tell the caller's live connections that their username changed.

    Called after the account service has stored the new name. Only the
    caller's own connections are notified; the token cookie is not
    re-issued here.

    Returns:
        JSON with id, username and the number of connections notified.
    """
    notified = await get_hub().rename(identity.id, body.newUsername)
    logger.info(f"[Presence] {identity.id} renamed to {body.newUsername} ({notified} notified)")
    return JSONResponse({
        "id": identity.id,
        "username": body.newUsername,
        "notified": notified,
    })
