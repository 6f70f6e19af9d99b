"""Live connection registry.

Holds every open relay connection in insertion order. A single identity may
own several connections at once (one per browser tab, say); they are kept
side by side and never merged.

Thread Safety:
    Designed for a single asyncio event loop. Mutations happen between
    awaits, so no locking is needed. NOT safe for use from multiple threads.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field
from starlette.websockets import WebSocketState

from chatrelay.auth.credentials import Identity

logger = logging.getLogger(__name__)


class PresenceEntry(BaseModel):
    """One row of a presence snapshot.

    Anonymous connections are listed with both fields set to None.
    """
    id: Optional[str] = Field(default=None, description="Account ID, None if anonymous")
    username: Optional[str] = Field(default=None, description="Username, None if anonymous")


class Connection:
    """A single relay client: transport plus the identity bound to it.

    Attributes:
        websocket: The underlying transport (FastAPI WebSocket or compatible).
        identity: Identity from the handshake credential, None if anonymous.
        connection_id: Server-side handle used in logs.
        heartbeat: The liveness monitor attached by the hub, if any.
    """

    def __init__(self, websocket: Any, identity: Optional[Identity] = None) -> None:
        self.websocket = websocket
        self.identity = identity
        self.connection_id = str(uuid.uuid4())
        self.heartbeat = None
        self._closed = False

    def __repr__(self) -> str:
        who = self.identity.id if self.identity else "anonymous"
        return f"<Connection {self.connection_id[:8]} {who}>"

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.id if self.identity else None

    @property
    def username(self) -> Optional[str]:
        return self.identity.username if self.identity else None

    @property
    def is_open(self) -> bool:
        """True while both sides of the transport are connected."""
        if self._closed:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def presence(self) -> PresenceEntry:
        return PresenceEntry(id=self.user_id, username=self.username)

    async def send_json(self, frame: dict) -> bool:
        """Send a frame if the transport is open.

        Returns:
            True if sent, False if skipped or the send failed.
        """
        if not self.is_open:
            return False
        try:
            await self.websocket.send_json(frame)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to {self!r}: {e}")
            return False

    async def close(self, code: int = 1000) -> None:
        """Close the transport from the server side. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Close on {self!r} ignored: {e}")

    def mark_closed(self) -> None:
        """Record that the client side went away; nothing is sent."""
        self._closed = True

    async def update_identity(self, new_username: str) -> bool:
        """Refresh the cached username and tell this client about it.

        Sends ``{type: "updateUsername", id, username}`` to this connection only.

        Returns:
            True if the frame was delivered, False if anonymous or not open.
        """
        if self.identity is None:
            return False
        logger.info(f"[Registry] Updating username on {self!r} to {new_username}")
        self.identity = self.identity.model_copy(update={"username": new_username})
        return await self.send_json({
            "type": "updateUsername",
            "id": self.identity.id,
            "username": new_username,
        })


class ConnectionRegistry:
    """In-memory set of live connections with lookup by identity."""

    def __init__(self) -> None:
        # connection_id -> Connection, insertion ordered
        self._connections: Dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: Connection) -> bool:
        return connection.connection_id in self._connections

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def register(self, connection: Connection) -> bool:
        """Add a connection under its (possibly absent) identity.

        Returns:
            False if the connection was already registered, True otherwise.
        """
        if connection in self:
            logger.warning(f"[Registry] {connection!r} is already registered")
            return False
        self._connections[connection.connection_id] = connection
        logger.info(
            f"[Registry] Registered {connection!r} ({len(self._connections)} live)"
        )
        return True

    def unregister(self, connection: Connection) -> bool:
        """Remove a connection.

        Returns:
            True if it was registered, False if it was already gone.
        """
        removed = self._connections.pop(connection.connection_id, None)
        if removed is None:
            return False
        logger.info(
            f"[Registry] Unregistered {connection!r} ({len(self._connections)} live)"
        )
        return True

    def find_by_identity(self, user_id: str) -> List[Connection]:
        """All registered connections bound to ``user_id``. Anonymous ones never match."""
        if user_id is None:
            return []
        return [c for c in self._connections.values() if c.user_id == user_id]

    def snapshot(self) -> List[PresenceEntry]:
        """Presence rows for every registered connection, in registration order."""
        return [c.presence() for c in self._connections.values()]

    async def update_identity_username(self, user_id: str, new_username: str) -> int:
        """Rename an identity on all of its live connections.

        Each connection is notified individually; nothing is broadcast.

        Returns:
            Number of connections that received the update frame.
        """
        matches = self.find_by_identity(user_id)
        notified = 0
        for connection in matches:
            if await connection.update_identity(new_username):
                notified += 1
        logger.info(
            f"[Registry] Username for {user_id} -> {new_username}: "
            f"{notified}/{len(matches)} connections notified"
        )
        return notified


async def deliver(connections: Iterable[Connection], frame: dict) -> int:
    """Send one frame to many connections concurrently.

    Connections that are not open are skipped. Failures are not retried.

    Returns:
        Number of connections the frame was delivered to.
    """
    targets = list(connections)
    if not targets:
        return 0
    results = await asyncio.gather(
        *[conn.send_json(frame) for conn in targets],
        return_exceptions=True,
    )
    return sum(1 for ok in results if ok is True)
