"""RelayHub: owns the registry and wires the relay components together.

Connection lifecycle::

    open()    accept -> validate cookie -> register -> start heartbeat -> broadcast
    handle()  pong -> heartbeat, anything else -> message router
    close()   stop heartbeat -> unregister -> broadcast
    evict()   (heartbeat death) unregister -> broadcast

Unregistration is idempotent and a broadcast only follows an actual
removal, so a connection that dies and then reports its close still
causes exactly one presence update.
"""
import logging
from typing import Any, Optional

from fastapi import WebSocket

from chatrelay.auth.credentials import CredentialValidator
from chatrelay.config import AppConfig, get_config
from chatrelay.messages.service import MessageStore

from .attachments import AttachmentIngestor
from .heartbeat import HeartbeatFactory, make_heartbeat_factory
from .messaging import MessageRouter, RouteResult, parse_frame
from .presence import PresenceBroadcaster
from .registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)


class RelayHub:
    """Single owner of relay state for one process."""

    def __init__(
        self,
        validator: CredentialValidator,
        store: Any,
        upload_dir: str,
        heartbeat_factory: Optional[HeartbeatFactory] = None,
    ) -> None:
        self.validator = validator
        self.store = store
        self.registry = ConnectionRegistry()
        self.broadcaster = PresenceBroadcaster(self.registry)
        self.ingestor = AttachmentIngestor(upload_dir)
        self.router = MessageRouter(self.registry, store, self.ingestor)
        self._heartbeat_factory = heartbeat_factory or make_heartbeat_factory()

    @classmethod
    def from_config(cls, config: AppConfig) -> "RelayHub":
        jwt_cfg = config.secrets.jwt
        return cls(
            validator=CredentialValidator(
                secret_key=jwt_cfg.secret_key,
                algorithm=jwt_cfg.algorithm,
                cookie_name=jwt_cfg.cookie_name,
            ),
            store=MessageStore.get_instance(config.database.path),
            upload_dir=config.uploads.directory,
            heartbeat_factory=make_heartbeat_factory(
                interval=config.heartbeat.interval_seconds,
                death_timeout=config.heartbeat.death_timeout_seconds,
            ),
        )

    async def open(self, websocket: WebSocket) -> Connection:
        """Accept a WebSocket and bring it into the relay."""
        await websocket.accept()

        auth = self.validator.validate(websocket.headers.get("cookie"))
        connection = Connection(websocket, identity=auth.identity)
        if not auth.ok:
            logger.info(f"[Hub] {connection!r} is unauthenticated ({auth.error.value})")

        self.registry.register(connection)
        connection.heartbeat = self._heartbeat_factory(connection, self.evict)
        connection.heartbeat.start()
        await self.broadcaster.broadcast()
        return connection

    async def handle(self, connection: Connection, raw) -> Optional[RouteResult]:
        """Dispatch one inbound frame.

        Returns:
            The routing result for chat messages, None for heartbeat frames.
        """
        payload = parse_frame(raw)
        if payload is not None and payload.get("type") == "pong":
            if connection.heartbeat is not None:
                connection.heartbeat.on_pong()
            return None
        return await self.router.route(connection, payload)

    async def close(self, connection: Connection) -> None:
        """Tear down after the transport closed on its own."""
        connection.mark_closed()
        if connection.heartbeat is not None:
            connection.heartbeat.stop()
        if self.registry.unregister(connection):
            await self.broadcaster.broadcast()

    async def evict(self, connection: Connection) -> None:
        """Heartbeat death callback; the transport is already closed."""
        if self.registry.unregister(connection):
            await self.broadcaster.broadcast()

    async def rename(self, user_id: str, new_username: str) -> int:
        return await self.registry.update_identity_username(user_id, new_username)

    def shutdown(self) -> None:
        """Stop every heartbeat so no timer outlives the event loop."""
        for connection in self.registry.connections():
            if connection.heartbeat is not None:
                connection.heartbeat.stop()
        logger.info(f"[Hub] Shut down with {len(self.registry)} live connections")


_hub: Optional[RelayHub] = None


def get_hub() -> RelayHub:
    """Get the process relay hub, building it from config on first use."""
    global _hub
    if _hub is None:
        _hub = RelayHub.from_config(get_config())
    return _hub


def set_hub(hub: Optional[RelayHub]) -> None:
    """Set (or clear) the process relay hub."""
    global _hub
    _hub = hub
