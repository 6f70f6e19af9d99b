"""Presence snapshots pushed to every open connection."""
import logging

from .registry import ConnectionRegistry, deliver

logger = logging.getLogger(__name__)


class PresenceBroadcaster:
    """Sends ``{"online": [...]}`` to all open connections on membership changes."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    def frame(self) -> dict:
        return {"online": [entry.model_dump() for entry in self.registry.snapshot()]}

    async def broadcast(self) -> int:
        """Push the current snapshot. Best effort, no retries.

        Returns:
            Number of connections the snapshot reached.
        """
        frame = self.frame()
        sent = await deliver(self.registry.connections(), frame)
        logger.debug(
            "[Presence] Broadcast %d online to %d/%d connections",
            len(frame["online"]),
            sent,
            len(self.registry),
        )
        return sent
