"""Per-connection liveness protocol.

Every ``interval`` seconds the server sends ``{"type": "ping"}`` and arms a
death timer of ``death_timeout`` seconds. A ``{"type": "pong"}`` from the
client cancels it. If the death timer fires first the connection is closed
and handed to ``on_dead`` for unregistration.

State machine::

    ALIVE --tick--> AWAITING_PONG --pong--> ALIVE
                          |
                          +--death timer--> DEAD

``stop()`` moves any non-dead monitor to STOPPED (transport closed normally).
Pongs never reset the tick schedule; the repeating timer keeps its
original phase.

Starlette does not surface protocol-level ping/pong frames to the
application, so the exchange runs on ordinary JSON frames.
"""
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .timer import CancellableTimer, RepeatingTimer

logger = logging.getLogger(__name__)

PING_FRAME = {"type": "ping"}

DEFAULT_INTERVAL = 5.0
DEFAULT_DEATH_TIMEOUT = 1.0


class HeartbeatState(str, Enum):
    ALIVE = "alive"
    AWAITING_PONG = "awaiting_pong"
    DEAD = "dead"
    STOPPED = "stopped"


class HeartbeatMonitor:
    """Liveness monitor bound to one connection.

    Args:
        connection: The connection to ping. Must provide ``send_json`` and ``close``.
        on_dead: Coroutine called once with the connection after it is evicted.
        interval: Seconds between pings.
        death_timeout: Seconds to wait for a pong after each ping.
    """

    def __init__(
        self,
        connection: Any,
        on_dead: Callable[[Any], Awaitable[None]],
        interval: float = DEFAULT_INTERVAL,
        death_timeout: float = DEFAULT_DEATH_TIMEOUT,
        loop=None,
    ) -> None:
        self.connection = connection
        self.interval = interval
        self.death_timeout = death_timeout
        self.state = HeartbeatState.ALIVE
        self._on_dead = on_dead
        self._ticker = RepeatingTimer(loop)
        self._death_timer = CancellableTimer(loop)
        self.pings_sent = 0

    @property
    def awaiting_pong(self) -> bool:
        return self._death_timer.armed

    def start(self) -> None:
        self._ticker.start(self.interval, self._on_tick)

    def stop(self) -> None:
        """Cancel both timers; used when the transport closed on its own."""
        self._ticker.cancel()
        self._death_timer.cancel()
        if self.state != HeartbeatState.DEAD:
            self.state = HeartbeatState.STOPPED

    def on_pong(self) -> bool:
        """Handle a pong frame.

        Returns:
            True if it answered an outstanding ping.
        """
        if self.state != HeartbeatState.AWAITING_PONG:
            logger.debug("[Heartbeat] Unsolicited pong on %r", self.connection)
            return False
        self._death_timer.cancel()
        self.state = HeartbeatState.ALIVE
        return True

    async def _on_tick(self) -> None:
        if self.state in (HeartbeatState.DEAD, HeartbeatState.STOPPED):
            return
        if not self._death_timer.armed:
            self.state = HeartbeatState.AWAITING_PONG
            self._death_timer.arm(self.death_timeout, self._on_death)
        self.pings_sent += 1
        await self.connection.send_json(PING_FRAME)

    async def _on_death(self) -> None:
        if self.state in (HeartbeatState.DEAD, HeartbeatState.STOPPED):
            return
        self.state = HeartbeatState.DEAD
        self._ticker.cancel()
        logger.warning(
            "[Heartbeat] No pong from %r within %.1fs, terminating",
            self.connection,
            self.death_timeout,
        )
        await self.connection.close(code=1001)
        await self._on_dead(self.connection)


HeartbeatFactory = Callable[[Any, Callable[[Any], Awaitable[None]]], HeartbeatMonitor]


def make_heartbeat_factory(
    interval: float = DEFAULT_INTERVAL,
    death_timeout: float = DEFAULT_DEATH_TIMEOUT,
    loop: Optional[Any] = None,
) -> HeartbeatFactory:
    """Build monitors with fixed timings, one per connection."""
    def factory(connection, on_dead):
        return HeartbeatMonitor(connection, on_dead, interval, death_timeout, loop)
    return factory
