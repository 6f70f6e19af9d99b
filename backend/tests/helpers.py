"""Test doubles and helpers shared by the test modules."""
import asyncio

import jwt
from starlette.websockets import WebSocketState

TEST_SECRET = "test-secret"


def make_token(user_id: str, username: str, secret: str = TEST_SECRET, **extra) -> str:
    """Sign a session token the way the account service does at login."""
    payload = {"id": user_id, "username": username, "email": f"{username}@example.com"}
    payload.update(extra)
    return jwt.encode(payload, secret, algorithm="HS256")


def cookie_for(user_id: str, username: str) -> str:
    return f"token={make_token(user_id, username)}"


class FakeWebSocket:
    """Minimal stand-in for a FastAPI WebSocket.

    Records every frame sent. ``on_ping`` is called synchronously after a
    heartbeat ping is sent, so tests can answer it.
    """

    def __init__(self, cookie: str = None, fail_sends: bool = False) -> None:
        self.headers = {"cookie": cookie} if cookie else {}
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.accepted = False
        self.close_code = None
        self.fail_sends = fail_sends
        self.sent = []
        self.on_ping = None

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.fail_sends:
            raise RuntimeError("transport broken")
        self.sent.append(data)
        if data == {"type": "ping"} and self.on_ping is not None:
            self.on_ping()

    async def close(self, code: int = 1000) -> None:
        self.application_state = WebSocketState.DISCONNECTED
        self.close_code = code

    def disconnect_client(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED

    def presence_frames(self) -> list:
        return [f for f in self.sent if "online" in f]

    def message_frames(self) -> list:
        return [f for f in self.sent if "_id" in f]

    def pings(self) -> list:
        return [f for f in self.sent if f == {"type": "ping"}]


class FailingStore:
    """Message store whose writes always fail."""

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.calls = 0

    async def create(self, message):
        self.calls += 1
        raise self.error


async def wait_for(predicate, timeout: float = 2.0, step: float = 0.01) -> bool:
    """Poll ``predicate`` on the running loop until true or timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step)
    return predicate()


