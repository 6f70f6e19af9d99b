"""Manual smoke test against a running relay.

Connects two users, sends a message from one to the other and prints
every frame received. Answers heartbeat pings so the sessions stay alive.

    CHATRELAY_JWT_SECRET=dev python smoke_client.py
"""
import asyncio
import json
import os

import jwt
import websockets

URL = os.environ.get("CHATRELAY_URL", "ws://localhost:3001/ws")
SECRET = os.environ.get("CHATRELAY_JWT_SECRET", "change-me-in-production")


def cookie(user_id, username):
    token = jwt.encode({"id": user_id, "username": username}, SECRET, algorithm="HS256")
    return f"token={token}"


async def recv(ws, label):
    # Skip heartbeats until a real frame arrives
    while True:
        frame = json.loads(await ws.recv())
        if frame.get("type") == "ping":
            await ws.send(json.dumps({"type": "pong"}))
            continue
        print(f"{label} <- {frame}")
        return frame


async def main():
    async with websockets.connect(URL, additional_headers={"Cookie": cookie("u1", "alice")}) as alice:
        await recv(alice, "alice")

        async with websockets.connect(URL, additional_headers={"Cookie": cookie("u2", "bob")}) as bob:
            await recv(bob, "bob")
            await recv(alice, "alice")

            await alice.send(json.dumps({"to": "u2", "text": "Hello from Python!"}))
            await recv(bob, "bob")

        # bob left
        await recv(alice, "alice")


if __name__ == "__main__":
    asyncio.run(main())
