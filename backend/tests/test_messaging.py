"""Tests for envelope validation, persistence and forwarding."""
import re
from datetime import datetime

import pytest

from chatrelay.auth.credentials import Identity
from chatrelay.errors import MessagePersistenceError
from chatrelay.realtime.attachments import AttachmentIngestor
from chatrelay.realtime.messaging import (
    MessageEnvelope,
    MessageRouter,
    RouteOutcome,
    parse_frame,
)
from chatrelay.realtime.registry import Connection, ConnectionRegistry

from helpers import FailingStore, FakeWebSocket


def connect(registry, user_id=None, username=None):
    identity = Identity(id=user_id, username=username) if user_id else None
    conn = Connection(FakeWebSocket(), identity=identity)
    registry.register(conn)
    return conn


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def router(registry, message_store, upload_dir):
    return MessageRouter(registry, message_store, AttachmentIngestor(str(upload_dir)))


class TestParseFrame:

    def test_object(self):
        assert parse_frame('{"to": "u2"}') == {"to": "u2"}

    def test_bytes(self):
        assert parse_frame(b'{"to": "u2"}') == {"to": "u2"}

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"text"', "42", b"\xff\xfe"])
    def test_non_objects(self, raw):
        assert parse_frame(raw) is None


class TestMessageEnvelope:

    def test_numeric_recipient_coerced(self):
        assert MessageEnvelope.model_validate({"to": 7, "text": "x"}).to == "7"

    @pytest.mark.parametrize("payload,routable", [
        ({"to": "u2", "text": "hi"}, True),
        ({"to": "u2", "file": {"name": "a.png", "data": "data:,"}}, True),
        ({"to": "u2"}, False),
        ({"to": "u2", "text": ""}, False),
        ({"to": "", "text": "hi"}, False),
        ({"text": "hi"}, False),
    ])
    def test_routable(self, payload, routable):
        assert MessageEnvelope.model_validate(payload).routable is routable


class TestMessageRouter:

    @pytest.mark.asyncio
    async def test_happy_path(self, router, registry, message_store):
        alice = connect(registry, "u1", "alice")
        bob = connect(registry, "u2", "bob")

        result = await router.route(alice, {"to": "u2", "text": "hi"})

        assert result.outcome == RouteOutcome.ROUTED
        assert result.delivered == 1
        assert alice.websocket.sent == []

        [frame] = bob.websocket.sent
        assert set(frame) == {"text", "sender", "to", "file", "createdAt", "_id"}
        assert frame["text"] == "hi"
        assert frame["sender"] == "u1"
        assert frame["to"] == "u2"
        assert frame["file"] is None
        assert datetime.fromisoformat(frame["createdAt"].replace("Z", "+00:00"))

        assert message_store.count() == 1
        [stored] = message_store.find_conversation("u1", "u2")
        assert stored.id == frame["_id"]
        assert stored.sender == "u1"
        assert stored.to == "u2"
        assert stored.text == "hi"
        assert stored.file is None
        assert stored.to_frame() == frame

    @pytest.mark.asyncio
    async def test_attachment_round_trip(self, router, registry, message_store, upload_dir):
        alice = connect(registry, "u1", "alice")
        bob = connect(registry, "u2", "bob")

        result = await router.route(alice, {
            "to": "u2",
            "file": {"name": "a.png", "data": "data:image/png;base64,AAAA"},
        })

        [frame] = bob.websocket.sent
        assert re.match(r"^\d+\.png$", frame["file"])
        assert frame["text"] is None
        assert (upload_dir / frame["file"]).read_bytes() == b"\x00\x00\x00"
        assert message_store.find_conversation("u1", "u2")[0].file == frame["file"]
        assert result.attachment.stored

    @pytest.mark.asyncio
    async def test_failed_attachment_still_routed(self, router, registry, upload_dir):
        alice = connect(registry, "u1", "alice")
        bob = connect(registry, "u2", "bob")

        result = await router.route(alice, {
            "to": "u2",
            "text": "see attached",
            "file": {"name": "a.png", "data": "data:image/png;base64,A"},
        })

        assert result.outcome == RouteOutcome.ROUTED
        [frame] = bob.websocket.sent
        assert re.match(r"^\d+\.png$", frame["file"])
        assert not (upload_dir / frame["file"]).exists()
        assert result.attachment.stored is False
        assert result.attachment.filename == frame["file"]

    @pytest.mark.asyncio
    async def test_attachment_write_error_still_routed(self, router, registry, message_store, monkeypatch):
        def reject(path, content):
            raise ValueError("embedded null byte")

        monkeypatch.setattr(router.ingestor, "_write", reject)
        alice = connect(registry, "u1", "alice")
        bob = connect(registry, "u2", "bob")

        result = await router.route(alice, {
            "to": "u2",
            "file": {"name": "a.png", "data": "data:image/png;base64,AAAA"},
        })

        assert result.outcome == RouteOutcome.ROUTED
        assert result.attachment.stored is False
        assert message_store.count() == 1
        assert len(bob.websocket.sent) == 1

    @pytest.mark.asyncio
    async def test_nul_byte_in_attachment_name(self, router, registry, upload_dir):
        alice = connect(registry, "u1", "alice")
        bob = connect(registry, "u2", "bob")

        result = await router.route(alice, {
            "to": "u2",
            "file": {"name": "a.p\x00ng", "data": "data:image/png;base64,AAAA"},
        })

        assert result.outcome == RouteOutcome.ROUTED
        [frame] = bob.websocket.sent
        assert re.match(r"^\d+\.png$", frame["file"])
        assert (upload_dir / frame["file"]).read_bytes() == b"\x00\x00\x00"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"text": "no recipient"},
        {"to": "u2"},
        {"to": "u2", "text": ""},
        {"to": "u2", "text": 5},
        {"to": "u2", "file": {"name": "a.png"}},
        None,
    ])
    async def test_malformed_envelope_dropped(self, router, registry, message_store, payload):
        alice = connect(registry, "u1", "alice")
        bob = connect(registry, "u2", "bob")

        result = await router.route(alice, payload)

        assert result.outcome == RouteOutcome.DROPPED
        assert message_store.count() == 0
        assert bob.websocket.sent == []
        assert alice.websocket.sent == []
        assert alice.is_open

    @pytest.mark.asyncio
    async def test_offline_recipient_persisted_not_sent(self, router, registry, message_store):
        alice = connect(registry, "u1", "alice")
        bob = connect(registry, "u2", "bob")

        result = await router.route(alice, {"to": "u9", "text": "anyone?"})

        assert result.outcome == RouteOutcome.ROUTED
        assert result.delivered == 0
        assert message_store.count() == 1
        assert alice.websocket.sent == []
        assert bob.websocket.sent == []

    @pytest.mark.asyncio
    async def test_every_recipient_session_receives(self, router, registry):
        alice = connect(registry, "u1", "alice")
        tab1 = connect(registry, "u2", "bob")
        tab2 = connect(registry, "u2", "bob")

        result = await router.route(alice, {"to": "u2", "text": "hi"})

        assert result.delivered == 2
        assert tab1.websocket.sent == tab2.websocket.sent
        assert len(tab1.websocket.sent) == 1

    @pytest.mark.asyncio
    async def test_closed_recipient_skipped(self, router, registry, message_store):
        alice = connect(registry, "u1", "alice")
        bob = connect(registry, "u2", "bob")
        bob.websocket.disconnect_client()

        result = await router.route(alice, {"to": "u2", "text": "hi"})

        assert result.delivered == 0
        assert message_store.count() == 1

    @pytest.mark.asyncio
    async def test_anonymous_sender_stored_with_null_sender(self, router, registry, message_store):
        anon = connect(registry)
        bob = connect(registry, "u2", "bob")

        result = await router.route(anon, {"to": "u2", "text": "who am i"})

        assert result.record.sender is None
        assert bob.websocket.sent[0]["sender"] is None

    @pytest.mark.asyncio
    async def test_persistence_failure_skips_forwarding(self, registry, upload_dir, caplog):
        store = FailingStore(MessagePersistenceError("database is locked"))
        router = MessageRouter(registry, store, AttachmentIngestor(str(upload_dir)))
        alice = connect(registry, "u1", "alice")
        bob = connect(registry, "u2", "bob")

        result = await router.route(alice, {"to": "u2", "text": "hi"})

        assert result.outcome == RouteOutcome.PERSIST_FAILED
        assert store.calls == 1
        assert bob.websocket.sent == []
        assert alice.websocket.sent == []
        assert "database is locked" in caplog.text

    @pytest.mark.asyncio
    async def test_unexpected_store_error_contained(self, registry, upload_dir):
        router = MessageRouter(registry, FailingStore(RuntimeError("boom")), AttachmentIngestor(str(upload_dir)))
        alice = connect(registry, "u1", "alice")

        result = await router.route(alice, {"to": "u2", "text": "hi"})

        assert result.outcome == RouteOutcome.PERSIST_FAILED
