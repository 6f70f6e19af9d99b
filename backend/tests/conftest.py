"""Shared test fixtures and configuration for backend tests."""

import pytest
from fastapi.testclient import TestClient

from chatrelay.auth.credentials import CredentialValidator
from chatrelay.main import app
from chatrelay.messages.service import MessageStore
from chatrelay.realtime.heartbeat import make_heartbeat_factory
from chatrelay.realtime.hub import RelayHub, set_hub

from helpers import TEST_SECRET


@pytest.fixture
def message_store():
    store = MessageStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def validator():
    return CredentialValidator(secret_key=TEST_SECRET)


@pytest.fixture
def hub(validator, message_store, upload_dir):
    """Hub with an in-memory store and a temp uploads directory.

    Installed as the process hub so HTTP and WebSocket endpoints use it.
    """
    relay_hub = RelayHub(
        validator=validator,
        store=message_store,
        upload_dir=str(upload_dir),
        heartbeat_factory=make_heartbeat_factory(interval=3600),
    )
    set_hub(relay_hub)
    yield relay_hub
    set_hub(None)


@pytest.fixture
def fast_hub(validator, message_store, upload_dir):
    """Hub with heartbeat timings short enough to exercise in tests."""
    relay_hub = RelayHub(
        validator=validator,
        store=message_store,
        upload_dir=str(upload_dir),
        heartbeat_factory=make_heartbeat_factory(interval=0.05, death_timeout=0.02),
    )
    yield relay_hub
    for connection in relay_hub.registry.connections():
        if connection.heartbeat is not None:
            connection.heartbeat.stop()


@pytest.fixture
def api_client(hub):
    """Provide a TestClient for the main FastAPI app bound to the test hub."""
    with TestClient(app) as client:
        yield client
