"""Shared test fixtures and configuration for backend tests."""
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from chatflow.auth.schemas import Identity
from chatflow.auth.service import create_token
from chatflow.config import IN_MEMORY_DB, AppSettings, set_config
from chatflow.errors import PersistenceError
from chatflow.main import app
from chatflow.store.database import ChatDatabase
from chatflow.store.messages import MessageStore, StoredMessage

TEST_SECRET = "test-secret-key"


def make_settings(**relay) -> AppSettings:
    """Settings with a known secret and an in-memory database."""
    return AppSettings(
        store={"db_path": IN_MEMORY_DB},
        relay=relay,
        secrets={"jwt": {"secret_key": TEST_SECRET}},
    )


def token_for(identity: Identity, **kwargs) -> str:
    return create_token(identity, TEST_SECRET, **kwargs)


class FakeMessageStore(MessageStore):
    """In-memory message store with switchable failures."""

    def __init__(self, fail_on: Optional[str] = None, fail_history: bool = False) -> None:
        self.messages: List[StoredMessage] = []
        self.fail_on = fail_on
        self.fail_history = fail_history

    async def find_recent(self, limit: int) -> List[StoredMessage]:
        if self.fail_history:
            raise PersistenceError("history unavailable")
        return list(reversed(self.messages))[:limit]

    async def create(self, content: str, sender: Identity) -> StoredMessage:
        if content == self.fail_on:
            raise PersistenceError("disk full")
        message = StoredMessage(
            id=str(uuid.uuid4()),
            content=content,
            sender_id=sender.id,
            sender_username=sender.username,
            created_at=datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message


@pytest.fixture(autouse=True)
def test_settings():
    """Use known settings and a fresh in-memory database for each test.

    Keeps tests away from the file-based chatflow.duckdb, which may be
    locked by a running backend.
    """
    settings = make_settings()
    set_config(settings)
    ChatDatabase.reset_instance()
    ChatDatabase.get_instance(db_path=IN_MEMORY_DB)
    yield settings
    ChatDatabase.reset_instance()
    set_config(None)


@pytest.fixture(autouse=True)
def cleanup_relay():
    """Drop any connection left on the shared app relay after a test."""
    yield
    relay = app.state.relay
    for connection in list(relay.active_connections):
        relay.disconnect(connection)


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)


@pytest.fixture
def alice() -> Identity:
    return Identity(id="user-alice", username="alice", email="a@x.com")


@pytest.fixture
def bob() -> Identity:
    return Identity(id="user-bob", username="bob", email="b@x.com")
