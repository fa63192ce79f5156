"""Tests for the DuckDB-backed user and message stores."""
from datetime import timezone
from unittest.mock import patch

import duckdb
import pytest

from chatflow.auth.schemas import Identity
from chatflow.errors import ConflictError, PersistenceError
from chatflow.store.database import ChatDatabase
from chatflow.store.messages import DuckDBMessageStore
from chatflow.store.users import UserStore


@pytest.fixture
def users():
    return UserStore()


@pytest.fixture
def messages():
    return DuckDBMessageStore()


class TestChatDatabase:
    """Tests for the database singleton."""

    def test_singleton_reuses_instance(self):
        assert ChatDatabase.get_instance() is ChatDatabase.get_instance()

    def test_reset_opens_fresh_database(self, users):
        users.create("alice", "a@x.com", "hash")
        ChatDatabase.reset_instance()
        ChatDatabase.get_instance(db_path=":memory:")
        assert users.get_by_email("a@x.com") is None

    def test_file_database_survives_reopen(self, tmp_path):
        db_file = str(tmp_path / "chat.duckdb")
        store = UserStore(ChatDatabase(db_file))
        created = store.create("alice", "a@x.com", "hash")
        store.database.close()

        reopened = UserStore(ChatDatabase(db_file))
        assert reopened.get_by_id(created.id).username == "alice"
        reopened.database.close()


class TestUserStore:
    """Tests for account persistence."""

    def test_create_and_lookup(self, users):
        created = users.create("alice", "a@x.com", "hash")

        assert users.get_by_email("a@x.com") == created
        assert users.get_by_username("alice") == created
        assert users.get_by_id(created.id) == created
        assert created.created_at.tzinfo is not None

    def test_to_identity_drops_password_hash(self, users):
        identity = users.create("alice", "a@x.com", "hash").to_identity()
        assert identity.model_dump().keys() == {"id", "username", "email"}

    def test_unknown_lookups_return_none(self, users):
        assert users.get_by_email("nobody@x.com") is None
        assert users.get_by_username("nobody") is None
        assert users.get_by_id("missing") is None

    def test_duplicate_email_conflict(self, users):
        users.create("alice", "a@x.com", "hash")
        with pytest.raises(ConflictError) as exc_info:
            users.create("alice2", "a@x.com", "hash")
        assert exc_info.value.message == "User with this email already exists"

    def test_duplicate_username_conflict(self, users):
        users.create("alice", "a@x.com", "hash")
        with pytest.raises(ConflictError) as exc_info:
            users.create("alice", "other@x.com", "hash")
        assert exc_info.value.message == "Username already taken"

    def test_storage_failure_is_persistence_error(self, users):
        with patch.object(ChatDatabase, "fetchone", side_effect=duckdb.IOException("disk")):
            with pytest.raises(PersistenceError):
                users.get_by_email("a@x.com")


class TestDuckDBMessageStore:
    """Tests for message persistence and recency queries."""

    @pytest.mark.asyncio
    async def test_create_returns_stored_message(self, users, messages):
        alice = users.create("alice", "a@x.com", "hash").to_identity()

        message = await messages.create("hello", alice)

        assert message.id
        assert message.content == "hello"
        assert message.sender_id == alice.id
        assert message.sender_username == "alice"
        assert message.created_at.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_find_recent_newest_first_with_limit(self, users, messages):
        alice = users.create("alice", "a@x.com", "hash").to_identity()
        bob = users.create("bob", "b@x.com", "hash").to_identity()
        for i in range(6):
            await messages.create(f"m{i}", alice if i % 2 == 0 else bob)

        recent = await messages.find_recent(4)

        assert [m.content for m in recent] == ["m5", "m4", "m3", "m2"]
        assert [m.sender_username for m in recent] == ["bob", "alice", "bob", "alice"]

    @pytest.mark.asyncio
    async def test_find_recent_empty(self, messages):
        assert await messages.find_recent(50) == []

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, users, messages):
        alice = users.create("alice", "a@x.com", "hash").to_identity()
        ids = {(await messages.create("same text", alice)).id for _ in range(10)}
        assert len(ids) == 10

    @pytest.mark.asyncio
    async def test_unknown_sender_rejected(self, messages):
        ghost = Identity(id="ghost", username="ghost", email="g@x.com")
        with pytest.raises(PersistenceError):
            await messages.create("boo", ghost)
        assert await messages.find_recent(10) == []

    @pytest.mark.asyncio
    async def test_read_failure_is_persistence_error(self, messages):
        with patch.object(ChatDatabase, "fetchall", side_effect=duckdb.IOException("disk")):
            with pytest.raises(PersistenceError):
                await messages.find_recent(10)
