"""Message Store: durable, append-only persistence of chat messages.

The relay depends only on the :class:`MessageStore` interface; the process
wires in :class:`DuckDBMessageStore` at startup and tests inject fakes.

Retrieval is reverse-chronological (newest first). Callers that need
display order reverse the result themselves.
"""
import abc
import asyncio
import logging
import uuid
from datetime import datetime
from functools import partial
from typing import List, Optional

import duckdb
from pydantic import BaseModel

from chatflow.auth.schemas import Identity
from chatflow.errors import PersistenceError

from .database import ChatDatabase, as_utc, utcnow

logger = logging.getLogger(__name__)


class StoredMessage(BaseModel):
    """A persisted message joined with its sender's username."""
    id: str
    content: str
    sender_id: str
    sender_username: str
    created_at: datetime


class MessageStore(abc.ABC):
    """Interface the relay uses to read and write history."""

    @abc.abstractmethod
    async def find_recent(self, limit: int) -> List[StoredMessage]:
        """Return up to ``limit`` messages, newest first.

        Raises:
            PersistenceError: If the store cannot be read.
        """

    @abc.abstractmethod
    async def create(self, content: str, sender: Identity) -> StoredMessage:
        """Persist a new message sent by ``sender``.

        Raises:
            PersistenceError: If the message could not be stored.
        """


class DuckDBMessageStore(MessageStore):
    """DuckDB-backed message store.

    Queries run in the default executor so a slow disk stalls only the
    awaiting connection, never the event loop.
    """

    def __init__(self, database: Optional[ChatDatabase] = None) -> None:
        self._database = database

    @property
    def database(self) -> ChatDatabase:
        return self._database or ChatDatabase.get_instance()

    async def find_recent(self, limit: int) -> List[StoredMessage]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(self._find_recent_sync, limit))

    async def create(self, content: str, sender: Identity) -> StoredMessage:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(self._create_sync, content, sender))

    def _find_recent_sync(self, limit: int) -> List[StoredMessage]:
        try:
            rows = self.database.fetchall(
                """
                SELECT m.id, m.content, m.sender_id, u.username, m.created_at
                FROM messages m
                JOIN users u ON u.id = m.sender_id
                ORDER BY m.seq DESC
                LIMIT ?
                """,
                [limit],
            )
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to fetch messages: {e}") from e

        return [
            StoredMessage(
                id=row[0],
                content=row[1],
                sender_id=row[2],
                sender_username=row[3],
                created_at=as_utc(row[4]),
            )
            for row in rows
        ]

    def _create_sync(self, content: str, sender: Identity) -> StoredMessage:
        message_id = str(uuid.uuid4())
        created_at = utcnow()
        try:
            self.database.execute(
                """
                INSERT INTO messages (id, content, sender_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                [message_id, content, sender.id, created_at],
            )
        except duckdb.ConstraintException as e:
            # Foreign key: the token names an account that no longer exists
            raise PersistenceError(f"Unknown sender {sender.id}") from e
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to save message: {e}") from e

        return StoredMessage(
            id=message_id,
            content=content,
            sender_id=sender.id,
            sender_username=sender.username,
            created_at=as_utc(created_at),
        )
