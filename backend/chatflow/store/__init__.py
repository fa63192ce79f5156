"""Persistence layer (DuckDB) for accounts and chat history."""

from .database import ChatDatabase
from .messages import DuckDBMessageStore, MessageStore, StoredMessage
from .users import UserRecord, UserStore

__all__ = [
    "ChatDatabase",
    "DuckDBMessageStore",
    "MessageStore",
    "StoredMessage",
    "UserRecord",
    "UserStore",
]
