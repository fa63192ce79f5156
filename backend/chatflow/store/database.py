"""DuckDB connection and schema for ChatFlow persistence.

Database Schema:
    users table:
        - id: UUID string primary key
        - username: Unique display handle
        - email: Unique login address
        - password_hash: Argon2id hash
        - created_at: Account creation time (UTC)

    messages table:
        - seq: Monotonic insertion sequence, defines history order
        - id: UUID string, unique
        - content: Message text
        - sender_id: Foreign key to users.id
        - created_at: When the relay accepted the message (UTC)

Thread Safety:
    A DuckDB connection must not be used by several threads at once. The
    stores run their queries in the default executor so the event loop never
    blocks on disk I/O; every statement therefore goes through ``_lock``.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

import duckdb

from chatflow.config import get_config

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """Attach the UTC zone to a naive timestamp read back from DuckDB."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ChatDatabase:
    """Singleton owner of the DuckDB connection.

    Attributes:
        _instance: Singleton instance of the database.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["ChatDatabase"] = None
    _db_path: str = "chatflow.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open the database and create the schema if it doesn't exist.

        Args:
            db_path: Path to DuckDB file, or ``":memory:"``.
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "ChatDatabase":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
                Defaults to the configured ``store.db_path``.
        """
        if cls._instance is None:
            cls._instance = cls(db_path or get_config().store.db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and drop the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    @property
    def db_path(self) -> str:
        return self._db_path

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
            logger.info("Opened DuckDB database at %s", self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create tables, sequence and indexes (idempotent)."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id VARCHAR PRIMARY KEY,
                    username VARCHAR NOT NULL UNIQUE,
                    email VARCHAR NOT NULL UNIQUE,
                    password_hash VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE SEQUENCE IF NOT EXISTS messages_seq START 1;
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    seq BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                    id VARCHAR NOT NULL UNIQUE,
                    content VARCHAR NOT NULL,
                    sender_id VARCHAR NOT NULL REFERENCES users(id),
                    created_at TIMESTAMP NOT NULL
                )
            """)

    def execute(self, query: str, params: Sequence[Any] = ()) -> None:
        with self._lock:
            self._get_connection().execute(query, list(params))

    def fetchall(self, query: str, params: Sequence[Any] = ()) -> List[tuple]:
        with self._lock:
            return self._get_connection().execute(query, list(params)).fetchall()

    def fetchone(self, query: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        with self._lock:
            return self._get_connection().execute(query, list(params)).fetchone()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
