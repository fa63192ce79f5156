"""Account persistence for the credential service."""
import logging
import uuid
from datetime import datetime
from typing import Optional

import duckdb
from pydantic import BaseModel

from chatflow.auth.schemas import Identity
from chatflow.errors import ConflictError, PersistenceError

from .database import ChatDatabase, as_utc, utcnow

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, username, email, password_hash, created_at"


class UserRecord(BaseModel):
    """A stored account, including its password hash."""
    id: str
    username: str
    email: str
    password_hash: str
    created_at: datetime

    def to_identity(self) -> Identity:
        return Identity(id=self.id, username=self.username, email=self.email)


def _row_to_user(row: Optional[tuple]) -> Optional[UserRecord]:
    if row is None:
        return None
    return UserRecord(
        id=row[0],
        username=row[1],
        email=row[2],
        password_hash=row[3],
        created_at=as_utc(row[4]),
    )


class UserStore:
    """Lookup and creation of accounts in the ``users`` table.

    The database is resolved on every call so tests can swap the
    singleton underneath a long-lived store.
    """

    def __init__(self, database: Optional[ChatDatabase] = None) -> None:
        self._database = database

    @property
    def database(self) -> ChatDatabase:
        return self._database or ChatDatabase.get_instance()

    def get_by_email(self, email: str) -> Optional[UserRecord]:
        return self._fetch_one("email", email)

    def get_by_username(self, username: str) -> Optional[UserRecord]:
        return self._fetch_one("username", username)

    def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        return self._fetch_one("id", user_id)

    def _fetch_one(self, column: str, value: str) -> Optional[UserRecord]:
        try:
            row = self.database.fetchone(
                f"SELECT {_USER_COLUMNS} FROM users WHERE {column} = ?",
                [value],
            )
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to look up user: {e}") from e
        return _row_to_user(row)

    def create(self, username: str, email: str, password_hash: str) -> UserRecord:
        """Insert a new account.

        Raises:
            ConflictError: If the email or username was taken concurrently.
            PersistenceError: For any other storage failure.
        """
        user = UserRecord(
            id=str(uuid.uuid4()),
            username=username,
            email=email,
            password_hash=password_hash,
            created_at=utcnow(),
        )
        try:
            self.database.execute(
                f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                [user.id, user.username, user.email, user.password_hash, user.created_at],
            )
        except duckdb.ConstraintException as e:
            if self.get_by_email(email) is not None:
                raise ConflictError("User with this email already exists") from e
            raise ConflictError("Username already taken") from e
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to create user: {e}") from e

        logger.info("Created user %s (%s)", user.username, user.id)
        user.created_at = as_utc(user.created_at)
        return user
