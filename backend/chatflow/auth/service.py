"""Credential service: password hashing and signed identity tokens.

Tokens are HS256 JWTs carrying the Identity fields plus ``exp``. Validity is
decided purely by signature and expiry; there is no server-side revocation
state, so verification is a pure function of the shared secret and the token.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError
from jwt.exceptions import PyJWTError

from chatflow.config import AppSettings, get_config
from chatflow.errors import (
    AuthenticationError,
    ConflictError,
    InvalidCredentialsError,
    ValidationError,
)
from chatflow.store.users import UserStore

from .schemas import AuthResult, Identity

logger = logging.getLogger(__name__)

ph = PasswordHasher()

# Hash checked against when the email is unknown, so both login failure
# paths cost the same.
_dummy_hash: Optional[str] = None


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except VerifyMismatchError:
        return False


def _burn_password_check(password: str) -> None:
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password("chatflow-dummy-password")
    verify_password(password, _dummy_hash)


def create_token(
    identity: Identity,
    secret_key: str,
    algorithm: str = "HS256",
    expire_days: int = 7,
) -> str:
    """Sign a token for ``identity`` that expires after ``expire_days``."""
    now = datetime.now(timezone.utc)
    payload = {
        "id": identity.id,
        "username": identity.username,
        "email": identity.email,
        "iat": now,
        "exp": now + timedelta(days=expire_days),
    }
    return str(jwt.encode(payload, secret_key, algorithm=algorithm))


def decode_token(token: Optional[str], secret_key: str, algorithm: str = "HS256") -> Identity:
    """Verify a token and return the identity it carries.

    Every failure mode (missing, malformed, bad signature, expired, missing
    claims) raises the same AuthenticationError.
    """
    if not token:
        raise AuthenticationError()
    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            options={"require": ["exp"]},
        )
        return Identity(
            id=str(payload["id"]),
            username=str(payload["username"]),
            email=str(payload["email"]),
        )
    except jwt.ExpiredSignatureError as e:
        logger.debug("Rejected expired token")
        raise AuthenticationError() from e
    except (PyJWTError, KeyError) as e:
        logger.debug("Rejected invalid token: %s", e)
        raise AuthenticationError() from e


class CredentialService:
    """Registration, login and token verification.

    Attributes:
        users: Account store used for lookups and creation.
        settings: Application settings (secret, algorithm, policy).
    """

    def __init__(
        self,
        users: Optional[UserStore] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self.users = users or UserStore()
        self._settings = settings

    @property
    def settings(self) -> AppSettings:
        return self._settings or get_config()

    def issue_token(self, identity: Identity) -> str:
        jwt_secrets = self.settings.secrets.jwt
        return create_token(
            identity,
            jwt_secrets.secret_key,
            algorithm=jwt_secrets.algorithm,
            expire_days=self.settings.auth.token_expire_days,
        )

    def verify_token(self, token: Optional[str]) -> Identity:
        """Return the identity in ``token`` or raise AuthenticationError."""
        jwt_secrets = self.settings.secrets.jwt
        return decode_token(token, jwt_secrets.secret_key, jwt_secrets.algorithm)

    def register(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
    ) -> AuthResult:
        """Create an account and issue its first token.

        Raises:
            ValidationError: Missing fields or a too-short password.
            ConflictError: Email or username already registered.
        """
        if not username or not email or not password:
            raise ValidationError("Username, email, and password are required")

        min_length = self.settings.auth.min_password_length
        if len(password) < min_length:
            raise ValidationError(f"Password must be at least {min_length} characters long")

        if self.users.get_by_email(email) is not None:
            raise ConflictError("User with this email already exists")
        if self.users.get_by_username(username) is not None:
            raise ConflictError("Username already taken")

        user = self.users.create(username, email, hash_password(password))
        identity = user.to_identity()
        return AuthResult(token=self.issue_token(identity), user=identity)

    def login(self, email: Optional[str], password: Optional[str]) -> AuthResult:
        """Check credentials and issue a token.

        Raises:
            ValidationError: Missing email or password.
            InvalidCredentialsError: Unknown email or wrong password.
        """
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = self.users.get_by_email(email)
        if user is None:
            _burn_password_check(password)
            raise InvalidCredentialsError()

        if not verify_password(password, user.password_hash):
            logger.info("Failed login for user %s", user.id)
            raise InvalidCredentialsError()

        identity = user.to_identity()
        return AuthResult(token=self.issue_token(identity), user=identity)
