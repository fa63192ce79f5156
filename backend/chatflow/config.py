"""ChatFlow application configuration.

Loads settings from two YAML files:
  * chatflow.settings.yaml  - non-secret configuration
  * chatflow.secrets.yaml   - secrets (never committed)

A handful of environment variables override the files so the relay can be
configured the usual twelve-factor way:
  * JWT_SECRET        -> secrets.jwt.secret_key
  * PORT              -> server.port
  * ALLOWED_ORIGIN    -> server.allowed_origins (comma separated)
  * CHATFLOW_DB_PATH  -> store.db_path
  * LOG_LEVEL         -> logging.level
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatflow.settings.yaml")
SECRETS_FILE  = Path("chatflow.secrets.yaml")

# Development fallback only; a warning is logged whenever it is in effect.
DEFAULT_JWT_SECRET = "your-secret-key"

IN_MEMORY_DB = ":memory:"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = DEFAULT_JWT_SECRET
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = Field(default=3001, ge=1, le=65535)
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class StoreSettings(BaseModel):
    db_path: str = "chatflow.duckdb"


class AuthSettings(BaseModel):
    token_expire_days:   int = Field(default=7, ge=1)
    min_password_length: int = Field(default=6, ge=1)


class RelaySettings(BaseModel):
    """Behaviour of the WebSocket relay."""
    history_limit: int  = Field(default=50, ge=1, le=100)
    relay_typing:  bool = False


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if getattr(logging, value.upper(), None) is None:
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    store:   StoreSettings   = Field(default_factory=StoreSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    relay:   RelaySettings   = Field(default_factory=RelaySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    secrets: Secrets         = Field(default_factory=Secrets)

    @property
    def uses_default_secret(self) -> bool:
        return self.secrets.jwt.secret_key == DEFAULT_JWT_SECRET


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    """Merge recognised environment variables into raw settings data."""
    env = os.environ

    if env.get("JWT_SECRET"):
        data.setdefault("secrets", {}).setdefault("jwt", {})["secret_key"] = env["JWT_SECRET"]
    if env.get("PORT"):
        data.setdefault("server", {})["port"] = env["PORT"]
    if env.get("ALLOWED_ORIGIN"):
        origins = [o.strip() for o in env["ALLOWED_ORIGIN"].split(",") if o.strip()]
        data.setdefault("server", {})["allowed_origins"] = origins
    if env.get("CHATFLOW_DB_PATH"):
        data.setdefault("store", {})["db_path"] = env["CHATFLOW_DB_PATH"]
    if env.get("LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = env["LOG_LEVEL"]


def _resolve_db_path(db_path: str, settings_path: Path) -> str:
    """Resolve a relative database path against the settings file directory."""
    if db_path == IN_MEMORY_DB:
        return db_path
    path = Path(db_path)
    if path.is_absolute() or not settings_path.exists():
        return db_path
    return str(settings_path.resolve().parent / path)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = Path(settings_path) if settings_path else SETTINGS_FILE
    secrets_path = Path(secrets_path) if secrets_path else settings_path.with_name(SECRETS_FILE.name)

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data
    _apply_env_overrides(settings_data)

    app_settings = AppSettings(**settings_data)
    app_settings.store.db_path = _resolve_db_path(app_settings.store.db_path, settings_path)

    if app_settings.uses_default_secret:
        logger.warning(
            "JWT_SECRET is not configured; using the insecure development default. "
            "Set JWT_SECRET or secrets.jwt.secret_key before deploying."
        )

    logger.info(
        "Settings loaded (server=%s:%s, db=%s, history_limit=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.store.db_path,
        app_settings.relay.history_limit,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppSettings]) -> None:
    """Replace (or with ``None`` clear) the process-wide settings."""
    global _config
    _config = config
