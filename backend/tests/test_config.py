"""Tests for YAML settings loading and environment overrides."""
import logging
from pathlib import Path

import pydantic
import pytest

from chatflow.config import DEFAULT_JWT_SECRET, AppSettings, load_config

ENV_VARS = ("JWT_SECRET", "PORT", "ALLOWED_ORIGIN", "CHATFLOW_DB_PATH", "LOG_LEVEL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_settings(tmp_path: Path, text: str) -> Path:
    settings_file = tmp_path / "chatflow.settings.yaml"
    settings_file.write_text(text, encoding="utf-8")
    return settings_file


def test_defaults_when_files_missing(tmp_path):
    cfg = load_config(settings_path=tmp_path / "missing.yaml")

    assert cfg.server.port == 3001
    assert cfg.server.allowed_origins == ["http://localhost:3000"]
    assert cfg.store.db_path == "chatflow.duckdb"
    assert cfg.auth.token_expire_days == 7
    assert cfg.auth.min_password_length == 6
    assert cfg.relay.history_limit == 50
    assert cfg.relay.relay_typing is False
    assert cfg.secrets.jwt.secret_key == DEFAULT_JWT_SECRET


def test_default_secret_logs_warning(tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="chatflow.config"):
        cfg = load_config(settings_path=tmp_path / "missing.yaml")
    assert cfg.uses_default_secret
    assert any("JWT_SECRET" in record.message for record in caplog.records)


def test_settings_and_secrets_files_are_merged(tmp_path):
    settings_file = write_settings(tmp_path, """
server:
  port: 4000
  allowed_origins:
    - https://chat.example.com
relay:
  history_limit: 20
  relay_typing: true
""")
    (tmp_path / "chatflow.secrets.yaml").write_text(
        "jwt:\n  secret_key: from-file\n", encoding="utf-8"
    )

    cfg = load_config(settings_path=settings_file)

    assert cfg.server.port == 4000
    assert cfg.server.allowed_origins == ["https://chat.example.com"]
    assert cfg.relay.history_limit == 20
    assert cfg.relay.relay_typing is True
    assert cfg.secrets.jwt.secret_key == "from-file"
    assert not cfg.uses_default_secret


def test_environment_overrides_files(tmp_path, monkeypatch):
    settings_file = write_settings(tmp_path, "server:\n  port: 4000\n")
    monkeypatch.setenv("JWT_SECRET", "from-env")
    monkeypatch.setenv("PORT", "5000")
    monkeypatch.setenv("ALLOWED_ORIGIN", "http://a.test, http://b.test")
    monkeypatch.setenv("CHATFLOW_DB_PATH", ":memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    cfg = load_config(settings_path=settings_file)

    assert cfg.secrets.jwt.secret_key == "from-env"
    assert cfg.server.port == 5000
    assert cfg.server.allowed_origins == ["http://a.test", "http://b.test"]
    assert cfg.store.db_path == ":memory:"
    assert cfg.logging.level == "debug"


def test_relative_db_path_resolved_against_settings_dir(tmp_path):
    settings_file = write_settings(tmp_path, "store:\n  db_path: data/chat.duckdb\n")
    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.store.db_path) == tmp_path.resolve() / "data" / "chat.duckdb"


def test_absolute_db_path_unchanged(tmp_path):
    absolute = tmp_path / "elsewhere" / "chat.duckdb"
    settings_file = write_settings(tmp_path, f"store:\n  db_path: {absolute}\n")
    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.store.db_path) == absolute


@pytest.mark.parametrize("data", [
    {"server": {"port": 0}},
    {"relay": {"history_limit": 101}},
    {"logging": {"level": "chatty"}},
])
def test_invalid_values_rejected(data):
    with pytest.raises(pydantic.ValidationError):
        AppSettings(**data)
