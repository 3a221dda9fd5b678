"""Tests for settings loading and path resolution."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from app.config import AppConfig, get_config, load_config, reset_config


def write_settings(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_missing_settings_file_gives_defaults(tmp_path):
    cfg = load_config(settings_path=tmp_path / "absent.yaml")

    assert cfg.server.port == 8000
    assert cfg.storage.backend == "memory"
    assert cfg.messaging.max_content_length == 5000
    assert cfg.messaging.max_connections_per_participant == 0


def test_values_loaded_from_yaml(tmp_path):
    settings_file = write_settings(
        tmp_path / "launchblocks.settings.yaml",
        "server:\n"
        "  port: 9100\n"
        "  allowed_origins: [\"https://app.launchblocks.io\"]\n"
        "logging:\n"
        "  level: DEBUG\n"
        "storage:\n"
        "  backend: duckdb\n"
        "messaging:\n"
        "  max_content_length: 280\n"
        "  max_connections_per_participant: 3\n"
        "  send_timeout_seconds: 1.5\n",
    )

    cfg = load_config(settings_path=settings_file)

    assert cfg.server.port == 9100
    assert cfg.server.allowed_origins == ["https://app.launchblocks.io"]
    assert cfg.logging.level == "debug"
    assert cfg.storage.backend == "duckdb"
    assert cfg.messaging.max_content_length == 280
    assert cfg.messaging.max_connections_per_participant == 3
    assert cfg.messaging.send_timeout_seconds == 1.5


def test_db_path_relative_to_settings_dir(tmp_path):
    """Relative db_path resolves from the settings file directory."""
    settings_file = write_settings(
        tmp_path / "launchblocks.settings.yaml",
        "storage:\n"
        "  backend: duckdb\n"
        "  db_path: data/messages.duckdb\n",
    )

    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.storage.db_path) == tmp_path / "data" / "messages.duckdb"


def test_db_path_absolute_and_memory_unchanged(tmp_path):
    absolute_path = tmp_path / "absolute" / "messages.duckdb"
    settings_file = write_settings(
        tmp_path / "abs.yaml",
        f"storage:\n  db_path: {absolute_path}\n",
    )
    assert Path(load_config(settings_path=settings_file).storage.db_path) == absolute_path

    settings_file = write_settings(tmp_path / "mem.yaml", "storage:\n  db_path: ':memory:'\n")
    assert load_config(settings_path=settings_file).storage.db_path == ":memory:"


def test_settings_path_from_environment(tmp_path, monkeypatch):
    settings_file = write_settings(tmp_path / "custom.yaml", "server:\n  port: 9200\n")
    monkeypatch.setenv("LAUNCHBLOCKS_SETTINGS", str(settings_file))

    assert load_config().server.port == 9200

    reset_config()
    assert get_config().server.port == 9200


def test_invalid_log_level_rejected(tmp_path):
    settings_file = write_settings(tmp_path / "bad.yaml", "logging:\n  level: chatty\n")
    with pytest.raises(ValidationError):
        load_config(settings_path=settings_file)


def test_invalid_storage_backend_rejected():
    with pytest.raises(ValidationError):
        AppConfig(storage={"backend": "postgres"})
