"""LaunchBlocks messaging service configuration.

Loads settings from a single YAML file:
  * launchblocks.settings.yaml (non-secret configuration)

The file location can be overridden with the LAUNCHBLOCKS_SETTINGS
environment variable or by passing ``settings_path`` to ``load_config``.
Relative storage paths are resolved against the directory holding the
settings file, so the service behaves the same regardless of the working
directory it is started from.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("launchblocks.settings.yaml")
SETTINGS_ENV_VAR = "LAUNCHBLOCKS_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 8000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class StorageSettings(BaseModel):
    """Which MessageStore implementation to build at startup."""
    backend: Literal["memory", "duckdb"] = "memory"
    db_path: str                         = "messages.duckdb"


class MessagingSettings(BaseModel):
    max_content_length:              int = Field(default=5000, ge=1)
    # 0 = no limit
    max_connections_per_participant: int = Field(default=0, ge=0)
    # seconds one WebSocket send may take before the connection is dropped
    send_timeout_seconds:            float = Field(default=5.0, gt=0)


class AppConfig(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    storage:   StorageSettings   = Field(default_factory=StorageSettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _resolve_db_path(config: AppConfig, settings_path: Path) -> None:
    db_path = config.storage.db_path
    if db_path == ":memory:" or Path(db_path).is_absolute():
        return
    config.storage.db_path = str(settings_path.resolve().parent / db_path)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into a single *AppConfig* object.

    Args:
        settings_path: Explicit settings file. Defaults to the
            LAUNCHBLOCKS_SETTINGS env var, then ./launchblocks.settings.yaml.
    """
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)

    config = AppConfig(**_load_yaml(settings_path))
    _resolve_db_path(config, settings_path)

    logger.info(
        "Settings loaded (server=%s:%s, storage.backend=%s)",
        config.server.host,
        config.server.port,
        config.storage.backend,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Replace the process-wide configuration (tests, embedding apps)."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached configuration so the next get_config() reloads."""
    global _config
    _config = None
