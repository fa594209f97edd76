"""Parley application configuration.

Loads settings from two YAML files:
  * parley.settings.yaml  — non-secret configuration
  * parley.secrets.yaml   — secrets (never committed)

The secrets file is merged under the ``secrets`` key so the whole application
sees a single *AppSettings* object.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("parley.settings.yaml")
SECRETS_FILE  = Path("parley.secrets.yaml")


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
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:         str  = "0.0.0.0"
    port:         int  = 5000
    log_level:    str  = "info"
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    # Base URL used when building upload links; falls back to the request URL.
    public_url:   Optional[str] = None


class RoomSettings(BaseModel):
    default_room:         str  = "global"
    enable_persistence:   bool = True
    fallback_history_cap: int  = 100

    @field_validator("default_room")
    @classmethod
    def _strip_default_room(cls, value: str) -> str:
        return value.strip() or "global"


class StorageSettings(BaseModel):
    database_path: str = "messages.duckdb"


class UploadSettings(BaseModel):
    upload_dir:          str = "uploads"
    db_path:             str = "file_metadata.duckdb"
    max_file_size_bytes: int = 20 * 1024 * 1024


class AppSettings(BaseModel):
    server:   ServerSettings  = Field(default_factory=ServerSettings)
    rooms:    RoomSettings    = Field(default_factory=RoomSettings)
    storage:  StorageSettings = Field(default_factory=StorageSettings)
    uploads:  UploadSettings  = Field(default_factory=UploadSettings)
    secrets:  Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(Path(settings_path) if settings_path else SETTINGS_FILE)
    secrets_data  = _load_yaml(Path(secrets_path) if secrets_path else SECRETS_FILE)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, persistence=%s, default_room=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.rooms.enable_persistence,
        app_settings.rooms.default_room,
    )
    return app_settings


@lru_cache(maxsize=1)
def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    return load_settings()


def reset_config() -> None:
    """Forget cached settings (used by tests)."""
    get_config.cache_clear()
