"""Gamerz application configuration.

Loads settings from two YAML files:
  * gamerz.settings.yaml   non-secret configuration
  * gamerz.secrets.yaml    secrets (never committed)

Environment overrides:
  * GAMERZ_JWT_SECRET      JWT signing key
  * GAMERZ_DB_PATH         DuckDB database path
  * GAMERZ_ADMIN_EMAIL     bootstrap administrator email
  * GAMERZ_ADMIN_PASSWORD  bootstrap administrator password
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

SETTINGS_FILE = Path("gamerz.settings.yaml")
SECRETS_FILE  = Path("gamerz.secrets.yaml")

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
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class AdminSecrets(BaseModel):
    password: Optional[str] = None


class Secrets(BaseModel):
    jwt:   JWTSecrets   = Field(default_factory=JWTSecrets)
    admin: AdminSecrets = Field(default_factory=AdminSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])


class LoggingSettings(BaseModel):
    level: str = "info"


class DatabaseSettings(BaseModel):
    path: str = "gamerz.duckdb"


class AuthSettings(BaseModel):
    token_expire_minutes: int  = 24 * 60
    cookie_name:          str  = "token"
    cookie_secure:        bool = False
    password_iterations:  int  = 200_000


class AdminSettings(BaseModel):
    """Bootstrap administrator, created on startup when email and password are set.

    Registration only creates pending players, so this is how the first
    admin account comes to exist. The password lives in the secrets file.
    """
    username: str           = "admin"
    email:    Optional[str] = None


class RealtimeSettings(BaseModel):
    """Tuning for the real-time room messaging layer."""
    outbound_queue_size:     int   = 256
    persist_timeout_seconds: float = 5.0
    max_message_length:      int   = 2000

    @field_validator("outbound_queue_size", "max_message_length")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("persist_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value


class ChatroomSeed(BaseModel):
    name: str
    game: str


class ChatroomSettings(BaseModel):
    seed_defaults: bool               = True
    defaults:      List[ChatroomSeed] = Field(default_factory=lambda: [
        ChatroomSeed(name="fps-legends", game="Counter-Strike 2"),
        ChatroomSeed(name="mmo-guild-hall", game="World of Warcraft"),
        ChatroomSeed(name="moba-arena", game="League of Legends"),
        ChatroomSeed(name="battle-royale", game="Fortnite"),
    ])


class AppConfig(BaseModel):
    server:    ServerSettings   = Field(default_factory=ServerSettings)
    logging:   LoggingSettings  = Field(default_factory=LoggingSettings)
    database:  DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth:      AuthSettings     = Field(default_factory=AuthSettings)
    admin:     AdminSettings    = Field(default_factory=AdminSettings)
    realtime:  RealtimeSettings = Field(default_factory=RealtimeSettings)
    chatrooms: ChatroomSettings = Field(default_factory=ChatroomSettings)
    secrets:   Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Path resolution and environment overrides
# ---------------------------------------------------------------------------


def _resolve_db_path(config: AppConfig, settings_path: Path) -> None:
    """Resolve a relative database path against the settings file directory."""
    raw = config.database.path
    if raw == IN_MEMORY_DB or Path(raw).is_absolute():
        return
    config.database.path = str(settings_path.resolve().parent / raw)


def _apply_env_overrides(config: AppConfig) -> None:
    secret = os.environ.get("GAMERZ_JWT_SECRET")
    if secret:
        config.secrets.jwt.secret_key = secret
        logger.info("JWT secret taken from GAMERZ_JWT_SECRET")

    db_path = os.environ.get("GAMERZ_DB_PATH")
    if db_path:
        config.database.path = db_path
        logger.info("Database path taken from GAMERZ_DB_PATH: %s", db_path)

    admin_email = os.environ.get("GAMERZ_ADMIN_EMAIL")
    if admin_email:
        config.admin.email = admin_email
        logger.info("Bootstrap admin email taken from GAMERZ_ADMIN_EMAIL")

    admin_password = os.environ.get("GAMERZ_ADMIN_PASSWORD")
    if admin_password:
        config.secrets.admin.password = admin_password
        logger.info("Bootstrap admin password taken from GAMERZ_ADMIN_PASSWORD")


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_path = Path(settings_path) if settings_path else SETTINGS_FILE
    secrets_path = Path(secrets_path) if secrets_path else settings_path.with_name(SECRETS_FILE.name)

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    _resolve_db_path(config, settings_path)
    _apply_env_overrides(config)

    if config.secrets.jwt.secret_key == JWTSecrets().secret_key:
        logger.warning("Using the default JWT secret; set GAMERZ_JWT_SECRET in production")

    logger.info(
        "Settings loaded (server=%s:%s, database=%s)",
        config.server.host,
        config.server.port,
        config.database.path,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Replace the process-wide configuration (used by tests)."""
    global _config
    _config = config


def reset_config() -> None:
    global _config
    _config = None
