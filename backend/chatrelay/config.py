"""Chat relay application configuration.

Loads settings from two YAML files:
  * chatrelay.settings.yaml: non-secret configuration
  * chatrelay.secrets.yaml: secrets (never committed)

The JWT secret can also be supplied through the ``CHATRELAY_JWT_SECRET``
environment variable, which takes precedence over the secrets file.
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

SETTINGS_FILE = Path("chatrelay.settings.yaml")
SECRETS_FILE  = Path("chatrelay.secrets.yaml")

JWT_SECRET_ENV = "CHATRELAY_JWT_SECRET"


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
    secret_key:  str = "change-me-in-production"
    algorithm:   str = "HS256"
    cookie_name: str = "token"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 3001
    debug:           bool = False
    reload:          bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class HeartbeatSettings(BaseModel):
    """Liveness protocol timing, in milliseconds."""
    interval_ms:      int = 5000
    death_timeout_ms: int = 1000

    @field_validator("interval_ms", "death_timeout_ms")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("heartbeat timings must be positive")
        return value

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000

    @property
    def death_timeout_seconds(self) -> float:
        return self.death_timeout_ms / 1000


class UploadSettings(BaseModel):
    directory:  str = "./uploads"
    url_prefix: str = "/uploads"


class DatabaseSettings(BaseModel):
    path: str = "messages.duckdb"


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    heartbeat: HeartbeatSettings = Field(default_factory=HeartbeatSettings)
    uploads:   UploadSettings    = Field(default_factory=UploadSettings)
    database:  DatabaseSettings  = Field(default_factory=DatabaseSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    secrets:   Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Path = SETTINGS_FILE,
    secrets_file: Path = SECRETS_FILE,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_data = _load_yaml(settings_file)
    secrets_data  = _load_yaml(secrets_file)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    env_secret = os.environ.get(JWT_SECRET_ENV)
    if env_secret:
        settings_data["secrets"].setdefault("jwt", {})["secret_key"] = env_secret
        logger.info("JWT secret taken from %s", JWT_SECRET_ENV)

    config = AppConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, heartbeat=%sms/%sms, uploads=%s)",
        config.server.host,
        config.server.port,
        config.heartbeat.interval_ms,
        config.heartbeat.death_timeout_ms,
        config.uploads.directory,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the process configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Drop the cached configuration (for testing)."""
    global _config
    _config = None
