"""forumlive client configuration.

Loads settings from a single YAML file:
  * forumlive.settings.yaml: API endpoint, push channel, typing, UI and
    storage settings

Every key is optional. A missing file yields the defaults, which match the
remote forum service's own client (5 s reconnect, 2 s typing idle window,
30 s away-refresh threshold).
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("forumlive.settings.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ApiSettings(BaseModel):
    base_url:        str   = "http://localhost:3000"
    timeout_seconds: float = 10.0

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class PushSettings(BaseModel):
    """Push channel (``/api/sse``) behaviour."""
    reconnect_delay_seconds: float = Field(default=5.0, gt=0)


class TypingSettings(BaseModel):
    idle_seconds: float           = Field(default=2.0, gt=0)
    # None keeps typing entries until an explicit stop arrives.
    ttl_seconds:  Optional[float] = Field(default=None, gt=0)


class UISettings(BaseModel):
    refresh_after_away_seconds: float = 30.0
    featured_limit:             int   = Field(default=5, ge=1)


class StorageSettings(BaseModel):
    path: str = "forumlive.storage.json"


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    api:     ApiSettings     = Field(default_factory=ApiSettings)
    push:    PushSettings    = Field(default_factory=PushSettings)
    typing:  TypingSettings  = Field(default_factory=TypingSettings)
    ui:      UISettings      = Field(default_factory=UISettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load *AppConfig* from YAML.

    A relative ``storage.path`` is resolved against the directory holding the
    settings file, so the client finds the same store regardless of the
    working directory it is launched from.
    """
    path = Path(settings_path) if settings_path is not None else SETTINGS_FILE
    data = _load_yaml(path)

    config = AppConfig(**data)

    storage_path = Path(config.storage.path)
    if not storage_path.is_absolute():
        config.storage.path = str(path.resolve().parent / storage_path)

    logger.info(
        "Settings loaded (api=%s, reconnect=%.1fs, typing_idle=%.1fs)",
        config.api.base_url,
        config.push.reconnect_delay_seconds,
        config.typing.idle_seconds,
    )
    return config


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Process-wide configuration loaded from the default settings file."""
    return load_config()
