"""Configuration loading for the Memory Palace server.

Layered precedence:
1. Explicit path argument (highest precedence)
2. Environment variable MEMORY_PALACE_CONFIG
3. Fallback to "config/default.yaml"
4. Built-in defaults when no file exists

Environment variables with prefix ``MEMORY_PALACE__`` override individual keys,
e.g. ``MEMORY_PALACE__DECAY__DECAY_RATE=0.2``. A ``.env`` file is read first so
credentials such as ``ANTHROPIC_API_KEY`` can live there.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from memory_palace.domain.context.context_selector import DEFAULT_MAX_COUNT, DEFAULT_MIN_FADE_LEVEL
from memory_palace.domain.memory.decay_policy import DecayPolicy
from memory_palace.domain.orchestration.prompt import GREETING, SYSTEM_FRAMING

logger = structlog.get_logger(__name__)

ENV_CONFIG_PATH = "MEMORY_PALACE_CONFIG"
ENV_PREFIX = "MEMORY_PALACE__"
DEFAULT_CONFIG_PATH = "config/default.yaml"


class ConfigError(RuntimeError):
    """Configuration file could not be parsed or validated"""


# === Configuration Models ===


class DecaySettings(BaseModel):
    """Fade curve and corruption tuning."""

    decay_rate: float = Field(default=0.15, ge=0.0)
    corruption_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    corruption_probability: float = Field(default=0.3, ge=0.0, le=1.0)
    corruption_penalty: float = Field(default=0.2, ge=0.0, le=1.0)
    garble_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    garble_probability: float = Field(default=0.5, ge=0.0, le=1.0)

    def to_policy(self) -> DecayPolicy:
        return DecayPolicy(**self.model_dump())


class ContextSettings(BaseModel):
    """Which messages may still be sent to the model."""

    max_count: int = Field(default=DEFAULT_MAX_COUNT, ge=0)
    min_fade_level: float = Field(default=DEFAULT_MIN_FADE_LEVEL, ge=0.0, le=1.0)


class SessionSettings(BaseModel):
    """Per-conversation behaviour."""

    preserved_fade_level: float = Field(default=0.3, ge=0.0, le=1.0)
    greeting: str = GREETING
    system_framing: str = SYSTEM_FRAMING
    generation_timeout_seconds: float = Field(default=30.0, gt=0)
    error_message: str = "I'm having trouble remembering... Please try again."


class ModelSettings(BaseModel):
    """Generative backend."""

    model: str = "claude-3-haiku-20240307"
    api_key_env: str = "ANTHROPIC_API_KEY"
    max_tokens: int = Field(default=200, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    def get_api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env)


class ServerSettings(BaseModel):
    """HTTP / WebSocket server."""

    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    static_dir: Optional[str] = "public"
    max_sessions: int = Field(default=100, ge=1)
    idle_timeout_seconds: float = Field(default=1800.0, gt=0)
    health_check_interval_seconds: float = Field(default=60.0, gt=0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"
    service_name: str = "memory-palace"


class Settings(BaseModel):
    """Root configuration."""

    decay: DecaySettings = Field(default_factory=DecaySettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# === Loading ===


def _coerce(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix MEMORY_PALACE__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., MEMORY_PALACE__SERVER__PORT -> cfg["server"]["port"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _coerce(value)
    return cfg


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigError(f"Invalid config format in {path}, expected a mapping.")
    return cfg


def load_settings(path: str | None = None) -> Settings:
    """Load and validate settings.

    Parameters
    ----------
    path : str | None
        Optional path to a YAML file. Falls back to ``MEMORY_PALACE_CONFIG``
        and then ``config/default.yaml``; a missing file means defaults.

    Raises
    ------
    ConfigError
        If the file is malformed or a value fails validation.
    """
    load_dotenv()

    if path is None:
        path = os.environ.get(ENV_CONFIG_PATH, DEFAULT_CONFIG_PATH)

    path_obj = Path(path)
    if path_obj.exists():
        cfg = _read_yaml(path_obj)
    else:
        logger.warning("Config file not found, using defaults", path=str(path_obj))
        cfg = {}

    try:
        return Settings.model_validate(_apply_env_overrides(cfg))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
