"""
Gantry Config - Loader.

Reads the YAML configuration file and applies GANTRY_* environment overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from gantry.config.constants import DEFAULT_CONFIG_FILENAME
from gantry.config.models import (
    ApplyConfig,
    LockConfig,
    LoggingConfig,
    ProvidersConfig,
    StateConfig,
)
from gantry.core.exceptions import InvalidConfigError

USER_CONFIG_FILE = Path.home() / ".gantry" / "config.yaml"

# env var -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "GANTRY_STATE_BACKEND": ("state", "backend"),
    "GANTRY_STATE_PATH": ("state", "path"),
    "GANTRY_STATE_KEY": ("state", "key"),
    "GANTRY_LOCK_TTL": ("lock", "ttl"),
    "GANTRY_LOCK_RENEW_INTERVAL": ("lock", "renew_interval"),
    "GANTRY_LOCK_ATTEMPTS": ("lock", "acquire_attempts"),
    "GANTRY_LOCK_HOLDER": ("lock", "holder_id"),
    "GANTRY_CONCURRENCY": ("apply", "concurrency"),
    "GANTRY_PROVIDER_RETRIES": ("apply", "provider_retries"),
    "GANTRY_MAX_REPLANS": ("apply", "max_replans"),
}


class Config(BaseModel):
    """Complete engine configuration."""

    state: StateConfig = Field(default_factory=StateConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    apply: ApplyConfig = Field(default_factory=ApplyConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _find_config_file() -> Path | None:
    local = Path.cwd() / DEFAULT_CONFIG_FILENAME
    if local.exists():
        return local
    if USER_CONFIG_FILE.exists():
        return USER_CONFIG_FILE
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    for env_var, (section, field) in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        data.setdefault(section, {})[field] = value
        logger.debug(f"Config override from {env_var}: {section}.{field}")
    return data


def load_config(path: Path | str | None = None) -> Config:
    """
    Load configuration.

    Priority:
    1. Environment variables (GANTRY_*)
    2. Config file (explicit path, ./gantry.yaml, ~/.gantry/config.yaml)
    3. Defaults

    Raises:
        InvalidConfigError: If the file cannot be read or fails validation.
    """
    config_path = Path(path) if path is not None else _find_config_file()
    data: dict[str, Any] = {}

    if config_path is not None:
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise InvalidConfigError(
                f"Cannot read config file {config_path}: {e}", {"path": str(config_path)}
            ) from e
        if not isinstance(data, dict):
            raise InvalidConfigError(
                f"Config file {config_path} must contain a mapping", {"path": str(config_path)}
            )
        logger.debug(f"Loaded config from {config_path}")

    data = _apply_env_overrides(data)

    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise InvalidConfigError(f"Invalid configuration: {e}") from e

