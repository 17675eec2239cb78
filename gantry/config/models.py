"""
Gantry Config - Configuration models.

Pydantic models for type-safe configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from gantry.config.constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_REPLANS,
    DEFAULT_PROVIDER_RETRIES,
    DEFAULT_STATE_KEY,
    LOCK_ACQUIRE_ATTEMPTS,
    LOCK_BACKOFF_INITIAL,
    LOCK_BACKOFF_MAX,
    LOCK_DEFAULT_RENEW_INTERVAL,
    LOCK_DEFAULT_TTL,
    MAX_CONCURRENCY,
)


class StateConfig(BaseModel):
    """State artifact storage settings."""

    backend: Literal["memory", "sqlite"] = Field(default="sqlite", description="Storage backend")
    path: Path = Field(
        default=Path.home() / ".gantry" / "state.db", description="SQLite database path"
    )
    key: str = Field(default=DEFAULT_STATE_KEY, min_length=1, description="State artifact key")


class LockConfig(BaseModel):
    """State lock settings."""

    enabled: bool = Field(default=True, description="Take the lock for plan as well as apply")
    ttl: float = Field(default=LOCK_DEFAULT_TTL, gt=0, description="Lock time-to-live in seconds")
    renew_interval: float = Field(
        default=LOCK_DEFAULT_RENEW_INTERVAL, gt=0, description="Renewal period in seconds"
    )
    acquire_attempts: int = Field(
        default=LOCK_ACQUIRE_ATTEMPTS, ge=1, le=100, description="Attempts before giving up"
    )
    backoff_initial: float = Field(
        default=LOCK_BACKOFF_INITIAL, ge=0, description="First backoff delay in seconds"
    )
    backoff_max: float = Field(
        default=LOCK_BACKOFF_MAX, ge=0, description="Maximum backoff delay in seconds"
    )
    holder_id: str | None = Field(
        default=None, description="Holder identity (default: user@host:pid)"
    )

    @model_validator(mode="after")
    def _renew_before_expiry(self) -> LockConfig:
        if self.renew_interval >= self.ttl:
            raise ValueError(
                f"renew_interval ({self.renew_interval}) must be shorter than ttl ({self.ttl})"
            )
        return self


class ApplyConfig(BaseModel):
    """Apply executor settings."""

    concurrency: int = Field(
        default=DEFAULT_CONCURRENCY, ge=1, le=MAX_CONCURRENCY, description="Parallel steps"
    )
    provider_retries: int = Field(
        default=DEFAULT_PROVIDER_RETRIES, ge=0, le=10, description="Retries per provider call"
    )
    retry_delay: float = Field(default=1.0, ge=0, description="First retry delay in seconds")
    max_replans: int = Field(
        default=DEFAULT_MAX_REPLANS, ge=0, le=20, description="Re-plans on version conflict"
    )


class ProvidersConfig(BaseModel):
    """Provider plugins, as `module:attribute` import paths."""

    plugins: list[str] = Field(default_factory=list, description="Provider import paths")


class LoggingConfig(BaseModel):
    """Logging settings."""

    console_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning", description="Console log level"
    )
    file_level: Literal["debug", "info", "warning", "error"] = Field(
        default="debug", description="File log level"
    )
    log_dir: Path | None = Field(default=None, description="Log directory override")
    json_logs: bool = Field(default=False, description="JSON file logs")
