"""
Gantry Config - Configuration management.
"""

from gantry.config.loader import Config, load_config
from gantry.config.models import (
    ApplyConfig,
    LockConfig,
    LoggingConfig,
    ProvidersConfig,
    StateConfig,
)

__all__ = [
    "ApplyConfig",
    "Config",
    "LockConfig",
    "LoggingConfig",
    "ProvidersConfig",
    "StateConfig",
    "load_config",
]
