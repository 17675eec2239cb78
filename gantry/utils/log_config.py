"""
Logging configuration for Gantry.

Settings come from ~/.gantry/log_config.json, then GANTRY_LOG_* environment
variables. Apply runs can be long, so file logs rotate by size or time and old
files are compressed.
"""
import json
import os
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

CONFIG_FILE = Path.home() / ".gantry" / "log_config.json"

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")
_ROTATION_STRATEGIES = ("size", "time")
_COMPRESSIONS = ("zip", "gz", None)
_TRUTHY = ("1", "true", "yes", "on")

# env var -> LogConfig field
ENV_VARIABLES = {
    "GANTRY_LOG_DIR": "log_dir",
    "GANTRY_LOG_LEVEL": "console_level",
    "GANTRY_LOG_FILE_LEVEL": "file_level",
    "GANTRY_LOG_ROTATION_SIZE": "rotation_size",
    "GANTRY_LOG_ROTATION_TIME": "rotation_time",
    "GANTRY_LOG_RETENTION": "retention",
    "GANTRY_LOG_COMPRESSION": "compression",
    "GANTRY_LOG_JSON": "json_logs",
    "GANTRY_LOG_CONSOLE": "console_enabled",
}


class LogLevel(str, Enum):
    """Loguru level names."""
    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_string(cls, level: str) -> "LogLevel":
        """Parse a level name, case-insensitive, accepting WARN/ERR/CRIT/FATAL."""
        name = level.upper()
        name = {"WARN": "WARNING", "ERR": "ERROR", "CRIT": "CRITICAL", "FATAL": "CRITICAL"}.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown log level: {level.upper()}") from None


def _check_size(size: str) -> None:
    parts = size.strip().split()
    if len(parts) != 2:
        raise ValueError(f"Invalid size format: {size!r} (expected: '10 MB')")
    amount, unit = parts
    try:
        value = float(amount)
    except ValueError as e:
        raise ValueError(f"Invalid size value: {amount!r}") from e
    if value <= 0:
        raise ValueError(f"Size must be positive: {size!r}")
    if unit.upper() not in _SIZE_UNITS:
        raise ValueError(f"Invalid size unit: {unit!r} (valid: {', '.join(_SIZE_UNITS)})")


@dataclass
class LogConfig:
    """
    Where and how Gantry writes its logs.

    console_level only applies when the stderr sink is on (--verbose or
    console_enabled); the CLI renders plans and reports itself.
    """
    log_dir: str = ""
    app_log_name: str = "gantry.log"
    console_level: str = "WARNING"
    file_level: str = "DEBUG"
    rotation_size: str = "10 MB"
    rotation_time: str = "1 day"
    rotation_strategy: str = "size"
    retention: str = "1 week"
    compression: Optional[str] = "gz"
    json_logs: bool = False
    include_caller: bool = True
    console_enabled: bool = False

    def __post_init__(self):
        if not self.log_dir:
            self.log_dir = str(Path.home() / ".gantry" / "logs")

        for name in ("console_level", "file_level"):
            try:
                LogLevel.from_string(getattr(self, name))
            except ValueError as e:
                raise ValueError(f"Invalid {name}: {e}") from e

        if self.rotation_strategy not in _ROTATION_STRATEGIES:
            raise ValueError(
                f"rotation_strategy must be one of {_ROTATION_STRATEGIES}, got: {self.rotation_strategy!r}"
            )
        if self.compression not in _COMPRESSIONS:
            raise ValueError(f"compression must be one of {_COMPRESSIONS}, got: {self.compression!r}")
        _check_size(self.rotation_size)

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir) / self.app_log_name

    @property
    def rotation(self) -> str:
        """Loguru rotation argument for the configured strategy."""
        return self.rotation_time if self.rotation_strategy == "time" else self.rotation_size

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogConfig":
        """Build from a mapping, ignoring keys that are not fields."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def _env_value(field_name: str, raw: str) -> Any:
    if field_name in ("json_logs", "console_enabled"):
        return raw.lower() in _TRUTHY
    if field_name == "compression" and raw.lower() in ("", "none"):
        return None
    return raw


def load_log_config() -> LogConfig:
    """Load the persisted config, then apply GANTRY_LOG_* overrides."""
    data: Dict[str, Any] = {}
    if CONFIG_FILE.exists():
        try:
            data = json.loads(CONFIG_FILE.read_text())
        except (json.JSONDecodeError, OSError):
            data = {}

    for env_var, field_name in ENV_VARIABLES.items():
        raw = os.environ.get(env_var)
        if raw is not None:
            data[field_name] = _env_value(field_name, raw)

    return LogConfig.from_dict(data)


def save_log_config(config: LogConfig) -> bool:
    """Persist config to CONFIG_FILE. Returns False if it cannot be written."""
    try:
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        CONFIG_FILE.write_text(json.dumps(config.to_dict(), indent=2))
    except OSError:
        return False
    return True


_cached_config: Optional[LogConfig] = None


def get_log_config() -> LogConfig:
    """Cached LogConfig for this process."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_log_config()
    return _cached_config


def reset_log_config() -> None:
    global _cached_config
    _cached_config = None
