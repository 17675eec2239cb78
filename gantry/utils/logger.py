"""
Centralized logging for Gantry.

Every CLI invocation gets a run id (e.g. "apply-20261018-143000-ab12cd") bound
to its records, so one apply can be followed through a shared log file.
Configuration lives in log_config.py.
"""
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

_EMOJI_TO_ASCII = {
    "🔄": "[RETRY]",
    "⚠️": "[WARN]",
    "✅": "[OK]",
    "❌": "[ERROR]",
    "🔒": "[LOCK]",
    "🔓": "[UNLOCK]",
    "📋": "[PLAN]",
    "🚀": "[APPLY]",
    "🗑️": "[DESTROY]",
    "⏭️": "[SKIP]",
    "🛑": "[CANCEL]",
    "💾": "[STATE]",
}

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def use_emoji_logs() -> bool:
    """False when USE_EMOJI_LOGS is 0/false/no/off."""
    return os.environ.get("USE_EMOJI_LOGS", "1").lower() not in ("0", "false", "no", "off")


def log_prefix(emoji: str) -> str:
    """
    Prefix for a log message.

    Returns the emoji, or with emoji logs disabled its ASCII tag
    ("🔒" -> "[LOCK]"), or "" when there is no tag for it.
    """
    if use_emoji_logs():
        return emoji
    return _EMOJI_TO_ASCII.get(emoji, "")


def _json_record(record: dict) -> str:
    entry = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["name"],
        "function": record["function"],
        "line": record["line"],
    }
    if record["extra"].get("run_id"):
        entry["run_id"] = record["extra"]["run_id"]
    # loguru treats the returned string as a template
    return json.dumps(entry).replace("{", "{{").replace("}", "}}") + "\n"


def setup_logger(
    verbose: bool = False,
    run_id: Optional[str] = None,
    config: Optional[Any] = None,
) -> None:
    """
    Replace all loguru sinks with Gantry's.

    The rotated file sink at <log_dir>/gantry.log is always on. A stderr sink
    is added at DEBUG when verbose, or at console_level when console_enabled.

    Args:
        verbose: Enable the stderr sink at DEBUG
        run_id: Run id bound to every record
        config: LogConfig to use instead of the cached one
    """
    if config is None:
        from gantry.utils.log_config import get_log_config
        config = get_log_config()

    logger.remove()
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)

    def text_record(record: dict) -> str:
        head = "{time:YYYY-MM-DD HH:mm:ss} | "
        if record["extra"].get("run_id"):
            head += "{extra[run_id]} | "
        if config.include_caller:
            return head + "{level: <8} | {name}:{function}:{line} - {message}\n"
        return head + "{level: <8} | {message}\n"

    logger.add(
        config.log_path,
        rotation=config.rotation,
        retention=config.retention,
        compression=config.compression,
        level=config.file_level,
        format=_json_record if config.json_logs else text_record,
        enqueue=True,
    )

    if verbose or config.console_enabled:
        logger.add(
            sys.stderr,
            format=_CONSOLE_FORMAT,
            level="DEBUG" if verbose else config.console_level,
            colorize=True,
        )

    if run_id:
        logger.configure(extra={"run_id": run_id})


def get_run_logger(run_id: str):
    """Logger bound to one run id, for records outside the CLI's own run."""
    return logger.bind(run_id=run_id)


def set_log_level(level: str, target: str = "both") -> bool:
    """
    Change the console and/or file level and reinstall the sinks.

    Returns False for an unknown level name.
    """
    from gantry.utils.log_config import LogLevel, get_log_config

    try:
        name = LogLevel.from_string(level).value
    except ValueError:
        return False

    config = get_log_config()
    if target in ("console", "both"):
        config.console_level = name
    if target in ("file", "both"):
        config.file_level = name
    setup_logger(config=config)
    return True
