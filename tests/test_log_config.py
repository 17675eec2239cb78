"""
Tests for log configuration and the logger setup.

Tests:
- LogLevel parsing and aliases
- LogConfig defaults and validation
- Environment and file loading
- ASCII log prefixes
- File sink written by setup_logger
"""
from pathlib import Path

import pytest
from loguru import logger

from gantry.utils import log_config
from gantry.utils.log_config import (
    LogConfig,
    LogLevel,
    get_log_config,
    load_log_config,
    save_log_config,
)
from gantry.utils.logger import get_run_logger, log_prefix, set_log_level, setup_logger


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Point the persisted log config at a temporary file."""
    path = tmp_path / "log_config.json"
    monkeypatch.setattr(log_config, "CONFIG_FILE", path)
    return path


@pytest.fixture
def restore_logger():
    yield
    logger.remove()


class TestLogLevel:
    """Tests for LogLevel parsing."""

    def test_case_insensitive(self) -> None:
        assert LogLevel.from_string("debug") == LogLevel.DEBUG
        assert LogLevel.from_string("Warning") == LogLevel.WARNING

    @pytest.mark.parametrize(
        "alias,level",
        [("WARN", LogLevel.WARNING), ("ERR", LogLevel.ERROR), ("FATAL", LogLevel.CRITICAL)],
    )
    def test_aliases(self, alias, level) -> None:
        assert LogLevel.from_string(alias) == level

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            LogLevel.from_string("LOUD")


class TestLogConfig:
    """Tests for LogConfig defaults and validation."""

    def test_defaults(self) -> None:
        config = LogConfig()

        assert config.app_log_name == "gantry.log"
        assert config.log_dir == str(Path.home() / ".gantry" / "logs")
        assert config.console_level == "WARNING"
        assert config.file_level == "DEBUG"
        assert config.compression == "gz"
        assert config.console_enabled is False

    def test_log_path(self) -> None:
        config = LogConfig(log_dir="/var/log/gantry", app_log_name="apply.log")
        assert config.log_path == Path("/var/log/gantry/apply.log")

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"console_level": "LOUD"}, "Invalid console_level"),
            ({"file_level": "LOUD"}, "Invalid file_level"),
            ({"rotation_strategy": "weekly"}, "rotation_strategy must be one of"),
            ({"compression": "bz2"}, "compression must be one of"),
            ({"rotation_size": "10MB"}, "Invalid size format"),
            ({"rotation_size": "-1 MB"}, "Size must be positive"),
            ({"rotation_size": "10 XB"}, "Invalid size unit"),
        ],
    )
    def test_validation(self, kwargs, message) -> None:
        with pytest.raises(ValueError, match=message):
            LogConfig(**kwargs)

    def test_from_dict_ignores_unknown_keys(self) -> None:
        config = LogConfig.from_dict({"file_level": "INFO", "colour": "blue"})
        assert config.file_level == "INFO"
        assert not hasattr(config, "colour")


class TestLoadLogConfig:
    """Tests for loading and persisting."""

    def test_environment_overrides(self, config_file, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("GANTRY_LOG_DIR", str(tmp_path / "logs"))
        monkeypatch.setenv("GANTRY_LOG_LEVEL", "info")
        monkeypatch.setenv("GANTRY_LOG_JSON", "yes")
        monkeypatch.setenv("GANTRY_LOG_COMPRESSION", "none")

        config = load_log_config()

        assert config.log_dir == str(tmp_path / "logs")
        assert config.console_level == "info"
        assert config.json_logs is True
        assert config.compression is None

    def test_save_and_load(self, config_file, monkeypatch) -> None:
        monkeypatch.delenv("GANTRY_LOG_DIR", raising=False)
        assert save_log_config(LogConfig(log_dir="/srv/logs", retention="3 days"))

        config = load_log_config()

        assert config.log_dir == "/srv/logs"
        assert config.retention == "3 days"

    def test_unreadable_file_uses_defaults(self, config_file, monkeypatch) -> None:
        monkeypatch.delenv("GANTRY_LOG_DIR", raising=False)
        config_file.write_text("{not json")
        assert load_log_config() == LogConfig()

    def test_get_log_config_is_cached(self, config_file) -> None:
        assert get_log_config() is get_log_config()


class TestLogPrefix:
    """Tests for emoji and ASCII prefixes."""

    def test_emoji_by_default(self, monkeypatch) -> None:
        monkeypatch.delenv("USE_EMOJI_LOGS", raising=False)
        assert log_prefix("🔒") == "🔒"

    @pytest.mark.parametrize(
        "emoji,ascii_prefix",
        [("🔄", "[RETRY]"), ("🔒", "[LOCK]"), ("📋", "[PLAN]"), ("💾", "[STATE]")],
    )
    def test_ascii_prefixes(self, monkeypatch, emoji, ascii_prefix) -> None:
        monkeypatch.setenv("USE_EMOJI_LOGS", "0")
        assert log_prefix(emoji) == ascii_prefix

    def test_unmapped_emoji_is_dropped(self, monkeypatch) -> None:
        monkeypatch.setenv("USE_EMOJI_LOGS", "false")
        assert log_prefix("🦄") == ""


class TestSetupLogger:
    """Tests for the file sink."""

    def test_writes_run_id_to_file(self, tmp_path, restore_logger) -> None:
        config = LogConfig(log_dir=str(tmp_path), include_caller=False)
        setup_logger(run_id="apply-1", config=config)

        logger.info("state committed")
        logger.complete()

        content = config.log_path.read_text()
        assert "apply-1" in content
        assert "state committed" in content

    def test_json_file_logs(self, tmp_path, restore_logger) -> None:
        config = LogConfig(log_dir=str(tmp_path), json_logs=True)
        setup_logger(config=config)

        get_run_logger("plan-7").warning("lock {held}")
        logger.complete()

        line = config.log_path.read_text().strip().splitlines()[-1]
        assert '"run_id": "plan-7"' in line
        assert '"message": "lock {held}"' in line

    def test_set_log_level_rejects_unknown(self, restore_logger) -> None:
        assert set_log_level("LOUD") is False
