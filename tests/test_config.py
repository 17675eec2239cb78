"""Tests for configuration loading."""

from __future__ import annotations

import pytest

from gantry.config import loader
from gantry.config.loader import Config, load_config
from gantry.config.models import LockConfig
from gantry.core.exceptions import InvalidConfigError


@pytest.fixture
def no_config_files(tmp_path, monkeypatch):
    """Run from an empty directory with no user config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(loader, "USER_CONFIG_FILE", tmp_path / "missing" / "config.yaml")
    return tmp_path


class TestLoadConfig:
    """File and environment sources."""

    def test_defaults(self, no_config_files) -> None:
        config = load_config()

        assert config.state.backend == "sqlite"
        assert config.state.key == "default"
        assert config.lock.ttl == 120
        assert config.lock.renew_interval == 30
        assert config.lock.acquire_attempts == 1
        assert config.apply.concurrency == 10
        assert config.apply.max_replans == 3

    def test_local_file_is_found(self, no_config_files) -> None:
        (no_config_files / "gantry.yaml").write_text(
            "state:\n  backend: memory\n  key: prod\nlock:\n  ttl: 60\n  renew_interval: 15\n"
        )

        config = load_config()

        assert config.state.backend == "memory"
        assert config.state.key == "prod"
        assert config.lock.ttl == 60
        assert config.lock.renew_interval == 15

    def test_env_overrides_file(self, no_config_files, monkeypatch) -> None:
        path = no_config_files / "custom.yaml"
        path.write_text("apply:\n  concurrency: 2\n")
        monkeypatch.setenv("GANTRY_CONCURRENCY", "7")
        monkeypatch.setenv("GANTRY_STATE_KEY", "staging")

        config = load_config(path)

        assert config.apply.concurrency == 7
        assert config.state.key == "staging"

    def test_empty_file_uses_defaults(self, no_config_files) -> None:
        path = no_config_files / "empty.yaml"
        path.write_text("")
        assert load_config(path) == Config()

    def test_missing_explicit_file(self, no_config_files) -> None:
        with pytest.raises(InvalidConfigError, match="Cannot read"):
            load_config(no_config_files / "nope.yaml")

    def test_file_must_be_mapping(self, no_config_files) -> None:
        path = no_config_files / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(InvalidConfigError, match="mapping"):
            load_config(path)

    @pytest.mark.parametrize(
        "content",
        [
            "lock:\n  ttl: 10\n  renew_interval: 10\n",
            "apply:\n  concurrency: 0\n",
            "state:\n  backend: s3\n",
        ],
    )
    def test_invalid_values(self, no_config_files, content) -> None:
        path = no_config_files / "bad.yaml"
        path.write_text(content)
        with pytest.raises(InvalidConfigError, match="Invalid configuration"):
            load_config(path)


def test_renew_interval_must_be_shorter_than_ttl() -> None:
    with pytest.raises(ValueError):
        LockConfig(ttl=5, renew_interval=6)
