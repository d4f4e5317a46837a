"""Tests for environment configuration."""

from pathlib import Path

import pytest

from school_run.config import Config, get_config


class TestConfig:
    def test_defaults(self, monkeypatch):
        for var in ("SR_DATA_PATH", "SR_LOG_LEVEL", "SR_MAX_STOP_MINUTES",
                    "SR_MAX_RUN_MINUTES", "SR_CONFIRM_DELAY"):
            monkeypatch.delenv(var, raising=False)
        config = get_config()
        assert config.data_path.name == "runs.json"
        assert config.max_stop_minutes == 120
        assert config.max_run_minutes == 240
        assert config.confirm_delay == 0.0

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SR_DATA_PATH", "/tmp/elsewhere.json")
        monkeypatch.setenv("SR_LOG_LEVEL", "debug")
        monkeypatch.setenv("SR_MAX_STOP_MINUTES", "90")
        monkeypatch.setenv("SR_CONFIRM_DELAY", "0.25")
        config = Config.from_env()
        assert config.data_path == Path("/tmp/elsewhere.json")
        assert config.log_level == "DEBUG"
        assert config.max_stop_minutes == 90
        assert config.confirm_delay == 0.25

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("SR_MAX_RUN_MINUTES", "lots")
        with pytest.raises(ValueError):
            Config.from_env()
