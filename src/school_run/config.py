"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    data_path: Path = field(default_factory=lambda: Path.home() / ".school_run" / "runs.json")
    log_level: str = "WARNING"
    max_stop_minutes: int = 120
    max_run_minutes: int = 240
    confirm_delay: float = 0.0

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if data := os.environ.get("SR_DATA_PATH"):
            config.data_path = Path(data)

        if level := os.environ.get("SR_LOG_LEVEL"):
            config.log_level = level.upper()

        if stop_cap := os.environ.get("SR_MAX_STOP_MINUTES"):
            config.max_stop_minutes = int(stop_cap)

        if run_cap := os.environ.get("SR_MAX_RUN_MINUTES"):
            config.max_run_minutes = int(run_cap)

        if delay := os.environ.get("SR_CONFIRM_DELAY"):
            config.confirm_delay = float(delay)

        return config


def get_config() -> Config:
    return Config.from_env()
