"""Configuration management for procwait."""

import json
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError


def default_config_path() -> Path:
    """Config file location: $PROCWAIT_CONFIG or ~/.procwait.json"""
    return Path(os.environ.get("PROCWAIT_CONFIG", Path.home() / ".procwait.json"))


@dataclass(frozen=True)
class Config:
    """Immutable defaults for wait calls made from the command line."""

    timeout: int = 120
    delay: float = 1.0
    log_file: str | None = None

    def validate(self) -> tuple[bool, str | None]:
        """
        Validate configuration values.

        Returns:
            tuple[bool, str | None]: (is_valid, error_message)
        """
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, int) or self.timeout < 0:
            return False, "timeout must be a non-negative integer"

        if (
            isinstance(self.delay, bool)
            or not isinstance(self.delay, (int, float))
            or self.delay < 0
        ):
            return False, "delay must be a non-negative number"

        if self.log_file is not None and not isinstance(self.log_file, str):
            return False, "log_file must be a string path or null"

        return True, None


DEFAULT_CONFIG = Config()


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, falling back to defaults.

    Args:
        config_path: Path to config file. Defaults to default_config_path()

    Returns:
        Config: Loaded or default configuration

    Raises:
        ConfigError: If config file exists but is invalid
    """
    if config_path is None:
        config_path = default_config_path()

    if not config_path.exists():
        return DEFAULT_CONFIG

    try:
        with open(config_path, "r") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid configuration in {config_path}: expected an object")

    config = Config(
        timeout=data.get("timeout", DEFAULT_CONFIG.timeout),
        delay=data.get("delay", DEFAULT_CONFIG.delay),
        log_file=data.get("log_file", DEFAULT_CONFIG.log_file),
    )

    is_valid, error = config.validate()
    if not is_valid:
        raise ConfigError(f"Invalid configuration in {config_path}: {error}")

    return config


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Raises:
        ConfigError: If the config is invalid or cannot be written
    """
    if config_path is None:
        config_path = default_config_path()

    is_valid, error = config.validate()
    if not is_valid:
        raise ConfigError(f"Cannot save invalid configuration: {error}")

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(
                {
                    "timeout": config.timeout,
                    "delay": config.delay,
                    "log_file": config.log_file,
                },
                f,
                indent=2,
            )
    except OSError as e:
        raise ConfigError(f"Failed to save config to {config_path}: {e}")
