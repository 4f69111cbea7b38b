"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from autobot.config.models import AutobotConfig, ConfigError
from autobot.config.paths import get_config_path


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("config.toml"),  # Current directory
        get_config_path(),  # ~/.autobot/config.toml (or AUTOBOT_HOME)
        Path("/etc/autobot/config.toml"),  # System-wide
    ]


def _section(config: dict[str, Any], key: str) -> dict[str, Any]:
    section = config.get(key)
    if not isinstance(section, dict):
        section = {}
        config[key] = section
    return section


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides on top of file values."""
    if level := os.environ.get("LOG_LEVEL"):
        config["log_level"] = level
    if host := os.environ.get("WEB_UI_HOST"):
        _section(config, "server")["host"] = host
    if port := os.environ.get("WEB_UI_PORT"):
        _section(config, "server")["port"] = port
    if budget := os.environ.get("DEFAULT_SERVICE_BUDGET"):
        _section(config, "cost_control")["default_budget"] = budget
    if threshold := os.environ.get("BUDGET_ALERT_THRESHOLD"):
        _section(config, "cost_control")["alert_threshold"] = threshold
    return config


def load_config(path: Path | None = None) -> AutobotConfig:
    """Load configuration from a TOML file.

    Args:
        path: Explicit path to config file. If None, searches default locations
            and falls back to built-in defaults when none exists.

    Returns:
        Validated AutobotConfig instance.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ConfigError: If the config file is invalid.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for default_path in _get_default_config_paths():
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    raw_config: dict[str, Any] = {}
    if config_path is not None:
        try:
            with config_path.open("rb") as f:
                raw_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    raw_config = _apply_env_overrides(raw_config)

    try:
        return AutobotConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
