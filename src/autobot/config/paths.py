"""Centralized path management for Autobot.

All state (config, scheduler state, budgets, task records, logs) is stored
under a single base directory. The base directory can be overridden with the
AUTOBOT_HOME environment variable.

Default locations:
- Linux/macOS: ~/.autobot
- Windows: %USERPROFILE%\\.autobot
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "AUTOBOT_HOME"


def get_system_timezone() -> str:
    """Detect system timezone, falling back to UTC.

    Resolution order:
    1. TZ environment variable (if set)
    2. /etc/timezone file (Debian/Ubuntu)
    3. /etc/localtime symlink target (most Linux distros)
    4. Fallback to UTC

    Returns:
        IANA timezone name (e.g., "America/Los_Angeles", "Europe/London", "UTC").
    """
    if tz := os.environ.get("TZ"):
        return tz

    try:
        tz = Path("/etc/timezone").read_text().strip()
        if tz:
            return tz
    except (FileNotFoundError, PermissionError):
        pass

    try:
        link = Path("/etc/localtime").resolve()
        parts = str(link).split("zoneinfo/")
        if len(parts) > 1:
            return parts[1]
    except (FileNotFoundError, PermissionError):
        pass

    return "UTC"


@lru_cache(maxsize=1)
def get_autobot_home() -> Path:
    """Get the base directory for all Autobot data.

    Resolution order:
    1. AUTOBOT_HOME environment variable (if set)
    2. Platform default (~/.autobot)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".autobot"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_autobot_home() / "config.toml"


def get_data_dir() -> Path:
    """Get the directory holding scheduler state, budgets and task records."""
    return get_autobot_home() / "data"


def get_logs_path() -> Path:
    """Get the JSONL log directory."""
    return get_autobot_home() / "logs"


def get_workspace_path() -> Path:
    """Get the working directory handed to the task runner."""
    return get_autobot_home() / "workspace"
