"""Configuration management."""

from autobot.config.loader import load_config
from autobot.config.models import (
    AutobotConfig,
    ConfigError,
    CostControlConfig,
    RunnerConfig,
    ServerConfig,
    ServiceSettings,
)

__all__ = [
    "AutobotConfig",
    "ConfigError",
    "CostControlConfig",
    "RunnerConfig",
    "ServerConfig",
    "ServiceSettings",
    "load_config",
]
