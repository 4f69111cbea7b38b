"""Configuration models using Pydantic."""

import logging
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from autobot.config.paths import (
    get_data_dir,
    get_system_timezone,
    get_workspace_path,
)

logger = logging.getLogger(__name__)

ModelName = Literal["haiku", "sonnet", "opus"]


class ConfigError(Exception):
    """Configuration error."""

    pass


class ServerConfig(BaseModel):
    """Configuration for the operator HTTP API."""

    host: str = "localhost"
    port: int = 3000


class CostControlConfig(BaseModel):
    """Budget defaults applied to services without an explicit budget."""

    default_budget: float = Field(default=10.0, ge=0)
    # Fraction of the allocation that, once spent, raises a budget.alert
    alert_threshold: float = Field(default=0.8, gt=0, le=1)


class RunnerConfig(BaseModel):
    """Configuration for the model CLI used to execute prompts.

    The prompt is appended after ``--model <model> -p``; the command must
    print a JSON result object on stdout.
    """

    command: list[str] = Field(
        default_factory=lambda: [
            "claude",
            "--print",
            "--output-format",
            "json",
            "--dangerously-skip-permissions",
        ]
    )
    timeout_seconds: float | None = None
    working_dir: Path = Field(default_factory=get_workspace_path)


class ServiceSettings(BaseModel):
    """Per-service overrides."""

    enabled: bool = True
    model: ModelName = "sonnet"
    budget: float | None = Field(default=None, ge=0)


class AutobotConfig(BaseModel):
    """Root configuration model."""

    data_dir: Path = Field(default_factory=get_data_dir)
    timezone: str = Field(default_factory=get_system_timezone)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    server: ServerConfig = Field(default_factory=ServerConfig)
    cost_control: CostControlConfig = Field(default_factory=CostControlConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    services: dict[str, ServiceSettings] = Field(default_factory=dict)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("invalid_timezone", extra={"schedule.timezone": value})
            return "UTC"
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    def service_settings(self, service_id: str) -> ServiceSettings:
        """Get settings for a service, falling back to defaults."""
        return self.services.get(service_id) or ServiceSettings()

    def service_budget(self, service_id: str) -> float:
        """Budget to allocate for a service that has no envelope yet."""
        budget = self.service_settings(service_id).budget
        if budget is None:
            return self.cost_control.default_budget
        return budget
