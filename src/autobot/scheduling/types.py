"""Scheduler record types.

Public types:
- ServiceStatus: Lifecycle status of a scheduled service
- ScheduledService: Schedule binding for a registry service
- ScheduledCallback: Schedule binding for an opaque key (e.g. ``task:<id>``)
- SchedulerState: The persisted scheduler document
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from autobot.scheduling.schedule import Schedule, schedule_from_dict

logger = logging.getLogger(__name__)

ScheduleCallback = Callable[[], Awaitable[None]]


class ServiceStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERRORED = "errored"


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class ScheduledService:
    service_id: str
    schedule: Schedule
    status: ServiceStatus = ServiceStatus.IDLE
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None
    max_cycles: int | None = None
    cycles_completed: int = 0

    @property
    def cycle_limit_reached(self) -> bool:
        return self.max_cycles is not None and self.cycles_completed >= self.max_cycles

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "schedule": self.schedule.to_dict(),
            "status": self.status.value,
            "enabled": self.enabled,
            "last_run": _format_dt(self.last_run),
            "next_run": _format_dt(self.next_run),
            "max_cycles": self.max_cycles,
            "cycles_completed": self.cycles_completed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduledService":
        try:
            status = ServiceStatus(data.get("status", ServiceStatus.IDLE))
        except ValueError:
            status = ServiceStatus.IDLE
        return cls(
            service_id=data["service_id"],
            schedule=schedule_from_dict(data["schedule"]),
            status=status,
            enabled=bool(data.get("enabled", True)),
            last_run=_parse_dt(data.get("last_run")),
            next_run=_parse_dt(data.get("next_run")),
            max_cycles=data.get("max_cycles"),
            # Older documents predate cycle counting
            cycles_completed=int(data.get("cycles_completed") or 0),
        )


@dataclass
class ScheduledCallback:
    key: str
    schedule: Schedule
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None
    # Engine-held closure, never persisted
    callback: ScheduleCallback | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "schedule": self.schedule.to_dict(),
            "enabled": self.enabled,
            "last_run": _format_dt(self.last_run),
            "next_run": _format_dt(self.next_run),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduledCallback":
        return cls(
            key=data["key"],
            schedule=schedule_from_dict(data["schedule"]),
            enabled=bool(data.get("enabled", True)),
            last_run=_parse_dt(data.get("last_run")),
            next_run=_parse_dt(data.get("next_run")),
        )


@dataclass
class SchedulerState:
    services: list[ScheduledService] = field(default_factory=list)
    tasks: list[ScheduledCallback] = field(default_factory=list)
    is_running: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "services": [s.to_dict() for s in self.services],
            "tasks": [t.to_dict() for t in self.tasks],
            "is_running": self.is_running,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SchedulerState":
        """Parse a persisted document, skipping records that no longer parse."""
        services: list[ScheduledService] = []
        for raw in data.get("services", []):
            try:
                services.append(ScheduledService.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "scheduled_service_unreadable",
                    extra={"service.id": raw.get("service_id"), "error.message": str(e)},
                )
        tasks: list[ScheduledCallback] = []
        for raw in data.get("tasks", []):
            try:
                tasks.append(ScheduledCallback.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "scheduled_callback_unreadable",
                    extra={"schedule.key": raw.get("key"), "error.message": str(e)},
                )
        return cls(
            services=services, tasks=tasks, is_running=bool(data.get("is_running"))
        )
