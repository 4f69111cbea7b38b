"""Standalone task types."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from autobot.scheduling.schedule import Schedule, schedule_from_dict


class TaskStatus(StrEnum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    ERRORED = "errored"
    PAUSED = "paused"


class TaskServiceType(StrEnum):
    REPORT = "report"
    RESEARCH = "research"
    CODE_TASK = "code-task"
    TOPIC_TRACKER = "topic-tracker"
    SELF_IMPROVE = "self-improve"


SERVICE_TYPE_TO_ID: dict[TaskServiceType, str] = {
    TaskServiceType.REPORT: "report",
    TaskServiceType.RESEARCH: "research",
    TaskServiceType.CODE_TASK: "code-task",
    TaskServiceType.TOPIC_TRACKER: "topic-tracker",
    TaskServiceType.SELF_IMPROVE: "self-improve",
}


class TaskNotFoundError(LookupError):
    """No task exists with the given id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


def _parse_dt(value: Any) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class StandaloneTask:
    task_id: str
    service_type: TaskServiceType
    params: dict[str, Any]
    model: str
    budget: float
    schedule: Schedule | None = None
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cost_spent: float = 0.0
    cycles_completed: int = 0
    error: str | None = None
    output: str | None = None

    @property
    def budget_key(self) -> str:
        return f"task:{self.task_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "service_type": self.service_type.value,
            "params": self.params,
            "model": self.model,
            "budget": self.budget,
            "schedule": self.schedule.to_dict() if self.schedule else None,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": _format_dt(self.started_at),
            "completed_at": _format_dt(self.completed_at),
            "cost_spent": self.cost_spent,
            "cycles_completed": self.cycles_completed,
            "error": self.error,
            "output": self.output,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StandaloneTask":
        return cls(
            task_id=data["task_id"],
            service_type=TaskServiceType(data["service_type"]),
            params=dict(data.get("params") or {}),
            model=data.get("model", "sonnet"),
            budget=float(data.get("budget", 0.0)),
            schedule=schedule_from_dict(data["schedule"])
            if data.get("schedule")
            else None,
            status=TaskStatus(data.get("status", TaskStatus.PENDING)),
            created_at=datetime.fromisoformat(data["created_at"]),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            cost_spent=float(data.get("cost_spent", 0.0)),
            cycles_completed=int(data.get("cycles_completed") or 0),
            error=data.get("error"),
            output=data.get("output"),
        )


@dataclass
class CreateTaskInput:
    service_type: TaskServiceType
    params: dict[str, Any]
    budget: float
    model: str = "sonnet"
    run_now: bool = True
    schedule: Schedule | None = None

    def __post_init__(self) -> None:
        if self.budget < 0:
            raise ValueError("budget must not be negative")
