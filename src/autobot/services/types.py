"""Service types.

Public types:
- Service: Capability contract every registry service implements
- StandaloneCapable: Extended contract for running a standalone task
- ServiceInfo: Static identity of a service
- RunRecord / RunTaskResult: Run history entries
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from autobot.scheduling.types import ServiceStatus


@dataclass(frozen=True)
class ServiceInfo:
    id: str
    name: str
    description: str = ""


class RunStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERRORED = "errored"


@dataclass
class RunTaskResult:
    """One prompt executed inside a run."""

    label: str
    output: str
    tokens_used: int = 0
    cost: float = 0.0
    iteration: int = 1
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "output": self.output,
            "tokens_used": self.tokens_used,
            "cost": self.cost,
            "iteration": self.iteration,
            "completed_at": self.completed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunTaskResult":
        return cls(
            label=data.get("label", ""),
            output=data.get("output", ""),
            tokens_used=int(data.get("tokens_used", 0)),
            cost=float(data.get("cost", 0.0)),
            iteration=int(data.get("iteration", 1)),
            completed_at=datetime.fromisoformat(data["completed_at"])
            if data.get("completed_at")
            else datetime.now(UTC),
        )


@dataclass
class RunRecord:
    """One execution of a service cycle or a standalone task."""

    service_id: str
    model: str
    budget_key: str
    cycle_number: int = 0
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    status: RunStatus = RunStatus.RUNNING
    tasks: list[RunTaskResult] = field(default_factory=list)
    error: str | None = None

    @property
    def total_tokens(self) -> int:
        return sum(t.tokens_used for t in self.tasks)

    @property
    def total_cost(self) -> float:
        return sum(t.cost for t in self.tasks)

    @property
    def output(self) -> str:
        """Output of the final prompt in the run."""
        return self.tasks[-1].output if self.tasks else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "service_id": self.service_id,
            "model": self.model,
            "budget_key": self.budget_key,
            "cycle_number": self.cycle_number,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status.value,
            "tasks": [t.to_dict() for t in self.tasks],
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunRecord":
        return cls(
            run_id=data["run_id"],
            service_id=data["service_id"],
            model=data.get("model", "sonnet"),
            budget_key=data.get("budget_key", ""),
            cycle_number=int(data.get("cycle_number", 0)),
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"])
            if data.get("completed_at")
            else None,
            status=RunStatus(data.get("status", RunStatus.COMPLETED)),
            tasks=[RunTaskResult.from_dict(t) for t in data.get("tasks", [])],
            error=data.get("error"),
        )


@runtime_checkable
class Service(Protocol):
    """Long-lived job the scheduling engine can drive."""

    @property
    def info(self) -> ServiceInfo: ...

    async def start(self) -> None: ...

    async def pause(self) -> None: ...

    async def resume(self) -> None: ...

    async def stop(self) -> None: ...

    async def status(self) -> ServiceStatus: ...


@runtime_checkable
class StandaloneCapable(Protocol):
    """A service that can run one standalone task on demand."""

    async def run_standalone(
        self, params: dict[str, Any], model: str, budget_key: str
    ) -> RunRecord: ...
