"""Budget and cost ledger types."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

DEFAULT_ALERT_THRESHOLD = 0.8


def service_budget_key(service_id: str) -> str:
    return f"service:{service_id}"


def task_budget_key(task_id: str) -> str:
    return f"task:{task_id}"


@dataclass
class Budget:
    """Spending envelope for one billable key.

    ``spent <= allocated`` is not enforced: exhaustion is detected after a
    deduction and acted on by subscribers.
    """

    key: str
    allocated: float
    spent: float = 0.0
    alert_threshold: float = DEFAULT_ALERT_THRESHOLD

    @property
    def remaining(self) -> float:
        return self.allocated - self.spent

    @property
    def is_exhausted(self) -> bool:
        return self.remaining <= 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "allocated": self.allocated,
            "spent": self.spent,
            "remaining": self.remaining,
            "alert_threshold": self.alert_threshold,
            "is_exhausted": self.is_exhausted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Budget":
        return cls(
            key=data["key"],
            allocated=float(data.get("allocated", 0.0)),
            spent=float(data.get("spent", 0.0)),
            alert_threshold=float(
                data.get("alert_threshold", DEFAULT_ALERT_THRESHOLD)
            ),
        )


@dataclass
class BudgetCheck:
    allowed: bool
    budget: Budget


@dataclass
class CostEntry:
    """Cost of one prompt execution, charged against ``budget_key``."""

    budget_key: str
    task_id: str
    label: str
    cost: float
    iteration: int = 1
    session_id: str | None = None
    tokens_input: int = 0
    tokens_output: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def total_tokens(self) -> int:
        return self.tokens_input + self.tokens_output

    def to_dict(self) -> dict[str, Any]:
        return {
            "budget_key": self.budget_key,
            "task_id": self.task_id,
            "label": self.label,
            "cost": self.cost,
            "iteration": self.iteration,
            "session_id": self.session_id,
            "tokens_input": self.tokens_input,
            "tokens_output": self.tokens_output,
            "cache_creation_tokens": self.cache_creation_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CostEntry":
        return cls(
            budget_key=data["budget_key"],
            task_id=data.get("task_id", ""),
            label=data.get("label", ""),
            cost=float(data.get("cost", 0.0)),
            iteration=int(data.get("iteration", 1)),
            session_id=data.get("session_id"),
            tokens_input=int(data.get("tokens_input", 0)),
            tokens_output=int(data.get("tokens_output", 0)),
            cache_creation_tokens=int(data.get("cache_creation_tokens", 0)),
            cache_read_tokens=int(data.get("cache_read_tokens", 0)),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class TaskCostSummary:
    task_id: str
    label: str
    budget_key: str
    total_cost: float
    iteration_count: int
    entries: list[CostEntry]

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "label": self.label,
            "budget_key": self.budget_key,
            "total_cost": self.total_cost,
            "iteration_count": self.iteration_count,
            "entries": [e.to_dict() for e in self.entries],
        }


@dataclass
class CostReport:
    budget_key: str
    total_spent: float
    budget_allocated: float
    budget_remaining: float
    entries: list[CostEntry]
    period_start: datetime
    period_end: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "budget_key": self.budget_key,
            "total_spent": self.total_spent,
            "budget_allocated": self.budget_allocated,
            "budget_remaining": self.budget_remaining,
            "entries": [e.to_dict() for e in self.entries],
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
        }
