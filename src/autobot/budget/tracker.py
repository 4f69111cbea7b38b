"""Cost ledger: records per-prompt spend and charges it to a budget key."""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from autobot.budget.manager import BudgetManager, BudgetNotFoundError
from autobot.budget.types import CostEntry, CostReport, TaskCostSummary
from autobot.messaging import InProcessMessageBus, MessageType
from autobot.persistence import JsonStore

logger = logging.getLogger(__name__)

COST_ENTRIES_FILENAME = "cost-entries.json"


class CostTracker:
    def __init__(
        self,
        data_dir: Path,
        budget_manager: BudgetManager,
        bus: InProcessMessageBus,
    ) -> None:
        self._store: JsonStore[list[dict[str, Any]]] = JsonStore(
            data_dir / COST_ENTRIES_FILENAME, list
        )
        self._budgets = budget_manager
        self._bus = bus

    async def record_cost(self, entry: CostEntry) -> None:
        """Append to the ledger, then deduct from the entry's budget key."""
        await self._store.mutate(lambda entries: entries.append(entry.to_dict()))

        try:
            await self._budgets.deduct(entry.budget_key, entry.cost)
        except BudgetNotFoundError:
            logger.warning(
                "cost_recorded_without_budget",
                extra={"budget.key": entry.budget_key, "cost.amount": entry.cost},
            )

        await self._bus.emit(MessageType.COST_RECORDED, entry.budget_key, entry.to_dict())

    async def get_entries(self, budget_key: str | None = None) -> list[CostEntry]:
        raw = await self._store.load()
        entries = [CostEntry.from_dict(e) for e in raw]
        if budget_key is None:
            return entries
        return [e for e in entries if e.budget_key == budget_key]

    async def get_task_summaries(
        self, budget_key: str | None = None
    ) -> list[TaskCostSummary]:
        """Entries grouped by task id, in first-seen order."""
        grouped: dict[str, list[CostEntry]] = {}
        for entry in await self.get_entries(budget_key):
            grouped.setdefault(entry.task_id, []).append(entry)
        return [
            TaskCostSummary(
                task_id=task_id,
                label=entries[0].label,
                budget_key=entries[0].budget_key,
                total_cost=sum(e.cost for e in entries),
                iteration_count=len(entries),
                entries=entries,
            )
            for task_id, entries in grouped.items()
        ]

    async def get_report(self, budget_key: str) -> CostReport:
        entries = await self.get_entries(budget_key)
        budget = await self._budgets.get_budget(budget_key)
        now = datetime.now(UTC)
        return CostReport(
            budget_key=budget_key,
            total_spent=sum(e.cost for e in entries),
            budget_allocated=budget.allocated if budget else 0.0,
            budget_remaining=budget.remaining if budget else 0.0,
            entries=entries,
            period_start=entries[0].timestamp if entries else now,
            period_end=entries[-1].timestamp if entries else now,
        )
