"""Cost control.

Public API:
- BudgetManager: Spending envelopes per ``service:<id>`` / ``task:<id>`` key
- CostTracker: Cost ledger that charges spend to budget keys

Types:
- Budget, BudgetCheck, CostEntry, CostReport, TaskCostSummary
"""

from autobot.budget.manager import BudgetManager, BudgetNotFoundError
from autobot.budget.tracker import CostTracker
from autobot.budget.types import (
    Budget,
    BudgetCheck,
    CostEntry,
    CostReport,
    TaskCostSummary,
    service_budget_key,
    task_budget_key,
)

__all__ = [
    "Budget",
    "BudgetCheck",
    "BudgetManager",
    "BudgetNotFoundError",
    "CostEntry",
    "CostReport",
    "CostTracker",
    "TaskCostSummary",
    "service_budget_key",
    "task_budget_key",
]
