"""Budget envelope routes."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from autobot.app import AppContext
from autobot.budget.manager import BudgetNotFoundError
from autobot.server.deps import get_context

router = APIRouter()

Context = Annotated[AppContext, Depends(get_context)]


class AllocateRequest(BaseModel):
    amount: float = Field(ge=0)
    alert_threshold: float | None = Field(default=None, gt=0, le=1)


class AddBudgetRequest(BaseModel):
    amount: float = Field(gt=0)


@router.get("")
async def list_budgets(context: Context) -> list[dict[str, Any]]:
    return [b.to_dict() for b in await context.budgets.get_all_budgets()]


@router.get("/{key}")
async def get_budget(key: str, context: Context) -> dict[str, Any]:
    budget = await context.budgets.get_budget(key)
    if budget is None:
        raise BudgetNotFoundError(key)
    return budget.to_dict()


@router.put("/{key}")
async def allocate_budget(
    key: str, body: AllocateRequest, context: Context
) -> dict[str, Any]:
    """Set the allocation for an envelope. Prior spend is kept."""
    budget = await context.budgets.allocate(
        key, body.amount, alert_threshold=body.alert_threshold
    )
    return budget.to_dict()


@router.post("/{key}/add")
async def add_budget(key: str, body: AddBudgetRequest, context: Context) -> dict[str, Any]:
    return (await context.budgets.add_budget(key, body.amount)).to_dict()


@router.get("/{key}/costs")
async def budget_costs(key: str, context: Context) -> dict[str, Any]:
    return (await context.costs.get_report(key)).to_dict()
