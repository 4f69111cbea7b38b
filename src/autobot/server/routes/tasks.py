"""Standalone task routes."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from autobot.app import AppContext
from autobot.scheduling.schedule import schedule_from_dict
from autobot.server.deps import get_context
from autobot.tasks.types import CreateTaskInput, TaskServiceType

router = APIRouter()

Context = Annotated[AppContext, Depends(get_context)]


class CreateTaskRequest(BaseModel):
    service_type: TaskServiceType
    params: dict[str, Any] = Field(default_factory=dict)
    budget: float = Field(ge=0)
    model: str = "sonnet"
    run_now: bool = True
    schedule: dict[str, Any] | None = None


class UpdateTaskRequest(BaseModel):
    params: dict[str, Any] | None = None
    model: str | None = None
    budget: float | None = Field(default=None, ge=0)
    # An explicit null clears the schedule
    schedule: dict[str, Any] | None = None


@router.post("", status_code=201)
async def create_task(body: CreateTaskRequest, context: Context) -> dict[str, Any]:
    """Create a task that runs now, on a schedule, or both."""
    schedule = schedule_from_dict(body.schedule) if body.schedule else None
    request = CreateTaskInput(
        service_type=body.service_type,
        params=body.params,
        budget=body.budget,
        model=body.model,
        run_now=body.run_now,
        schedule=schedule,
    )
    if body.run_now:
        task = await context.executor.create_and_run(request)
    elif schedule is not None:
        task = await context.executor.create_and_schedule(request, schedule)
    else:
        raise ValueError("A schedule is required when run_now is false")
    return task.to_dict()


@router.get("")
async def list_tasks(
    context: Context, service_type: TaskServiceType | None = None
) -> list[dict[str, Any]]:
    return [t.to_dict() for t in await context.executor.list_tasks(service_type)]


@router.get("/{task_id}")
async def get_task(task_id: str, context: Context) -> dict[str, Any]:
    return (await context.executor.require_task(task_id)).to_dict()


@router.patch("/{task_id}")
async def update_task(
    task_id: str, body: UpdateTaskRequest, context: Context
) -> dict[str, Any]:
    changes: dict[str, Any] = {
        "params": body.params,
        "model": body.model,
        "budget": body.budget,
    }
    if "schedule" in body.model_fields_set:
        changes["schedule"] = (
            schedule_from_dict(body.schedule) if body.schedule else None
        )
    task = await context.executor.update_task(task_id, **changes)
    return task.to_dict()


@router.delete("/{task_id}")
async def delete_task(task_id: str, context: Context) -> dict[str, str]:
    await context.executor.delete_task(task_id)
    return {"status": "deleted"}


@router.post("/{task_id}/pause")
async def pause_task(task_id: str, context: Context) -> dict[str, Any]:
    return (await context.executor.pause_task(task_id)).to_dict()


@router.post("/{task_id}/resume")
async def resume_task(task_id: str, context: Context) -> dict[str, Any]:
    return (await context.executor.resume_task(task_id)).to_dict()


@router.get("/{task_id}/next-runs")
async def next_runs(
    task_id: str,
    context: Context,
    count: Annotated[int, Query(ge=1, le=100)] = 5,
) -> dict[str, Any]:
    await context.executor.require_task(task_id)
    times = context.executor.get_next_run_times(task_id, count)
    return {"task_id": task_id, "next_runs": [t.isoformat() for t in times]}


@router.get("/{task_id}/costs")
async def task_costs(task_id: str, context: Context) -> dict[str, Any]:
    return (await context.executor.get_task_costs(task_id)).to_dict()
