"""Service scheduling routes."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from autobot.app import AppContext
from autobot.scheduling.registry import ServiceNotFoundError
from autobot.scheduling.schedule import schedule_from_dict
from autobot.server.deps import get_context
from autobot.services.types import Service

router = APIRouter()
logger = logging.getLogger(__name__)

Context = Annotated[AppContext, Depends(get_context)]


class ScheduleServiceRequest(BaseModel):
    schedule: dict[str, Any]
    max_cycles: int | None = Field(default=None, gt=0)


async def _describe(context: AppContext, service: Service) -> dict[str, Any]:
    info = service.info
    record = context.engine.get_scheduled_service(info.id)
    return {
        "id": info.id,
        "name": info.name,
        "description": info.description,
        "status": (await service.status()).value,
        "schedule": record.to_dict() if record else None,
    }


@router.get("")
async def list_services(context: Context) -> list[dict[str, Any]]:
    return [await _describe(context, s) for s in context.registry.list()]


@router.get("/{service_id}")
async def get_service(service_id: str, context: Context) -> dict[str, Any]:
    return await _describe(context, context.registry.require(service_id))


@router.put("/{service_id}/schedule")
async def schedule_service(
    service_id: str, body: ScheduleServiceRequest, context: Context
) -> dict[str, Any]:
    """Bind (or replace) a service's schedule and arm its timer."""
    schedule = schedule_from_dict(body.schedule)
    record = await context.engine.schedule_service(
        service_id, schedule, max_cycles=body.max_cycles
    )
    return record.to_dict()


@router.delete("/{service_id}/schedule")
async def unschedule_service(service_id: str, context: Context) -> dict[str, str]:
    if context.engine.get_scheduled_service(service_id) is None:
        raise ServiceNotFoundError(service_id)
    await context.engine.unschedule_service(service_id)
    return {"status": "unscheduled"}


@router.post("/{service_id}/start", status_code=202)
async def start_service(service_id: str, context: Context) -> dict[str, str]:
    """Run one cycle now, outside the schedule."""
    context.engine.run_now(service_id)
    return {"status": "started"}


@router.post("/{service_id}/pause")
async def pause_service(service_id: str, context: Context) -> dict[str, Any]:
    await context.engine.pause_service(service_id)
    return await _describe(context, context.registry.require(service_id))


@router.post("/{service_id}/resume")
async def resume_service(service_id: str, context: Context) -> dict[str, Any]:
    await context.engine.resume_service(service_id)
    return await _describe(context, context.registry.require(service_id))


@router.post("/{service_id}/stop")
async def stop_service(service_id: str, context: Context) -> dict[str, Any]:
    await context.engine.stop_service(service_id)
    return await _describe(context, context.registry.require(service_id))


@router.get("/{service_id}/next-runs")
async def next_runs(
    service_id: str,
    context: Context,
    count: Annotated[int, Query(ge=1, le=100)] = 5,
) -> dict[str, Any]:
    context.registry.require(service_id)
    times = context.engine.get_next_execution_times(service_id, count)
    return {"service_id": service_id, "next_runs": [t.isoformat() for t in times]}


@router.get("/{service_id}/runs")
async def list_runs(service_id: str, context: Context) -> list[dict[str, Any]]:
    service = context.registry.require(service_id)
    get_runs = getattr(service, "get_runs", None)
    if get_runs is None:
        return []
    return [run.to_dict() for run in await get_runs()]
