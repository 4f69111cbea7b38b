"""Scheduler state and event history routes."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from autobot.app import AppContext
from autobot.messaging import MessageType
from autobot.server.deps import get_context

router = APIRouter()

Context = Annotated[AppContext, Depends(get_context)]


@router.get("/state")
async def get_state(context: Context) -> dict[str, Any]:
    state = context.engine.get_state().to_dict()
    state["armed_timers"] = context.engine.timer_keys()
    return state


@router.get("/events")
async def recent_events(
    context: Context,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    message_type: Annotated[MessageType | None, Query(alias="type")] = None,
) -> list[dict[str, Any]]:
    messages = context.bus.recent(limit=limit, message_type=message_type)
    return [m.to_dict() for m in messages]
