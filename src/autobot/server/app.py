"""FastAPI application for the autobot operator API."""

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from autobot.budget.manager import BudgetNotFoundError
from autobot.scheduling.registry import ServiceNotFoundError
from autobot.server.routes import budgets, health, services, state, tasks
from autobot.tasks.types import TaskNotFoundError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from autobot.app import AppContext

logger = logging.getLogger(__name__)


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _bad_request(request: Request, exc: Exception) -> JSONResponse:
    logger.info(
        "request_rejected",
        extra={"http.path": request.url.path, "error.message": str(exc)},
    )
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def create_app(context: "AppContext", manage_lifecycle: bool = True) -> FastAPI:
    """Create the FastAPI application around an application context.

    Args:
        context: Wired components to serve.
        manage_lifecycle: Start and stop the context with the app lifespan.
            Disable when the caller owns the context lifecycle.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> "AsyncIterator[None]":
        # Startup
        logger.info("server_starting")
        if manage_lifecycle:
            await context.start()

        yield

        # Shutdown
        logger.info("server_shutting_down")
        if manage_lifecycle:
            await context.stop()

    app = FastAPI(
        title="autobot",
        description="Scheduling and budget control for autonomous agent services",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.context = context

    # ScheduleError is a ValueError
    app.add_exception_handler(ValueError, _bad_request)
    for exc_type in (ServiceNotFoundError, TaskNotFoundError, BudgetNotFoundError):
        app.add_exception_handler(exc_type, _not_found)

    app.include_router(health.router, tags=["health"])
    app.include_router(services.router, prefix="/api/services", tags=["services"])
    app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])
    app.include_router(budgets.router, prefix="/api/budgets", tags=["budgets"])
    app.include_router(state.router, prefix="/api", tags=["state"])

    return app
