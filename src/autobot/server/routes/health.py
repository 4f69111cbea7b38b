"""Health check routes."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        Health status.
    """
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(request: Request) -> dict[str, str]:
    """Readiness check endpoint.

    Ready once the scheduler has loaded its persisted state.
    """
    context = request.app.state.context
    if not context.engine.get_state().is_running:
        return {"status": "starting"}
    return {"status": "ready"}
