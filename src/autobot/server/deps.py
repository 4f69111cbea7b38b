"""Request-scoped accessors for the application context."""

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from autobot.app import AppContext


def get_context(request: Request) -> "AppContext":
    return request.app.state.context
