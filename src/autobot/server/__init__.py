"""HTTP server for autobot."""

from autobot.server.app import create_app
from autobot.server.runner import ServerRunner

__all__ = [
    "ServerRunner",
    "create_app",
]
