"""Serve the operator API until the process is told to stop."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING

import uvicorn

if TYPE_CHECKING:
    from fastapi import FastAPI

    from autobot.scheduling.detached import DetachedTasks

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServerRunner:
    """Runs uvicorn around the app and turns stop signals into a shutdown.

    The first signal lets the app lifespan stop the scheduler and drain
    in-flight service and task runs. A second signal abandons that drain:
    detached runs are cancelled (which kills their model subprocesses) and
    uvicorn stops waiting on open connections.
    """

    def __init__(
        self,
        app: FastAPI,
        *,
        host: str,
        port: int,
        detached: DetachedTasks | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._detached = detached
        self._signals_seen = 0
        self._cancelling: asyncio.Task[None] | None = None
        self.server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=host,
                port=port,
                log_level="info",
                # Our handlers from configure_logging() stay in charge
                log_config=None,
            )
        )

    def request_stop(self) -> None:
        self._signals_seen += 1
        if self._signals_seen == 1:
            logger.info("server_stop_requested")
            self.server.should_exit = True
            return

        logger.warning(
            "server_stop_forced",
            extra={"detached.count": len(self._detached) if self._detached else 0},
        )
        self.server.force_exit = True
        if self._detached is not None:
            self._cancelling = asyncio.get_running_loop().create_task(
                self._detached.cancel_all()
            )

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in STOP_SIGNALS:
            loop.add_signal_handler(sig, self.request_stop)

        logger.info(
            "server_listening", extra={"server.host": self._host, "server.port": self._port}
        )
        try:
            await self.server.serve()
        finally:
            for sig in STOP_SIGNALS:
                loop.remove_signal_handler(sig)
