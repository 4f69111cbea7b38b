"""Supervised fire-and-forget execution.

Work launched here is never awaited by the launcher. A failure is logged by
the supervisor and goes no further; the owning entity is expected to record
its own error state before the exception reaches this point.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class DetachedTasks:
    """Holds references to in-flight detached work until it finishes."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "detached_task_failed",
                extra={"task.name": task.get_name(), "error.message": str(exc)},
                exc_info=exc,
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for all in-flight work, including work spawned while waiting."""
        while self._tasks:
            pending = list(self._tasks)
            _, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                logger.warning(
                    "detached_drain_timeout", extra={"task.count": len(not_done)}
                )
                return

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
