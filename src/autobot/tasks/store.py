"""Task store: standalone task records keyed by task id."""

import logging
from pathlib import Path
from typing import Any

from autobot.persistence import JsonStore
from autobot.tasks.types import StandaloneTask, TaskNotFoundError, TaskServiceType

logger = logging.getLogger(__name__)

TASKS_FILENAME = "tasks.json"

TaskDocument = dict[str, dict[str, Any]]


class TaskStore:
    def __init__(self, data_dir: Path) -> None:
        self._store: JsonStore[TaskDocument] = JsonStore(data_dir / TASKS_FILENAME, dict)

    @property
    def store(self) -> JsonStore[TaskDocument]:
        return self._store

    async def create(self, task: StandaloneTask) -> StandaloneTask:
        def apply(doc: TaskDocument) -> None:
            doc[task.task_id] = task.to_dict()

        await self._store.mutate(apply)
        return task

    async def get_by_id(self, task_id: str) -> StandaloneTask | None:
        raw = (await self._store.load()).get(task_id)
        return StandaloneTask.from_dict(raw) if raw else None

    async def get_all(self) -> list[StandaloneTask]:
        tasks: list[StandaloneTask] = []
        for task_id, raw in (await self._store.load()).items():
            try:
                tasks.append(StandaloneTask.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "task_record_unreadable",
                    extra={"task.id": task_id, "error.message": str(e)},
                )
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    async def get_by_service_type(
        self, service_type: TaskServiceType | str
    ) -> list[StandaloneTask]:
        return [t for t in await self.get_all() if t.service_type == service_type]

    async def update(self, task_id: str, **changes: Any) -> StandaloneTask:
        """Apply field changes to a stored task.

        Raises:
            TaskNotFoundError: No task with ``task_id``.
        """
        updated: StandaloneTask | None = None

        def apply(doc: TaskDocument) -> None:
            nonlocal updated
            raw = doc.get(task_id)
            if raw is None:
                return
            task = StandaloneTask.from_dict(raw)
            for name, value in changes.items():
                if not hasattr(task, name):
                    raise AttributeError(f"Unknown task field: {name}")
                setattr(task, name, value)
            doc[task_id] = task.to_dict()
            updated = task

        await self._store.mutate(apply)
        if updated is None:
            raise TaskNotFoundError(task_id)
        return updated

    async def delete(self, task_id: str) -> bool:
        removed = False

        def apply(doc: TaskDocument) -> None:
            nonlocal removed
            removed = doc.pop(task_id, None) is not None

        await self._store.mutate(apply)
        return removed
