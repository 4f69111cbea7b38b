"""Standalone tasks.

Public API:
- TaskExecutor: Create, run, schedule, pause and delete standalone tasks
- TaskStore: Persisted task records

Types:
- StandaloneTask, CreateTaskInput, TaskStatus, TaskServiceType
"""

from autobot.tasks.executor import TaskExecutor
from autobot.tasks.store import TaskStore
from autobot.tasks.types import (
    SERVICE_TYPE_TO_ID,
    CreateTaskInput,
    StandaloneTask,
    TaskNotFoundError,
    TaskServiceType,
    TaskStatus,
)

__all__ = [
    "SERVICE_TYPE_TO_ID",
    "CreateTaskInput",
    "StandaloneTask",
    "TaskExecutor",
    "TaskNotFoundError",
    "TaskServiceType",
    "TaskStatus",
    "TaskStore",
]
