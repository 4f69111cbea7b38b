"""Services driven by the scheduler.

Public API:
- BaseService: Prompt-step service with run history and cost charging
- create_builtin_services: Instantiate report/research/code-task/
  topic-tracker/self-improve
- SubprocessTaskRunner: Model CLI runner

Types:
- Service, StandaloneCapable, TaskRunner (protocols)
- RunRecord, RunTaskResult, RunResult, ServiceInfo
"""

from autobot.services.base import BaseService, PromptStep
from autobot.services.builtin import BUILTIN_SERVICES, create_builtin_services
from autobot.services.runner import (
    RunnerError,
    RunResult,
    SubprocessTaskRunner,
    TaskRunner,
)
from autobot.services.types import (
    RunRecord,
    RunStatus,
    RunTaskResult,
    Service,
    ServiceInfo,
    StandaloneCapable,
)

__all__ = [
    "BUILTIN_SERVICES",
    "BaseService",
    "PromptStep",
    "RunRecord",
    "RunResult",
    "RunStatus",
    "RunTaskResult",
    "RunnerError",
    "Service",
    "ServiceInfo",
    "StandaloneCapable",
    "SubprocessTaskRunner",
    "TaskRunner",
    "create_builtin_services",
]
