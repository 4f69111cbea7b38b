"""Built-in services."""

import logging
from pathlib import Path
from typing import Any

from autobot.budget.tracker import CostTracker
from autobot.persistence import JsonStore
from autobot.services.base import BaseService, PromptStep, require_param
from autobot.services.runner import TaskRunner
from autobot.services.types import ServiceInfo

logger = logging.getLogger(__name__)

RESEARCH_PROMPT = (
    "Research the following topic thoroughly and produce a structured summary "
    'with key findings, analysis, and sources:\n\n"{topic}"'
)

TRACK_PROMPT = (
    'Check for recent developments and changes regarding: "{topic}". '
    "Summarize any new findings, compare with known information, and highlight "
    "significant changes."
)

CODE_TASK_PROMPT = (
    "Execute the following coding task:\n\n{description}\n\nTarget path: {target_path}"
)

SELF_IMPROVE_PROMPT = (
    "Iteration {i} of {n}: Analyze the autobot system logs, performance metrics, "
    "and service outputs. Identify areas for improvement in prompts, workflows, "
    "or configurations. Suggest and implement concrete improvements."
)

SYSTEM_REPORT_PROMPT = (
    "Generate a comprehensive system status report summarizing all service "
    "activity, costs, and performance metrics."
)


class _QueueMixin:
    """Persisted list of work items consumed by each scheduled cycle."""

    _queue: JsonStore[list[Any]]

    def _init_queue(self, path: Path) -> None:
        self._queue = JsonStore(path, list)

    async def _queued(self) -> list[Any]:
        return await self._queue.load()


class ReportService(BaseService):
    info = ServiceInfo(
        id="report",
        name="Report",
        description="Generates scheduled reports aggregating activity, costs and outputs.",
    )

    async def cycle_steps(self) -> list[PromptStep]:
        return [PromptStep("system-report", SYSTEM_REPORT_PROMPT, max_turns=3)]

    def standalone_steps(self, params: dict[str, Any]) -> list[PromptStep]:
        prompt = require_param(params, "prompt")
        return [PromptStep("report", str(prompt), max_turns=3)]


class ResearchService(_QueueMixin, BaseService):
    info = ServiceInfo(
        id="research",
        name="Research",
        description="Gathers, synthesizes and summarizes information on queued topics.",
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._init_queue(self._data_dir / "research-topics.json")

    async def add_topic(self, topic: str) -> None:
        await self._queue.mutate(lambda topics: topics.append(topic))
        logger.info("research_topic_added", extra={"research.topic": topic})

    async def get_topics(self) -> list[str]:
        return await self._queued()

    async def cycle_steps(self) -> list[PromptStep]:
        return [
            PromptStep(topic, RESEARCH_PROMPT.format(topic=topic))
            for topic in await self._queued()
        ]

    def standalone_steps(self, params: dict[str, Any]) -> list[PromptStep]:
        topic = require_param(params, "topic")
        return [PromptStep(topic, RESEARCH_PROMPT.format(topic=topic))]


class TopicTrackerService(_QueueMixin, BaseService):
    info = ServiceInfo(
        id="topic-tracker",
        name="Topic Tracker",
        description="Tracks topics over time, detecting changes and new developments.",
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._init_queue(self._data_dir / "tracked-topics.json")

    async def add_topic(self, topic: str) -> None:
        def apply(topics: list[str]) -> None:
            if topic not in topics:
                topics.append(topic)

        await self._queue.mutate(apply)

    async def get_topics(self) -> list[str]:
        return await self._queued()

    async def cycle_steps(self) -> list[PromptStep]:
        return [
            PromptStep(f"track: {topic}", TRACK_PROMPT.format(topic=topic), max_turns=3)
            for topic in await self._queued()
        ]

    def standalone_steps(self, params: dict[str, Any]) -> list[PromptStep]:
        topic = require_param(params, "topic")
        return [PromptStep(f"track: {topic}", TRACK_PROMPT.format(topic=topic), max_turns=3)]


class CodeTaskService(_QueueMixin, BaseService):
    info = ServiceInfo(
        id="code-task",
        name="Code Task",
        description="Executes coding tasks: generation, review, refactoring and fixes.",
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._init_queue(self._data_dir / "code-tasks.json")

    async def add_task(
        self, description: str, target_path: str, max_iterations: int = 5
    ) -> None:
        item = {
            "description": description,
            "target_path": target_path,
            "max_iterations": max_iterations,
        }
        await self._queue.mutate(lambda tasks: tasks.append(item))

    async def get_tasks(self) -> list[dict[str, Any]]:
        return await self._queued()

    @staticmethod
    def _step(description: str, target_path: str, max_iterations: int) -> PromptStep:
        return PromptStep(
            description,
            CODE_TASK_PROMPT.format(description=description, target_path=target_path),
            max_turns=max_iterations,
        )

    async def cycle_steps(self) -> list[PromptStep]:
        return [
            self._step(t["description"], t["target_path"], int(t.get("max_iterations", 5)))
            for t in await self._queued()
        ]

    def standalone_steps(self, params: dict[str, Any]) -> list[PromptStep]:
        return [
            self._step(
                str(require_param(params, "description")),
                str(require_param(params, "target_path")),
                int(params.get("max_iterations") or 5),
            )
        ]


class SelfImproveService(BaseService):
    info = ServiceInfo(
        id="self-improve",
        name="Self-Iterative Improvement",
        description="Analyzes system performance and iteratively improves prompts and workflows.",
    )

    cycle_iterations = 3

    @staticmethod
    def _steps(label: str, iterations: int) -> list[PromptStep]:
        return [
            PromptStep(
                f"{label} (iteration {i}/{iterations})",
                SELF_IMPROVE_PROMPT.format(i=i, n=iterations),
                iteration=i,
            )
            for i in range(1, iterations + 1)
        ]

    async def cycle_steps(self) -> list[PromptStep]:
        return self._steps("system optimization", self.cycle_iterations)

    def standalone_steps(self, params: dict[str, Any]) -> list[PromptStep]:
        iterations = int(params.get("max_iterations") or self.cycle_iterations)
        if iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        return self._steps("optimization", iterations)


BUILTIN_SERVICES: list[type[BaseService]] = [
    ReportService,
    ResearchService,
    CodeTaskService,
    TopicTrackerService,
    SelfImproveService,
]


def create_builtin_services(
    runner: TaskRunner,
    cost_tracker: CostTracker,
    data_dir: Path,
    workspace: Path,
    models: dict[str, str] | None = None,
) -> list[BaseService]:
    """Instantiate every built-in service, applying per-service model overrides."""
    models = models or {}
    services: list[BaseService] = []
    for cls in BUILTIN_SERVICES:
        kwargs: dict[str, Any] = {}
        if cls.info.id in models:
            kwargs["model"] = models[cls.info.id]
        services.append(cls(runner, cost_tracker, data_dir, workspace, **kwargs))
    return services
