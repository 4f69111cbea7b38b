"""Shared test fixtures and factories."""

import asyncio
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from autobot.budget.manager import BudgetManager
from autobot.budget.tracker import CostTracker
from autobot.budget.types import CostEntry
from autobot.config.models import AutobotConfig, RunnerConfig
from autobot.messaging import InProcessMessageBus, Message, MessageType
from autobot.scheduling.detached import DetachedTasks
from autobot.scheduling.engine import SchedulingEngine
from autobot.scheduling.registry import ServiceRegistry
from autobot.scheduling.types import ServiceStatus
from autobot.services.runner import RunResult
from autobot.services.types import RunRecord, RunStatus, RunTaskResult, ServiceInfo
from autobot.tasks.executor import TaskExecutor
from autobot.tasks.store import TaskStore

# =============================================================================
# Fakes
# =============================================================================


class FakeService:
    """Registry service that records lifecycle calls instead of doing work."""

    def __init__(
        self,
        service_id: str,
        *,
        delay: float = 0.0,
        fail: bool = False,
    ) -> None:
        self.info = ServiceInfo(id=service_id, name=service_id.title())
        self.delay = delay
        self.fail = fail
        self.starts = 0
        self.pauses = 0
        self.resumes = 0
        self.stops = 0
        self._status = ServiceStatus.IDLE

    async def start(self) -> None:
        self.starts += 1
        self._status = ServiceStatus.RUNNING
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            self._status = ServiceStatus.ERRORED
            raise RuntimeError(f"{self.info.id} failed")
        self._status = ServiceStatus.IDLE

    async def pause(self) -> None:
        self.pauses += 1
        self._status = ServiceStatus.PAUSED

    async def resume(self) -> None:
        self.resumes += 1
        self._status = ServiceStatus.IDLE

    async def stop(self) -> None:
        self.stops += 1
        self._status = ServiceStatus.STOPPED

    async def status(self) -> ServiceStatus:
        return self._status


class FakeStandaloneService(FakeService):
    """Service that also runs standalone tasks, charging a fixed cost per run."""

    def __init__(
        self,
        service_id: str,
        costs: CostTracker,
        *,
        cost: float = 0.25,
        fail_after_cost: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(service_id, **kwargs)
        self.costs = costs
        self.cost = cost
        self.fail_after_cost = fail_after_cost
        self.standalone_calls: list[dict[str, Any]] = []

    async def run_standalone(
        self, params: dict[str, Any], model: str, budget_key: str
    ) -> RunRecord:
        self.standalone_calls.append(
            {"params": params, "model": model, "budget_key": budget_key}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        run = RunRecord(service_id=self.info.id, model=model, budget_key=budget_key)
        await self.costs.record_cost(
            CostEntry(
                budget_key=budget_key,
                task_id=run.run_id,
                label=f"{self.info.id}: step",
                cost=self.cost,
                tokens_input=100,
                tokens_output=50,
            )
        )
        if self.fail_after_cost:
            raise RuntimeError("runner exploded")
        run.tasks.append(
            RunTaskResult(label="step", output="done", tokens_used=150, cost=self.cost)
        )
        run.status = RunStatus.COMPLETED
        return run


class FakeRunner:
    """Task runner returning canned results and recording prompts."""

    def __init__(self, output: str = "result", cost: float = 0.1) -> None:
        self.output = output
        self.cost = cost
        self.calls: list[dict[str, Any]] = []
        self.error: Exception | None = None

    async def run(
        self,
        prompt: str,
        model: str,
        working_dir: Path | None = None,
        max_turns: int | None = None,
    ) -> RunResult:
        self.calls.append(
            {"prompt": prompt, "model": model, "working_dir": working_dir, "max_turns": max_turns}
        )
        if self.error is not None:
            raise self.error
        return RunResult(
            output=self.output,
            cost=self.cost,
            session_id="session-1",
            tokens_input=10,
            tokens_output=5,
        )


async def wait_for(
    predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01
) -> None:
    """Poll until ``predicate()`` holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(interval)


class EventRecorder:
    """Subscribes to every message type and keeps what it sees."""

    def __init__(self, bus: InProcessMessageBus) -> None:
        self.messages: list[Message] = []
        for message_type in MessageType:
            bus.subscribe(message_type, self._record)

    async def _record(self, message: Message) -> None:
        self.messages.append(message)

    def of_type(self, message_type: MessageType) -> list[Message]:
        return [m for m in self.messages if m.type == message_type]


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def bus() -> InProcessMessageBus:
    return InProcessMessageBus()


@pytest.fixture
def events(bus: InProcessMessageBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def budgets(data_dir: Path, bus: InProcessMessageBus) -> BudgetManager:
    return BudgetManager(data_dir, bus)


@pytest.fixture
def costs(data_dir: Path, budgets: BudgetManager, bus: InProcessMessageBus) -> CostTracker:
    return CostTracker(data_dir, budgets, bus)


@pytest.fixture
def registry() -> ServiceRegistry:
    return ServiceRegistry()


@pytest.fixture
def detached() -> DetachedTasks:
    return DetachedTasks()


@pytest.fixture
async def engine(
    registry: ServiceRegistry,
    bus: InProcessMessageBus,
    budgets: BudgetManager,
    data_dir: Path,
    detached: DetachedTasks,
) -> AsyncGenerator[SchedulingEngine, None]:
    engine = SchedulingEngine(registry, bus, budgets, data_dir, detached=detached)
    await engine.load_state()
    yield engine
    await engine.shutdown(drain_timeout=2.0)


@pytest.fixture
async def service(
    registry: ServiceRegistry, budgets: BudgetManager
) -> FakeService:
    """A registered service with a funded budget envelope."""
    fake = FakeService("research")
    registry.register(fake)
    await budgets.allocate("service:research", 10.0)
    return fake


@pytest.fixture
def task_store(data_dir: Path) -> TaskStore:
    return TaskStore(data_dir)


@pytest.fixture
def standalone_service(
    registry: ServiceRegistry, costs: CostTracker
) -> FakeStandaloneService:
    fake = FakeStandaloneService("report", costs)
    registry.register(fake)
    return fake


@pytest.fixture
def executor(
    task_store: TaskStore,
    registry: ServiceRegistry,
    budgets: BudgetManager,
    costs: CostTracker,
    engine: SchedulingEngine,
    bus: InProcessMessageBus,
) -> TaskExecutor:
    return TaskExecutor(task_store, registry, budgets, costs, engine, bus)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def config(tmp_path: Path, data_dir: Path) -> AutobotConfig:
    """Configuration rooted in the test's temp directory."""
    return AutobotConfig(
        data_dir=data_dir,
        timezone="UTC",
        runner=RunnerConfig(command=["true"], working_dir=tmp_path / "workspace"),
    )


# =============================================================================
# CLI Fixtures
# =============================================================================


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner(env={"NO_COLOR": "1"})


@pytest.fixture
def config_file(tmp_path: Path, data_dir: Path) -> Path:
    """A config file pointing at the test's data directory."""
    path = tmp_path / "config.toml"
    path.write_text(f'data_dir = "{data_dir}"\ntimezone = "UTC"\n')
    return path
