"""Application context.

One ``AppContext`` is built at startup and handed to whatever serves the
operator surface (HTTP server, CLI). There is no module-level state.
"""

import logging
from dataclasses import dataclass

from autobot.budget.manager import BudgetManager
from autobot.budget.tracker import CostTracker
from autobot.budget.types import service_budget_key
from autobot.config.models import AutobotConfig
from autobot.messaging import InProcessMessageBus, Message, MessageType
from autobot.scheduling.detached import DetachedTasks
from autobot.scheduling.engine import SchedulingEngine
from autobot.scheduling.registry import ServiceNotFoundError, ServiceRegistry
from autobot.services.builtin import create_builtin_services
from autobot.services.runner import SubprocessTaskRunner, TaskRunner
from autobot.tasks.executor import TaskExecutor
from autobot.tasks.store import TaskStore
from autobot.tasks.types import TaskNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: AutobotConfig
    bus: InProcessMessageBus
    budgets: BudgetManager
    costs: CostTracker
    registry: ServiceRegistry
    engine: SchedulingEngine
    executor: TaskExecutor
    task_store: TaskStore
    detached: DetachedTasks

    @classmethod
    def create(
        cls, config: AutobotConfig, runner: TaskRunner | None = None
    ) -> "AppContext":
        """Wire every component from configuration.

        Args:
            config: Loaded configuration.
            runner: Task runner override; defaults to the configured model CLI.
        """
        data_dir = config.data_dir
        bus = InProcessMessageBus()
        budgets = BudgetManager(
            data_dir, bus, default_alert_threshold=config.cost_control.alert_threshold
        )
        costs = CostTracker(data_dir, budgets, bus)

        runner = runner or SubprocessTaskRunner(
            config.runner.command,
            working_dir=config.runner.working_dir,
            timeout_seconds=config.runner.timeout_seconds,
        )
        registry = ServiceRegistry()
        models = {
            service_id: settings.model for service_id, settings in config.services.items()
        }
        for service in create_builtin_services(
            runner, costs, data_dir, config.runner.working_dir, models=models
        ):
            if config.service_settings(service.id).enabled:
                registry.register(service)

        detached = DetachedTasks()
        engine = SchedulingEngine(
            registry,
            bus,
            budgets,
            data_dir,
            timezone=config.timezone,
            detached=detached,
        )
        task_store = TaskStore(data_dir)
        executor = TaskExecutor(task_store, registry, budgets, costs, engine, bus)

        context = cls(
            config=config,
            bus=bus,
            budgets=budgets,
            costs=costs,
            registry=registry,
            engine=engine,
            executor=executor,
            task_store=task_store,
            detached=detached,
        )
        bus.subscribe(MessageType.BUDGET_EXHAUSTED, context._on_budget_exhausted)
        return context

    async def start(self) -> None:
        """Allocate missing service budgets and reconcile persisted schedules."""
        for service in self.registry.list():
            key = service_budget_key(service.info.id)
            if await self.budgets.get_budget(key) is None:
                await self.budgets.allocate(key, self.config.service_budget(service.info.id))
        await self.engine.load_state()
        await self.executor.reload_scheduled_tasks()
        logger.info(
            "autobot_started",
            extra={"service.count": len(self.registry), "data.dir": str(self.config.data_dir)},
        )

    async def stop(self) -> None:
        await self.engine.shutdown()
        await self.detached.drain()
        logger.info("autobot_stopped")

    async def _on_budget_exhausted(self, message: Message) -> None:
        """Pause whatever owns the exhausted envelope."""
        key = str(message.payload.get("budget_key") or message.service_id)
        kind, _, owner_id = key.partition(":")
        try:
            if kind == "task" and owner_id:
                await self.executor.pause_task(owner_id)
                return
            service_id = owner_id if kind == "service" and owner_id else key
            await self.engine.pause_service(service_id)
        except (ServiceNotFoundError, TaskNotFoundError):
            logger.info("budget_exhausted_owner_missing", extra={"budget.key": key})
