"""Task executor: drives standalone tasks from creation to completion.

Every task gets its own budget envelope under ``task:<id>``. Execution is
always detached from the caller; the task record is the only place its
outcome is observable. Recurring tasks re-enter ``scheduled`` after each
successful cycle until their cycle cap is reached.
"""

import logging
import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from autobot.budget.manager import BudgetManager
from autobot.budget.tracker import CostTracker
from autobot.budget.types import CostReport, task_budget_key
from autobot.messaging import InProcessMessageBus, MessageType
from autobot.scheduling.engine import SchedulingEngine
from autobot.scheduling.registry import ServiceRegistry
from autobot.scheduling.schedule import Schedule, cycle_cap, is_recurring
from autobot.services.types import StandaloneCapable
from autobot.tasks.store import TaskStore
from autobot.tasks.types import (
    SERVICE_TYPE_TO_ID,
    CreateTaskInput,
    StandaloneTask,
    TaskNotFoundError,
    TaskServiceType,
    TaskStatus,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class TaskExecutor:
    """Creates, runs and re-arms standalone tasks.

    Holds no durable state of its own; everything lives in the task store,
    the budget ledger and the engine's callback table.
    """

    def __init__(
        self,
        store: TaskStore,
        registry: ServiceRegistry,
        budgets: BudgetManager,
        costs: CostTracker,
        engine: SchedulingEngine,
        bus: InProcessMessageBus,
    ) -> None:
        self._store = store
        self._registry = registry
        self._budgets = budgets
        self._costs = costs
        self._engine = engine
        self._bus = bus

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_and_run(self, request: CreateTaskInput) -> StandaloneTask:
        """Create a task and launch it immediately without waiting.

        The returned task is tagged ``running`` before execution has actually
        started; a read straight after may still show ``pending``. When the
        input carries a schedule the task also re-runs on that cadence.
        """
        task = await self._create(request, TaskStatus.PENDING, request.schedule)
        self._launch(task.task_id)
        if request.schedule is not None:
            await self._schedule_task(task.task_id, request.schedule)
        return replace(task, status=TaskStatus.RUNNING)

    async def create_and_schedule(
        self, request: CreateTaskInput, schedule: Schedule
    ) -> StandaloneTask:
        """Create a task that first runs when its schedule fires."""
        task = await self._create(request, TaskStatus.SCHEDULED, schedule)
        await self._schedule_task(task.task_id, schedule)
        return task

    async def _create(
        self, request: CreateTaskInput, status: TaskStatus, schedule: Schedule | None
    ) -> StandaloneTask:
        task_id = str(uuid.uuid4())
        task = StandaloneTask(
            task_id=task_id,
            service_type=TaskServiceType(request.service_type),
            params=dict(request.params),
            model=request.model,
            budget=request.budget,
            schedule=schedule,
            status=status,
        )
        await self._budgets.allocate(task.budget_key, request.budget)
        await self._store.create(task)
        logger.info(
            "task_created",
            extra={
                "task.id": task_id,
                "task.service_type": task.service_type.value,
                "task.status": status.value,
                "schedule.type": schedule.kind.value if schedule else None,
            },
        )
        return task

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_tasks(
        self, service_type: TaskServiceType | str | None = None
    ) -> list[StandaloneTask]:
        if service_type:
            return await self._store.get_by_service_type(service_type)
        return await self._store.get_all()

    async def get_task(self, task_id: str) -> StandaloneTask | None:
        return await self._store.get_by_id(task_id)

    async def require_task(self, task_id: str) -> StandaloneTask:
        task = await self._store.get_by_id(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def get_next_run_times(
        self, task_id: str, count: int, now: datetime | None = None
    ) -> list[datetime]:
        return self._engine.get_callback_next_times(task_budget_key(task_id), count, now=now)

    async def get_task_costs(self, task_id: str) -> CostReport:
        await self.require_task(task_id)
        return await self._costs.get_report(task_budget_key(task_id))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_task(
        self,
        task_id: str,
        *,
        params: dict[str, Any] | None = None,
        model: str | None = None,
        budget: float | None = None,
        schedule: Schedule | None = _UNSET,
    ) -> StandaloneTask:
        """Edit a task. A scheduled task is re-armed with its new schedule.

        Raises:
            TaskNotFoundError: No task with ``task_id``.
        """
        task = await self.require_task(task_id)
        changes: dict[str, Any] = {}
        if params is not None:
            changes["params"] = dict(params)
        if model is not None:
            changes["model"] = model
        if budget is not None:
            await self._budgets.allocate(task.budget_key, budget)
            changes["budget"] = budget
        if schedule is not _UNSET:
            changes["schedule"] = schedule

        updated = await self._store.update(task_id, **changes)
        if "schedule" in changes and updated.status == TaskStatus.SCHEDULED:
            if updated.schedule is None:
                await self._engine.unschedule_callback(updated.budget_key)
                updated = await self._store.update(task_id, status=TaskStatus.COMPLETED)
            else:
                await self._schedule_task(task_id, updated.schedule)
        logger.info(
            "task_updated", extra={"task.id": task_id, "task.fields": sorted(changes)}
        )
        return updated

    async def pause_task(self, task_id: str) -> StandaloneTask:
        """Disarm a task's schedule and mark it paused. No-op when paused.

        Raises:
            TaskNotFoundError: No task with ``task_id``.
        """
        task = await self.require_task(task_id)
        if task.status == TaskStatus.PAUSED:
            return task
        await self._engine.unschedule_callback(task.budget_key)
        task = await self._store.update(task_id, status=TaskStatus.PAUSED)
        await self._emit(MessageType.TASK_PAUSED, task)
        logger.info("task_paused", extra={"task.id": task_id})
        return task

    async def resume_task(self, task_id: str) -> StandaloneTask:
        """Re-arm a paused task's schedule, or relaunch an unscheduled one.

        Raises:
            TaskNotFoundError: No task with ``task_id``.
        """
        task = await self.require_task(task_id)
        if task.status != TaskStatus.PAUSED:
            return task
        if task.schedule is not None:
            task = await self._store.update(task_id, status=TaskStatus.SCHEDULED)
            await self._schedule_task(task_id, task.schedule)
        else:
            task = await self._store.update(task_id, status=TaskStatus.PENDING)
            self._launch(task_id)
        logger.info("task_resumed", extra={"task.id": task_id})
        return task

    async def delete_task(self, task_id: str) -> None:
        """Disarm the task's callback, then delete its record.

        Raises:
            TaskNotFoundError: No task with ``task_id``.
        """
        await self.require_task(task_id)
        await self._engine.unschedule_callback(task_budget_key(task_id))
        await self._store.delete(task_id)
        logger.info("task_deleted", extra={"task.id": task_id})

    async def reload_scheduled_tasks(self) -> int:
        """Re-arm callbacks for every persisted ``scheduled`` task.

        Returns:
            Number of tasks re-armed.
        """
        count = 0
        for task in await self._store.get_all():
            if task.status == TaskStatus.SCHEDULED and task.schedule is not None:
                await self._schedule_task(task.task_id, task.schedule)
                count += 1
        logger.info("scheduled_tasks_reloaded", extra={"task.count": count})
        return count

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_task(self, task_id: str, budget_key: str) -> None:
        """Run one cycle of a task. Outcomes land on the task record only."""
        # Always re-read: the record may have been edited since the last fire
        task = await self._store.get_by_id(task_id)
        if task is None:
            logger.error("task_not_found", extra={"task.id": task_id})
            return
        if task.status in (TaskStatus.RUNNING, TaskStatus.PAUSED):
            logger.info(
                "task_execution_skipped",
                extra={"task.id": task_id, "task.status": task.status.value},
            )
            return

        service_id = SERVICE_TYPE_TO_ID[task.service_type]
        service = self._registry.get(service_id)
        if service is None or not isinstance(service, StandaloneCapable):
            message = (
                f"Service not found: {service_id}"
                if service is None
                else f"Service does not support standalone tasks: {service_id}"
            )
            task = await self._store.update(
                task_id,
                status=TaskStatus.ERRORED,
                completed_at=datetime.now(UTC),
                error=message,
            )
            logger.error("task_service_unavailable", extra={"task.id": task_id, "service.id": service_id})
            await self._emit(MessageType.TASK_ERRORED, task, {"error": message})
            return

        check = await self._budgets.check(budget_key)
        if not check.allowed:
            logger.warning(
                "task_budget_denied", extra={"task.id": task_id, "budget.key": budget_key}
            )
            await self._bus.emit(
                MessageType.BUDGET_EXHAUSTED,
                service_id,
                {
                    "budget_key": budget_key,
                    "task_id": task_id,
                    "budget": check.budget.to_dict(),
                },
            )
            return

        task = await self._store.update(
            task_id,
            status=TaskStatus.RUNNING,
            started_at=datetime.now(UTC),
            error=None,
        )
        await self._emit(MessageType.TASK_STARTED, task)
        logger.info("task_started", extra={"task.id": task_id, "service.id": service_id})

        try:
            run = await service.run_standalone(task.params, task.model, budget_key)
        except Exception as e:
            # Spend accrued before the failure stays on the record
            budget = await self._budgets.get_budget(budget_key)
            task = await self._store.update(
                task_id,
                status=TaskStatus.ERRORED,
                completed_at=datetime.now(UTC),
                cost_spent=budget.spent if budget else 0.0,
                error=str(e),
            )
            logger.error(
                "task_errored", extra={"task.id": task_id, "error.message": str(e)}
            )
            await self._emit(MessageType.TASK_ERRORED, task, {"error": str(e)})
            return

        # The ledger is the single source of truth for money
        budget = await self._budgets.get_budget(budget_key)
        cost_spent = budget.spent if budget else 0.0
        cycles = task.cycles_completed + 1

        current = await self._store.get_by_id(task_id)
        if current is None:
            logger.info("task_deleted_during_run", extra={"task.id": task_id})
            return

        status = TaskStatus.COMPLETED
        schedule = current.schedule
        if schedule is not None:
            if is_recurring(schedule):
                cap = cycle_cap(schedule)
                if cap is None or cycles < cap:
                    status = TaskStatus.SCHEDULED
            elif self._engine.get_callback_next_times(budget_key, 1):
                # An immediate run ahead of a one-shot still owes that fire
                status = TaskStatus.SCHEDULED
        # A pause only holds when a future cycle remains to be held back
        if current.status == TaskStatus.PAUSED and status == TaskStatus.SCHEDULED:
            status = TaskStatus.PAUSED
        elif status == TaskStatus.COMPLETED and schedule is not None:
            await self._engine.unschedule_callback(budget_key)

        task = await self._store.update(
            task_id,
            status=status,
            completed_at=datetime.now(UTC),
            cost_spent=cost_spent,
            cycles_completed=cycles,
            output=run.output,
        )
        logger.info(
            "task_completed",
            extra={
                "task.id": task_id,
                "task.status": status.value,
                "task.cycles_completed": cycles,
                "cost.spent": cost_spent,
                "run.total_tokens": run.total_tokens,
            },
        )
        await self._emit(
            MessageType.TASK_COMPLETED,
            task,
            {"cost_spent": cost_spent, "total_tokens": run.total_tokens},
        )

    def _launch(self, task_id: str) -> None:
        self._engine.detached.spawn(
            self.execute_task(task_id, task_budget_key(task_id)),
            name=f"task:{task_id}",
        )

    async def _schedule_task(self, task_id: str, schedule: Schedule) -> None:
        key = task_budget_key(task_id)

        async def fire() -> None:
            await self.execute_task(task_id, key)

        await self._engine.schedule_callback(key, schedule, fire)

    async def _emit(
        self,
        message_type: MessageType,
        task: StandaloneTask,
        payload: dict[str, Any] | None = None,
    ) -> None:
        await self._bus.emit(
            message_type,
            SERVICE_TYPE_TO_ID[task.service_type],
            {"task_id": task.task_id, "status": task.status.value, **(payload or {})},
        )
