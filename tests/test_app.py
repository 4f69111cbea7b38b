"""Tests for application wiring and budget-driven auto-pause."""

import asyncio

import pytest

from autobot.app import AppContext
from autobot.config.models import ServiceSettings
from autobot.scheduling.schedule import DailySchedule
from autobot.scheduling.types import ServiceStatus
from autobot.tasks.types import CreateTaskInput, TaskServiceType, TaskStatus


@pytest.fixture
async def context(config, fake_runner):
    context = AppContext.create(config, runner=fake_runner)
    await context.start()
    yield context
    await context.stop()


class TestCreate:
    def test_registers_enabled_builtins(self, config, fake_runner):
        config.services["self-improve"] = ServiceSettings(enabled=False)

        context = AppContext.create(config, runner=fake_runner)

        assert "research" in context.registry
        assert "self-improve" not in context.registry
        assert len(context.registry) == 4

    def test_model_override_applied(self, config, fake_runner):
        config.services["report"] = ServiceSettings(model="haiku")
        context = AppContext.create(config, runner=fake_runner)
        assert context.registry.require("report").model == "haiku"


class TestStart:
    @pytest.mark.asyncio
    async def test_allocates_service_budgets(self, context):
        budgets = {b.key: b.allocated for b in await context.budgets.get_all_budgets()}
        assert budgets == {
            "service:report": 10.0,
            "service:research": 10.0,
            "service:code-task": 10.0,
            "service:topic-tracker": 10.0,
            "service:self-improve": 10.0,
        }
        assert context.engine.get_state().is_running

    @pytest.mark.asyncio
    async def test_existing_allocation_kept(self, config, fake_runner):
        config.services["research"] = ServiceSettings(budget=3.0)
        first = AppContext.create(config, runner=fake_runner)
        await first.budgets.allocate("service:research", 50.0)

        await first.start()
        try:
            budget = await first.budgets.get_budget("service:research")
            assert budget.allocated == 50.0
        finally:
            await first.stop()

    @pytest.mark.asyncio
    async def test_restores_schedules_and_tasks(self, config, fake_runner):
        first = AppContext.create(config, runner=fake_runner)
        await first.start()
        await first.engine.schedule_service("research", DailySchedule("09:00"))
        task = await first.executor.create_and_schedule(
            CreateTaskInput(
                service_type=TaskServiceType.RESEARCH,
                params={"topic": "rust"},
                budget=1.0,
                run_now=False,
            ),
            DailySchedule("10:00"),
        )
        await first.stop()

        second = AppContext.create(config, runner=fake_runner)
        await second.start()
        try:
            assert second.engine.has_timer("research")
            assert second.engine.has_timer(f"task:{task.task_id}")
        finally:
            await second.stop()


class TestBudgetExhaustion:
    @pytest.mark.asyncio
    async def test_pauses_owning_task(self, context):
        task = await context.executor.create_and_schedule(
            CreateTaskInput(
                service_type=TaskServiceType.RESEARCH,
                params={"topic": "rust"},
                budget=1.0,
                run_now=False,
            ),
            DailySchedule("10:00"),
        )

        await context.budgets.deduct(task.budget_key, 1.5)

        paused = await context.executor.require_task(task.task_id)
        assert paused.status == TaskStatus.PAUSED
        assert not context.engine.has_timer(task.budget_key)

    @pytest.mark.asyncio
    async def test_pauses_owning_service(self, context):
        await context.engine.schedule_service("research", DailySchedule("09:00"))

        await context.budgets.deduct("service:research", 11.0)

        record = context.engine.get_scheduled_service("research")
        assert record.status == ServiceStatus.PAUSED
        assert record.enabled is False
        assert not context.engine.has_timer("research")

    @pytest.mark.asyncio
    async def test_unknown_owner_is_ignored(self, context):
        await context.budgets.allocate("task:ghost", 1.0)
        await context.budgets.deduct("task:ghost", 2.0)
        await context.budgets.allocate("service:ghost", 1.0)
        await context.budgets.deduct("service:ghost", 2.0)

    @pytest.mark.asyncio
    async def test_one_off_task_spending_its_budget_completes(self, context, fake_runner):
        fake_runner.cost = 1.0
        task = await context.executor.create_and_run(
            CreateTaskInput(
                service_type=TaskServiceType.RESEARCH,
                params={"topic": "rust"},
                budget=1.0,
            )
        )

        for _ in range(200):
            current = await context.executor.get_task(task.task_id)
            if current.cycles_completed >= 1:
                break
            await asyncio.sleep(0.01)
        assert current.status == TaskStatus.COMPLETED
        assert current.cost_spent == pytest.approx(1.0)
        assert current.output == "result"

    @pytest.mark.asyncio
    async def test_recurring_task_spending_its_budget_stays_paused(
        self, context, fake_runner
    ):
        fake_runner.cost = 1.0
        task = await context.executor.create_and_run(
            CreateTaskInput(
                service_type=TaskServiceType.RESEARCH,
                params={"topic": "rust"},
                budget=1.0,
                schedule=DailySchedule("10:00"),
            )
        )

        for _ in range(200):
            current = await context.executor.get_task(task.task_id)
            if current.cycles_completed >= 1:
                break
            await asyncio.sleep(0.01)
        assert current.status == TaskStatus.PAUSED
        assert not context.engine.has_timer(task.budget_key)

    @pytest.mark.asyncio
    async def test_task_denied_at_execution_is_paused(self, context, fake_runner):
        task = await context.executor.create_and_run(
            CreateTaskInput(
                service_type=TaskServiceType.RESEARCH,
                params={"topic": "rust"},
                budget=0.0,
            )
        )

        for _ in range(200):
            current = await context.executor.get_task(task.task_id)
            if current.status == TaskStatus.PAUSED:
                break
            await asyncio.sleep(0.01)
        assert current.status == TaskStatus.PAUSED
        assert fake_runner.calls == []
