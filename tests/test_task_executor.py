"""Tests for standalone task execution."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from autobot.messaging import MessageType
from autobot.scheduling.schedule import (
    DailySchedule,
    IntervalSchedule,
    OnceSchedule,
)
from autobot.tasks.types import (
    CreateTaskInput,
    StandaloneTask,
    TaskNotFoundError,
    TaskServiceType,
    TaskStatus,
)
from tests.conftest import FakeService, wait_for


def _request(**overrides) -> CreateTaskInput:
    values = {
        "service_type": TaskServiceType.REPORT,
        "params": {"prompt": "weekly summary"},
        "budget": 2.0,
    }
    values.update(overrides)
    return CreateTaskInput(**values)


async def _settle(executor, task_id: str, *statuses: TaskStatus) -> StandaloneTask:
    """Wait until detached execution leaves the task in one of ``statuses``."""
    result: list[StandaloneTask] = []

    async def check() -> bool:
        task = await executor.get_task(task_id)
        result[:] = [task]
        return task is not None and task.status in statuses

    loop = asyncio.get_running_loop()
    deadline = loop.time() + 2.0
    while not await check():
        if loop.time() > deadline:
            pytest.fail(f"task stuck in {result[0].status if result else None}")
        await asyncio.sleep(0.01)
    return result[0]


class TestCreateAndRun:
    @pytest.mark.asyncio
    async def test_round_trip(self, executor, standalone_service, budgets):
        task = await executor.create_and_run(_request())

        # Optimistic status handed back before execution is confirmed
        assert task.status == TaskStatus.RUNNING
        done = await _settle(executor, task.task_id, TaskStatus.COMPLETED)

        budget = await budgets.get_budget(f"task:{task.task_id}")
        assert budget.allocated == 2.0
        assert done.cost_spent == budget.spent == pytest.approx(0.25)
        assert done.completed_at is not None
        assert done.started_at is not None
        assert done.cycles_completed == 1
        assert done.output == "done"
        assert standalone_service.standalone_calls == [
            {
                "params": {"prompt": "weekly summary"},
                "model": "sonnet",
                "budget_key": f"task:{task.task_id}",
            }
        ]

    @pytest.mark.asyncio
    async def test_failure_keeps_partial_spend(self, executor, standalone_service, events):
        standalone_service.fail_after_cost = True

        task = await executor.create_and_run(_request())
        done = await _settle(executor, task.task_id, TaskStatus.ERRORED)

        assert done.error == "runner exploded"
        assert done.cost_spent == pytest.approx(0.25)
        assert done.cost_spent != done.budget
        [errored] = events.of_type(MessageType.TASK_ERRORED)
        assert errored.payload["task_id"] == task.task_id

    @pytest.mark.asyncio
    async def test_unknown_service_errors_immediately(self, executor):
        task = await executor.create_and_run(_request())
        done = await _settle(executor, task.task_id, TaskStatus.ERRORED)
        assert done.error == "Service not found: report"

    @pytest.mark.asyncio
    async def test_service_without_standalone_support(self, executor, registry):
        registry.register(FakeService("report"))

        task = await executor.create_and_run(_request())
        done = await _settle(executor, task.task_id, TaskStatus.ERRORED)

        assert done.error == "Service does not support standalone tasks: report"

    @pytest.mark.asyncio
    async def test_with_schedule_also_arms_callback(
        self, executor, standalone_service, engine
    ):
        task = await executor.create_and_run(_request(schedule=DailySchedule("09:00")))

        done = await _settle(executor, task.task_id, TaskStatus.SCHEDULED)

        assert done.cycles_completed == 1
        assert engine.timer_keys() == [f"task:{task.task_id}"]

    @pytest.mark.asyncio
    async def test_future_once_schedule_still_fires(
        self, executor, standalone_service, engine
    ):
        at = datetime.now(UTC) + timedelta(hours=1)
        task = await executor.create_and_run(_request(schedule=OnceSchedule(at=at)))

        done = await _settle(executor, task.task_id, TaskStatus.SCHEDULED)

        assert done.cycles_completed == 1
        assert engine.has_timer(task.budget_key)
        assert executor.get_next_run_times(task.task_id, 3) == [at]

    @pytest.mark.asyncio
    async def test_once_schedule_completes_after_its_fire(
        self, executor, standalone_service, engine
    ):
        at = datetime.now(UTC) + timedelta(milliseconds=150)
        task = await executor.create_and_run(_request(schedule=OnceSchedule(at=at)))
        await _settle(executor, task.task_id, TaskStatus.SCHEDULED)

        await wait_for(lambda: len(standalone_service.standalone_calls) == 2)
        done = await _settle(executor, task.task_id, TaskStatus.COMPLETED)

        assert done.cycles_completed == 2
        assert engine.get_scheduled_callback(task.budget_key) is None

    @pytest.mark.asyncio
    async def test_negative_budget_is_rejected(self):
        with pytest.raises(ValueError):
            _request(budget=-1.0)


class TestCreateAndSchedule:
    @pytest.mark.asyncio
    async def test_starts_scheduled_without_running(
        self, executor, standalone_service, engine
    ):
        task = await executor.create_and_schedule(_request(), DailySchedule("09:00"))

        assert task.status == TaskStatus.SCHEDULED
        assert engine.timer_keys() == [f"task:{task.task_id}"]
        await asyncio.sleep(0.05)
        assert standalone_service.standalone_calls == []

    @pytest.mark.asyncio
    async def test_runs_when_callback_fires(self, executor, standalone_service):
        at = datetime.now(UTC) + timedelta(milliseconds=30)
        task = await executor.create_and_schedule(_request(), OnceSchedule(at=at))

        done = await _settle(executor, task.task_id, TaskStatus.COMPLETED)

        assert done.cycles_completed == 1
        assert len(standalone_service.standalone_calls) == 1

    @pytest.mark.asyncio
    async def test_recurring_task_completes_at_cycle_cap(
        self, executor, standalone_service, engine
    ):
        schedule = IntervalSchedule(period_ms=20, max_cycles=2)
        task = await executor.create_and_schedule(_request(), schedule)

        done = await _settle(executor, task.task_id, TaskStatus.COMPLETED)

        assert done.cycles_completed == 2
        assert engine.timer_keys() == []
        assert engine.get_scheduled_callback(f"task:{task.task_id}") is None


class TestExecuteTask:
    @pytest.mark.asyncio
    async def test_budget_denial_does_not_start(
        self, executor, standalone_service, budgets, events
    ):
        task = await executor.create_and_schedule(
            _request(budget=0.0), DailySchedule("09:00")
        )

        await executor.execute_task(task.task_id, task.budget_key)

        assert standalone_service.standalone_calls == []
        stored = await executor.get_task(task.task_id)
        assert stored.status == TaskStatus.SCHEDULED
        [exhausted] = events.of_type(MessageType.BUDGET_EXHAUSTED)
        assert exhausted.payload["task_id"] == task.task_id
        assert exhausted.payload["budget_key"] == task.budget_key

    @pytest.mark.asyncio
    async def test_paused_task_is_skipped(self, executor, standalone_service):
        task = await executor.create_and_schedule(_request(), DailySchedule("09:00"))
        await executor.pause_task(task.task_id)

        await executor.execute_task(task.task_id, task.budget_key)

        assert standalone_service.standalone_calls == []

    @pytest.mark.asyncio
    async def test_reads_fresh_record(self, executor, standalone_service):
        task = await executor.create_and_schedule(_request(), DailySchedule("09:00"))
        await executor.update_task(task.task_id, params={"prompt": "edited"}, model="opus")

        await executor.execute_task(task.task_id, task.budget_key)

        [call] = standalone_service.standalone_calls
        assert call["params"] == {"prompt": "edited"}
        assert call["model"] == "opus"

    @pytest.mark.asyncio
    async def test_missing_task_is_ignored(self, executor):
        await executor.execute_task("nope", "task:nope")


class TestMutations:
    @pytest.mark.asyncio
    async def test_delete_disarms_before_removing(
        self, executor, standalone_service, engine, task_store
    ):
        task = await executor.create_and_schedule(_request(), DailySchedule("09:00"))

        await executor.delete_task(task.task_id)

        assert engine.timer_keys() == []
        assert engine.get_scheduled_callback(task.budget_key) is None
        assert await task_store.get_by_id(task.task_id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown_task(self, executor):
        with pytest.raises(TaskNotFoundError):
            await executor.delete_task("nope")

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, executor, standalone_service, engine, events):
        task = await executor.create_and_schedule(_request(), DailySchedule("09:00"))

        paused = await executor.pause_task(task.task_id)
        await executor.pause_task(task.task_id)

        assert paused.status == TaskStatus.PAUSED
        assert engine.timer_keys() == []
        assert len(events.of_type(MessageType.TASK_PAUSED)) == 1

        resumed = await executor.resume_task(task.task_id)

        assert resumed.status == TaskStatus.SCHEDULED
        assert engine.timer_keys() == [task.budget_key]

    @pytest.mark.asyncio
    async def test_resume_unscheduled_task_relaunches(self, executor, standalone_service):
        task = await executor.create_and_schedule(_request(), DailySchedule("09:00"))
        await executor.update_task(task.task_id, schedule=None)
        await executor.pause_task(task.task_id)

        await executor.resume_task(task.task_id)

        done = await _settle(executor, task.task_id, TaskStatus.COMPLETED)
        assert done.cycles_completed == 1

    @pytest.mark.asyncio
    async def test_update_reschedules(self, executor, standalone_service, engine):
        task = await executor.create_and_schedule(_request(), DailySchedule("09:00"))

        updated = await executor.update_task(
            task.task_id, schedule=DailySchedule("18:00"), budget=5.0
        )

        assert updated.schedule == DailySchedule("18:00")
        assert updated.budget == 5.0
        callback = engine.get_scheduled_callback(task.budget_key)
        assert callback.schedule == DailySchedule("18:00")
        assert engine.timer_keys() == [task.budget_key]

    @pytest.mark.asyncio
    async def test_next_run_times(self, executor, standalone_service):
        task = await executor.create_and_schedule(_request(), DailySchedule("09:00"))
        now = datetime(2026, 1, 13, 10, 0, tzinfo=UTC)

        times = executor.get_next_run_times(task.task_id, 2, now=now)

        assert times == [
            datetime(2026, 1, 14, 9, 0, tzinfo=UTC),
            datetime(2026, 1, 15, 9, 0, tzinfo=UTC),
        ]

    @pytest.mark.asyncio
    async def test_task_costs(self, executor, standalone_service):
        task = await executor.create_and_run(_request())
        await _settle(executor, task.task_id, TaskStatus.COMPLETED)

        report = await executor.get_task_costs(task.task_id)

        assert report.budget_key == task.budget_key
        assert report.total_spent == pytest.approx(0.25)
        assert len(report.entries) == 1

    @pytest.mark.asyncio
    async def test_list_tasks_filters_by_service_type(self, executor, standalone_service):
        report = await executor.create_and_schedule(_request(), DailySchedule("09:00"))
        research = await executor.create_and_schedule(
            _request(service_type=TaskServiceType.RESEARCH, params={"topic": "x"}),
            DailySchedule("09:00"),
        )

        assert {t.task_id for t in await executor.list_tasks()} == {
            report.task_id,
            research.task_id,
        }
        only_research = await executor.list_tasks(TaskServiceType.RESEARCH)
        assert [t.task_id for t in only_research] == [research.task_id]


class TestReload:
    @pytest.mark.asyncio
    async def test_reload_arms_exactly_one_callback(
        self, executor, task_store, engine
    ):
        scheduled = StandaloneTask(
            task_id="t-scheduled",
            service_type=TaskServiceType.REPORT,
            params={"prompt": "p"},
            model="sonnet",
            budget=1.0,
            schedule=DailySchedule("09:00"),
            status=TaskStatus.SCHEDULED,
        )
        completed = StandaloneTask(
            task_id="t-done",
            service_type=TaskServiceType.REPORT,
            params={"prompt": "p"},
            model="sonnet",
            budget=1.0,
            schedule=DailySchedule("09:00"),
            status=TaskStatus.COMPLETED,
        )
        unscheduled = StandaloneTask(
            task_id="t-plain",
            service_type=TaskServiceType.REPORT,
            params={"prompt": "p"},
            model="sonnet",
            budget=1.0,
            status=TaskStatus.SCHEDULED,
        )
        for task in (scheduled, completed, unscheduled):
            await task_store.create(task)

        count = await executor.reload_scheduled_tasks()

        assert count == 1
        assert engine.timer_keys() == ["task:t-scheduled"]


class TestBudgetExhaustionMidRun:
    @pytest.mark.asyncio
    async def test_task_paused_during_run_stays_paused(
        self, executor, standalone_service
    ):
        standalone_service.delay = 0.05
        task = await executor.create_and_schedule(
            _request(), IntervalSchedule(period_ms=60_000)
        )
        run = asyncio.create_task(executor.execute_task(task.task_id, task.budget_key))
        await wait_for(lambda: bool(standalone_service.standalone_calls))

        await executor.pause_task(task.task_id)
        await run

        stored = await executor.get_task(task.task_id)
        assert stored.status == TaskStatus.PAUSED
        assert stored.cycles_completed == 1
