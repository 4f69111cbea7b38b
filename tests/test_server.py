"""Tests for the operator HTTP API."""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from autobot.app import AppContext
from autobot.server.app import create_app
from autobot.server.runner import ServerRunner
from tests.conftest import wait_for

DAILY = {"type": "daily", "time_of_day": "09:00"}


@pytest.fixture
def context(config, fake_runner):
    return AppContext.create(config, runner=fake_runner)


@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as client:
        yield client


def _poll_task(client, task_id, status, timeout=2.0):
    deadline = time.monotonic() + timeout
    while True:
        task = client.get(f"/api/tasks/{task_id}").json()
        if task["status"] == status or time.monotonic() > deadline:
            return task
        time.sleep(0.02)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_ready_after_startup(self, client):
        assert client.get("/ready").json() == {"status": "ready"}

    def test_not_ready_without_lifespan(self, context):
        client = TestClient(create_app(context))
        assert client.get("/ready").json() == {"status": "starting"}


class TestServices:
    def test_list(self, client):
        services = client.get("/api/services").json()
        assert {s["id"] for s in services} == {
            "report",
            "research",
            "code-task",
            "topic-tracker",
            "self-improve",
        }
        assert all(s["schedule"] is None for s in services)

    def test_unknown_service(self, client):
        response = client.get("/api/services/nope")
        assert response.status_code == 404
        assert "nope" in response.json()["detail"]

    def test_schedule_and_preview(self, client):
        response = client.put("/api/services/research/schedule", json={"schedule": DAILY})
        assert response.status_code == 200
        record = response.json()
        assert record["schedule"] == DAILY
        assert record["enabled"] is True
        assert record["next_run"] is not None

        service = client.get("/api/services/research").json()
        assert service["schedule"]["schedule"] == DAILY

        preview = client.get("/api/services/research/next-runs", params={"count": 3}).json()
        assert preview["service_id"] == "research"
        assert len(preview["next_runs"]) == 3

        state = client.get("/api/state").json()
        assert state["armed_timers"] == ["research"]
        assert [s["service_id"] for s in state["services"]] == ["research"]

    def test_schedule_with_cycle_cap(self, client):
        record = client.put(
            "/api/services/research/schedule",
            json={"schedule": {"type": "interval", "interval_hours": 2}, "max_cycles": 4},
        ).json()
        assert record["max_cycles"] == 4
        assert record["schedule"]["period_ms"] == 7_200_000

        preview = client.get("/api/services/research/next-runs", params={"count": 10}).json()
        assert len(preview["next_runs"]) == 4

    def test_malformed_schedule(self, client):
        response = client.put(
            "/api/services/research/schedule", json={"schedule": {"type": "hourly"}}
        )
        assert response.status_code == 400
        assert "Unknown schedule type" in response.json()["detail"]

    def test_invalid_cycle_cap(self, client):
        response = client.put(
            "/api/services/research/schedule",
            json={"schedule": DAILY, "max_cycles": 0},
        )
        assert response.status_code == 422

    def test_preview_count_bounds(self, client):
        response = client.get("/api/services/research/next-runs", params={"count": 0})
        assert response.status_code == 422

    def test_unschedule(self, client):
        client.put("/api/services/research/schedule", json={"schedule": DAILY})

        response = client.delete("/api/services/research/schedule")
        assert response.json() == {"status": "unscheduled"}
        assert client.get("/api/state").json()["armed_timers"] == []

        assert client.delete("/api/services/research/schedule").status_code == 404

    def test_pause_resume_stop(self, client):
        client.put("/api/services/research/schedule", json={"schedule": DAILY})

        paused = client.post("/api/services/research/pause").json()
        assert paused["status"] == "paused"
        assert paused["schedule"]["enabled"] is False

        resumed = client.post("/api/services/research/resume").json()
        assert resumed["schedule"]["enabled"] is True
        assert resumed["schedule"]["status"] == "idle"

        stopped = client.post("/api/services/research/stop").json()
        assert stopped["status"] == "stopped"
        assert stopped["schedule"]["status"] == "stopped"

        events = client.get("/api/events", params={"type": "service.paused"}).json()
        assert [e["service_id"] for e in events] == ["research"]

    def test_start_runs_one_cycle(self, client, fake_runner):
        response = client.post("/api/services/report/start")
        assert response.status_code == 202

        deadline = time.monotonic() + 2.0
        while not client.get("/api/services/report/runs").json():
            assert time.monotonic() < deadline
            time.sleep(0.02)
        [run] = client.get("/api/services/report/runs").json()
        assert run["status"] == "completed"
        assert len(fake_runner.calls) == 1

    def test_start_unknown(self, client):
        assert client.post("/api/services/nope/start").status_code == 404


class TestTasks:
    def _create_scheduled(self, client, **overrides):
        body = {
            "service_type": "research",
            "params": {"topic": "rust"},
            "budget": 2.0,
            "run_now": False,
            "schedule": DAILY,
        }
        body.update(overrides)
        return client.post("/api/tasks", json=body)

    def test_create_scheduled(self, client):
        response = self._create_scheduled(client)
        assert response.status_code == 201
        task = response.json()
        assert task["status"] == "scheduled"
        assert task["schedule"] == DAILY

        assert client.get(f"/api/tasks/{task['task_id']}").json()["task_id"] == task["task_id"]
        assert [t["task_id"] for t in client.get("/api/tasks").json()] == [task["task_id"]]
        assert client.get("/api/tasks", params={"service_type": "report"}).json() == []

        preview = client.get(f"/api/tasks/{task['task_id']}/next-runs").json()
        assert len(preview["next_runs"]) == 5

        budget = client.get(f"/api/budgets/task:{task['task_id']}").json()
        assert budget["allocated"] == 2.0

    def test_create_requires_schedule_when_not_running(self, client):
        response = self._create_scheduled(client, schedule=None)
        assert response.status_code == 400

    def test_create_rejects_unknown_service_type(self, client):
        response = self._create_scheduled(client, service_type="poetry")
        assert response.status_code == 422

    def test_create_and_run(self, client, fake_runner):
        response = client.post(
            "/api/tasks",
            json={"service_type": "research", "params": {"topic": "rust"}, "budget": 1.0},
        )
        assert response.status_code == 201
        task = response.json()
        assert task["status"] == "running"

        done = _poll_task(client, task["task_id"], "completed")
        assert done["status"] == "completed"
        assert done["output"] == "result"
        assert done["cost_spent"] == pytest.approx(0.1)

        report = client.get(f"/api/tasks/{task['task_id']}/costs").json()
        assert report["total_spent"] == pytest.approx(0.1)
        assert len(report["entries"]) == 1

    def test_missing_param_errors_task(self, client):
        task = client.post(
            "/api/tasks", json={"service_type": "research", "params": {}, "budget": 1.0}
        ).json()

        errored = _poll_task(client, task["task_id"], "errored")
        assert errored["status"] == "errored"
        assert "topic" in errored["error"]

    def test_update(self, client):
        task = self._create_scheduled(client).json()

        updated = client.patch(
            f"/api/tasks/{task['task_id']}",
            json={"budget": 5.0, "schedule": {"type": "daily", "time_of_day": "18:00"}},
        ).json()
        assert updated["budget"] == 5.0
        assert updated["schedule"]["time_of_day"] == "18:00"
        assert updated["params"] == {"topic": "rust"}

        cleared = client.patch(f"/api/tasks/{task['task_id']}", json={"schedule": None}).json()
        assert cleared["schedule"] is None
        assert cleared["status"] == "completed"
        assert client.get("/api/state").json()["armed_timers"] == []

    def test_pause_resume_delete(self, client):
        task = self._create_scheduled(client).json()
        task_id = task["task_id"]

        assert client.post(f"/api/tasks/{task_id}/pause").json()["status"] == "paused"
        assert client.get("/api/state").json()["armed_timers"] == []
        assert client.post(f"/api/tasks/{task_id}/resume").json()["status"] == "scheduled"
        assert client.get("/api/state").json()["armed_timers"] == [f"task:{task_id}"]

        assert client.delete(f"/api/tasks/{task_id}").json() == {"status": "deleted"}
        assert client.get(f"/api/tasks/{task_id}").status_code == 404
        assert client.get("/api/state").json()["armed_timers"] == []

    def test_unknown_task(self, client):
        assert client.get("/api/tasks/missing").status_code == 404
        assert client.post("/api/tasks/missing/pause").status_code == 404
        assert client.get("/api/tasks/missing/costs").status_code == 404


class TestBudgets:
    def test_service_budgets_allocated_at_startup(self, client):
        keys = {b["key"] for b in client.get("/api/budgets").json()}
        assert "service:research" in keys

    def test_allocate_and_add(self, client):
        allocated = client.put("/api/budgets/task:manual", json={"amount": 2.0}).json()
        assert allocated["allocated"] == 2.0
        assert allocated["remaining"] == 2.0

        added = client.post("/api/budgets/task:manual/add", json={"amount": 1.5}).json()
        assert added["allocated"] == 3.5

        events = client.get("/api/events", params={"type": "budget.added"}).json()
        assert events[-1]["payload"]["amount"] == 1.5

    def test_add_requires_positive_amount(self, client):
        response = client.post("/api/budgets/task:manual/add", json={"amount": 0})
        assert response.status_code == 422

    def test_unknown_budget(self, client):
        assert client.get("/api/budgets/task:missing").status_code == 404

    def test_costs(self, client):
        report = client.get("/api/budgets/service:research/costs").json()
        assert report["budget_key"] == "service:research"
        assert report["total_spent"] == 0
        assert report["budget_allocated"] == 10.0


class TestServerRunner:
    @pytest.mark.asyncio
    async def test_second_stop_cancels_detached_runs(self, context, detached):
        runner = ServerRunner(
            create_app(context), host="127.0.0.1", port=0, detached=detached
        )
        run = detached.spawn(asyncio.sleep(30), name="task:slow")

        runner.request_stop()
        assert runner.server.should_exit
        assert not runner.server.force_exit
        assert not run.done()

        runner.request_stop()
        assert runner.server.force_exit
        await wait_for(run.done)
        assert run.cancelled()
