"""Base class for prompt-driven services.

A service cycle is a list of prompt steps. Each step runs through the task
runner and its cost is charged immediately to the run's budget key, so spend
accrued before a failure is already on the ledger when the failure surfaces.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, ClassVar

from autobot.budget.tracker import CostTracker
from autobot.budget.types import CostEntry, service_budget_key
from autobot.persistence import JsonStore
from autobot.scheduling.types import ServiceStatus
from autobot.services.runner import TaskRunner
from autobot.services.types import RunRecord, RunStatus, RunTaskResult, ServiceInfo

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sonnet"


@dataclass(frozen=True)
class PromptStep:
    label: str
    prompt: str
    max_turns: int = 5
    iteration: int = 1


def require_param(params: dict[str, Any], name: str) -> Any:
    value = params.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing required parameter: {name}")
    return value


class BaseService:
    """Service that executes prompt steps and keeps a run history.

    Subclasses set ``info`` and implement ``cycle_steps()`` (scheduled runs)
    and ``standalone_steps()`` (one-off tasks).
    """

    info: ClassVar[ServiceInfo]

    def __init__(
        self,
        runner: TaskRunner,
        cost_tracker: CostTracker,
        data_dir: Path,
        workspace: Path,
        model: str = DEFAULT_MODEL,
    ) -> None:
        self._runner = runner
        self._costs = cost_tracker
        self._data_dir = data_dir
        self._workspace = workspace
        self._model = model
        self._status = ServiceStatus.IDLE
        self._runs_store: JsonStore[list[dict[str, Any]]] = JsonStore(
            data_dir / "runs" / f"{self.id}.json", list
        )
        self._last_run: datetime | None = None

    @property
    def id(self) -> str:
        return self.info.id

    @property
    def model(self) -> str:
        return self._model

    @model.setter
    def model(self, value: str) -> None:
        self._model = value

    @property
    def last_run(self) -> datetime | None:
        return self._last_run

    # Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Run one scheduled cycle charged to ``service:<id>``."""
        self._status = ServiceStatus.RUNNING
        steps = await self.cycle_steps()
        if not steps:
            logger.info("service_cycle_empty", extra={"service.id": self.id})
            self._status = ServiceStatus.IDLE
            return

        runs = await self._runs_store.load()
        run = RunRecord(
            service_id=self.id,
            model=self._model,
            budget_key=service_budget_key(self.id),
            cycle_number=len(runs) + 1,
        )
        try:
            await self._execute(run, steps, interruptible=True)
        except Exception:
            self._status = ServiceStatus.ERRORED
            raise
        finally:
            await self._runs_store.mutate(lambda doc: doc.append(run.to_dict()))

        if self._status == ServiceStatus.RUNNING:
            self._status = ServiceStatus.IDLE

    async def pause(self) -> None:
        self._status = ServiceStatus.PAUSED

    async def resume(self) -> None:
        self._status = ServiceStatus.IDLE

    async def stop(self) -> None:
        self._status = ServiceStatus.STOPPED

    async def status(self) -> ServiceStatus:
        return self._status

    # Standalone ---------------------------------------------------------

    async def run_standalone(
        self, params: dict[str, Any], model: str, budget_key: str
    ) -> RunRecord:
        """Run one standalone task charged to ``budget_key``.

        Raises whatever the steps raise; the returned record is only produced
        on success.
        """
        steps = self.standalone_steps(params)
        run = RunRecord(service_id=self.id, model=model, budget_key=budget_key)
        await self._execute(run, steps, interruptible=False)
        return run

    # Extension points ---------------------------------------------------

    async def cycle_steps(self) -> list[PromptStep]:
        return []

    def standalone_steps(self, params: dict[str, Any]) -> list[PromptStep]:
        raise NotImplementedError(f"Standalone execution not supported by {self.id}")

    # Run history --------------------------------------------------------

    async def get_runs(self) -> list[RunRecord]:
        return [RunRecord.from_dict(r) for r in await self._runs_store.load()]

    async def get_run(self, run_id: str) -> RunRecord | None:
        for run in await self.get_runs():
            if run.run_id == run_id:
                return run
        return None

    # Internals ----------------------------------------------------------

    async def _execute(
        self, run: RunRecord, steps: list[PromptStep], *, interruptible: bool
    ) -> None:
        logger.info(
            "service_run_started",
            extra={
                "service.id": self.id,
                "run.id": run.run_id,
                "budget.key": run.budget_key,
                "run.steps": len(steps),
            },
        )
        try:
            for step in steps:
                # A pause or stop issued mid-cycle ends the cycle early
                if interruptible and self._status != ServiceStatus.RUNNING:
                    break
                await self._run_step(run, step)
            run.status = RunStatus.COMPLETED
        except Exception as e:
            run.status = RunStatus.ERRORED
            run.error = str(e)
            logger.error(
                "service_run_failed",
                extra={"service.id": self.id, "run.id": run.run_id, "error.message": str(e)},
            )
            raise
        finally:
            run.completed_at = datetime.now(UTC)
            self._last_run = run.completed_at

    async def _run_step(self, run: RunRecord, step: PromptStep) -> None:
        work_dir = self._workspace / self.id / run.run_id
        result = await self._runner.run(
            step.prompt, run.model, working_dir=work_dir, max_turns=step.max_turns
        )

        await self._costs.record_cost(
            CostEntry(
                budget_key=run.budget_key,
                task_id=run.run_id,
                label=f"{self.id}: {step.label}",
                cost=result.cost,
                iteration=step.iteration,
                session_id=result.session_id,
                tokens_input=result.tokens_input,
                tokens_output=result.tokens_output,
                cache_creation_tokens=result.cache_creation_tokens,
                cache_read_tokens=result.cache_read_tokens,
            )
        )
        run.tasks.append(
            RunTaskResult(
                label=step.label,
                output=result.output,
                tokens_used=result.total_tokens,
                cost=result.cost,
                iteration=step.iteration,
            )
        )
        if result.output:
            await asyncio.to_thread(_write_output, work_dir, result.output)
        logger.info(
            "service_step_completed",
            extra={
                "service.id": self.id,
                "run.id": run.run_id,
                "step.label": step.label,
                "cost.amount": result.cost,
            },
        )


def _write_output(work_dir: Path, output: str) -> None:
    work_dir.mkdir(parents=True, exist_ok=True)
    (work_dir / "output.md").write_text(output, encoding="utf-8")
