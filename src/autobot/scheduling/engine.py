"""Scheduling engine.

The engine is the single timer authority of the process. It keeps one armed
timer per key (a registry service id, or an opaque callback key such as
``task:<id>``) and persists the ``{services, tasks, is_running}`` document
after every mutation.

Invariant: a key has an armed timer if and only if an enabled
ScheduledService / ScheduledCallback exists for it. Every arm is preceded by
a disarm of the same key, so two timers never coexist for one key.
"""

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from autobot.budget.manager import BudgetManager
from autobot.budget.types import service_budget_key
from autobot.messaging import InProcessMessageBus, MessageType
from autobot.persistence import JsonStore, PersistenceError
from autobot.scheduling.detached import DetachedTasks
from autobot.scheduling.projection import next_run_times
from autobot.scheduling.registry import ServiceNotFoundError, ServiceRegistry
from autobot.scheduling.schedule import Schedule, cycle_cap
from autobot.scheduling.timers import ArmedTimer, arm_timer
from autobot.scheduling.types import (
    ScheduleCallback,
    ScheduledCallback,
    ScheduledService,
    SchedulerState,
    ServiceStatus,
)

logger = logging.getLogger(__name__)

SCHEDULER_STATE_FILENAME = "scheduler-state.json"


class SchedulingEngine:
    """Owns timers, schedule records and their persisted state.

    Example:
        engine = SchedulingEngine(registry, bus, budgets, data_dir)
        await engine.load_state()
        await engine.schedule_service("research", DailySchedule("09:00"))
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        bus: InProcessMessageBus,
        budgets: BudgetManager,
        data_dir: Path,
        timezone: str = "UTC",
        detached: DetachedTasks | None = None,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._budgets = budgets
        self._timezone = timezone
        self._detached = detached or DetachedTasks()
        self._store: JsonStore[dict[str, Any]] = JsonStore(
            data_dir / SCHEDULER_STATE_FILENAME, lambda: SchedulerState().to_dict()
        )
        self._schedules: dict[str, ScheduledService] = {}
        self._callbacks: dict[str, ScheduledCallback] = {}
        self._timers: dict[str, ArmedTimer] = {}
        self._in_flight: set[str] = set()
        # Callback records from disk, waiting for their owner to re-register
        self._restored_callbacks: dict[str, ScheduledCallback] = {}
        self._running = False

    @property
    def detached(self) -> DetachedTasks:
        return self._detached

    @property
    def timezone(self) -> str:
        return self._timezone

    @property
    def store(self) -> JsonStore[dict[str, Any]]:
        return self._store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load_state(self) -> None:
        """Reconcile the timer table with the persisted document.

        Enabled services known to the registry are re-armed. Callback records
        are held until their owner calls ``schedule_callback`` again, since
        their closures do not survive a restart.
        """
        state = SchedulerState.from_dict(await self._store.load())

        for record in state.services:
            self._disarm(record.service_id)
            self._schedules[record.service_id] = record
            if not record.enabled:
                record.next_run = None
                continue
            if not self._registry.has(record.service_id):
                logger.warning(
                    "scheduled_service_unregistered",
                    extra={"service.id": record.service_id},
                )
                record.next_run = None
                continue
            self._arm_service(record)

        self._restored_callbacks = {cb.key: cb for cb in state.tasks}
        self._running = True
        await self._persist()
        logger.info(
            "scheduler_state_loaded",
            extra={
                "scheduler.service_count": len(state.services),
                "scheduler.armed_count": len(self._timers),
                "scheduler.callback_count": len(state.tasks),
            },
        )

    async def shutdown(self, drain_timeout: float | None = 30.0) -> None:
        """Cancel every timer and wait for in-flight work."""
        for key in list(self._timers):
            self._disarm(key)
        self._running = False
        await self._persist_quietly()
        await self._detached.drain(timeout=drain_timeout)
        logger.info("scheduler_stopped")

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    async def schedule_service(
        self, service_id: str, schedule: Schedule, max_cycles: int | None = None
    ) -> ScheduledService:
        """Attach (or replace) the schedule for a registry service.

        Raises:
            ServiceNotFoundError: The service is not registered.
        """
        if not self._registry.has(service_id):
            raise ServiceNotFoundError(service_id)

        self._disarm(service_id)
        self._schedules.pop(service_id, None)

        record = ScheduledService(
            service_id=service_id,
            schedule=schedule,
            max_cycles=max_cycles if max_cycles is not None else cycle_cap(schedule),
        )
        self._schedules[service_id] = record
        self._arm_service(record)
        await self._persist()

        logger.info(
            "service_scheduled",
            extra={
                "service.id": service_id,
                "schedule.type": schedule.kind.value,
                "schedule.max_cycles": record.max_cycles,
            },
        )
        return record

    async def unschedule_service(self, service_id: str) -> None:
        """Disarm and forget a service schedule. Irreversible."""
        self._disarm(service_id)
        removed = self._schedules.pop(service_id, None)
        await self._persist()
        if removed:
            logger.info("service_unscheduled", extra={"service.id": service_id})

    async def execute_service(self, service_id: str) -> None:
        """Fire handler for a service.

        Each guard returns early without side effects beyond logging. A
        failure from the service body lands on the record's status and is
        never raised past this handler.
        """
        service = self._registry.get(service_id)
        if service is None:
            logger.error("service_fire_unregistered", extra={"service.id": service_id})
            return

        record = self._schedules.get(service_id)
        if record is not None and not record.enabled:
            logger.info("service_fire_disabled", extra={"service.id": service_id})
            return

        if record is not None and record.cycle_limit_reached:
            logger.info(
                "service_max_cycles_reached",
                extra={"service.id": service_id, "schedule.max_cycles": record.max_cycles},
            )
            await self._retire(service_id)
            return

        if service_id in self._in_flight:
            logger.warning("service_fire_overlap_skipped", extra={"service.id": service_id})
            return

        self._in_flight.add(service_id)
        try:
            budget_key = service_budget_key(service_id)
            check = await self._budgets.check(budget_key)
            if not check.allowed:
                logger.warning(
                    "service_budget_denied",
                    extra={"service.id": service_id, "budget.key": budget_key},
                )
                await self._bus.emit(
                    MessageType.BUDGET_EXHAUSTED,
                    service_id,
                    {"budget_key": budget_key, "budget": check.budget.to_dict()},
                )
                return

            if record is not None:
                record.status = ServiceStatus.RUNNING
                record.last_run = datetime.now(UTC)
            await self._bus.emit(MessageType.SERVICE_STARTED, service_id)
            logger.info("service_executing", extra={"service.id": service_id})

            try:
                await service.start()
            except Exception as e:
                logger.error(
                    "service_execution_failed",
                    extra={"service.id": service_id, "error.message": str(e)},
                )
                if record is not None:
                    record.status = ServiceStatus.ERRORED
                await self._bus.emit(
                    MessageType.SERVICE_ERRORED, service_id, {"error": str(e)}
                )
            else:
                if record is not None:
                    # A pause or stop issued mid-run wins over completion
                    if record.status == ServiceStatus.RUNNING:
                        record.status = ServiceStatus.IDLE
                    record.cycles_completed += 1
                await self._bus.emit(
                    MessageType.SERVICE_COMPLETED,
                    service_id,
                    {"cycles_completed": record.cycles_completed if record else None},
                )
                logger.info("service_completed", extra={"service.id": service_id})
                if record is not None and record.cycle_limit_reached:
                    logger.info(
                        "service_max_cycles_completed",
                        extra={
                            "service.id": service_id,
                            "schedule.max_cycles": record.max_cycles,
                        },
                    )
                    await self._retire(service_id)
                    return
        finally:
            self._in_flight.discard(service_id)

        if record is not None:
            record.next_run = self._timer_next_fire(service_id)
        await self._persist_quietly()

    def run_now(self, service_id: str) -> asyncio.Task[Any]:
        """Fire a service immediately without waiting for it.

        Raises:
            ServiceNotFoundError: The service is not registered.
        """
        if not self._registry.has(service_id):
            raise ServiceNotFoundError(service_id)
        logger.info("service_run_requested", extra={"service.id": service_id})
        return self._detached.spawn(
            self.execute_service(service_id), name=f"run:{service_id}"
        )

    async def pause_service(self, service_id: str) -> None:
        """Disable the schedule and disarm its timer. No-op when already paused.

        Raises:
            ServiceNotFoundError: The service is not registered.
        """
        service = self._registry.get(service_id)
        if service is None:
            raise ServiceNotFoundError(service_id)

        record = self._schedules.get(service_id)
        if record is not None:
            if record.status in (ServiceStatus.PAUSED, ServiceStatus.STOPPED):
                return
            record.enabled = False
            record.status = ServiceStatus.PAUSED
            record.next_run = None
        elif await service.status() == ServiceStatus.PAUSED:
            return

        self._disarm(service_id)
        await service.pause()
        await self._bus.emit(MessageType.SERVICE_PAUSED, service_id)
        await self._persist()
        logger.info("service_paused", extra={"service.id": service_id})

    async def resume_service(self, service_id: str) -> None:
        """Re-enable the schedule and arm a fresh timer from the stored schedule.

        Raises:
            ServiceNotFoundError: The service is not registered.
        """
        service = self._registry.get(service_id)
        if service is None:
            raise ServiceNotFoundError(service_id)

        record = self._schedules.get(service_id)
        if record is not None:
            if record.enabled and record.status != ServiceStatus.PAUSED:
                return
            record.enabled = True
            record.status = ServiceStatus.IDLE
            self._disarm(service_id)
            self._arm_service(record)

        await service.resume()
        await self._bus.emit(MessageType.SERVICE_RESUMED, service_id)
        await self._persist()
        logger.info("service_resumed", extra={"service.id": service_id})

    async def stop_service(self, service_id: str) -> None:
        """Stop the service, disarm its timer and disable the schedule.

        Raises:
            ServiceNotFoundError: Neither a registered service nor a schedule
                exists for the id.
        """
        if not self._registry.has(service_id) and service_id not in self._schedules:
            raise ServiceNotFoundError(service_id)
        await self._retire(service_id)

    async def _retire(self, service_id: str) -> None:
        self._disarm(service_id)
        record = self._schedules.get(service_id)
        if record is not None:
            record.status = ServiceStatus.STOPPED
            record.enabled = False
            record.next_run = None

        service = self._registry.get(service_id)
        if service is not None:
            try:
                await service.stop()
            except Exception as e:
                logger.error(
                    "service_stop_failed",
                    extra={"service.id": service_id, "error.message": str(e)},
                )

        await self._bus.emit(MessageType.SERVICE_STOPPED, service_id)
        await self._persist_quietly()
        logger.info("service_stopped", extra={"service.id": service_id})

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    async def schedule_callback(
        self, key: str, schedule: Schedule, callback: ScheduleCallback
    ) -> ScheduledCallback:
        """Arm ``callback`` under ``key``, replacing any prior timer for it."""
        self._disarm(key)
        previous = self._callbacks.pop(key, None) or self._restored_callbacks.pop(
            key, None
        )

        record = ScheduledCallback(
            key=key,
            schedule=schedule,
            last_run=previous.last_run if previous else None,
            callback=callback,
        )
        self._callbacks[key] = record
        timer = arm_timer(
            key,
            schedule,
            lambda: self._fire_callback(key),
            self._detached,
            timezone=self._timezone,
            on_finished=self._timer_finished,
        )
        if timer is not None:
            self._timers[key] = timer
            record.next_run = timer.next_fire_at
        await self._persist()

        logger.info(
            "callback_scheduled",
            extra={"schedule.key": key, "schedule.type": schedule.kind.value},
        )
        return record

    async def unschedule_callback(self, key: str) -> None:
        self._disarm(key)
        self._restored_callbacks.pop(key, None)
        removed = self._callbacks.pop(key, None)
        await self._persist()
        if removed:
            logger.info("callback_unscheduled", extra={"schedule.key": key})

    async def _fire_callback(self, key: str) -> None:
        record = self._callbacks.get(key)
        if record is None or not record.enabled or record.callback is None:
            return
        if key in self._in_flight:
            logger.warning("callback_fire_overlap_skipped", extra={"schedule.key": key})
            return

        self._in_flight.add(key)
        try:
            record.last_run = datetime.now(UTC)
            try:
                await record.callback()
            except Exception as e:
                logger.exception(
                    "scheduled_callback_failed",
                    extra={"schedule.key": key, "error.message": str(e)},
                )
            record.next_run = self._timer_next_fire(key)
            await self._persist_quietly()
        finally:
            self._in_flight.discard(key)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_next_execution_times(
        self, service_id: str, count: int, now: datetime | None = None
    ) -> list[datetime]:
        """Preview the next fires of a service. Pure: mutates nothing."""
        record = self._schedules.get(service_id)
        if record is None or not record.enabled:
            return []
        if record.max_cycles is not None:
            count = min(count, max(record.max_cycles - record.cycles_completed, 0))
        return next_run_times(record.schedule, count, now=now, timezone=self._timezone)

    def get_callback_next_times(
        self, key: str, count: int, now: datetime | None = None
    ) -> list[datetime]:
        record = self._callbacks.get(key)
        if record is None or not record.enabled:
            return []
        return next_run_times(record.schedule, count, now=now, timezone=self._timezone)

    def get_scheduled_service(self, service_id: str) -> ScheduledService | None:
        return self._schedules.get(service_id)

    def get_scheduled_callback(self, key: str) -> ScheduledCallback | None:
        return self._callbacks.get(key)

    def get_state(self) -> SchedulerState:
        return SchedulerState(
            services=list(self._schedules.values()),
            tasks=list(self._callbacks.values()),
            is_running=self._running,
        )

    def has_timer(self, key: str) -> bool:
        timer = self._timers.get(key)
        return timer is not None and timer.active

    def timer_keys(self) -> list[str]:
        return [key for key, timer in self._timers.items() if timer.active]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _arm_service(self, record: ScheduledService) -> None:
        service_id = record.service_id
        timer = arm_timer(
            service_id,
            record.schedule,
            lambda: self.execute_service(service_id),
            self._detached,
            timezone=self._timezone,
            on_finished=self._timer_finished,
        )
        if timer is not None:
            self._timers[service_id] = timer
        record.next_run = timer.next_fire_at if timer else None

    def _disarm(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
            logger.debug("timer_disarmed", extra={"schedule.key": key})

    def _timer_finished(self, timer: ArmedTimer) -> None:
        # One-shot timers leave the table once they have fired
        if self._timers.get(timer.key) is timer:
            del self._timers[timer.key]
        record = self._schedules.get(timer.key)
        if record is not None:
            record.next_run = None
        callback = self._callbacks.get(timer.key)
        if callback is not None:
            callback.next_run = None

    def _timer_next_fire(self, key: str) -> datetime | None:
        timer = self._timers.get(key)
        return timer.next_fire_at if timer else None

    async def _persist(self) -> None:
        await self._store.save(self.get_state().to_dict())

    async def _persist_quietly(self) -> None:
        try:
            await self._persist()
        except PersistenceError as e:
            logger.error(
                "scheduler_state_persist_failed",
                extra={"store.path": str(e.path), "error.message": str(e.cause)},
            )
