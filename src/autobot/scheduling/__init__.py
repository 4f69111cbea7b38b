"""Scheduling subsystem.

Public API:
- SchedulingEngine: Timer authority for services and keyed callbacks
- ServiceRegistry: Lookup of executable services by id
- next_run_times: Pure next-fire projection for a schedule
- arm_timer: Build the ArmedTimer for a schedule

Types:
- Schedule variants: OnceSchedule, IntervalSchedule, DailySchedule,
  WeeklySchedule, CronSchedule, SlotsSchedule (+ ScheduleSlot)
- ScheduledService, ScheduledCallback, SchedulerState, ServiceStatus
"""

from autobot.scheduling.detached import DetachedTasks
from autobot.scheduling.engine import SchedulingEngine
from autobot.scheduling.projection import next_run_times
from autobot.scheduling.registry import ServiceNotFoundError, ServiceRegistry
from autobot.scheduling.schedule import (
    CronSchedule,
    DailySchedule,
    IntervalSchedule,
    OnceSchedule,
    Schedule,
    ScheduleError,
    ScheduleKind,
    ScheduleSlot,
    SlotsSchedule,
    WeeklySchedule,
    schedule_from_dict,
)
from autobot.scheduling.timers import ArmedTimer, arm_timer
from autobot.scheduling.types import (
    ScheduledCallback,
    ScheduledService,
    SchedulerState,
    ServiceStatus,
)

__all__ = [
    "ArmedTimer",
    "CronSchedule",
    "DailySchedule",
    "DetachedTasks",
    "IntervalSchedule",
    "OnceSchedule",
    "Schedule",
    "ScheduleError",
    "ScheduleKind",
    "ScheduleSlot",
    "ScheduledCallback",
    "ScheduledService",
    "SchedulerState",
    "SchedulingEngine",
    "ServiceNotFoundError",
    "ServiceRegistry",
    "ServiceStatus",
    "SlotsSchedule",
    "WeeklySchedule",
    "arm_timer",
    "next_run_times",
    "schedule_from_dict",
]
