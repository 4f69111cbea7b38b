"""Schedule variants.

A schedule describes *when* a service or task fires. Exactly one variant is
attached to a timer; persisted documents carry a ``type`` tag:

    {"type": "once", "at": "2026-01-12T09:00:00+00:00"}
    {"type": "interval", "period_ms": 3600000, "max_cycles": 3}
    {"type": "daily", "time_of_day": "09:00"}
    {"type": "weekly", "time_of_day": "09:00", "days_of_week": [1, 3, 5]}
    {"type": "cron", "expression": "*/15 * * * *"}
    {"type": "scheduled", "slots": [{"time_of_day": "08:00", "days_of_week": [1]}]}

Days of week are 0=Sunday .. 6=Saturday, matching cron.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, ClassVar, assert_never

from croniter import croniter

_TIME_OF_DAY = re.compile(r"^(\d{1,2}):(\d{2})$")
_MS_PER_HOUR = 3_600_000


class ScheduleError(ValueError):
    """Malformed schedule definition."""


class ScheduleKind(StrEnum):
    ONCE = "once"
    INTERVAL = "interval"
    DAILY = "daily"
    WEEKLY = "weekly"
    CRON = "cron"
    SCHEDULED = "scheduled"


def parse_time_of_day(value: str) -> tuple[int, int]:
    """Parse ``HH:MM`` into ``(hour, minute)``."""
    match = _TIME_OF_DAY.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ScheduleError(f"Invalid time of day: {value!r} (expected HH:MM)")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ScheduleError(f"Invalid time of day: {value!r}")
    return hour, minute


def _normalize_days(days: Any, *, allow_empty: bool = False) -> tuple[int, ...]:
    if not isinstance(days, list | tuple | set | frozenset):
        raise ScheduleError("days_of_week must be a list of integers 0-6")
    normalized: set[int] = set()
    for day in days:
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise ScheduleError(f"Invalid day of week: {day!r} (expected 0-6)")
        normalized.add(day)
    if not normalized and not allow_empty:
        raise ScheduleError("days_of_week must not be empty")
    return tuple(sorted(normalized))


def _cron_for(time_of_day: str, days: tuple[int, ...]) -> str:
    hour, minute = parse_time_of_day(time_of_day)
    day_field = ",".join(str(d) for d in days) if days else "*"
    return f"{minute} {hour} * * {day_field}"


@dataclass(frozen=True)
class OnceSchedule:
    at: datetime
    kind: ClassVar[ScheduleKind] = ScheduleKind.ONCE

    def __post_init__(self) -> None:
        if not isinstance(self.at, datetime):
            raise ScheduleError("once schedule requires an 'at' timestamp")
        if self.at.tzinfo is None:
            object.__setattr__(self, "at", self.at.replace(tzinfo=UTC))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "at": self.at.isoformat()}


@dataclass(frozen=True)
class IntervalSchedule:
    period_ms: int
    max_cycles: int | None = None
    kind: ClassVar[ScheduleKind] = ScheduleKind.INTERVAL

    def __post_init__(self) -> None:
        if isinstance(self.period_ms, bool) or not isinstance(self.period_ms, int):
            raise ScheduleError("interval period_ms must be an integer")
        if self.period_ms <= 0:
            raise ScheduleError("interval period_ms must be positive")
        if self.max_cycles is not None and (
            isinstance(self.max_cycles, bool)
            or not isinstance(self.max_cycles, int)
            or self.max_cycles < 1
        ):
            raise ScheduleError("max_cycles must be a positive integer")

    @property
    def period_seconds(self) -> float:
        return self.period_ms / 1000

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.kind.value, "period_ms": self.period_ms}
        if self.max_cycles is not None:
            data["max_cycles"] = self.max_cycles
        return data


@dataclass(frozen=True)
class DailySchedule:
    time_of_day: str
    kind: ClassVar[ScheduleKind] = ScheduleKind.DAILY

    def __post_init__(self) -> None:
        parse_time_of_day(self.time_of_day)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "time_of_day": self.time_of_day}


@dataclass(frozen=True)
class WeeklySchedule:
    time_of_day: str
    days_of_week: tuple[int, ...]
    kind: ClassVar[ScheduleKind] = ScheduleKind.WEEKLY

    def __post_init__(self) -> None:
        parse_time_of_day(self.time_of_day)
        object.__setattr__(self, "days_of_week", _normalize_days(self.days_of_week))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "time_of_day": self.time_of_day,
            "days_of_week": list(self.days_of_week),
        }


@dataclass(frozen=True)
class CronSchedule:
    expression: str
    kind: ClassVar[ScheduleKind] = ScheduleKind.CRON

    def __post_init__(self) -> None:
        if not isinstance(self.expression, str) or not croniter.is_valid(
            self.expression
        ):
            raise ScheduleError(f"Invalid cron expression: {self.expression!r}")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "expression": self.expression}


@dataclass(frozen=True)
class ScheduleSlot:
    """One time-of-day on a set of days. No days means every day."""

    time_of_day: str
    days_of_week: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        parse_time_of_day(self.time_of_day)
        object.__setattr__(
            self,
            "days_of_week",
            _normalize_days(self.days_of_week, allow_empty=True),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"time_of_day": self.time_of_day, "days_of_week": list(self.days_of_week)}


@dataclass(frozen=True)
class SlotsSchedule:
    slots: tuple[ScheduleSlot, ...] = field(default_factory=tuple)
    kind: ClassVar[ScheduleKind] = ScheduleKind.SCHEDULED

    def __post_init__(self) -> None:
        if not self.slots:
            raise ScheduleError("scheduled form requires at least one slot")
        object.__setattr__(self, "slots", tuple(self.slots))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "slots": [s.to_dict() for s in self.slots]}


Schedule = (
    OnceSchedule
    | IntervalSchedule
    | DailySchedule
    | WeeklySchedule
    | CronSchedule
    | SlotsSchedule
)


def _parse_at(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        raise ScheduleError("once schedule requires an 'at' timestamp")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ScheduleError(f"Invalid 'at' timestamp: {value!r}") from e


def schedule_from_dict(data: Any) -> Schedule:
    """Build a schedule from its tagged dict form.

    ``interval`` also accepts ``interval_hours`` in place of ``period_ms``.

    Raises:
        ScheduleError: Unknown tag or missing/invalid variant fields.
    """
    if not isinstance(data, dict):
        raise ScheduleError("schedule must be an object with a 'type' field")

    tag = data.get("type")
    if tag == ScheduleKind.ONCE:
        return OnceSchedule(at=_parse_at(data.get("at")))
    if tag == ScheduleKind.INTERVAL:
        period_ms = data.get("period_ms")
        if period_ms is None and data.get("interval_hours") is not None:
            hours = data["interval_hours"]
            if isinstance(hours, bool) or not isinstance(hours, int | float):
                raise ScheduleError("interval_hours must be a number")
            period_ms = int(round(hours * _MS_PER_HOUR))
        if period_ms is None:
            raise ScheduleError("interval schedule requires period_ms")
        return IntervalSchedule(period_ms=period_ms, max_cycles=data.get("max_cycles"))
    if tag == ScheduleKind.DAILY:
        if "time_of_day" not in data:
            raise ScheduleError("daily schedule requires time_of_day")
        return DailySchedule(time_of_day=data["time_of_day"])
    if tag == ScheduleKind.WEEKLY:
        if "time_of_day" not in data or "days_of_week" not in data:
            raise ScheduleError("weekly schedule requires time_of_day and days_of_week")
        return WeeklySchedule(
            time_of_day=data["time_of_day"], days_of_week=data["days_of_week"]
        )
    if tag == ScheduleKind.CRON:
        if "expression" not in data:
            raise ScheduleError("cron schedule requires expression")
        return CronSchedule(expression=data["expression"])
    if tag == ScheduleKind.SCHEDULED:
        raw_slots = data.get("slots")
        if not isinstance(raw_slots, list):
            raise ScheduleError("scheduled form requires a list of slots")
        slots = []
        for raw in raw_slots:
            if not isinstance(raw, dict) or "time_of_day" not in raw:
                raise ScheduleError("each slot requires time_of_day")
            slots.append(
                ScheduleSlot(
                    time_of_day=raw["time_of_day"],
                    days_of_week=raw.get("days_of_week") or (),
                )
            )
        return SlotsSchedule(slots=tuple(slots))
    raise ScheduleError(f"Unknown schedule type: {tag!r}")


def cron_expressions(schedule: Schedule) -> list[str]:
    """Cron expressions equivalent to a time-of-day based schedule.

    Returns an empty list for ``once`` and ``interval``, which are not
    cron-driven.
    """
    match schedule:
        case OnceSchedule() | IntervalSchedule():
            return []
        case DailySchedule(time_of_day=time_of_day):
            return [_cron_for(time_of_day, ())]
        case WeeklySchedule(time_of_day=time_of_day, days_of_week=days):
            return [_cron_for(time_of_day, days)]
        case CronSchedule(expression=expression):
            return [expression]
        case SlotsSchedule(slots=slots):
            return [_cron_for(s.time_of_day, s.days_of_week) for s in slots]
        case _:
            assert_never(schedule)


def is_recurring(schedule: Schedule) -> bool:
    return not isinstance(schedule, OnceSchedule)


def cycle_cap(schedule: Schedule) -> int | None:
    """Cycle cap carried by the schedule itself (interval-with-cap)."""
    if isinstance(schedule, IntervalSchedule):
        return schedule.max_cycles
    return None
