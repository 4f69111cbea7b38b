"""Next-run projection.

Pure functions: given a schedule, a reference time and a timezone, list the
next N fire times. Nothing here touches engine state or arms timers.
"""

import logging
from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta
from typing import assert_never
from zoneinfo import ZoneInfo

from croniter import CroniterBadDateError, croniter

from autobot.scheduling.schedule import (
    CronSchedule,
    DailySchedule,
    IntervalSchedule,
    OnceSchedule,
    Schedule,
    SlotsSchedule,
    WeeklySchedule,
    parse_time_of_day,
)

logger = logging.getLogger(__name__)

# Upper bound on calendar days scanned for weekly/slot projections
_MAX_SCAN_DAYS = 366 * 5


def cron_day_of_week(day: date) -> int:
    """Day of week with 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def _at_local(day: date, time_of_day: str, tz: ZoneInfo) -> datetime:
    hour, minute = parse_time_of_day(time_of_day)
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def _days_from(start: date) -> Iterator[date]:
    for offset in range(_MAX_SCAN_DAYS):
        yield start + timedelta(days=offset)


def _slot_times(
    slots: list[tuple[str, tuple[int, ...]]],
    count: int,
    now: datetime,
    tz: ZoneInfo,
) -> list[datetime]:
    """Walk forward day by day collecting slot times strictly after ``now``."""
    times: list[datetime] = []
    for day in _days_from(now.astimezone(tz).date()):
        dow = cron_day_of_week(day)
        candidates = sorted(
            {
                _at_local(day, time_of_day, tz)
                for time_of_day, days in slots
                if not days or dow in days
            }
        )
        for candidate in candidates:
            if candidate > now:
                times.append(candidate.astimezone(UTC))
                if len(times) >= count:
                    return times
    return times


def _cron_times(expression: str, count: int, now: datetime, tz: ZoneInfo) -> list[datetime]:
    times: list[datetime] = []
    try:
        itr = croniter(expression, now.astimezone(tz))
        for _ in range(count):
            times.append(itr.get_next(datetime).astimezone(UTC))
    except (CroniterBadDateError, StopIteration):
        pass
    except ValueError as e:
        logger.warning(
            "cron_projection_failed",
            extra={"schedule.cron": expression, "error.message": str(e)},
        )
    return times


def next_run_times(
    schedule: Schedule,
    count: int,
    now: datetime | None = None,
    timezone: str = "UTC",
) -> list[datetime]:
    """Compute the next ``count`` fire times (UTC) strictly after ``now``.

    Args:
        schedule: Schedule to project.
        count: Maximum number of times to return.
        now: Reference time; defaults to the current time.
        timezone: IANA timezone for time-of-day and cron evaluation.
    """
    if count <= 0:
        return []
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    tz = ZoneInfo(timezone)

    match schedule:
        case OnceSchedule(at=at):
            return [at.astimezone(UTC)] if at > now else []
        case IntervalSchedule(period_ms=period_ms):
            period = timedelta(milliseconds=period_ms)
            return [(now + period * i).astimezone(UTC) for i in range(1, count + 1)]
        case DailySchedule(time_of_day=time_of_day):
            return _slot_times([(time_of_day, ())], count, now, tz)
        case WeeklySchedule(time_of_day=time_of_day, days_of_week=days):
            return _slot_times([(time_of_day, days)], count, now, tz)
        case SlotsSchedule(slots=slots):
            return _slot_times(
                [(s.time_of_day, s.days_of_week) for s in slots], count, now, tz
            )
        case CronSchedule(expression=expression):
            return _cron_times(expression, count, now, tz)
        case _:
            assert_never(schedule)
