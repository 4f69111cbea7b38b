"""Armed timers.

Every schedule kind maps onto one ``ArmedTimer`` implementation, so the
engine only ever holds timers and calls ``cancel()`` on them:

- ``once`` -> OneShotTimer
- ``interval`` -> IntervalTimer
- ``daily`` / ``weekly`` / ``cron`` / ``scheduled`` -> CronTimer

A timer is an asyncio task sleeping until its next fire time. On each fire
the handler is launched through ``DetachedTasks`` and the timer immediately
goes back to sleep, so a slow handler never delays the next tick.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import assert_never
from zoneinfo import ZoneInfo

from croniter import croniter

from autobot.scheduling.detached import DetachedTasks
from autobot.scheduling.schedule import (
    CronSchedule,
    DailySchedule,
    IntervalSchedule,
    OnceSchedule,
    Schedule,
    SlotsSchedule,
    WeeklySchedule,
    cron_expressions,
)

logger = logging.getLogger(__name__)

FireHandler = Callable[[], Awaitable[None]]
FinishedHandler = Callable[["ArmedTimer"], None]


class ArmedTimer:
    """Base timer: sleeps until ``_next_after()`` and fires, until exhausted."""

    def __init__(
        self,
        key: str,
        fire: FireHandler,
        detached: DetachedTasks,
        on_finished: FinishedHandler | None = None,
    ) -> None:
        self.key = key
        self._fire = fire
        self._detached = detached
        self._on_finished = on_finished
        self._cancelled = False
        self._fire_count = 0
        self._last_fire: datetime | None = None
        self._next_fire_at: datetime | None = None
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Compute the first fire time and begin sleeping toward it."""
        self._next_fire_at = self._next_after(datetime.now(UTC))
        self._task = asyncio.create_task(self._run(), name=f"timer:{self.key}")

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    @property
    def next_fire_at(self) -> datetime | None:
        return self._next_fire_at if self.active else None

    @property
    def fire_count(self) -> int:
        return self._fire_count

    def cancel(self) -> None:
        """Prevent future fires. Handlers already launched keep running."""
        self._cancelled = True
        self._next_fire_at = None
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _next_after(self, now: datetime) -> datetime | None:
        raise NotImplementedError

    async def _run(self) -> None:
        try:
            while self._next_fire_at is not None:
                fire_at = self._next_fire_at
                while (delay := (fire_at - datetime.now(UTC)).total_seconds()) > 0:
                    await asyncio.sleep(delay)
                if self._cancelled:
                    return
                self._fire_count += 1
                self._last_fire = fire_at
                logger.debug(
                    "timer_fired",
                    extra={"schedule.key": self.key, "timer.fire_count": self._fire_count},
                )
                self._detached.spawn(self._fire(), name=f"fire:{self.key}")
                self._next_fire_at = self._next_after(datetime.now(UTC))
        except asyncio.CancelledError:
            return
        if not self._cancelled and self._on_finished is not None:
            self._on_finished(self)


class OneShotTimer(ArmedTimer):
    def __init__(
        self,
        key: str,
        at: datetime,
        fire: FireHandler,
        detached: DetachedTasks,
        on_finished: FinishedHandler | None = None,
    ) -> None:
        super().__init__(key, fire, detached, on_finished=on_finished)
        self._at = at

    def _next_after(self, now: datetime) -> datetime | None:
        return self._at if self._fire_count == 0 else None


class IntervalTimer(ArmedTimer):
    """Fires every ``period`` counted from the moment it was armed."""

    def __init__(
        self,
        key: str,
        period: timedelta,
        fire: FireHandler,
        detached: DetachedTasks,
        on_finished: FinishedHandler | None = None,
    ) -> None:
        super().__init__(key, fire, detached, on_finished=on_finished)
        self._period = period
        self._anchor: datetime | None = None

    def _next_after(self, now: datetime) -> datetime | None:
        if self._anchor is None:
            self._anchor = now
        # Ticks missed while the loop was busy are skipped, not replayed
        elapsed = (now - self._anchor) / self._period
        return self._anchor + self._period * (int(elapsed) + 1)


class CronTimer(ArmedTimer):
    """Fires on the earliest upcoming match of any of its cron expressions.

    Expressions are evaluated in the configured local timezone so "09:00"
    stays 09:00 local across DST changes.
    """

    def __init__(
        self,
        key: str,
        expressions: list[str],
        fire: FireHandler,
        detached: DetachedTasks,
        timezone: str = "UTC",
        on_finished: FinishedHandler | None = None,
    ) -> None:
        super().__init__(key, fire, detached, on_finished=on_finished)
        self._expressions = expressions
        self._tz = ZoneInfo(timezone)

    def _next_after(self, now: datetime) -> datetime | None:
        # Never earlier than the tick that just fired
        base = max(now, self._last_fire) if self._last_fire else now
        local_base = base.astimezone(self._tz)
        candidates = [
            croniter(expr, local_base).get_next(datetime).astimezone(UTC)
            for expr in self._expressions
        ]
        return min(candidates) if candidates else None


def arm_timer(
    key: str,
    schedule: Schedule,
    fire: FireHandler,
    detached: DetachedTasks,
    timezone: str = "UTC",
    on_finished: FinishedHandler | None = None,
) -> ArmedTimer | None:
    """Create and start the timer for a schedule.

    Returns None when there is nothing to arm: a ``once`` schedule whose
    ``at`` is not in the future is never fired after the fact.
    """
    timer: ArmedTimer
    match schedule:
        case OnceSchedule(at=at):
            if at <= datetime.now(UTC):
                logger.info(
                    "once_schedule_past_due",
                    extra={"schedule.key": key, "schedule.at": at.isoformat()},
                )
                return None
            timer = OneShotTimer(key, at, fire, detached, on_finished=on_finished)
        case IntervalSchedule(period_ms=period_ms):
            timer = IntervalTimer(
                key,
                timedelta(milliseconds=period_ms),
                fire,
                detached,
                on_finished=on_finished,
            )
        case DailySchedule() | WeeklySchedule() | CronSchedule() | SlotsSchedule():
            timer = CronTimer(
                key,
                cron_expressions(schedule),
                fire,
                detached,
                timezone=timezone,
                on_finished=on_finished,
            )
        case _:
            assert_never(schedule)

    timer.start()
    logger.debug(
        "timer_armed",
        extra={
            "schedule.key": key,
            "schedule.type": schedule.kind.value,
            "timer.next_fire_at": timer.next_fire_at.isoformat()
            if timer.next_fire_at
            else None,
        },
    )
    return timer
