"""Shared console utilities for CLI commands."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, assert_never

import typer
from rich.console import Console
from rich.table import Table

from autobot.scheduling.schedule import (
    CronSchedule,
    DailySchedule,
    IntervalSchedule,
    OnceSchedule,
    Schedule,
    SlotsSchedule,
    WeeklySchedule,
)

if TYPE_CHECKING:
    from autobot.config.models import AutobotConfig

DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

# Shared console instance for all CLI commands
console = Console()


def error(msg: str) -> None:
    """Print an error message in red."""
    console.print(f"[red]{msg}[/red]")


def warning(msg: str) -> None:
    """Print a warning message in yellow."""
    console.print(f"[yellow]{msg}[/yellow]")


def success(msg: str) -> None:
    """Print a success message in green."""
    console.print(f"[green]{msg}[/green]")


def info(msg: str) -> None:
    """Print an info message in cyan."""
    console.print(f"[cyan]{msg}[/cyan]")


def dim(msg: str) -> None:
    """Print a dimmed message."""
    console.print(f"[dim]{msg}[/dim]")


def create_table(
    title: str,
    columns: list[tuple[str, str | dict]],
) -> Table:
    """Create a styled table with consistent formatting.

    Args:
        title: Table title.
        columns: List of (name, style) or (name, kwargs_dict) tuples.

    Returns:
        Configured Rich Table.
    """
    table = Table(title=title)
    for name, style_or_kwargs in columns:
        if isinstance(style_or_kwargs, dict):
            table.add_column(name, **style_or_kwargs)
        else:
            table.add_column(name, style=style_or_kwargs)
    return table


def load_cli_config(config_path: Path | None) -> AutobotConfig:
    """Load configuration, exiting with a readable error on failure."""
    from autobot.config import ConfigError, load_config

    try:
        return load_config(config_path)
    except (FileNotFoundError, ConfigError) as e:
        error(str(e))
        raise typer.Exit(1) from e


def format_countdown(next_fire: datetime | None, now: datetime | None = None) -> str:
    """Format a countdown string for the next fire time."""
    if next_fire is None:
        return "[dim]-[/dim]"

    now = now or datetime.now(UTC)
    if next_fire <= now:
        return "[green]now[/green]"

    total_seconds = int((next_fire - now).total_seconds())
    if total_seconds < 60:
        return f"in {total_seconds}s"

    total_minutes = total_seconds // 60
    if total_minutes < 60:
        return f"in {total_minutes}m"

    hours = total_minutes // 60
    minutes = total_minutes % 60
    if hours < 24:
        if minutes:
            return f"in {hours}h {minutes}m"
        return f"in {hours}h"

    days = hours // 24
    hours = hours % 24
    if hours:
        return f"in {days}d {hours}h"
    return f"in {days}d"


def format_schedule(schedule: Schedule) -> str:
    """One-line description of a schedule."""
    match schedule:
        case OnceSchedule(at=at):
            return f"once at {at.strftime('%Y-%m-%d %H:%M')}"
        case IntervalSchedule(max_cycles=cap):
            hours = schedule.period_seconds / 3600
            return f"every {hours:g}h" + (f" x{cap}" if cap else "")
        case DailySchedule(time_of_day=time_of_day):
            return f"daily {time_of_day}"
        case WeeklySchedule(time_of_day=time_of_day, days_of_week=days):
            return f"weekly {time_of_day} on {','.join(DAY_NAMES[d] for d in days)}"
        case CronSchedule(expression=expression):
            return f"cron {expression}"
        case SlotsSchedule(slots=slots):
            return f"{len(slots)} slot(s)"
        case _:
            assert_never(schedule)
