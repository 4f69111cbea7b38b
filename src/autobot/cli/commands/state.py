"""Scheduler state command."""

from pathlib import Path
from typing import Annotated

import typer

from autobot.cli.console import (
    console,
    create_table,
    dim,
    format_countdown,
    format_schedule,
    load_cli_config,
    warning,
)


def register(app: typer.Typer) -> None:
    """Register the state command."""

    @app.command()
    def state(
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Show persisted service schedules and task callbacks.

        Reads the state file directly, so it works whether or not the
        server is running.
        """
        from autobot.persistence import JsonStore
        from autobot.scheduling.engine import SCHEDULER_STATE_FILENAME
        from autobot.scheduling.types import SchedulerState

        autobot_config = load_cli_config(config)
        path = autobot_config.data_dir / SCHEDULER_STATE_FILENAME
        raw = JsonStore(path, dict).load_sync()
        scheduler_state = SchedulerState.from_dict(raw)

        if not scheduler_state.services and not scheduler_state.tasks:
            warning("No schedules found")
            return

        if scheduler_state.services:
            table = create_table(
                "Services",
                [
                    ("Service", "cyan"),
                    ("Schedule", ""),
                    ("Status", ""),
                    ("Enabled", ""),
                    ("Cycles", {"justify": "right"}),
                    ("Next Run", ""),
                ],
            )
            for record in scheduler_state.services:
                cycles = str(record.cycles_completed)
                if record.max_cycles is not None:
                    cycles += f"/{record.max_cycles}"
                table.add_row(
                    record.service_id,
                    format_schedule(record.schedule),
                    record.status.value,
                    "yes" if record.enabled else "[dim]no[/dim]",
                    cycles,
                    format_countdown(record.next_run),
                )
            console.print(table)

        if scheduler_state.tasks:
            table = create_table(
                "Callbacks",
                [("Key", "cyan"), ("Schedule", ""), ("Last Run", ""), ("Next Run", "")],
            )
            for callback in scheduler_state.tasks:
                table.add_row(
                    callback.key,
                    format_schedule(callback.schedule),
                    callback.last_run.strftime("%Y-%m-%d %H:%M")
                    if callback.last_run
                    else "[dim]-[/dim]",
                    format_countdown(callback.next_run),
                )
            console.print(table)

        running = "running" if scheduler_state.is_running else "stopped"
        dim(f"Scheduler was last {running}")
