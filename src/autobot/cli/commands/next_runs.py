"""Next-run preview command."""

from pathlib import Path
from typing import Annotated

import typer

from autobot.cli.console import console, error, format_schedule, load_cli_config, warning


def register(app: typer.Typer) -> None:
    """Register the next-runs command."""

    @app.command("next-runs")
    def next_runs(
        key: Annotated[
            str,
            typer.Argument(help="Service id, task id, or 'task:<id>' callback key"),
        ],
        count: Annotated[
            int,
            typer.Option("--count", "-n", min=1, max=100, help="Number of times"),
        ] = 5,
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Preview the next fire times of a schedule without touching it."""
        from autobot.persistence import JsonStore
        from autobot.scheduling.engine import SCHEDULER_STATE_FILENAME
        from autobot.scheduling.projection import next_run_times
        from autobot.scheduling.types import SchedulerState

        autobot_config = load_cli_config(config)
        raw = JsonStore(
            autobot_config.data_dir / SCHEDULER_STATE_FILENAME, dict
        ).load_sync()
        scheduler_state = SchedulerState.from_dict(raw)

        service = next(
            (s for s in scheduler_state.services if s.service_id == key), None
        )
        callback_key = key if key.startswith("task:") else f"task:{key}"
        callback = next(
            (t for t in scheduler_state.tasks if t.key == callback_key), None
        )

        if service is not None:
            schedule, enabled = service.schedule, service.enabled
            if service.max_cycles is not None:
                count = min(count, max(service.max_cycles - service.cycles_completed, 0))
        elif callback is not None:
            schedule, enabled = callback.schedule, callback.enabled
        else:
            error(f"No schedule found for {key}")
            raise typer.Exit(1)

        console.print(f"[bold]{key}[/bold]: {format_schedule(schedule)}")
        if not enabled:
            warning("Schedule is disabled")
            return

        times = next_run_times(schedule, count, timezone=autobot_config.timezone)
        if not times:
            warning("No upcoming runs")
            return
        for when in times:
            console.print(f"  {when.isoformat()}")
