"""Standalone task commands."""

from pathlib import Path
from typing import Annotated

import click
import typer

from autobot.cli.console import (
    console,
    create_table,
    dim,
    error,
    format_schedule,
    load_cli_config,
    warning,
)

STATUS_STYLES = {
    "pending": "dim",
    "scheduled": "cyan",
    "running": "yellow",
    "completed": "green",
    "errored": "red",
    "paused": "magenta",
}


def register(app: typer.Typer) -> None:
    """Register the tasks command."""

    @app.command()
    def tasks(
        action: Annotated[
            str | None,
            typer.Argument(help="Action: list, show"),
        ] = None,
        task_id: Annotated[
            str | None,
            typer.Option("--id", "-i", help="Task ID for show"),
        ] = None,
        service_type: Annotated[
            str | None,
            typer.Option("--service-type", "-s", help="Only list this service type"),
        ] = None,
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Inspect standalone tasks.

        Examples:
            autobot tasks list                    # All tasks, newest first
            autobot tasks list -s research        # Research tasks only
            autobot tasks show --id <task-id>     # Full record and output
        """
        if action is None:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            raise typer.Exit(0)

        autobot_config = load_cli_config(config)
        all_tasks = _load_tasks(autobot_config.data_dir)

        if action == "list":
            if service_type:
                all_tasks = [t for t in all_tasks if t.service_type == service_type]
            _tasks_list(all_tasks)
        elif action == "show":
            if task_id is None:
                error("--id is required for show")
                raise typer.Exit(1)
            task = next((t for t in all_tasks if t.task_id == task_id), None)
            if task is None:
                error(f"No task found with ID {task_id}")
                raise typer.Exit(1)
            _task_show(task)
        else:
            error(f"Unknown action: {action}")
            console.print("Valid actions: list, show")
            raise typer.Exit(1)


def _load_tasks(data_dir: Path) -> list:
    from autobot.persistence import JsonStore
    from autobot.tasks.store import TASKS_FILENAME
    from autobot.tasks.types import StandaloneTask

    raw = JsonStore(data_dir / TASKS_FILENAME, dict).load_sync()
    tasks = []
    for record in raw.values():
        try:
            tasks.append(StandaloneTask.from_dict(record))
        except (KeyError, TypeError, ValueError):
            continue
    return sorted(tasks, key=lambda t: t.created_at, reverse=True)


def _tasks_list(tasks: list) -> None:
    if not tasks:
        warning("No tasks found")
        return

    table = create_table(
        "Tasks",
        [
            ("ID", "dim"),
            ("Service", "cyan"),
            ("Status", ""),
            ("Schedule", ""),
            ("Cycles", {"justify": "right"}),
            ("Spent", {"justify": "right"}),
        ],
    )
    for task in tasks:
        style = STATUS_STYLES.get(task.status.value, "")
        table.add_row(
            task.task_id[:8],
            task.service_type.value,
            f"[{style}]{task.status.value}[/{style}]" if style else task.status.value,
            format_schedule(task.schedule) if task.schedule else "[dim]-[/dim]",
            str(task.cycles_completed),
            f"${task.cost_spent:.2f} / ${task.budget:.2f}",
        )
    console.print(table)
    dim(f"Total: {len(tasks)} task(s)")


def _task_show(task) -> None:
    console.print(f"[bold]{task.task_id}[/bold] ({task.service_type.value})")
    console.print(f"Status:   {task.status.value}")
    console.print(f"Model:    {task.model}")
    console.print(f"Created:  {task.created_at.strftime('%Y-%m-%d %H:%M')}")
    console.print(f"Budget:   ${task.cost_spent:.4f} spent of ${task.budget:.2f}")
    if task.schedule:
        console.print(f"Schedule: {format_schedule(task.schedule)}")
    console.print(f"Cycles:   {task.cycles_completed}")
    for name, value in task.params.items():
        console.print(f"Param {name}: {value}")
    if task.error:
        error(f"Error: {task.error}")
    if task.output:
        console.print()
        console.print(task.output)
