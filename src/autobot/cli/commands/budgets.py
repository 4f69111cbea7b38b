"""Budget ledger command."""

from pathlib import Path
from typing import Annotated

import typer

from autobot.cli.console import console, create_table, dim, load_cli_config, warning


def register(app: typer.Typer) -> None:
    """Register the budgets command."""

    @app.command()
    def budgets(
        prefix: Annotated[
            str | None,
            typer.Argument(help="Only show keys starting with this (e.g. 'task:')"),
        ] = None,
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Show budget envelopes and how much of each is spent."""
        from autobot.budget.manager import BUDGETS_FILENAME
        from autobot.budget.types import Budget
        from autobot.persistence import JsonStore

        autobot_config = load_cli_config(config)
        raw = JsonStore(autobot_config.data_dir / BUDGETS_FILENAME, dict).load_sync()
        envelopes = [Budget.from_dict(data) for data in raw.values()]
        if prefix:
            envelopes = [b for b in envelopes if b.key.startswith(prefix)]

        if not envelopes:
            warning("No budgets found")
            return

        table = create_table(
            "Budgets",
            [
                ("Key", "cyan"),
                ("Allocated", {"justify": "right"}),
                ("Spent", {"justify": "right"}),
                ("Remaining", {"justify": "right"}),
                ("State", ""),
            ],
        )
        for budget in sorted(envelopes, key=lambda b: b.key):
            if budget.is_exhausted:
                state = "[red]exhausted[/red]"
            elif budget.allocated and budget.spent / budget.allocated >= budget.alert_threshold:
                state = "[yellow]alert[/yellow]"
            else:
                state = "[green]ok[/green]"
            table.add_row(
                budget.key,
                f"${budget.allocated:.2f}",
                f"${budget.spent:.4f}",
                f"${budget.remaining:.4f}",
                state,
            )
        console.print(table)
        total_spent = sum(b.spent for b in envelopes)
        dim(f"Total spent: ${total_spent:.4f}")
