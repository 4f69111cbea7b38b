"""Main CLI application."""

import typer

from autobot.cli.commands import budgets, next_runs, serve, state, tasks

app = typer.Typer(
    name="autobot",
    help="autobot - scheduled agent services under a budget",
    no_args_is_help=True,
)

for command in (serve, state, tasks, budgets, next_runs):
    command.register(app)


if __name__ == "__main__":
    app()
