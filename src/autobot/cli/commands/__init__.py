"""CLI command modules."""

from autobot.cli.commands import budgets, next_runs, serve, state, tasks

__all__ = [
    "budgets",
    "next_runs",
    "serve",
    "state",
    "tasks",
]
