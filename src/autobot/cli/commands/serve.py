"""Server command for running autobot."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    """Register the serve command."""

    @app.command()
    def serve(
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
        host: Annotated[
            str | None,
            typer.Option(
                "--host",
                "-h",
                help="Host to bind to (defaults to server.host)",
            ),
        ] = None,
        port: Annotated[
            int | None,
            typer.Option(
                "--port",
                "-p",
                help="Port to bind to (defaults to server.port)",
            ),
        ] = None,
    ) -> None:
        """Start the scheduler and the operator HTTP API."""
        try:
            asyncio.run(_run_server(config, host, port))
        except KeyboardInterrupt:
            # Use print here since logging may not be configured yet
            print("\nServer stopped")


async def _run_server(
    config_path: Path | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the server asynchronously."""
    from autobot.app import AppContext
    from autobot.cli.console import load_cli_config
    from autobot.logging import configure_logging
    from autobot.server.app import create_app
    from autobot.server.runner import ServerRunner

    config = load_cli_config(config_path)

    # Rich console output plus JSONL files for the server process
    configure_logging(
        level=config.log_level,
        use_rich=True,
        log_to_file=True,
        logs_dir=config.data_dir / "logs",
    )

    logger.info("config_loaded", extra={"data.dir": str(config.data_dir)})
    config.data_dir.mkdir(parents=True, exist_ok=True)

    context = AppContext.create(config)
    app = create_app(context)
    runner = ServerRunner(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        detached=context.detached,
    )
    await runner.run()
