"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Command line interface for the reindex driver.
"""

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from pgreindex import __version__
from pgreindex.core.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from pgreindex.core.logging import close_run_log, configure_logging, open_run_log
from pgreindex.exceptions import ConfigError, ReindexError
from pgreindex.models import RunSummary
from pgreindex.orchestrator import ReindexRunner
from pgreindex.reporting import RunLogger

logger = logging.getLogger("pgreindex.cli")

# Initialize console for rich output
console = Console()

app = typer.Typer(help="Rebuild every index in every user database of a PostgreSQL server")


def version_callback(value: bool) -> None:
    """Print the version and exit before any work is done."""
    if value:
        console.print(f"Reindex Tool: {__version__}", highlight=False)
        raise typer.Exit()


def print_summary(summary: RunSummary) -> None:
    """Render the per-database results as a table."""
    if not summary.databases:
        return

    table = Table(title="Reindex Summary")
    table.add_column("Database")
    table.add_column("Status")
    table.add_column("Indexes", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Peak workers", justify="right")
    table.add_column("Duration", justify="right")

    for db in summary.databases:
        table.add_row(
            db.database,
            db.status.value,
            str(db.total),
            str(db.succeeded),
            str(db.failed),
            str(db.peak_workers),
            f"{db.duration:.1f}s",
        )

    console.print(table)


def configure_app(config: AppConfig) -> None:
    """Set up console logging from the loaded configuration."""
    configure_logging(
        level=config.logging.level,
        use_rich=config.logging.use_rich,
        debug=config.debug,
    )


@app.command()
def run(
    config_path: Path = typer.Option(
        Path(DEFAULT_CONFIG_PATH), "--config", "-c", help="Path to the database config file",
    ),
    workers: int | None = typer.Option(
        None, "--workers", "-w", min=1, help="Number of concurrent workers [default: 10]",
    ),
    concurrently: bool | None = typer.Option(
        None, "--concurrently/--no-concurrently", help="Rebuild with REINDEX ... CONCURRENTLY",
    ),
    log_dir: Path | None = typer.Option(
        None, "--log-dir", help="Directory for the run log (default ./logs)",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug mode with verbose logging"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Print program build version and exit",
    ),
):
    """
    Rebuild all indexes, one database at a time, with a pool of concurrent workers.

    Individual rebuild failures are recorded in the run log and do not change
    the exit code; connection, discovery and configuration failures abort the run.
    """
    try:
        config = load_config(
            config_path,
            workers=workers,
            concurrently=concurrently,
            log_dir=str(log_dir) if log_dir else None,
            debug=debug or None,
        )
    except ConfigError as e:
        console.print(f"Configuration error: {e}", style="red", markup=False)
        raise typer.Exit(code=1)

    configure_app(config)

    try:
        file_handler = open_run_log(
            config.log_file,
            json_format=config.logging.json_format,
            level=config.logging.level,
        )
    except OSError as e:
        console.print(f"Cannot open log file {config.log_file}: {e}", style="red", markup=False)
        raise typer.Exit(code=1)

    run_logger = RunLogger()
    try:
        runner = ReindexRunner(config, console=console, run_logger=run_logger)
        summary = runner.run()
    except ReindexError as e:
        run_logger.fatal(f"Fatal error: {e}")
        console.print(f"Fatal error: {e}", style="red", markup=False)
        raise typer.Exit(code=1)
    finally:
        close_run_log(file_handler)

    print_summary(summary)
    if summary.cancelled:
        raise typer.Exit(code=130)


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
