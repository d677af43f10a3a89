"""Command-line entry point for the hex pipe."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from hexpipe import pipeline
from hexpipe.config_utils import CONFIG_PATH, load_config, load_settings
from hexpipe.errors import HexPipeError
from hexpipe.logging_utils import configure_logging, level_for_flags
from hexpipe.progress_store import ProgressStore
from hexpipe.schema import DEFAULT_PROGRESS_FILE, RunSummary

EXIT_INTERRUPTED = 130

app = typer.Typer()
console = Console()
logger = logging.getLogger(__name__)


def _render_summary(summary: RunSummary) -> Table:
    table = Table(title="Hex Pipe Run")
    table.add_column("Statistic", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Files queued", str(summary.queued))
    table.add_row("Skipped (already processed)", str(summary.skipped))
    table.add_row("Files processed", str(summary.processed))
    table.add_row("Open failures", str(summary.open_failures))
    table.add_row("Read failures", str(summary.read_failures))
    table.add_row("Bytes read", f"{summary.bytes_read:,}")
    table.add_row("Records written", f"{summary.records:,}")
    table.add_row("Elapsed", f"{summary.elapsed_seconds:.1f}s")
    if summary.elapsed_seconds > 0:
        rate = summary.records / summary.elapsed_seconds
        table.add_row("Records/second", f"{rate:,.0f}")
    if summary.unsaved:
        table.add_row("Unsaved progress", f"[red]{summary.unsaved}[/red]")
    if summary.interrupted:
        table.add_row("Status", "[yellow]interrupted[/yellow]")
    return table


@app.command()
def run(
    root: Path = typer.Argument(..., help="Root directory to stream."),
    config: Path = typer.Option(
        CONFIG_PATH, "--config", help="YAML configuration file (optional)."
    ),
    block_size: Optional[int] = typer.Option(
        None, help="Bytes per hex record.", rich_help_panel="Encoding"
    ),
    read_buffer_size: Optional[int] = typer.Option(
        None, help="Bytes read per batch write.", rich_help_panel="Encoding"
    ),
    workers: Optional[int] = typer.Option(
        None, help="Number of worker threads.", rich_help_panel="Processing"
    ),
    progress_file: Optional[Path] = typer.Option(
        None, help="Progress log used for resume.", rich_help_panel="Progress"
    ),
    save_interval: Optional[float] = typer.Option(
        None,
        help="Seconds between progress auto-saves.",
        rich_help_panel="Progress",
    ),
    pipe_name: Optional[str] = typer.Option(
        None,
        help="Named pipe name (Windows) or FIFO path (POSIX).",
        rich_help_panel="Output",
    ),
    no_progress: bool = typer.Option(
        False, "--no-progress", help="Hide the scan progress bar."
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        help="Also append log records to this file.",
        rich_help_panel="Logging",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Verbose logging.", rich_help_panel="Logging"
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Enable debug logging.", rich_help_panel="Logging"
    ),
) -> None:
    """Stream every file under ROOT to the named pipe as hex records."""
    configure_logging(
        level=level_for_flags(verbose=verbose, debug=debug), log_file=log_file
    )

    try:
        settings = load_settings(
            config,
            root=root,
            block_size=block_size,
            read_buffer_size=read_buffer_size,
            workers=workers,
            progress_file=progress_file,
            save_interval_seconds=save_interval,
            pipe_name=pipe_name,
        )
    except (ValidationError, TypeError, OSError) as exc:
        logger.error("Invalid configuration: %s", exc)
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(code=1)

    pipeline.shutdown_event.clear()
    pipeline.install_signal_handlers()

    try:
        summary = pipeline.run_pipeline(settings, show_progress=not no_progress)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted before a consumer connected.[/yellow]")
        raise typer.Exit(code=EXIT_INTERRUPTED)
    except HexPipeError as exc:
        logger.error("Pipeline failed: %s", exc)
        console.print(f"[red]Pipeline failed:[/red] {exc}")
        raise typer.Exit(code=1)

    console.print(_render_summary(summary))
    if summary.unsaved:
        console.print(
            f"[red]Progress save failed:[/red] {summary.unsaved} completed file(s) "
            "were not recorded and will be streamed again next run."
        )
        raise typer.Exit(code=1)
    if summary.interrupted:
        raise typer.Exit(code=EXIT_INTERRUPTED)


@app.command()
def status(
    progress_file: Optional[Path] = typer.Option(
        None, help="Progress log to inspect."
    ),
    config: Path = typer.Option(
        CONFIG_PATH, "--config", help="YAML configuration file (optional)."
    ),
) -> None:
    """Report how many files the progress log records as done."""
    configure_logging(level=logging.WARNING)
    if progress_file is None:
        progress_file = Path(
            load_config(config).get("progress_file", DEFAULT_PROGRESS_FILE)
        )

    store = ProgressStore(progress_file)
    count = store.count()
    print(f"{count} files recorded in {progress_file}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
