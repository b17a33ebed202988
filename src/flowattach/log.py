from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

console = Console()

# httpx logs every request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
    )
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)


def make_overall_progress() -> Progress:
    """Files finished out of the batch."""
    return Progress(
        SpinnerColumn(style="cyan"),
        TextColumn("[bold cyan]{task.description}"),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def make_file_progress() -> Progress:
    """Estimated per-file percentage; flows report no byte counts."""
    return Progress(
        TextColumn("  "),
        TextColumn("{task.description}", style="dim"),
        BarColumn(bar_width=30, complete_style="green", finished_style="bold green"),
        TaskProgressColumn(),
        console=console,
    )
