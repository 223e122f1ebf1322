"""User-facing progress feedback for CLI operations.

Usage::

    from coderecall.core.progress import status, spinner, fraction_bar

    status("Index ready", style="success")  # ✓ Index ready

    with spinner("Loading model"):
        load()

    with fraction_bar("Indexing") as report:
        await indexer.index_workspace(path, on_progress=report)
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from coderecall.index.models import IndexProgressEvent

_console = Console(stderr=True)

_STYLES = {
    "success": "[green]✓[/green] ",
    "error": "[red]✗[/red] ",
    "warning": "[yellow]![/yellow] ",
    "info": "  ",
    "none": "",
}

_suppress_console_logs = threading.local()

# Bar resolution; fractions in [0, 1] are scaled onto this range
_BAR_TOTAL = 1000


def is_console_suppressed() -> bool:
    """Check if console logging is currently suppressed."""
    return getattr(_suppress_console_logs, "active", False)


@contextmanager
def suppress_console_logs() -> Iterator[None]:
    """Pause console log handlers for the duration of a live display.

    File handlers keep receiving records.
    """
    previous = is_console_suppressed()
    _suppress_console_logs.active = True
    try:
        yield
    finally:
        _suppress_console_logs.active = previous


def _get_logger() -> BoundLogger:
    from coderecall.core.logging import get_logger

    return get_logger("progress")


def _is_tty() -> bool:
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


def get_console() -> Console:
    """Get the shared Rich console instance."""
    return _console


def status(message: str, *, style: str = "info", indent: int = 0) -> None:
    """Print a styled status message to stderr."""
    prefix = _STYLES.get(style, "")
    padding = " " * indent
    _console.print(f"{padding}{prefix}{message}", highlight=False)
    _get_logger().debug("status", message=message, style=style)


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    """Return "1 file" / "3 files" style counts."""
    if plural is None:
        plural = singular + "s"
    word = singular if count == 1 else plural
    return f"{count} {word}"


@contextmanager
def spinner(message: str, *, indent: int = 0) -> Iterator[None]:
    """Spinner with console log suppression; plain line when not a TTY."""
    padding = " " * indent
    if _is_tty():
        with (
            suppress_console_logs(),
            _console.status(f"{padding}[cyan]{message}[/cyan]", spinner="dots"),
        ):
            yield
    else:
        _console.print(f"{padding}{message}...")
        yield


@contextmanager
def fraction_bar(desc: str) -> Iterator[Callable[[IndexProgressEvent], None]]:
    """Progress bar fed by indexing progress events.

    Yields a callback suitable for ``on_progress``. Outside a TTY the
    callback only logs description changes at DEBUG.
    """
    if not _is_tty():
        log = _get_logger()
        last: list[str] = []

        def _log_event(event: IndexProgressEvent) -> None:
            if not last or last[-1] != event.description:
                last.append(event.description)
                log.debug("progress", desc=desc, progress=event.progress, step=event.description)

        yield _log_event
        return

    with (
        suppress_console_logs(),
        Progress(
            TextColumn("    {task.description}"),
            BarColumn(bar_width=30, style="cyan", complete_style="cyan"),
            TaskProgressColumn(),
            TextColumn("{task.fields[counts]}"),
            console=_console,
            transient=True,
        ) as pbar,
    ):
        task_id = pbar.add_task(desc, total=_BAR_TOTAL, counts="")

        def _update(event: IndexProgressEvent) -> None:
            counts = ""
            if event.indexed_count is not None and event.total_count is not None:
                counts = f"{event.indexed_count}/{event.total_count}"
            pbar.update(
                task_id,
                completed=int(event.progress * _BAR_TOTAL),
                description=event.description or desc,
                counts=counts,
            )

        yield _update
