"""
Rich Terminal Display Components.

Provides console UI for:
- Run progress bar with the current step message
- Per-table summary report
- Status lines
"""

from __future__ import annotations

from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from couch_sync.core.dispatcher import RunResult
from couch_sync.core.stats import RunStatus


console = Console()


class ProgressDisplay:
    """
    Rich terminal UI for run progress.

    Example:
        with ProgressDisplay() as display:
            display.start(source="app.db", destination="http://localhost:5984")
            result = await engine.run(pipe, on_progress=display.update)
    """

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
        )
        self._live: Live | None = None
        self._task_id: Any = None
        self._source = ""
        self._destination = ""
        self._message = ""

    def start(self, source: str, destination: str) -> None:
        """Start the progress display."""
        self._source = source
        self._destination = destination
        self._task_id = self.progress.add_task("[cyan]COPY", total=100)
        self._live = Live(
            self._build_display(),
            console=console,
            refresh_per_second=4,
        )
        self._live.start()

    def stop(self) -> None:
        """Stop the progress display."""
        if self._live:
            self._live.stop()
            self._live = None

    def update(self, percent: float, message: str) -> None:
        """Progress callback: percent complete and current step message."""
        self._message = message
        if self._task_id is not None:
            self.progress.update(self._task_id, completed=min(percent, 100.0))
        if self._live:
            self._live.update(self._build_display())

    def _build_display(self) -> Panel:
        info_table = Table.grid(padding=(0, 2))
        info_table.add_column(style="dim")
        info_table.add_column()
        info_table.add_row("Source:", self._source)
        info_table.add_row("Destination:", self._destination)

        display = Group(
            info_table,
            Text(),
            self.progress,
            Text(),
            Text(self._message, style="bold cyan"),
        )

        return Panel(
            display,
            title="[bold white]Couch Sync[/bold white]",
            border_style="blue",
            padding=(1, 2),
        )

    def __enter__(self) -> "ProgressDisplay":
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()


_STATUS_STYLE = {
    RunStatus.SUCCEEDED: "green",
    RunStatus.SUCCEEDED_WITH_ERRORS: "yellow",
    RunStatus.FAILED: "red",
}


def print_summary(result: RunResult, duration: float = 0.0) -> None:
    """Print a per-table summary after a run."""
    table = Table(title="Run Summary", border_style="green")

    table.add_column("Table", style="cyan")
    table.add_column("Database")
    table.add_column("Records", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Message")

    for stats in result.table_stats.values():
        table.add_row(
            stats.table_label,
            stats.db_name,
            f"{stats.num_records:,}",
            str(len(stats.errors)),
            stats.status_message or "",
        )

    console.print(table)
    style = _STATUS_STYLE.get(result.status, "white")
    console.print(f"[{style} bold]{result.status_text}[/{style} bold]")
    console.print(f"{result.message} in {duration:.1f}s")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red bold]Error:[/red bold] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green bold]✓[/green bold] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow bold]⚠[/yellow bold] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")
