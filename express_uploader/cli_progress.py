"""Console rendering and progress helpers for the express uploader CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn
from rich.table import Table

from .models import BatchSummary, Severity
from .orchestrator.models import BatchResult, SingleOrderResult, UploadItem

console = Console()

SEVERITY_STYLES = {
    Severity.INFO: "white",
    Severity.GOOD: "green",
    Severity.WARNING: "dark_orange",
    Severity.ERROR: "red",
}


def _echo(message: str) -> None:
    console.print(message, highlight=False)


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]express-up[/bold green]",
        subtitle="[dim]order upload[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_message(message: str, severity: Severity = Severity.INFO) -> None:
    style = SEVERITY_STYLES[severity]
    _echo(f"[{style}]{message}[/{style}]")


def render_single_result(result: SingleOrderResult) -> None:
    """Render the outcome of single-order mode."""
    if result.order_id:
        _echo(f"[bold]Order[/bold] {result.order_id}")
    render_message(result.message, result.severity)
    if result.inspect_url:
        _echo(f"[dim]Inspect:[/dim] {result.inspect_url}")


def render_summary(summary: BatchSummary) -> None:
    _echo(f"[bold]{summary.describe()}[/bold]")


class BatchProgressDisplay:
    """Event-based console display for a batch pass."""

    def __init__(self):
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            TextColumn("[dim]{task.fields[detail]}", justify="left"),
            TimeElapsedColumn(),
            expand=False,
            console=console,
        )
        self._live: Optional[Live] = None
        self._task_id: Optional[TaskID] = None

    def _start_live(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            self._progress,
            console=console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        self._task_id = self._progress.add_task("batch", label="Batch", detail="starting...", total=None)

    def _stop_live(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def _set_status(self, label: str, detail: str) -> None:
        self._start_live()
        if self._task_id is not None:
            self._progress.update(self._task_id, label=label, detail=detail[:120])

    def _emit_timeline(self, status: str, item: UploadItem) -> None:
        stamp = time.strftime("%H:%M:%S")
        style = SEVERITY_STYLES[item.severity]
        _echo(
            f"[dim]{stamp}[/dim] [{style}]{status:<5}[/{style}] "
            f"{item.order_id}: [{style}]{item.message}[/{style}]"
        )

    def on_order_examined(self, order_id: str) -> None:
        self._set_status("Examining", order_id)

    def on_order_skipped(self, item: UploadItem) -> None:
        self._emit_timeline("SKIP", item)

    def on_order_selected(self, item: UploadItem) -> None:
        self._emit_timeline("OK", item)

    def on_order_failed(self, item: UploadItem) -> None:
        self._emit_timeline("FAIL", item)

    def on_upload_start(self, item: UploadItem) -> None:
        self._set_status("Uploading", item.order_id)

    def on_upload_complete(self, item: UploadItem) -> None:
        self._emit_timeline("DONE", item)

    def on_upload_cancelled(self, item: UploadItem) -> None:
        self._emit_timeline("STOP", item)

    def on_summary(self, summary: BatchSummary) -> None:
        self._set_status("Summary", summary.describe())

    def on_error(self, error: Exception) -> None:
        self._stop_live()
        _echo(f"[red]Error:[/red] {error}")

    def on_finish(self, result: BatchResult) -> None:
        self._stop_live()

        if result.items:
            table = Table(title="Orders", show_lines=False)
            table.add_column("Order", style="bold")
            table.add_column("State")
            table.add_column("Message")
            for item in result.items:
                style = SEVERITY_STYLES[item.severity]
                table.add_row(item.order_id, item.state.value, f"[{style}]{item.message}[/{style}]")
            console.print(table)

        render_summary(result.summary)
        if result.cancelled:
            render_message("Uploads cancelled.", Severity.WARNING)
