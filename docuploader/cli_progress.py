"""Console rendering and progress helpers for docuploader CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, FrozenSet, Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from .models import BatchUploadResult, TransferOutcome, UploadableItem
from .services.payload_mapper import UploadPayloadMapper
from .utils.events import ItemProgress

console = Console()


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


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
        title="[bold green]docup[/bold green]",
        subtitle="[dim]document uploader[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_queue(items: Iterable[UploadableItem]) -> None:
    """Queued files with their inferred date; weak guesses are flagged."""
    table = Table(title="Upload queue", show_lines=False)
    table.add_column("Name", style="white")
    table.add_column("Size", justify="right")
    table.add_column("Date taken")
    table.add_column("Source")

    for item in items:
        date = UploadPayloadMapper.format_date_taken(item.edited_date_taken) or "-"
        source = item.date_source.value if item.date_source else "-"
        if item.low_confidence_date:
            date = f"[yellow]{date}[/yellow]"
            source = f"[yellow]{source} (check)[/yellow]"
        table.add_row(item.edited_file_name, _human_size(item.file.size), date, source)

    console.print(table)


class BatchUploadProgressDisplay:
    """Event-based console display for a batch upload."""

    def __init__(self):
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold green]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            expand=False,
            console=console,
        )
        self._tasks: Dict[str, TaskID] = {}
        self._started = False

    def start(self) -> None:
        if not self._started:
            self._progress.start()
            self._started = True

    def stop(self) -> None:
        if self._started:
            self._progress.stop()
            self._started = False

    def on_item_start(self, item: UploadableItem) -> None:
        self.start()
        self._tasks[item.id] = self._progress.add_task(
            "upload",
            label=item.file.name[:50],
            total=item.file.size or None,
        )

    def on_item_progress(self, progress: ItemProgress) -> None:
        task_id = self._tasks.get(progress.item_id)
        if task_id is None:
            return
        self._progress.update(task_id, completed=progress.bytes_sent, total=progress.total_bytes)

    def on_item_complete(self, outcome: TransferOutcome) -> None:
        self._finish_task(outcome)
        stamp = time.strftime("%H:%M:%S")
        self._progress.console.print(
            f"[dim]{stamp}[/dim] [green]DONE[/green] {outcome.filename} -> #{outcome.docnumber}"
        )

    def on_item_fail(self, outcome: TransferOutcome) -> None:
        self._finish_task(outcome)
        stamp = time.strftime("%H:%M:%S")
        self._progress.console.print(
            f"[dim]{stamp}[/dim] [red]FAIL[/red] {outcome.filename} cause={outcome.error}"
        )

    def on_finish(self, result: BatchUploadResult) -> None:
        self.stop()
        color = "green" if result.all_success else "yellow"
        console.print(
            f"[{color}]Uploaded {result.uploaded}/{result.total}[/{color}]"
            + (f", [red]{result.failed} failed[/red]" if result.failed else "")
        )

    def _finish_task(self, outcome: TransferOutcome) -> None:
        task_id = self._tasks.pop(outcome.item_id, None)
        if task_id is not None:
            self._progress.remove_task(task_id)


class ProcessingStatusDisplay:
    """Prints processing set changes while waiting for analysis."""

    def __init__(self):
        self._last_count: Optional[int] = None

    def on_change(self, docnumbers: FrozenSet[int]) -> None:
        count = len(docnumbers)
        if count == self._last_count:
            return
        self._last_count = count
        if count:
            console.print(f"[cyan]Processing:[/cyan] {count} document(s) still being analysed")

    def on_batch_complete(self, context: Optional[str]) -> None:
        where = f" ({context})" if context else ""
        console.print(f"[green]Processing complete{where}[/green]")
