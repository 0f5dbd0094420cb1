"""
A Rich Progress display driven by engine events.
"""

import logging

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from fetchq.core.events import Event
from fetchq.models.events import CompletionEvent, MetricsEvent, ProgressEvent
from fetchq.models.history import HistoryStatus

log = logging.getLogger(__name__)

DESCRIPTION_MAX_CHARS = 48


def _shorten(text: str) -> str:
    if len(text) <= DESCRIPTION_MAX_CHARS:
        return text
    return "…" + text[-(DESCRIPTION_MAX_CHARS - 1) :]


class JobProgressDisplay:
    """One progress bar per running job plus an overall summary line."""

    def __init__(self, console: Console, labels: dict[str, str] | None = None):
        self.console = console
        self.labels = dict(labels or {})
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=24),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )
        self._tasks: dict[str, TaskID] = {}
        self._overall: TaskID | None = None

    def _task_for(self, job_id: str) -> TaskID:
        if job_id not in self._tasks:
            label = escape(_shorten(self.labels.get(job_id, job_id)))
            self._tasks[job_id] = self.progress.add_task(label, total=None)
        return self._tasks[job_id]

    def handle(self, event: Event) -> None:
        if isinstance(event, ProgressEvent):
            self._on_progress(event)
        elif isinstance(event, CompletionEvent):
            self._on_completion(event)
        elif isinstance(event, MetricsEvent):
            self._on_metrics(event)

    def _on_progress(self, event: ProgressEvent) -> None:
        if event.progress is None:
            if event.stderr:
                log.debug(f"[{event.id}] {event.stderr}")
            return
        record = event.progress
        task_id = self._task_for(event.id)
        total = record.get("total_bytes") or record.get("total_bytes_estimate")
        downloaded = record.get("downloaded_bytes")
        if total:
            self.progress.update(task_id, total=float(total))
        if downloaded is not None:
            self.progress.update(task_id, completed=float(downloaded))

    def _on_completion(self, event: CompletionEvent) -> None:
        label = escape(self.labels.get(event.id, event.id))
        task_id = self._tasks.pop(event.id, None)
        if task_id is not None:
            self.progress.remove_task(task_id)
        if event.status is HistoryStatus.COMPLETED:
            target = f" → [dim]{escape(event.filepath)}[/dim]" if event.filepath else ""
            self.progress.console.print(f"[green]✓[/green] {label}{target}")
        elif event.status is HistoryStatus.CANCELED:
            self.progress.console.print(f"[yellow]○ Canceled:[/yellow] {label}")
        else:
            detail = (event.error or "").strip().splitlines()
            reason = f" [dim]({escape(detail[-1])})[/dim]" if detail else ""
            self.progress.console.print(f"[red]✗ Failed:[/red] {label}{reason}")

    def _on_metrics(self, event: MetricsEvent) -> None:
        description = f"[bold blue]{escape(event.summary)}[/bold blue]"
        if self._overall is None:
            self._overall = self.progress.add_task(description, total=None)
        self.progress.update(self._overall, description=description)
        if event.aggregate_progress is not None:
            self.progress.update(
                self._overall, total=100, completed=event.aggregate_progress * 100
            )

    def __enter__(self) -> "JobProgressDisplay":
        self.progress.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.progress.stop()
        return False
