"""
Functions for formatting and displaying engine state in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from fetchq.models.events import CompletionEvent, MetricsEvent
from fetchq.models.history import HistoryRecord, HistoryStatus
from fetchq.models.job import JobHandle
from fetchq.models.request import QueueEntry
from fetchq.utils.formatting import format_duration, format_percent, format_size

STATUS_STYLES = {
    HistoryStatus.QUEUED: "cyan",
    HistoryStatus.IN_PROGRESS: "blue",
    HistoryStatus.COMPLETED: "green",
    HistoryStatus.FAILED: "red",
    HistoryStatus.CANCELED: "yellow",
}

_REASON_SUGGESTIONS = {
    "ytdlp_missing": [
        "• Place the yt-dlp executable in the binaries directory shown by `fetchq diagnose`.",
        "• Or enable PATH lookup: `fetchq settings set use_system_binaries true`.",
    ],
    "ffmpeg_missing": [
        "• Audio extraction and subtitle embedding need ffmpeg.",
        "• Place ffmpeg next to yt-dlp or install it on your PATH.",
    ],
    "invalid_url": ["• Only absolute http:// and https:// URLs are accepted."],
    "invalid_mode": ["• Supported modes are 'video' and 'audio'."],
    "duplicate_id": ["• A job with this id is already queued or running."],
    "already_finished": [
        "• This download already has a final status in history.",
        "• Run `fetchq retry <id>` to download it again under a new id.",
    ],
    "output_dir": [
        "• The output directory must stay inside the downloads root.",
        "• Check `downloads_root_dir` with `fetchq settings show`.",
    ],
    "queue_full": [
        "• Wait for queued downloads to finish, or raise `max_queue_size`.",
    ],
    "paused": ["• New jobs are paused. Run `fetchq settings set pause_new_jobs false`."],
    "process_failed": [
        "• The download tool reported an error; see the output above.",
        "• Run `fetchq history list` to review the captured error.",
    ],
    "canceled": [
        "• The download was canceled before it finished.",
        "• Run `fetchq retry <id>` to download it again.",
    ],
}

_TYPE_SUGGESTIONS = {
    "ConfigurationError": [
        "• Check the values in settings.json, or reset a key with `fetchq settings set`.",
    ],
    "StorageError": [
        "• Check that the data directory is writable and has free space.",
    ],
    "NotFoundError": ["• Use `fetchq queue list` or `fetchq history list` to find ids."],
}


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    reason = getattr(error, "reason", None)

    suggestions = _REASON_SUGGESTIONS.get(reason) or _TYPE_SUGGESTIONS.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(str(error))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def _status_text(status: HistoryStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def print_queue_table(
    console: Console, entries: list[QueueEntry], running: list[JobHandle] | None = None
):
    """Displays running jobs followed by the queue, front first."""
    table = Table(box=box.ROUNDED, title="[bold]Download Queue[/bold]")
    table.add_column("#", style="dim", justify="right")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("State")
    table.add_column("Type")
    table.add_column("Title / URL", overflow="fold")

    for handle in running or []:
        request = handle.request
        table.add_row(
            "",
            request.id,
            "[blue]running[/blue]" if handle.is_spawned else "[dim]starting[/dim]",
            request.display_format,
            request.title or request.url,
        )
    for position, entry in enumerate(entries):
        table.add_row(
            str(position),
            entry.id,
            "[cyan]queued[/cyan]",
            entry.display_format,
            entry.title or entry.url,
        )

    if not entries and not running:
        console.print("[dim]The queue is empty.[/dim]")
        return
    console.print(table)


def print_history_table(console: Console, records: list[HistoryRecord]):
    """Displays history records, newest first."""
    if not records:
        console.print("[dim]No downloads in history yet.[/dim]")
        return
    table = Table(box=box.ROUNDED, title="[bold]Download History[/bold]")
    table.add_column("Date", style="dim", no_wrap=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Format")
    table.add_column("Size", justify="right")
    table.add_column("Title / URL", overflow="fold")

    for record in records:
        label = record.title or record.url
        if record.status is HistoryStatus.FAILED and record.error:
            label += f"\n[dim red]{record.error.splitlines()[-1]}[/dim red]"
        table.add_row(
            record.download_date[:19].replace("T", " "),
            record.id,
            _status_text(record.status),
            record.format,
            format_size(record.total_bytes) if record.total_bytes else "",
            label,
        )
    console.print(table)


def print_settings(console: Console, settings_path: Path, settings: dict[str, Any]):
    """Displays the current settings."""
    content = ""
    for key, value in settings.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        content += f"{key} = {value}\n"
    console.print(
        Panel(
            content.strip(),
            title=f"Settings ([dim]{settings_path}[/dim])",
            border_style="cyan",
        )
    )


def print_metrics(console: Console, metrics: MetricsEvent):
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("Running:", f"{metrics.running}/{metrics.max_concurrent}")
    table.add_row("Queued:", str(metrics.queued))
    table.add_row("Progress:", format_percent(metrics.aggregate_progress))
    table.add_row("Paused:", "[yellow]yes[/yellow]" if metrics.paused else "no")
    console.print(Panel(table, title=f"[bold]{metrics.summary}[/bold]", expand=False))


def print_summary_panel(
    console: Console, results: list[CompletionEvent], duration_s: float
):
    """Displays the outcome of a download session."""
    counts = {status: 0 for status in STATUS_STYLES}
    for result in results:
        counts[result.status] += 1

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=16)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Completed:",
        f"[bold green]{counts[HistoryStatus.COMPLETED]}[/bold green]",
    )
    if counts[HistoryStatus.CANCELED]:
        stats_table.add_row(
            "○ Canceled:", f"[yellow]{counts[HistoryStatus.CANCELED]}[/yellow]"
        )
    if counts[HistoryStatus.FAILED]:
        stats_table.add_row(
            "✗ Failed:", f"[bold red]{counts[HistoryStatus.FAILED]}[/bold red]"
        )
    stats_table.add_row("", "")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    failed = counts[HistoryStatus.FAILED] > 0
    console.print()
    console.print(
        Panel(
            stats_table,
            title=(
                "[bold]Finished with errors[/bold]"
                if failed
                else "[bold]Downloads Complete![/bold]"
            ),
            border_style="red" if failed else "green",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
