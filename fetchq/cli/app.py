"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from fetchq import __version__
from fetchq.core.dependencies import resolve_binaries_dir
from fetchq.core.engine import DownloadEngine
from fetchq.exceptions import JobCanceledError, ProcessFailureError, ValidationError
from fetchq.models.events import CompletionEvent
from fetchq.models.history import HistoryStatus
from fetchq.models.request import Mode
from fetchq.models.settings import normalize_keys
from fetchq.utils.paths import AppPaths
from fetchq.utils.structured_logger import create_structured_logger

from .formatters import (
    print_history_table,
    print_metrics,
    print_queue_table,
    print_settings,
    print_summary_panel,
)
from .progress_display import JobProgressDisplay

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("fetchq")

app = typer.Typer(
    name="fetchq",
    help=(
        "Queue and run media downloads with yt-dlp. Use 'fetchq <command> --help'"
        " for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
queue_app = typer.Typer(help="Inspect and edit the pending queue.")
history_app = typer.Typer(help="Inspect, export and prune the download history.")
settings_app = typer.Typer(help="Show and change settings.")
app.add_typer(queue_app, name="queue")
app.add_typer(history_app, name="history")
app.add_typer(settings_app, name="settings")

PATHS = AppPaths.default()


async def _loaded_engine() -> DownloadEngine:
    """An engine with persisted state loaded and nothing started."""
    _, job_logger, queue_logger = create_structured_logger()
    engine = DownloadEngine.from_data_dir(
        PATHS.data_dir, job_logger=job_logger, queue_logger=queue_logger
    )
    await engine.load()
    return engine


@asynccontextmanager
async def _running_engine(resume: bool = False):
    """
    Starts an engine (draining the persisted queue) and yields it with the ids
    of resumed requests. Running jobs are canceled on exit.
    """
    base_logger, job_logger, queue_logger = create_structured_logger(
        PATHS.logs_dir, enable_json=True
    )
    base_logger.set_session_context(version=__version__, data_dir=str(PATHS.data_dir))
    engine = DownloadEngine.from_data_dir(
        PATHS.data_dir, job_logger=job_logger, queue_logger=queue_logger
    )
    try:
        await engine.start(resume=False)
        resumed = await engine.resume() if resume else []
        yield engine, resumed
    finally:
        await engine.shutdown()
        base_logger.close()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
):
    """fetchq download queue"""
    if version:
        console.print(f"[bold]fetchq[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("fetchq").setLevel(log_level)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


async def _run_until_done(
    engine: DownloadEngine, job_ids: list[str], labels: dict[str, str]
) -> list[CompletionEvent]:
    """
    Shows live progress until the engine is idle, then collects the outcome of
    ``job_ids``. Ids still queued (for example while paused) are left out.
    """
    with JobProgressDisplay(console, labels) as display:
        remove_listener = engine.add_listener(display.handle)
        try:
            await engine.wait_idle()
        finally:
            remove_listener()

    pending = [i for i in job_ids if engine.state.is_known(i)]
    if pending:
        console.print(
            f"[yellow]⚠ {len(pending)} download(s) remain queued "
            "(new jobs are paused).[/yellow]"
        )
    return [await engine.wait_for(i) for i in job_ids if i not in pending]


def _raise_for_outcome(results: list[CompletionEvent]) -> None:
    """Failures take precedence over cancellations for the exit status."""
    failed = [r for r in results if r.status is HistoryStatus.FAILED]
    if failed:
        raise ProcessFailureError(failed[0].id, failed[0].exit_code, failed[0].error)
    canceled = [r for r in results if r.status is HistoryStatus.CANCELED]
    if canceled:
        raise JobCanceledError(canceled[0].id)


@app.command(name="download")
def download_command(
    urls: list[str] = typer.Argument(  # noqa: B008
        ..., help="One or more http(s) URLs to download."
    ),
    audio: bool = typer.Option(
        False, "--audio", "-x", help="Extract audio instead of downloading video."
    ),
    video_format: str = typer.Option(
        "best", "--format", "-f", help="yt-dlp format selector for video downloads."
    ),
    audio_format: str = typer.Option(
        "m4a", "--audio-format", help="Audio format: m4a, mp3, opus or aac."
    ),
    out_dir: str = typer.Option(
        "", "--out-dir", "-o", help="Subdirectory under the downloads root."
    ),
    title: str = typer.Option("", "--title", help="Title shown in history."),
    queue_only: bool = typer.Option(
        False,
        "--queue-only",
        help="Only add the URLs to the queue; run them later with 'fetchq resume'.",
    ),
    resume: bool = typer.Option(
        False, "--resume", help="Also resume unfinished downloads from earlier runs."
    ),
):
    """Download one or more URLs, showing live progress until all finish."""
    mode = Mode.AUDIO if audio else Mode.VIDEO
    payloads = [
        {
            "url": url,
            "mode": mode.value,
            "format": video_format,
            "audioFormat": audio_format,
            "outDir": out_dir,
            "title": title,
        }
        for url in urls
    ]

    async def _download_async():
        if queue_only:
            engine = await _loaded_engine()
            for payload in payloads:
                result = await engine.enqueue(payload, drain=False)
                console.print(
                    f"[cyan]+[/cyan] Queued [bold]{result.id}[/bold] "
                    f"at position {result.position}"
                )
            return

        start_time = time.monotonic()
        async with _running_engine(resume=resume) as (engine, resumed):
            job_ids = list(resumed)
            labels: dict[str, str] = {}
            for payload in payloads:
                result = await engine.submit(payload)
                job_ids.append(result.id)
                labels[result.id] = payload["title"] or payload["url"]
                if result.queued:
                    console.print(f"[dim]Queued {payload['url']}[/dim]")
            results = await _run_until_done(engine, job_ids, labels)

        print_summary_panel(console, results, time.monotonic() - start_time)
        _raise_for_outcome(results)

    asyncio.run(_download_async())


@app.command()
def resume():
    """Resume downloads that were queued or running when fetchq last stopped."""

    async def _resume_async():
        start_time = time.monotonic()
        async with _running_engine(resume=True) as (engine, _):
            job_ids = [h.id for h in engine.running_jobs()]
            job_ids += [e.id for e in engine.list_queue()]
            if not job_ids:
                console.print("[dim]Nothing to resume.[/dim]")
                return
            console.print(f"[cyan]Resuming {len(job_ids)} download(s)...[/cyan]")
            results = await _run_until_done(engine, job_ids, {})

        print_summary_panel(console, results, time.monotonic() - start_time)
        _raise_for_outcome(results)

    asyncio.run(_resume_async())


@app.command()
def retry(
    job_id: str | None = typer.Argument(None, help="History id to retry."),
    all_failed: bool = typer.Option(
        False, "--all-failed", help="Retry every failed download."
    ),
):
    """Retry a download from history (the last failed one by default)."""

    async def _retry_async():
        start_time = time.monotonic()
        async with _running_engine() as (engine, _):
            if all_failed:
                submitted = await engine.retry_all_failed()
            elif job_id:
                submitted = [await engine.retry(job_id)]
            else:
                submitted = [await engine.retry_last_failed()]
            if not submitted:
                console.print("[dim]Nothing to retry.[/dim]")
                return
            results = await _run_until_done(engine, [r.id for r in submitted], {})

        print_summary_panel(console, results, time.monotonic() - start_time)
        _raise_for_outcome(results)

    asyncio.run(_retry_async())


@app.command()
def status():
    """Show queue capacity and the persisted queue length."""

    async def _status_async():
        engine = await _loaded_engine()
        print_metrics(console, engine.metrics())

    asyncio.run(_status_async())


# Queue


@queue_app.command("list")
def queue_list():
    """List queued downloads, front first."""

    async def _list_async():
        engine = await _loaded_engine()
        print_queue_table(console, engine.list_queue(), engine.running_jobs())

    asyncio.run(_list_async())


@queue_app.command("remove")
def queue_remove(job_id: str = typer.Argument(..., help="Queued id to remove.")):
    """Remove a queued download (recorded as canceled)."""

    async def _remove_async():
        engine = await _loaded_engine()
        entry = await engine.remove_from_queue(job_id)
        console.print(f"[green]✓ Removed[/green] {entry.title or entry.url}")

    asyncio.run(_remove_async())


@queue_app.command("move")
def queue_move(
    job_id: str = typer.Argument(..., help="Queued id to move."),
    position: int = typer.Argument(..., help="New zero-based position."),
):
    """Move a queued download to a new position."""

    async def _move_async():
        engine = await _loaded_engine()
        new_position = await engine.move(job_id, position)
        console.print(f"[green]✓ Moved[/green] {job_id} to position {new_position}")

    asyncio.run(_move_async())


@queue_app.command("clear")
def queue_clear(
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Remove every queued download (all recorded as canceled)."""
    if not force and not typer.confirm("Remove every queued download?"):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    async def _clear_async():
        engine = await _loaded_engine()
        count = await engine.clear_queue()
        console.print(f"[green]✓ Cleared {count} queued download(s).[/green]")

    asyncio.run(_clear_async())


# History


@history_app.command("list")
def history_list(
    limit: int = typer.Option(25, "--limit", "-n", help="Number of records to show."),
):
    """List recent downloads, newest first."""

    async def _list_async():
        engine = await _loaded_engine()
        print_history_table(console, await engine.list_history(limit=limit))

    asyncio.run(_list_async())


@history_app.command("remove")
def history_remove(job_id: str = typer.Argument(..., help="History id to remove.")):
    """Remove one record from history."""

    async def _remove_async():
        engine = await _loaded_engine()
        await engine.remove_history(job_id)
        console.print(f"[green]✓ Removed {job_id} from history.[/green]")

    asyncio.run(_remove_async())


@history_app.command("clear")
def history_clear(
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Erase the entire download history."""
    if not force and not typer.confirm(
        "Are you sure you want to clear the download history? This cannot be undone."
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    async def _clear_async():
        engine = await _loaded_engine()
        await engine.clear_history()
        console.print("[green]✓ History cleared.[/green]")

    asyncio.run(_clear_async())


@history_app.command("export")
def history_export(
    destination: Path = typer.Argument(..., help="File to write."),  # noqa: B008
    fmt: str | None = typer.Option(
        None, "--format", help="json or csv (default: from the file extension)."
    ),
):
    """Export history as JSON or CSV."""
    export_format = (fmt or destination.suffix.lstrip(".") or "json").lower()

    async def _export_async():
        engine = await _loaded_engine()
        written = await engine.export_history(destination, export_format)
        console.print(f"[green]✓ History exported to[/green] [dim]{written}[/dim]")

    asyncio.run(_export_async())


# Settings


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _settings_change(key: str, value: Any) -> dict[str, Any]:
    """Turns 'subtitles.enabled' style keys into a nested change."""
    if "." in key:
        parent, child = key.split(".", 1)
        return {parent: {child: value}}
    return {key: value}


@settings_app.command("show")
def settings_show():
    """Display the current settings."""

    async def _show_async():
        engine = await _loaded_engine()
        print_settings(
            console,
            PATHS.settings_file,
            engine.settings.model_dump(mode="json"),
        )

    asyncio.run(_show_async())


@settings_app.command("set")
def settings_set(
    key: str = typer.Argument(..., help="Setting name, e.g. max_concurrent."),
    value: str = typer.Argument(..., help="New value (JSON literals are parsed)."),
):
    """Change one setting."""
    change = _settings_change(key, _parse_value(value))
    if not normalize_keys(change):
        raise ValidationError(f"Unknown setting '{key}'.", reason="unknown_setting")

    async def _set_async():
        engine = await _loaded_engine()
        await engine.update_settings(change)
        console.print(f"[green]✓ {key} updated.[/green]")

    asyncio.run(_set_async())


# Maintenance


@app.command()
def backup(
    destination: Path | None = typer.Option(  # noqa: B008
        None, "--dest", help="Directory to create the timestamped backup in."
    ),
):
    """Back up settings.json and history.json."""

    async def _backup_async():
        engine = await _loaded_engine()
        written = await engine.backup(destination)
        console.print(f"[green]✓ Backup written to[/green] [dim]{written}[/dim]")

    asyncio.run(_backup_async())


@app.command()
def restore(
    source: Path = typer.Argument(..., help="Backup directory to restore from."),  # noqa: B008
):
    """Restore settings and history from a backup directory."""

    async def _restore_async():
        engine = await _loaded_engine()
        restored = await engine.restore(source)
        console.print(f"[green]✓ Restored {', '.join(restored)}.[/green]")

    asyncio.run(_restore_async())


@app.command()
def diagnose():
    """Check the data directory, settings and external executables."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False

    async def _diagnose_async() -> DownloadEngine:
        return await _loaded_engine()

    console.print(f"[green]✓[/] Data directory: [dim]{PATHS.data_dir}[/dim]")
    engine = asyncio.run(_diagnose_async())
    console.print("[green]✓[/] Settings file is valid and can be loaded.")

    binaries_dir = resolve_binaries_dir(engine.settings, engine.paths)
    console.print(f"[green]✓[/] Binaries directory: [dim]{binaries_dir}[/dim]")
    report = engine.dependency_report()
    for name, location in report.items():
        if location:
            console.print(f"[green]✓[/] {name}: [dim]{location}[/dim]")
        elif name == "ffmpeg":
            console.print(
                f"[yellow]⚠ {name} not found.[/] Audio extraction and subtitle "
                "embedding will be unavailable."
            )
        else:
            console.print(f"[red]✗ {name} not found.[/] Downloads cannot start.")
            issues_found = True

    if report.get("yt-dlp"):
        console.print(
            "[dim]  Keep yt-dlp current with `yt-dlp -U`, or replace the file in the "
            "binaries directory.[/dim]"
        )

    root = engine.state.downloads_root()
    console.print(f"[green]✓[/] Downloads root: [dim]{root}[/dim]")
    console.print(f"[green]✓[/] {engine.summary()}")

    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
        raise typer.Exit(code=1)
