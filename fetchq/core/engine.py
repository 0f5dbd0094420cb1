"""
The public facade of the download engine: submission, queue edits, cancellation,
retry, history, metrics and event subscription.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from fetchq.core.dependencies import resolve_binaries
from fetchq.core.effects import EffectsDispatcher, Opener
from fetchq.core.events import Event, EventBus, EventListener, Subscription
from fetchq.core.executor import JobExecutor, check_request
from fetchq.core.notifications import Notifier, default_notifier
from fetchq.core.power import PowerSaveBlocker
from fetchq.core.resume import ResumeManager
from fetchq.core.scheduler import DrainLoop
from fetchq.core.state import EngineState
from fetchq.exceptions import (
    CapacityError,
    FetchqError,
    NotFoundError,
    ValidationError,
)
from fetchq.models.events import CompletionEvent, MetricsEvent
from fetchq.models.history import HistoryRecord, HistoryStatus, request_from_record
from fetchq.models.job import JobHandle
from fetchq.models.request import DownloadRequest, QueueEntry, utc_now_iso
from fetchq.models.settings import Settings
from fetchq.storage.backup import create_backup, restore_backup
from fetchq.utils.opener import reveal_in_folder
from fetchq.utils.paths import AppPaths
from fetchq.utils.structured_logger import JobLogger, QueueLogger

log = logging.getLogger(__name__)

BACKUPS_DIR_NAME = "Backups"


@dataclass(frozen=True)
class SubmitResult:
    id: str
    queued: bool
    position: int | None = None


def build_request(payload: dict[str, Any] | DownloadRequest) -> DownloadRequest:
    """
    Validates a submission payload (camelCase or snake_case keys).

    Raises:
        ValidationError: ``invalid_mode`` for an unknown mode, otherwise
            ``missing_params``.
    """
    if isinstance(payload, DownloadRequest):
        return payload
    try:
        return DownloadRequest.model_validate(payload or {})
    except PydanticValidationError as e:
        if any("mode" in error["loc"] for error in e.errors()):
            raise ValidationError(
                f"Unsupported mode '{payload.get('mode')}'.", reason="invalid_mode"
            ) from e
        raise ValidationError(f"Invalid request:\n{e}", reason="missing_params") from e


class DownloadEngine:
    """
    Owns one EngineState and wires the executor, drain loop, resume manager and
    effects dispatcher around it. Use as ``async with DownloadEngine(...)`` or
    call ``start()`` and ``shutdown()`` explicitly.
    """

    def __init__(
        self,
        state: EngineState,
        notifier: Notifier | None = None,
        power_blocker: PowerSaveBlocker | None = None,
        opener: Opener | None = None,
        job_logger: JobLogger | None = None,
        queue_logger: QueueLogger | None = None,
    ):
        self.state = state
        self.job_logger = job_logger
        self.queue_logger = queue_logger
        self.bus = EventBus()
        self.effects = EffectsDispatcher(
            state,
            self.bus,
            notifier or default_notifier(),
            power_blocker or PowerSaveBlocker(),
            opener or reveal_in_folder,
            job_logger=job_logger,
            queue_logger=queue_logger,
        )
        self.executor = JobExecutor(state, self.bus, self.effects, on_exit=self._finalize)
        self.drain = DrainLoop(state, self.executor, self.effects, queue_logger)
        self.resume_manager = ResumeManager(state, self.drain, queue_logger)
        self._waiters: dict[str, asyncio.Future] = {}
        self._finishing: set[str] = set()
        self._stopping = False
        self.bus.add_listener(self._resolve_waiters)
        state.settings_store.add_listener(self._on_settings_changed)

    @classmethod
    def from_data_dir(cls, data_dir: Path | None = None, **kwargs) -> "DownloadEngine":
        paths = AppPaths(Path(data_dir)) if data_dir else AppPaths.default()
        return cls(EngineState.from_paths(paths), **kwargs)

    async def __aenter__(self) -> "DownloadEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False

    @property
    def settings(self) -> Settings:
        return self.state.settings

    @property
    def paths(self) -> AppPaths:
        return self.state.paths

    async def load(self) -> None:
        """Loads settings and the persisted queue without starting anything."""
        await self.state.settings_store.load()
        entries = await self.state.queue.load()
        log.debug(f"Loaded {len(entries)} queued request(s) from {self.paths.queue_file}")

    async def start(self, resume: bool = True) -> list[str]:
        """
        Loads persisted state, then resumes unfinished requests (when enabled)
        and drains. Returns the resumed ids.
        """
        await self.load()
        self.drain.stopped = False
        if resume and self.settings.resume_queued_on_startup:
            return await self.resume_manager.resume()
        await self.drain.run()
        return []

    async def resume(self) -> list[str]:
        """Runs the startup reconciliation again on demand."""
        return await self.resume_manager.resume()

    # Settings

    async def update_settings(self, changes: dict[str, Any]) -> Settings:
        return await self.state.settings_store.update(changes)

    async def set_paused(self, paused: bool) -> Settings:
        return await self.update_settings({"pause_new_jobs": paused})

    async def _on_settings_changed(self, settings: Settings) -> None:
        if self._stopping:
            return
        await self.effects.refresh_power()
        await self.drain.run()

    # Submission

    async def submit(self, payload: dict[str, Any] | DownloadRequest) -> SubmitResult:
        """
        Starts the request now when a slot is free and jobs are not paused,
        otherwise enqueues it.

        Raises:
            ValidationError: Malformed request or an id already queued/running.
            DependencyMissingError: A required executable is absent.
            CapacityError: ``queue_full`` when the queue bound is reached.
        """
        request = self._validated(payload)
        if (
            self.drain.stopped
            or not self.state.has_capacity()
            or self.settings.pause_new_jobs
        ):
            return await self._enqueue(request)
        try:
            handle = self.executor.prepare(request)
        except CapacityError:
            return await self._enqueue(request)

        try:
            await self.executor.launch(handle)
        except FetchqError:
            await self.drain.run()
            raise
        return SubmitResult(id=request.id, queued=False)

    async def enqueue(
        self, payload: dict[str, Any] | DownloadRequest, drain: bool = True
    ) -> SubmitResult:
        """Queues the request even when a slot is free."""
        return await self._enqueue(self._validated(payload), drain=drain)

    def _validated(self, payload: dict[str, Any] | DownloadRequest) -> DownloadRequest:
        request = build_request(payload)
        check_request(request)
        if self.state.is_known(request.id):
            raise ValidationError(
                f"Job '{request.id}' is already queued or running.",
                reason="duplicate_id",
            )
        return request

    async def _enqueue(self, request: DownloadRequest, drain: bool = True) -> SubmitResult:
        queue = self.state.queue
        limit = self.settings.max_queue_size
        if limit and len(queue) + len(self.state.pending) >= limit:
            raise CapacityError(f"The queue is full ({limit} entries).", reason="queue_full")

        with self.state.claim(request.id):
            await self.state.history.upsert(
                HistoryRecord.from_request(request, HistoryStatus.QUEUED)
            )
            position = queue.push(QueueEntry.from_request(request))
        await queue.persist()
        if self.job_logger:
            self.job_logger.job_queued(request.id, request.url, position)
        if drain:
            await self.drain.run()
        return SubmitResult(id=request.id, queued=True, position=position)

    async def start_now(self, job_id: str, force: bool = False) -> bool:
        return await self.drain.start_now(job_id, force=force)

    async def start_all(self) -> int:
        if self.settings.pause_new_jobs:
            raise CapacityError("New jobs are paused.", reason="paused")
        return await self.drain.run()

    # Queue edits

    def list_queue(self) -> list[QueueEntry]:
        return self.state.queue.snapshot()

    def running_jobs(self) -> list[JobHandle]:
        return list(self.state.registry)

    async def remove_from_queue(self, job_id: str) -> QueueEntry:
        """Removes a queued entry and records it as canceled."""
        entry = self.state.queue.remove(job_id)
        if entry is None:
            raise NotFoundError(f"'{job_id}' is not in the queue.", reason="not_found")
        await self.state.queue.persist()
        if self.queue_logger:
            self.queue_logger.queue_changed("removed", job_id)
        await self.effects.request_canceled(entry.request)
        return entry

    async def move(self, job_id: str, to: int) -> int:
        position = self.state.queue.move(job_id, to)
        if position is None:
            raise NotFoundError(f"'{job_id}' is not in the queue.", reason="not_found")
        await self.state.queue.persist()
        if self.queue_logger:
            self.queue_logger.queue_changed("moved", job_id, position=position)
        self.effects.publish_metrics()
        return position

    async def clear_queue(self) -> int:
        """Empties the queue, recording every entry as canceled. Returns the count."""
        removed = self.state.queue.clear()
        await self.state.queue.persist()
        if self.queue_logger:
            self.queue_logger.queue_changed("cleared", count=len(removed))
        for entry in removed:
            await self.effects.request_canceled(entry.request)
        return len(removed)

    # Cancellation

    async def cancel(self, job_id: str) -> str:
        """
        Cancels a running or queued job. Returns where it was found:
        ``"running"``, ``"queued"`` or ``"unknown"``.
        """
        handle = self.state.registry.get(job_id)
        if handle is not None:
            handle.metadata.canceled = True
            self.executor.terminate(handle)
            if self.job_logger:
                self.job_logger.job_cancel_requested(job_id, "running")
            return "running"

        entry = self.state.queue.remove(job_id)
        if entry is not None:
            await self.state.queue.persist()
            if self.job_logger:
                self.job_logger.job_cancel_requested(job_id, "queued")
            await self.effects.request_canceled(entry.request)
            return "queued"

        await self.state.history.patch(
            job_id, status=HistoryStatus.CANCELED, completed_at=utc_now_iso()
        )
        return "unknown"

    async def cancel_all(self) -> int:
        """Cancels every running job. Returns how many were signalled."""
        handles = list(self.state.registry)
        for handle in handles:
            handle.metadata.canceled = True
            self.executor.terminate(handle)
        if handles:
            log.info(f"Canceling {len(handles)} running job(s).")
        return len(handles)

    # Retry

    async def retry(self, job_id: str) -> SubmitResult:
        """Resubmits a history record under a new id."""
        record = await self.state.history.get(job_id)
        if record is None:
            raise NotFoundError(f"No history record '{job_id}'.", reason="not_found")
        request = request_from_record(record)
        if request is None:
            raise ValidationError(
                f"History record '{job_id}' has no url.", reason="missing_params"
            )
        return await self.submit(request)

    async def _failed_records(self) -> list[HistoryRecord]:
        return [
            record
            for record in await self.state.history.entries()
            if record.status is HistoryStatus.FAILED
        ]

    async def retry_last_failed(self) -> SubmitResult:
        failed = await self._failed_records()
        if not failed:
            raise NotFoundError("There is no failed download to retry.", reason="not_found")
        return await self.retry(failed[-1].id)

    async def retry_all_failed(self) -> list[SubmitResult]:
        results = []
        for record in await self._failed_records():
            try:
                results.append(await self.retry(record.id))
            except (ValidationError, CapacityError) as e:
                log.warning(f"[yellow]Skipping retry of '{record.id}': {e}[/yellow]")
        return results

    # History

    async def list_history(self, limit: int | None = None) -> list[HistoryRecord]:
        """History records, newest first."""
        records = list(reversed(await self.state.history.entries()))
        return records[:limit] if limit else records

    async def remove_history(self, job_id: str) -> None:
        if not await self.state.history.remove(job_id):
            raise NotFoundError(f"No history record '{job_id}'.", reason="not_found")

    async def clear_history(self) -> None:
        await self.state.history.clear()

    async def export_history(self, destination: Path, fmt: str = "json") -> Path:
        if fmt == "csv":
            return await self.state.history.export_csv(destination)
        if fmt == "json":
            return await self.state.history.export_json(destination)
        raise ValidationError(f"Unsupported export format '{fmt}'.", reason="invalid_format")

    # Backup

    async def backup(self, destination_root: Path | None = None) -> Path:
        root = destination_root or self.state.downloads_root() / BACKUPS_DIR_NAME
        return await create_backup(self.paths.data_dir, root)

    async def restore(self, source_dir: Path) -> list[str]:
        return await restore_backup(
            source_dir, self.state.settings_store, self.state.history
        )

    # Observation

    def metrics(self) -> MetricsEvent:
        return self.state.metrics()

    def summary(self) -> str:
        return self.state.summary()

    def dependency_report(self) -> dict[str, str | None]:
        return resolve_binaries(self.settings, self.paths).report()

    def subscribe(self, maxsize: int = 0) -> Subscription:
        return self.bus.subscribe(maxsize=maxsize)

    def add_listener(self, listener: EventListener):
        return self.bus.add_listener(listener)

    def _resolve_waiters(self, event: Event) -> None:
        if not isinstance(event, CompletionEvent):
            return
        future = self._waiters.pop(event.id, None)
        if future is not None and not future.done():
            future.set_result(event)

    async def wait_for(self, job_id: str) -> CompletionEvent:
        """
        Waits for the job's CompletionEvent. For a job that already finished the
        event is rebuilt from its history record.
        """
        future = self._waiters.get(job_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._waiters[job_id] = future
        if not self.state.is_known(job_id):
            # Registered first so a completion published during the read is not missed.
            record = await self.state.history.get(job_id)
            if not future.done():
                if record is not None and record.status.is_terminal:
                    self._waiters.pop(job_id, None)
                    future.set_result(
                        CompletionEvent(
                            id=job_id,
                            exit_code=None,
                            status=record.status,
                            filepath=record.filepath,
                            error=record.error,
                        )
                    )
                elif not self.state.is_known(job_id) and job_id not in self._finishing:
                    self._waiters.pop(job_id, None)
                    future.set_exception(
                        NotFoundError(
                            f"'{job_id}' is not queued or running.", reason="not_found"
                        )
                    )
        return await asyncio.shield(future)

    async def wait_idle(self) -> None:
        """Waits until nothing is running and nothing startable remains queued."""
        while True:
            handles = list(self.state.registry)
            if not handles:
                if not len(self.state.queue) or self.settings.pause_new_jobs:
                    return
                if not await self.drain.run() and not self.state.registry:
                    return
                continue
            waiters = [asyncio.create_task(h.finished.wait()) for h in handles]
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in waiters:
                    task.cancel()

    # Lifecycle

    async def _finalize(self, handle: JobHandle, exit_code: int | None) -> None:
        """Exit handler: the only place a running job reaches a terminal state."""
        self._finishing.add(handle.id)
        try:
            self.state.registry.release(handle.id)
            try:
                await self.effects.job_finished(handle, exit_code)
            except FetchqError as e:
                log.error(f"[red]Failed to record the outcome of '{handle.id}': {e}[/red]")
            if not self._stopping:
                try:
                    await self.drain.run()
                except FetchqError as e:
                    log.error(f"[red]Queue drain failed: {e}[/red]")
        finally:
            self._finishing.discard(handle.id)
            handle.finished.set()

    async def shutdown(self, cancel_running: bool = True) -> None:
        """
        Stops promoting queued work, optionally cancels running jobs, and waits
        for every exit handler to finish.
        """
        self._stopping = True
        self.drain.stopped = True
        handles = list(self.state.registry)
        if cancel_running:
            await self.cancel_all()
        if handles:
            await asyncio.gather(*(h.finished.wait() for h in handles))
        await self.effects.power_blocker.close()
        self.bus.close()
