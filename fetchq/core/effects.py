"""
Side effects of job transitions: history updates, notifications, folder reveal,
the power-save blocker and metrics refresh.
"""

import logging
import time
from collections.abc import Callable
from pathlib import Path

from fetchq.core.events import EventBus
from fetchq.core.notifications import Notifier
from fetchq.core.power import PowerSaveBlocker
from fetchq.core.state import EngineState
from fetchq.exceptions import FetchqError
from fetchq.models.events import CompletionEvent
from fetchq.models.history import (
    HistoryRecord,
    HistoryStatus,
    resolve_exit_status,
)
from fetchq.models.job import JobHandle
from fetchq.models.request import DownloadRequest, utc_now_iso
from fetchq.utils.structured_logger import JobLogger, QueueLogger

log = logging.getLogger(__name__)

Opener = Callable[[Path], bool]

_NOTIFICATION_TITLES = {
    HistoryStatus.COMPLETED: "Download complete",
    HistoryStatus.FAILED: "Download failed",
    HistoryStatus.CANCELED: "Download canceled",
}


class EffectsDispatcher:
    """
    Runs every side effect tied to a job transition. Each terminal transition
    goes through exactly one of ``job_finished``, ``request_rejected`` or
    ``request_canceled``, so observers see one notification and one
    CompletionEvent per job.
    """

    def __init__(
        self,
        state: EngineState,
        bus: EventBus,
        notifier: Notifier,
        power_blocker: PowerSaveBlocker,
        opener: Opener,
        job_logger: JobLogger | None = None,
        queue_logger: QueueLogger | None = None,
    ):
        self.state = state
        self.bus = bus
        self.notifier = notifier
        self.power_blocker = power_blocker
        self.opener = opener
        self.job_logger = job_logger
        self.queue_logger = queue_logger

    async def job_started(self, handle: JobHandle) -> None:
        if self.job_logger:
            self.job_logger.job_started(
                handle.id,
                handle.request.url,
                handle.request.mode.value,
                str(handle.output_dir),
            )
        await self.refresh_power()
        self.publish_metrics()

    async def job_finished(
        self, handle: JobHandle, exit_code: int | None
    ) -> CompletionEvent:
        """Finalizes a job whose process has exited and was removed from the registry."""
        metadata = handle.metadata
        status = resolve_exit_status(exit_code, metadata.canceled)
        error = None
        if status is HistoryStatus.FAILED:
            error = metadata.error_summary() or f"Exited with code {exit_code}."

        await self._record_terminal(
            handle.request,
            status,
            filepath=metadata.filepath,
            total_bytes=metadata.total_bytes,
            error=error,
        )
        if self.job_logger:
            self.job_logger.job_finished(
                handle.id, exit_code, status.value, time.monotonic() - handle.started_at
            )
        await self._notify(handle.request, status, error)

        if status is HistoryStatus.COMPLETED and self.state.settings.open_on_complete:
            target = Path(metadata.filepath) if metadata.filepath else handle.output_dir
            self.opener(target)

        await self.refresh_power()
        event = CompletionEvent(
            id=handle.id,
            exit_code=exit_code,
            status=status,
            filepath=metadata.filepath,
            error=error,
        )
        self.bus.publish(event)
        self.publish_metrics()
        return event

    async def request_rejected(
        self, request: DownloadRequest, error: FetchqError
    ) -> CompletionEvent:
        """Marks a request that could not be started as failed."""
        message = str(error)
        log.warning(f"[yellow]Could not start '{request.id}': {message}[/yellow]")
        if self.job_logger:
            self.job_logger.job_rejected(request.id, error.reason, message)
        await self._record_terminal(request, HistoryStatus.FAILED, error=message)
        await self._notify(request, HistoryStatus.FAILED, message)
        event = CompletionEvent(
            id=request.id, exit_code=None, status=HistoryStatus.FAILED, error=message
        )
        self.bus.publish(event)
        self.publish_metrics()
        return event

    async def request_canceled(self, request: DownloadRequest) -> CompletionEvent:
        """Marks a request canceled before it ever ran."""
        await self._record_terminal(request, HistoryStatus.CANCELED)
        await self._notify(request, HistoryStatus.CANCELED, None)
        event = CompletionEvent(
            id=request.id, exit_code=None, status=HistoryStatus.CANCELED
        )
        self.bus.publish(event)
        self.publish_metrics()
        return event

    async def _record_terminal(
        self, request: DownloadRequest, status: HistoryStatus, **fields
    ) -> None:
        completed_at = utc_now_iso()
        if await self.state.history.patch(
            request.id, status=status, completed_at=completed_at, **fields
        ):
            return
        if await self.state.history.get(request.id) is None:
            record = HistoryRecord.from_request(request, status).model_copy(
                update={"completed_at": completed_at, **fields}
            )
            await self.state.history.append(record)
        else:
            log.debug(f"History for '{request.id}' is already terminal.")

    async def _notify(
        self, request: DownloadRequest, status: HistoryStatus, error: str | None
    ) -> None:
        if not self.state.settings.notifications_enabled:
            return
        body = request.title or request.url
        if error:
            body = f"{body}\n{error}"
        try:
            await self.notifier.notify(_NOTIFICATION_TITLES[status], body)
        except OSError as e:
            log.debug(f"Notification failed: {e}")

    async def refresh_power(self) -> None:
        settings = self.state.settings
        should_block = (
            self.state.running_count > 0 and settings.prevent_sleep_while_downloading
        )
        if await self.power_blocker.update(should_block) and self.queue_logger:
            self.queue_logger.power_save_changed(should_block, self.state.running_count)

    def publish_metrics(self) -> None:
        self.bus.publish(self.state.metrics())
