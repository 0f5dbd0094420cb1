"""
Validates start preconditions, spawns the fetch worker and supervises its output.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress

from fetchq.core.arguments import build_arguments, requires_transcoder
from fetchq.core.dependencies import resolve_binaries
from fetchq.core.effects import EffectsDispatcher
from fetchq.core.events import EventBus
from fetchq.core.progress import ProgressParser
from fetchq.core.state import EngineState
from fetchq.exceptions import (
    CapacityError,
    DependencyMissingError,
    FetchqError,
    ValidationError,
)
from fetchq.models.events import ProcessExited, StderrLine, StdoutLine
from fetchq.models.history import HistoryRecord, HistoryStatus
from fetchq.models.job import JobHandle
from fetchq.models.request import DownloadRequest
from fetchq.utils.paths import resolve_output_dir
from fetchq.utils.urls import is_http_url

log = logging.getLogger(__name__)

# Progress records carry the full info dict and can be very long.
STREAM_LIMIT = 4 * 1024 * 1024

ExitHandler = Callable[[JobHandle, int | None], Awaitable[None]]


def check_request(request: DownloadRequest) -> None:
    """Raises ValidationError when the request lacks an id/url or the url is not http(s)."""
    if not request.id or not request.url:
        raise ValidationError("A request needs both an id and a url.", reason="missing_params")
    if not is_http_url(request.url):
        raise ValidationError(
            f"Not an http(s) url: '{request.url}'.", reason="invalid_url"
        )


class JobExecutor:
    """
    Starts jobs in two steps. ``prepare`` checks every precondition and reserves
    a registry slot synchronously, so no other start can claim the same slot.
    ``launch`` then creates the output directory, records the job as
    in-progress and spawns the process.
    """

    def __init__(
        self,
        state: EngineState,
        bus: EventBus,
        effects: EffectsDispatcher,
        on_exit: ExitHandler,
    ):
        self.state = state
        self.bus = bus
        self.effects = effects
        self.on_exit = on_exit

    def prepare(self, request: DownloadRequest, force: bool = False) -> JobHandle:
        """
        Checks preconditions and registers a handle for ``request``.

        Args:
            force: Skip the capacity and pause checks (explicit "start now").

        Raises:
            ValidationError: ``missing_params``, ``invalid_url``, ``duplicate_id``
                or ``output_dir``.
            CapacityError: ``too_many_jobs`` or ``paused``.
            DependencyMissingError: ``ytdlp_missing`` or ``ffmpeg_missing``.
        """
        check_request(request)
        if request.id in self.state.registry:
            raise ValidationError(
                f"Job '{request.id}' is already running.", reason="duplicate_id"
            )

        settings = self.state.settings
        if not force:
            if not self.state.has_capacity():
                raise CapacityError(
                    f"{self.state.running_count} of {settings.max_concurrent} slots in use.",
                    reason="too_many_jobs",
                )
            if settings.pause_new_jobs:
                raise CapacityError("New jobs are paused.", reason="paused")

        binaries = resolve_binaries(settings, self.state.paths)
        if binaries.ytdlp is None:
            raise DependencyMissingError(
                f"yt-dlp was not found in '{binaries.binaries_dir}'.",
                reason="ytdlp_missing",
            )
        if requires_transcoder(request, settings) and binaries.ffmpeg is None:
            raise DependencyMissingError(
                f"ffmpeg was not found in '{binaries.binaries_dir}'; it is required "
                "for audio extraction and subtitle embedding.",
                reason="ffmpeg_missing",
            )

        output_dir = resolve_output_dir(self.state.downloads_root(), request.out_dir)
        argv = [
            str(binaries.ytdlp),
            *build_arguments(
                request,
                settings,
                output_dir,
                self.state.paths.archive_file,
                ffmpeg=binaries.ffmpeg,
            ),
        ]
        handle = JobHandle(request=request, output_dir=output_dir, argv=argv)
        self.state.registry.reserve(handle)
        return handle

    async def launch(self, handle: JobHandle) -> None:
        """
        Spawns the worker for a prepared handle. On failure the slot is released,
        the request is recorded as failed and the error is re-raised.
        """
        try:
            try:
                await asyncio.to_thread(
                    handle.output_dir.mkdir, parents=True, exist_ok=True
                )
            except OSError as e:
                raise ValidationError(
                    f"Cannot create output directory '{handle.output_dir}': {e}",
                    reason="output_dir",
                ) from e

            started = await self.state.history.mark_started(
                HistoryRecord.from_request(handle.request, HistoryStatus.IN_PROGRESS)
            )
            if not started:
                raise ValidationError(
                    f"'{handle.id}' has already finished and cannot start again.",
                    reason="already_finished",
                )

            try:
                process = await asyncio.create_subprocess_exec(
                    *handle.argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    limit=STREAM_LIMIT,
                )
            except OSError as e:
                raise DependencyMissingError(
                    f"Could not run '{handle.argv[0]}': {e}", reason="ytdlp_missing"
                ) from e
        except FetchqError as e:
            self.state.registry.release(handle.id)
            handle.finished.set()
            await self.effects.request_rejected(handle.request, e)
            raise

        handle.process = process
        log.debug(f"Started '{handle.id}' (pid {process.pid}): {' '.join(handle.argv)}")
        if handle.metadata.canceled:
            self.terminate(handle)

        handle.tasks = [
            asyncio.create_task(self._watch(handle), name=f"watch-{handle.id}"),
            asyncio.create_task(self._consume(handle), name=f"consume-{handle.id}"),
        ]
        await self.effects.job_started(handle)

    def terminate(self, handle: JobHandle) -> bool:
        """Sends SIGTERM. The caller sets ``metadata.canceled`` beforehand."""
        process = handle.process
        if process is None or process.returncode is not None:
            return False
        with suppress(ProcessLookupError):
            process.terminate()
        return True

    async def _watch(self, handle: JobHandle) -> None:
        """Pumps process output onto the job channel, then reports the exit."""
        process = handle.process
        try:
            await asyncio.gather(
                self._pump(process.stdout, handle, StdoutLine),
                self._pump(process.stderr, handle, StderrLine),
            )
        finally:
            exit_code = await process.wait()
            handle.channel.put_nowait(ProcessExited(exit_code))

    @staticmethod
    async def _pump(stream: asyncio.StreamReader, handle: JobHandle, message_type) -> None:
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                log.debug(f"Skipped an over-long output line from '{handle.id}'.")
                continue
            if not raw:
                return
            text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if text:
                handle.channel.put_nowait(message_type(text))

    async def _consume(self, handle: JobHandle) -> None:
        """Applies channel messages to job state in order. The exit message is last."""
        parser = ProgressParser(handle.id, handle.metadata)
        while True:
            message = await handle.channel.get()
            if isinstance(message, StdoutLine):
                self.bus.publish(parser.feed_stdout(message.text))
            elif isinstance(message, StderrLine):
                self.bus.publish(parser.feed_stderr(message.text))
            elif isinstance(message, ProcessExited):
                await self.on_exit(handle, message.exit_code)
                return
