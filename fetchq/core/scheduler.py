"""
The drain loop: promotes queued requests while capacity and the pause flag allow.
"""

import logging

from fetchq.core.effects import EffectsDispatcher
from fetchq.core.executor import JobExecutor
from fetchq.core.state import EngineState
from fetchq.exceptions import CapacityError, FetchqError, NotFoundError
from fetchq.utils.structured_logger import QueueLogger

log = logging.getLogger(__name__)


class DrainLoop:
    """
    Keeps ``running <= max_concurrent``. Every start path shares one rejection
    policy: a CapacityError puts the entry back at the front of the queue, any
    other rejection drops it and records it as failed.
    """

    def __init__(
        self,
        state: EngineState,
        executor: JobExecutor,
        effects: EffectsDispatcher,
        queue_logger: QueueLogger | None = None,
    ):
        self.state = state
        self.executor = executor
        self.effects = effects
        self.queue_logger = queue_logger
        # Stays stopped until the engine is started, so an engine that was only
        # loaded never spawns work it will not supervise.
        self.stopped = True

    def _can_promote(self) -> bool:
        return (
            not self.stopped
            and self.state.has_capacity()
            and not self.state.settings.pause_new_jobs
            and len(self.state.queue) > 0
        )

    async def run(self) -> int:
        """Starts queued entries until the queue is empty or capacity is reached."""
        started = 0
        queue = self.state.queue
        while self._can_promote():
            entry = queue.pop_front()
            try:
                handle = self.executor.prepare(entry.request)
            except CapacityError:
                queue.push_front(entry)
                break
            except FetchqError as e:
                await queue.persist()
                await self.effects.request_rejected(entry.request, e)
                continue

            await queue.persist()
            if self.queue_logger:
                self.queue_logger.queue_changed("promoted", entry.id, remaining=len(queue))
            try:
                await self.executor.launch(handle)
            except FetchqError:
                # launch() has already recorded the failure
                continue
            started += 1

        if started:
            log.debug(f"Drain started {started} job(s); {self.state.summary()}")
        self.effects.publish_metrics()
        return started

    async def start_now(self, job_id: str, force: bool = False) -> bool:
        """
        Starts a queued entry immediately when a slot is free (or ``force`` is
        set); otherwise moves it to the front and drains. Returns True when the
        entry was started directly.

        Raises:
            NotFoundError: If ``job_id`` is not queued.
        """
        queue = self.state.queue
        entry = queue.find(job_id)
        if entry is None:
            raise NotFoundError(f"'{job_id}' is not in the queue.", reason="not_found")

        settings = self.state.settings
        if not self.stopped and (
            force or (self.state.has_capacity() and not settings.pause_new_jobs)
        ):
            queue.remove(job_id)
            try:
                handle = self.executor.prepare(entry.request, force=force)
            except CapacityError:
                queue.push_front(entry)
            except FetchqError as e:
                await queue.persist()
                await self.effects.request_rejected(entry.request, e)
                raise
            else:
                await queue.persist()
                if self.queue_logger:
                    self.queue_logger.queue_changed("start_now", job_id, forced=force)
                await self.executor.launch(handle)
                return True
        else:
            queue.move(job_id, 0)

        await queue.persist()
        await self.run()
        return False
