"""
Startup reconciliation of the history log against the persisted queue.
"""

import logging

from fetchq.core.scheduler import DrainLoop
from fetchq.core.state import EngineState
from fetchq.models.history import HistoryStatus, request_from_record
from fetchq.models.request import QueueEntry
from fetchq.utils.structured_logger import QueueLogger

log = logging.getLogger(__name__)


class ResumeManager:
    """Re-enqueues requests that were queued or running when the process last stopped."""

    def __init__(
        self,
        state: EngineState,
        drain: DrainLoop,
        queue_logger: QueueLogger | None = None,
    ):
        self.state = state
        self.drain = drain
        self.queue_logger = queue_logger

    async def resume(self) -> list[str]:
        """
        Selects ``queued``/``in-progress`` history records whose ids are neither
        queued nor running, re-enqueues them with their original ids and drains
        once. Safe to run repeatedly: no id is ever queued twice.

        Returns:
            The ids that were re-enqueued.
        """
        requeued: list[str] = []
        skipped = 0
        for record in await self.state.history.entries():
            if not record.status.is_pending:
                continue
            if self.state.is_known(record.id):
                skipped += 1
                continue
            request = request_from_record(record, keep_id=True)
            if request is None:
                skipped += 1
                continue
            with self.state.claim(record.id):
                # refused when another pass already finished this record
                if not await self.state.history.patch(
                    record.id, status=HistoryStatus.QUEUED
                ):
                    skipped += 1
                    continue
                self.state.queue.push(QueueEntry.from_request(request))
            requeued.append(record.id)

        if requeued:
            await self.state.queue.persist()
            log.info(f"Resumed {len(requeued)} unfinished download(s).")
        if self.queue_logger:
            self.queue_logger.resume_completed(len(requeued), skipped)
        await self.drain.run()
        return requeued
