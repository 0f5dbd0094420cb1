"""
The ordered, disk-persisted list of requests waiting to run.
"""

import logging
from collections.abc import Iterator
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from fetchq.models.request import QueueEntry
from fetchq.storage.json_file import JsonFile

log = logging.getLogger(__name__)


class QueueStore:
    """
    Front-to-back list of QueueEntry objects mirrored to queue.json.

    Mutators change the in-memory list synchronously; callers then ``await
    persist()``. Each persist snapshots the list at call time, and writes land in
    call order, so the file always converges on the latest in-memory state.
    """

    def __init__(self, queue_file_path: Path):
        self.queue_file_path = queue_file_path
        self._file = JsonFile(queue_file_path, default_factory=list)
        self._entries: list[QueueEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(list(self._entries))

    def __contains__(self, job_id: object) -> bool:
        return any(entry.id == job_id for entry in self._entries)

    def ids(self) -> list[str]:
        return [entry.id for entry in self._entries]

    def snapshot(self) -> list[QueueEntry]:
        return list(self._entries)

    def find(self, job_id: str) -> QueueEntry | None:
        return next((e for e in self._entries if e.id == job_id), None)

    def index_of(self, job_id: str) -> int:
        return next(
            (i for i, e in enumerate(self._entries) if e.id == job_id), -1
        )

    async def load(self) -> list[QueueEntry]:
        """Loads queue.json, keeping only entries with an id and a url."""
        raw = await self._file.read()
        items = raw if isinstance(raw, list) else []
        entries: list[QueueEntry] = []
        seen: set[str] = set()
        for item in items:
            if not isinstance(item, dict) or not item.get("id") or not item.get("url"):
                continue
            try:
                entry = QueueEntry.model_validate(item)
            except PydanticValidationError as e:
                log.warning(f"Dropping unreadable queue entry {item.get('id')}: {e}")
                continue
            if entry.id in seen:
                continue
            seen.add(entry.id)
            entries.append(entry)
        dropped = len(items) - len(entries)
        if dropped:
            log.debug(f"Ignored {dropped} invalid or duplicate queue entries.")
        self._entries = entries
        return self.snapshot()

    async def persist(self) -> None:
        await self._file.write([entry.to_json_dict() for entry in self._entries])

    def push(self, entry: QueueEntry) -> int:
        """Appends to the back. Returns the entry's position."""
        self._entries.append(entry)
        return len(self._entries) - 1

    def push_front(self, entry: QueueEntry) -> None:
        self._entries.insert(0, entry)

    def pop_front(self) -> QueueEntry | None:
        return self._entries.pop(0) if self._entries else None

    def remove(self, job_id: str) -> QueueEntry | None:
        index = self.index_of(job_id)
        return self._entries.pop(index) if index >= 0 else None

    def move(self, job_id: str, to: int) -> int | None:
        """Moves an entry to position ``to`` (clamped). Returns the new position."""
        index = self.index_of(job_id)
        if index < 0:
            return None
        entry = self._entries.pop(index)
        target = max(0, min(len(self._entries), int(to)))
        self._entries.insert(target, entry)
        return target

    def clear(self) -> list[QueueEntry]:
        removed, self._entries = self._entries, []
        return removed
