"""
The capacity-bounded, append-only request log persisted to history.json.
"""

import asyncio
import csv
import io
import json
import logging
from pathlib import Path
from typing import Any

import aiofiles
from pydantic import ValidationError as PydanticValidationError

from fetchq.models.history import (
    HISTORY_LIMIT,
    HistoryRecord,
    HistoryStatus,
    can_transition,
)
from fetchq.storage.json_file import JsonFile

log = logging.getLogger(__name__)

CSV_COLUMNS = [
    "id",
    "title",
    "url",
    "type",
    "format",
    "status",
    "downloadDate",
    "filepath",
]


def _parse_records(raw: Any) -> list[HistoryRecord]:
    records = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        try:
            records.append(HistoryRecord.model_validate(item))
        except PydanticValidationError as e:
            log.debug(f"Skipping unreadable history record {item.get('id')}: {e}")
    return records


class HistoryStore:
    """
    Durable source of truth for what happened to each request.

    Every mutation is read-merge-write against the file, so edits made by another
    process (or restored from a backup) are never clobbered by a stale cache.
    """

    def __init__(self, history_file_path: Path, limit: int = HISTORY_LIMIT):
        self.history_file_path = history_file_path
        self.limit = limit
        self._file = JsonFile(history_file_path, default_factory=list)

    async def entries(self) -> list[HistoryRecord]:
        """All records, oldest first."""
        return _parse_records(await self._file.read())

    async def get(self, job_id: str) -> HistoryRecord | None:
        return next((r for r in await self.entries() if r.id == job_id), None)

    async def append(self, record: HistoryRecord) -> None:
        """Appends a record, evicting the oldest entries beyond the limit."""

        def mutate(raw: Any) -> list[dict[str, Any]]:
            items = list(raw) if isinstance(raw, list) else []
            items.append(record.to_json_dict())
            return items[-self.limit :]

        await self._file.update(mutate)

    async def patch(self, job_id: str, **fields: Any) -> bool:
        """
        Merges ``fields`` into the record with ``job_id``. A status change out of a
        terminal state is refused. Returns True when the record was updated.
        """
        applied = False

        def mutate(raw: Any) -> list[Any]:
            nonlocal applied
            items = raw if isinstance(raw, list) else []
            for index, item in enumerate(items):
                if isinstance(item, dict) and item.get("id") == job_id:
                    merged = self._merge(item, fields)
                    if merged is not None:
                        items[index] = merged
                        applied = True
                    break
            return items

        await self._file.update(mutate)
        return applied

    async def upsert(self, record: HistoryRecord) -> bool:
        """Updates the record with the same id, or appends it when absent."""
        refused = False

        def mutate(raw: Any) -> list[Any]:
            nonlocal refused
            items = raw if isinstance(raw, list) else []
            for index, item in enumerate(items):
                if isinstance(item, dict) and item.get("id") == record.id:
                    merged = self._merge(item, record.to_json_dict(), by_alias=True)
                    if merged is None:
                        refused = True
                    else:
                        items[index] = merged
                    return items
            items.append(record.to_json_dict())
            return items[-self.limit :]

        await self._file.update(mutate)
        return not refused

    async def mark_started(self, record: HistoryRecord) -> bool:
        """
        Moves an existing record to ``record.status`` keeping its other fields
        (the original ``downloadDate`` included), or appends ``record`` when the
        id has no entry. Returns False when the existing record is terminal.
        """
        refused = False

        def mutate(raw: Any) -> list[Any]:
            nonlocal refused
            items = raw if isinstance(raw, list) else []
            for index, item in enumerate(items):
                if isinstance(item, dict) and item.get("id") == record.id:
                    merged = self._merge(item, {"status": record.status})
                    if merged is None:
                        refused = True
                    else:
                        items[index] = merged
                    return items
            items.append(record.to_json_dict())
            return items[-self.limit :]

        await self._file.update(mutate)
        return not refused

    def _merge(
        self, item: dict[str, Any], fields: dict[str, Any], by_alias: bool = False
    ) -> dict[str, Any] | None:
        try:
            current = HistoryRecord.model_validate(item)
        except PydanticValidationError:
            current = None
        patch = fields if by_alias else self._to_aliases(fields)
        patch = {key: value for key, value in patch.items() if value is not None}
        new_status = patch.get("status")
        if current is not None and new_status is not None:
            status = HistoryStatus(new_status)
            if not can_transition(current.status, status):
                log.debug(
                    f"Refusing history transition {current.status.value} -> "
                    f"{status.value} for '{current.id}'."
                )
                return None
        return {**item, **patch}

    @staticmethod
    def _to_aliases(fields: dict[str, Any]) -> dict[str, Any]:
        aliases = {
            name: field.alias or name
            for name, field in HistoryRecord.model_fields.items()
        }
        converted = {}
        for key, value in fields.items():
            if hasattr(value, "value"):
                value = value.value
            converted[aliases.get(key, key)] = value
        return converted

    async def remove(self, job_id: str) -> bool:
        removed = False

        def mutate(raw: Any) -> list[Any]:
            nonlocal removed
            items = raw if isinstance(raw, list) else []
            kept = [i for i in items if not (isinstance(i, dict) and i.get("id") == job_id)]
            removed = len(kept) != len(items)
            return kept

        await self._file.update(mutate)
        return removed

    async def clear(self) -> None:
        await self._file.write([])

    async def replace(self, records: list[dict[str, Any]]) -> int:
        """Replaces the whole log (used by restore). Returns the kept record count."""
        parsed = _parse_records(records)[-self.limit :]
        await self._file.write([r.to_json_dict() for r in parsed])
        return len(parsed)

    async def export_json(self, destination: Path) -> Path:
        records = [r.to_json_dict() for r in await self.entries()]
        await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
        async with aiofiles.open(destination, "w", encoding="utf-8") as f:
            await f.write(json.dumps(records, indent=2, ensure_ascii=False))
        return destination

    async def export_csv(self, destination: Path) -> Path:
        buffer = io.StringIO()
        writer = csv.DictWriter(
            buffer,
            fieldnames=CSV_COLUMNS,
            extrasaction="ignore",
            quoting=csv.QUOTE_ALL,
            lineterminator="\n",
        )
        writer.writeheader()
        for record in await self.entries():
            writer.writerow(record.to_json_dict())
        await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
        async with aiofiles.open(destination, "w", encoding="utf-8", newline="") as f:
            await f.write(buffer.getvalue())
        return destination
