"""
An async JSON document on disk, written atomically and serialized by a lock.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from fetchq.exceptions import StorageError

log = logging.getLogger(__name__)


class JsonFile:
    """
    Reads and writes one human-readable JSON document.

    Writes go to a temporary sibling file which then replaces the target, so a
    crash mid-write leaves the previous version intact. All operations on one
    instance are serialized, in call order, by an asyncio lock.
    """

    def __init__(self, path: Path, default_factory: Callable[[], Any]):
        self.path = path
        self._default_factory = default_factory
        self._lock = asyncio.Lock()

    async def _read_unlocked(self) -> Any:
        if not await aiofiles.os.path.isfile(self.path):
            return self._default_factory()
        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            raise StorageError(f"Could not read '{self.path}': {e}") from e
        if not raw.strip():
            return self._default_factory()
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            log.warning(
                f"[yellow]'{self.path.name}' is not valid JSON ({e}); "
                "starting from an empty state.[/yellow]"
            )
            return self._default_factory()

    async def _write_unlocked(self, data: Any) -> None:
        payload = json.dumps(data, indent=2, ensure_ascii=False)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Could not write '{self.path}': {e}") from e

    async def read(self) -> Any:
        async with self._lock:
            return await self._read_unlocked()

    async def write(self, data: Any) -> None:
        async with self._lock:
            await self._write_unlocked(data)

    async def update(self, mutator: Callable[[Any], Any]) -> Any:
        """
        Read-merge-write under the lock. ``mutator`` receives the current document
        and returns the document to persist.
        """
        async with self._lock:
            current = await self._read_unlocked()
            updated = mutator(current)
            await self._write_unlocked(updated)
            return updated
