"""
Timestamped backups of settings.json and history.json, and restoring from them.
"""

import asyncio
import json
import logging
import shutil
from datetime import datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from fetchq.exceptions import NotFoundError, StorageError
from fetchq.storage.history_store import HistoryStore
from fetchq.storage.settings_store import SettingsStore

log = logging.getLogger(__name__)

BACKUP_FILES = ("settings.json", "history.json")


async def create_backup(data_dir: Path, backups_root: Path) -> Path:
    """Copies the settings and history files into ``backups_root/<YYYYmmdd-HHMMSS>``."""
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    destination = backups_root / stamp
    await aiofiles.os.makedirs(destination, exist_ok=True)
    copied = 0
    for name in BACKUP_FILES:
        source = data_dir / name
        if await aiofiles.os.path.isfile(source):
            try:
                await asyncio.to_thread(shutil.copyfile, source, destination / name)
                copied += 1
            except OSError as e:
                raise StorageError(f"Could not back up '{name}': {e}") from e
    log.info(f"Backed up {copied} file(s) to [dim]{destination}[/dim]")
    return destination


async def _read_json(path: Path):
    async with aiofiles.open(path, encoding="utf-8") as f:
        return json.loads(await f.read() or "null")


async def restore_backup(
    source_dir: Path, settings: SettingsStore, history: HistoryStore
) -> list[str]:
    """
    Restores whichever of settings.json / history.json exist in ``source_dir``.
    Settings are re-validated before being applied.

    Returns:
        The names of the restored files.

    Raises:
        NotFoundError: If the directory holds neither file.
        StorageError: If a file cannot be read or parsed.
    """
    restored: list[str] = []
    settings_file = source_dir / "settings.json"
    history_file = source_dir / "history.json"

    try:
        if await aiofiles.os.path.isfile(settings_file):
            raw = await _read_json(settings_file)
            await settings.replace(raw if isinstance(raw, dict) else {})
            restored.append(settings_file.name)
        if await aiofiles.os.path.isfile(history_file):
            raw = await _read_json(history_file)
            await history.replace(raw if isinstance(raw, list) else [])
            restored.append(history_file.name)
    except (OSError, json.JSONDecodeError) as e:
        raise StorageError(f"Could not restore backup from '{source_dir}': {e}") from e

    if not restored:
        raise NotFoundError(
            f"No backup files found in '{source_dir}'.", reason="no_backup_files"
        )
    log.info(f"Restored {', '.join(restored)} from [dim]{source_dir}[/dim]")
    return restored
