"""
Manages loading, validation, migration and persistence of settings.json.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from fetchq.exceptions import ConfigurationError
from fetchq.models.settings import Settings, merge_with_defaults
from fetchq.storage.json_file import JsonFile

log = logging.getLogger(__name__)

SettingsListener = Callable[[Settings], Awaitable[None] | None]


class SettingsStore:
    """
    Holds the single process-wide Settings instance.

    Components read ``current`` at each decision point instead of caching it, so
    an update takes effect on the next scheduling decision.
    """

    def __init__(self, settings_file_path: Path):
        self.settings_file_path = settings_file_path
        self._file = JsonFile(settings_file_path, default_factory=dict)
        self._settings = Settings()
        self._listeners: list[SettingsListener] = []

    @property
    def current(self) -> Settings:
        return self._settings

    def add_listener(self, listener: SettingsListener) -> None:
        """Registers a callback invoked with the new Settings after every update."""
        self._listeners.append(listener)

    async def load(self) -> Settings:
        """
        Loads settings.json, merges it over the defaults and validates it.

        Raises:
            ConfigurationError: If the persisted values fail validation.
        """
        raw = await self._file.read()
        if not isinstance(raw, dict):
            log.warning(
                "[yellow]settings.json does not hold an object; using defaults.[/yellow]"
            )
            raw = {}

        try:
            self._settings = merge_with_defaults(raw)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Settings validation failed:\n{e}") from e

        if self._needs_migration(raw):
            await self.save()
            log.info(
                "[yellow]Settings file was updated with new default values.[/yellow]"
            )
        return self._settings

    def _needs_migration(self, raw: dict[str, Any]) -> bool:
        """True when the file lacks keys, uses legacy names or an older version."""
        missing = Settings.persisted_keys() - set(raw)
        if missing:
            log.debug(f"Migrating settings: adding missing keys {sorted(missing)}.")
        return bool(missing) or raw.get("version") != self._settings.version

    async def save(self) -> None:
        await self._file.write(self._settings.to_json_dict())

    async def update(self, changes: dict[str, Any]) -> Settings:
        """
        Applies changes (snake_case or camelCase keys), validates, persists and
        broadcasts the new settings.

        Raises:
            ConfigurationError: If the merged settings are invalid. Nothing is
            persisted in that case.
        """
        try:
            updated = merge_with_defaults(changes, base=self._settings)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid settings:\n{e}") from e

        self._settings = updated
        await self.save()
        log.debug(f"Settings updated: {sorted(changes)}")
        await self._broadcast()
        return updated

    async def replace(self, raw: dict[str, Any]) -> Settings:
        """Replaces all settings with ``raw`` merged over the defaults (used by restore)."""
        try:
            self._settings = merge_with_defaults(raw)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid settings:\n{e}") from e
        await self.save()
        await self._broadcast()
        return self._settings

    async def _broadcast(self) -> None:
        for listener in list(self._listeners):
            result = listener(self._settings)
            if inspect.isawaitable(result):
                await result
