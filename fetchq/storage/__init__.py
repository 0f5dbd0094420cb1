"""
Storage Layer.

This package handles all data persistence: the settings file, the pending
queue, the history log, and backups of them. Every file is human-readable JSON
under the application data directory.
"""

from .history_store import HistoryStore
from .queue_store import QueueStore
from .settings_store import SettingsStore

__all__ = ["HistoryStore", "QueueStore", "SettingsStore"]
