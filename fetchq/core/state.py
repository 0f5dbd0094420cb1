"""
The single orchestrator state object shared by every engine component.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from fetchq.core.progress import aggregate_progress
from fetchq.core.registry import JobRegistry
from fetchq.exceptions import ValidationError
from fetchq.models.events import MetricsEvent
from fetchq.models.settings import Settings
from fetchq.storage.history_store import HistoryStore
from fetchq.storage.queue_store import QueueStore
from fetchq.storage.settings_store import SettingsStore
from fetchq.utils.paths import AppPaths, resolve_downloads_root

APP_LABEL = "fetchq"


@dataclass
class EngineState:
    """Queue, registry and stores for one engine instance. Never module-global."""

    paths: AppPaths
    settings_store: SettingsStore
    queue: QueueStore
    history: HistoryStore
    registry: JobRegistry = field(default_factory=JobRegistry)
    pending: set[str] = field(default_factory=set)

    @classmethod
    def from_paths(cls, paths: AppPaths) -> "EngineState":
        return cls(
            paths=paths,
            settings_store=SettingsStore(paths.settings_file),
            queue=QueueStore(paths.queue_file),
            history=HistoryStore(paths.history_file),
        )

    @property
    def settings(self) -> Settings:
        return self.settings_store.current

    @property
    def running_count(self) -> int:
        return len(self.registry)

    def has_capacity(self) -> bool:
        return self.running_count < self.settings.max_concurrent

    def downloads_root(self) -> Path:
        return resolve_downloads_root(self.settings.downloads_root_dir)

    def is_known(self, job_id: str) -> bool:
        """True when the id is queued, running or claimed by an in-flight enqueue."""
        return (
            job_id in self.pending or job_id in self.queue or job_id in self.registry
        )

    @contextmanager
    def claim(self, job_id: str) -> Iterator[None]:
        """
        Holds ``job_id`` while its history record is written, so a concurrent
        enqueue of the same id is refused before the entry reaches the queue.
        """
        if self.is_known(job_id):
            raise ValidationError(
                f"Job '{job_id}' is already queued or running.",
                reason="duplicate_id",
            )
        self.pending.add(job_id)
        try:
            yield
        finally:
            self.pending.discard(job_id)

    def aggregate_progress(self) -> float | None:
        return aggregate_progress(handle.metadata for handle in self.registry)

    def summary(self) -> str:
        """One-line status, e.g. 'fetchq • 2/3 running • 4 queued • paused'."""
        parts = [APP_LABEL]
        if self.running_count:
            parts.append(f"{self.running_count}/{self.settings.max_concurrent} running")
        if len(self.queue):
            parts.append(f"{len(self.queue)} queued")
        if self.settings.pause_new_jobs:
            parts.append("paused")
        return " • ".join(parts)

    def metrics(self) -> MetricsEvent:
        return MetricsEvent(
            running=self.running_count,
            queued=len(self.queue),
            max_concurrent=self.settings.max_concurrent,
            paused=self.settings.pause_new_jobs,
            aggregate_progress=self.aggregate_progress(),
            summary=self.summary(),
        )
