"""
Event types delivered to observers, and the messages a process watcher
sends to the engine over a job's channel.
"""

from dataclasses import dataclass
from typing import Any

from fetchq.models.history import HistoryStatus


@dataclass(frozen=True)
class ProgressEvent:
    """One line of job output: a structured record, a raw line, or stderr text."""

    id: str
    progress: dict[str, Any] | None = None
    line: str | None = None
    stderr: str | None = None


@dataclass(frozen=True)
class CompletionEvent:
    """Delivered exactly once per job when it reaches a terminal state."""

    id: str
    exit_code: int | None
    status: HistoryStatus
    filepath: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class MetricsEvent:
    """Capacity summary refreshed whenever a job starts, ends or the queue changes."""

    running: int
    queued: int
    max_concurrent: int
    paused: bool
    aggregate_progress: float | None
    summary: str


# Watcher -> engine channel messages


@dataclass(frozen=True)
class StdoutLine:
    text: str


@dataclass(frozen=True)
class StderrLine:
    text: str


@dataclass(frozen=True)
class ProcessExited:
    exit_code: int | None
