"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the
engine's data: settings, requests, queue entries, history records, running
job state and the events delivered to observers.
"""

from .events import CompletionEvent, MetricsEvent, ProgressEvent
from .history import HistoryRecord, HistoryStatus
from .job import JobHandle, JobMetadata
from .request import DownloadRequest, Mode, QueueEntry
from .settings import Settings, SubtitleOptions

__all__ = [
    "CompletionEvent",
    "DownloadRequest",
    "HistoryRecord",
    "HistoryStatus",
    "JobHandle",
    "JobMetadata",
    "MetricsEvent",
    "Mode",
    "ProgressEvent",
    "QueueEntry",
    "Settings",
    "SubtitleOptions",
]
