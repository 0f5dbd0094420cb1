"""
Pydantic model for history records and the job lifecycle state machine.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fetchq.models.request import (
    AUDIO_FORMATS,
    DEFAULT_AUDIO_FORMAT,
    DEFAULT_VIDEO_FORMAT,
    DownloadRequest,
    Mode,
    generate_job_id,
    utc_now_iso,
)

HISTORY_LIMIT = 500
ERROR_SUMMARY_CHARS = 500


class HistoryStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_pending(self) -> bool:
        return self in (HistoryStatus.QUEUED, HistoryStatus.IN_PROGRESS)


_TERMINAL = frozenset(
    {HistoryStatus.COMPLETED, HistoryStatus.FAILED, HistoryStatus.CANCELED}
)


def can_transition(current: HistoryStatus, new: HistoryStatus) -> bool:
    """
    Terminal states are absorbing. Pending states may move to any state, which
    includes in-progress returning to queued when an interrupted job is resumed.
    """
    return not current.is_terminal


def resolve_exit_status(exit_code: int | None, canceled: bool) -> HistoryStatus:
    """Maps a process exit onto a terminal status. Cancellation always wins."""
    if canceled:
        return HistoryStatus.CANCELED
    if exit_code == 0:
        return HistoryStatus.COMPLETED
    return HistoryStatus.FAILED


class HistoryRecord(BaseModel):
    """One entry of the durable request log."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    id: str
    url: str
    title: str = ""
    type: Mode = Mode.VIDEO
    format: str = ""
    status: HistoryStatus = HistoryStatus.QUEUED
    download_date: str = Field(default_factory=utc_now_iso)
    completed_at: str | None = None
    filepath: str | None = None
    total_bytes: int | None = None
    error: str | None = None

    @classmethod
    def from_request(
        cls, request: DownloadRequest, status: HistoryStatus
    ) -> "HistoryRecord":
        return cls(
            id=request.id,
            url=request.url,
            title=request.title,
            type=request.mode,
            format=request.display_format,
            status=status,
        )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def request_from_record(
    record: HistoryRecord, keep_id: bool = False
) -> DownloadRequest | None:
    """
    Rebuilds a request from a history record, for resume (same id) or retry (new id).
    The stored format is upper-cased for display, so video requests fall back to
    "best" while audio keeps a known audio format.
    Returns None when the record has no usable url.
    """
    if not record.url or (keep_id and not record.id):
        return None
    job_id = record.id if keep_id else generate_job_id()
    if record.type is Mode.AUDIO:
        fmt = (record.format or DEFAULT_AUDIO_FORMAT).lower()
        return DownloadRequest(
            id=job_id,
            url=record.url,
            title=record.title,
            mode=Mode.AUDIO,
            audio_format=fmt if fmt in AUDIO_FORMATS else DEFAULT_AUDIO_FORMAT,
        )
    return DownloadRequest(
        id=job_id,
        url=record.url,
        title=record.title,
        mode=Mode.VIDEO,
        format=DEFAULT_VIDEO_FORMAT,
    )
