"""
Pydantic models for download requests and persisted queue entries.
"""

import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_VIDEO_FORMAT = "best"
DEFAULT_AUDIO_FORMAT = "m4a"
AUDIO_FORMATS = ("m4a", "mp3", "opus", "aac")

_BASE36_DIGITS = string.digits + string.ascii_lowercase


class Mode(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def generate_job_id() -> str:
    """Generates an id such as 'job-m1x2y3z4-k9a0b1'."""
    suffix = "".join(random.choices(_BASE36_DIGITS, k=6))
    return f"job-{_to_base36(int(time.time() * 1000))}-{suffix}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class DownloadRequest(BaseModel):
    """A caller's request to fetch one URL. Immutable once submitted."""

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    id: str = Field(default_factory=generate_job_id)
    url: str = ""
    out_dir: str = ""
    mode: Mode = Mode.VIDEO
    format: str = DEFAULT_VIDEO_FORMAT
    audio_format: str = DEFAULT_AUDIO_FORMAT
    title: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def default_blank_id(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return generate_job_id()
        return v

    @field_validator("url", "out_dir", "title", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("format", mode="before")
    @classmethod
    def default_format(cls, v: Any) -> str:
        return str(v).strip() if v not in (None, "") else DEFAULT_VIDEO_FORMAT

    @field_validator("audio_format", mode="before")
    @classmethod
    def default_audio_format(cls, v: Any) -> str:
        return (
            str(v).strip().lower() if v not in (None, "") else DEFAULT_AUDIO_FORMAT
        )

    @property
    def is_audio(self) -> bool:
        return self.mode is Mode.AUDIO

    @property
    def display_format(self) -> str:
        """The format label recorded in history ('M4A', 'BEST', ...)."""
        return (self.audio_format if self.is_audio else self.format).upper()

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class QueueEntry(DownloadRequest):
    """A request waiting in the queue, stamped with its enqueue time."""

    enqueued_at: str = Field(default_factory=utc_now_iso)

    @classmethod
    def from_request(cls, request: DownloadRequest) -> "QueueEntry":
        return cls(**request.model_dump())

    @property
    def request(self) -> DownloadRequest:
        return DownloadRequest(**self.model_dump(exclude={"enqueued_at"}))
