"""
In-memory structures for running jobs. Nothing here is persisted.
"""

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path

from fetchq.models.history import ERROR_SUMMARY_CHARS
from fetchq.models.request import DownloadRequest

ERROR_TAIL_CHARS = 4000


@dataclass
class JobMetadata:
    """Mutable progress and diagnostics for one running job."""

    filepath: str | None = None
    total_bytes: int | None = None
    total_is_estimate: bool = False
    downloaded_bytes: int | None = None
    active_stream: str | None = None
    last_error_tail: str = ""
    canceled: bool = False

    def append_stderr(self, chunk: str) -> None:
        """Keeps only the last ERROR_TAIL_CHARS characters of stderr."""
        combined = f"{self.last_error_tail}\n{chunk}" if self.last_error_tail else chunk
        self.last_error_tail = combined[-ERROR_TAIL_CHARS:]

    def error_summary(self) -> str | None:
        tail = self.last_error_tail.strip()
        return tail[-ERROR_SUMMARY_CHARS:] if tail else None


@dataclass
class JobHandle:
    """
    Binds a request to its external process. A handle is registered before the
    process is spawned (``process`` is None while starting) so the slot counts
    against capacity from the moment the request leaves the queue.
    """

    request: DownloadRequest
    output_dir: Path
    argv: list[str]
    metadata: JobMetadata = field(default_factory=JobMetadata)
    process: asyncio.subprocess.Process | None = None
    channel: asyncio.Queue = field(default_factory=asyncio.Queue)
    tasks: list[asyncio.Task] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def id(self) -> str:
        return self.request.id

    @property
    def is_spawned(self) -> bool:
        return self.process is not None
