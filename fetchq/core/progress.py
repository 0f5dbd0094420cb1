"""
Parses the worker's structured progress lines and folds them into JobMetadata.
"""

import json
import logging
from collections.abc import Iterable
from typing import Any

from fetchq.models.events import ProgressEvent
from fetchq.models.job import JobMetadata

log = logging.getLogger(__name__)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def parse_progress_line(line: str) -> dict[str, Any] | None:
    """Returns the structured record on a line, or None for anything else."""
    text = line.strip()
    if not text:
        return None
    try:
        record = json.loads(text)
    except ValueError:
        return None
    return record if isinstance(record, dict) else None


def apply_progress(metadata: JobMetadata, record: dict[str, Any]) -> None:
    """
    Merges one progress record into ``metadata``.

    A confirmed ``total_bytes`` replaces an estimate; an estimate only fills an
    unknown total or refreshes a previous estimate. ``downloaded_bytes`` never
    moves backwards within one stream; a new ``filename`` starts a new stream.
    """
    filename = record.get("filename")
    if filename and filename != metadata.active_stream:
        if metadata.active_stream is not None:
            metadata.total_bytes = None
            metadata.total_is_estimate = False
            metadata.downloaded_bytes = None
        metadata.active_stream = filename
        metadata.filepath = str(filename)

    info = record.get("info_dict")
    if isinstance(info, dict) and info.get("__real_download") and info.get("filepath"):
        metadata.filepath = str(info["filepath"])

    total = _as_int(record.get("total_bytes"))
    estimate = _as_int(record.get("total_bytes_estimate"))
    if total:
        metadata.total_bytes = total
        metadata.total_is_estimate = False
    elif estimate and (metadata.total_bytes is None or metadata.total_is_estimate):
        metadata.total_bytes = estimate
        metadata.total_is_estimate = True

    downloaded = _as_int(record.get("downloaded_bytes"))
    if downloaded is not None:
        metadata.downloaded_bytes = max(metadata.downloaded_bytes or 0, downloaded)

    if record.get("status") == "finished" and metadata.total_bytes:
        metadata.downloaded_bytes = metadata.total_bytes


class ProgressParser:
    """Turns stdout/stderr lines of one job into metadata updates and events."""

    def __init__(self, job_id: str, metadata: JobMetadata):
        self.job_id = job_id
        self.metadata = metadata

    def feed_stdout(self, line: str) -> ProgressEvent:
        record = parse_progress_line(line)
        if record is None:
            return ProgressEvent(id=self.job_id, line=line)
        try:
            apply_progress(self.metadata, record)
        except (TypeError, ValueError) as e:
            log.debug(f"Ignoring malformed progress record for '{self.job_id}': {e}")
        return ProgressEvent(id=self.job_id, progress=record)

    def feed_stderr(self, chunk: str) -> ProgressEvent:
        self.metadata.append_stderr(chunk)
        return ProgressEvent(id=self.job_id, stderr=chunk)


def aggregate_progress(metadatas: Iterable[JobMetadata]) -> float | None:
    """
    Fraction complete across jobs with a known total; None when no job has one.
    Each job's downloaded bytes are clamped to its total.
    """
    done = 0
    total = 0
    for metadata in metadatas:
        if not metadata.total_bytes:
            continue
        total += metadata.total_bytes
        done += min(metadata.downloaded_bytes or 0, metadata.total_bytes)
    if total <= 0:
        return None
    return done / total
