"""
Structured logging for job lifecycle events.
Writes human-readable lines through the standard logger and, optionally,
JSON lines with session context to a log directory.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable events.

    Usage:
        logger = StructuredLogger("fetchq", log_dir=paths.logs_dir)
        logger.info("job_started", job_id="job-abc", url="https://...")
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Enable output through the standard logger
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console

        self._logger = logging.getLogger(name)

        self._json_file = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            json_log_path = log_dir / f"fetchq_{timestamp}.jsonl"
            self._json_file = open(json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all JSON entries."""
        self._session_context.update(kwargs)

    def _format_message(self, event: str, **context) -> str:
        parts = [f"[{event}]"]
        for key, value in context.items():
            if key not in ("level", "timestamp"):
                parts.append(f"{key}={value}")
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }

        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, ValueError) as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def _emit(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            self._logger.log(level, self._format_message(event, **context))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        self._emit(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self._emit(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._emit(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self._emit(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class JobLogger:
    """Specialized logger for job lifecycle events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def job_queued(self, job_id: str, url: str, position: int):
        self.logger.info("job_queued", job_id=job_id, url=url, position=position)

    def job_started(self, job_id: str, url: str, mode: str, output_dir: str):
        self.logger.info(
            "job_started", job_id=job_id, url=url, mode=mode, output_dir=output_dir
        )

    def job_finished(
        self, job_id: str, exit_code: int | None, status: str, duration_s: float
    ):
        self.logger.info(
            "job_finished",
            job_id=job_id,
            exit_code=exit_code,
            status=status,
            duration_s=round(duration_s, 2),
        )

    def job_rejected(self, job_id: str, reason: str | None, error: str):
        self.logger.warning("job_rejected", job_id=job_id, reason=reason, error=error)

    def job_cancel_requested(self, job_id: str, where: str):
        self.logger.info("job_cancel_requested", job_id=job_id, where=where)


class QueueLogger:
    """Specialized logger for queue, resume and power events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def queue_changed(self, action: str, job_id: str | None = None, **context):
        self.logger.debug(f"queue_{action}", job_id=job_id, **context)

    def resume_completed(self, requeued: int, skipped: int):
        self.logger.info("resume_completed", requeued=requeued, skipped=skipped)

    def power_save_changed(self, engaged: bool, running: int):
        event = "power_save_start" if engaged else "power_save_stop"
        self.logger.info(event, running=running)


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, JobLogger, QueueLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, job_logger, queue_logger)
    """
    base = StructuredLogger("fetchq", log_dir=log_dir, enable_json=enable_json)
    return base, JobLogger(base), QueueLogger(base)
