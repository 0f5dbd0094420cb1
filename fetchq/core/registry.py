"""
In-memory map of running jobs. Presence here is the sole definition of "running".
"""

from collections.abc import Iterator

from fetchq.exceptions import ValidationError
from fetchq.models.job import JobHandle


class JobRegistry:
    """Holds one JobHandle per running (or starting) job, keyed by request id."""

    def __init__(self):
        self._jobs: dict[str, JobHandle] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def __iter__(self) -> Iterator[JobHandle]:
        return iter(list(self._jobs.values()))

    def ids(self) -> list[str]:
        return list(self._jobs)

    def get(self, job_id: str) -> JobHandle | None:
        return self._jobs.get(job_id)

    def reserve(self, handle: JobHandle) -> None:
        """Registers a handle before its process is spawned."""
        if handle.id in self._jobs:
            raise ValidationError(
                f"Job '{handle.id}' is already running.", reason="duplicate_id"
            )
        self._jobs[handle.id] = handle

    def release(self, job_id: str) -> JobHandle | None:
        return self._jobs.pop(job_id, None)
