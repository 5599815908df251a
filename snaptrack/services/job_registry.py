"""In-memory render job registry.

Job state lives only for the lifetime of the process. Each job has exactly one
writer (the supervisor running it); pollers read copies.
"""

import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    """Render job status."""

    INITIALIZING = "initializing"
    RENDERING = "rendering"
    COMPLETED = "completed"
    ERROR = "error"
    NOT_FOUND = "not_found"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """Point-in-time state of a render job."""

    job_id: str
    status: JobStatus = JobStatus.INITIALIZING
    progress: int = 0
    eta: int = 0
    url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the polling payload."""
        if self.status is JobStatus.NOT_FOUND:
            return {"status": self.status.value}
        data: dict[str, Any] = {
            "status": self.status.value,
            "progress": self.progress,
            "eta": self.eta,
        }
        if self.url:
            data["url"] = self.url
        if self.error:
            data["error"] = self.error
        return data


NOT_FOUND = Job(job_id="", status=JobStatus.NOT_FOUND)


class JobRegistry:
    """Thread-safe map from job id to Job."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._last_id = 0

    def issue_id(self) -> str:
        """Return a new job id, strictly greater than every id issued before."""
        with self._lock:
            candidate = time.time_ns() // 1_000_000
            self._last_id = max(candidate, self._last_id + 1)
            return str(self._last_id)

    def create(self, job_id: str) -> Job:
        with self._lock:
            job = Job(job_id=job_id)
            self._jobs[job_id] = job
            return replace(job)

    def get(self, job_id: str) -> Job:
        """Return a copy of the job, or a copy of NOT_FOUND."""
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job if job else NOT_FOUND)

    def jobs(self) -> list[Job]:
        with self._lock:
            return [replace(job) for job in self._jobs.values()]

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def mark_rendering(self, job_id: str) -> bool:
        return self._mutate(job_id, status=JobStatus.RENDERING)

    def update_progress(self, job_id: str, progress: int, eta: int) -> bool:
        """Record live progress; the job is (or becomes) rendering."""
        return self._mutate(
            job_id,
            status=JobStatus.RENDERING,
            progress=max(0, min(int(progress), 100)),
            eta=max(0, int(eta)),
        )

    def complete(self, job_id: str, url: str) -> bool:
        return self._mutate(job_id, status=JobStatus.COMPLETED, progress=100, eta=0, url=url)

    def fail(self, job_id: str, error: Optional[str] = None) -> bool:
        return self._mutate(job_id, status=JobStatus.ERROR, eta=0, error=error)

    def _mutate(self, job_id: str, **changes: Any) -> bool:
        """Apply changes unless the job is unknown or already terminal."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.is_terminal:
                return False
            for key, value in changes.items():
                setattr(job, key, value)
            job.updated_at = _now()
            return True
