"""
Job registry for asynchronous mix generation.

A job is created pending when a request is accepted, moves to processing on
its first progress update and ends complete or failed. Terminal jobs never
change again. All access goes through one lock; readers get copies.
"""

import copy
import logging
import random
import string
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
COMPLETE = "complete"
FAILED = "failed"
TERMINAL_STATES = (COMPLETE, FAILED)

# Progress stays below this until the job completes
MAX_RUNNING_PROGRESS = 99

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_job_id() -> str:
    """Unique job id: ``mix-<epoch ms>-<6 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"mix-{int(time.time() * 1000)}-{suffix}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TrackEntry:
    position: int
    artist: str
    title: str
    bpm: Optional[float] = None
    key: Optional[str] = None
    energy: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "artist": self.artist,
            "title": self.title,
            "bpm": self.bpm,
            "key": self.key,
            "energy": self.energy,
        }


@dataclass
class MixResult:
    """Outcome of a completed job."""

    mix_name: str
    mix_url: str
    tracklist: List[TrackEntry]
    duration: float
    transition_count: int
    harmonic_percentage: int

    def to_dict(self) -> dict:
        return {
            "mixName": self.mix_name,
            "mixUrl": self.mix_url,
            "tracklist": [t.to_dict() for t in self.tracklist],
            "duration": round(self.duration, 1),
            "transitionCount": self.transition_count,
            "harmonicPercentage": self.harmonic_percentage,
        }


@dataclass
class Job:
    job_id: str
    prompt: str
    track_count: int
    status: str = PENDING
    progress: int = 0
    progress_message: str = "Job created, waiting to start..."
    result: Optional[MixResult] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_status_dict(self) -> dict:
        """Client-facing status payload."""
        payload = {
            "jobId": self.job_id,
            "status": self.status,
            "progress": self.progress,
            "progressMessage": self.progress_message,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.status == COMPLETE and self.result is not None:
            payload["result"] = self.result.to_dict()
            payload["completedAt"] = self.completed_at.isoformat() if self.completed_at else None
        if self.status == FAILED:
            payload["error"] = self.error
        return payload


class JobManager:
    """Lock-guarded in-memory job store."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, prompt: str, track_count: int) -> Job:
        """
        Register a new pending job.

        Returns:
            Snapshot of the created job
        """
        with self._lock:
            job_id = generate_job_id()
            while job_id in self._jobs:
                job_id = generate_job_id()
            job = Job(job_id=job_id, prompt=prompt, track_count=track_count)
            self._jobs[job_id] = job
            logger.info(f"Created job {job_id} ({track_count} tracks)")
            return copy.deepcopy(job)

    def get(self, job_id: str) -> Optional[Job]:
        """Snapshot of a job, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def update(self, job_id: str, progress: float, message: str) -> None:
        """
        Report progress. Moves pending jobs to processing.

        Progress never decreases and stays below 100 until ``complete``.
        No-op for unknown or terminal jobs.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return
            job.status = PROCESSING
            clamped = int(max(0, min(MAX_RUNNING_PROGRESS, progress)))
            job.progress = max(job.progress, clamped)
            job.progress_message = message
            job.updated_at = _now()
        logger.debug(f"Job {job_id}: {int(progress)}% {message}")

    def complete(self, job_id: str, result: MixResult) -> None:
        """Mark a job complete. No-op if unknown or already terminal."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return
            job.status = COMPLETE
            job.progress = 100
            job.progress_message = "Mix complete!"
            job.result = result
            job.updated_at = job.completed_at = _now()
        logger.info(f"✅ Job {job_id} complete: {result.mix_name}")

    def fail(self, job_id: str, message: str) -> None:
        """Mark a job failed. No-op if unknown or already terminal."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return
            job.status = FAILED
            job.error = message
            job.progress_message = f"Error: {message}"
            job.updated_at = job.completed_at = _now()
        logger.warning(f"Job {job_id} failed: {message}")

    def list_recent(self, limit: int = 10) -> List[Job]:
        """Most recently updated jobs first."""
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.updated_at, reverse=True)
            return [copy.deepcopy(j) for j in jobs[:limit]]

    def cleanup(self, max_age_hours: float = 24) -> int:
        """
        Drop terminal jobs older than ``max_age_hours``.

        Returns:
            Number of jobs removed
        """
        cutoff = _now() - timedelta(hours=max_age_hours)
        with self._lock:
            stale = [
                job_id for job_id, job in self._jobs.items()
                if job.is_terminal and job.updated_at < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        if stale:
            logger.info(f"Cleaned up {len(stale)} old jobs")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
