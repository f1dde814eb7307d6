"""Priority queue of sync jobs with a bounded set of running jobs.

Admission order is priority (urgent > high > normal > low), then scheduled
time, then submission order. A job whose (user, account) scope overlaps a
running job is deferred and later jobs may pass it. Jobs scheduled in the
future (retries with backoff) wait until their time has come.
"""

from __future__ import annotations

import bisect
import copy
import itertools
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..models import SyncError, SyncJob, SyncJobStatus, SyncPriority, SyncResult

logger = logging.getLogger(__name__)


class JobNotFoundError(KeyError):
    """No job with the given id is known to the queue."""


class QueueInvariantError(RuntimeError):
    """The running set grew beyond its cap."""


class SyncQueue:
    """Thread-safe job queue.

    Args:
        max_concurrent: Maximum number of running jobs.
        clock: Source of the current time.
        on_admit: Called (outside the lock) with each job moved to running.
    """

    def __init__(
        self,
        max_concurrent: int = 5,
        clock: Callable[[], datetime] = datetime.now,
        on_admit: Optional[Callable[[SyncJob], None]] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.on_admit = on_admit
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: dict[str, SyncJob] = {}
        # Sorted entries: (-priority rank, scheduled_at, seq, job_id)
        self._pending: list[tuple[int, datetime, int, str]] = []
        self._active: dict[str, SyncJob] = {}
        self._seq = itertools.count()

    # Internal helpers (caller holds the lock)

    def _enqueue(self, job: SyncJob) -> None:
        entry = (-job.priority.rank, job.scheduled_at, next(self._seq), job.id)
        bisect.insort(self._pending, entry)

    def _remove_pending(self, job_id: str) -> None:
        self._pending = [e for e in self._pending if e[3] != job_id]

    def _get(self, job_id: str) -> SyncJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(job_id) from None

    def _admit(self) -> list[SyncJob]:
        now = self._clock()
        admitted: list[SyncJob] = []
        for entry in list(self._pending):
            if len(self._active) >= self.max_concurrent:
                break
            job = self._jobs[entry[3]]
            if job.scheduled_at and job.scheduled_at > now:
                continue
            if any(job.overlaps(running) for running in self._active.values()):
                logger.debug("Deferring job %s: scope overlaps a running job", job.id)
                continue
            self._pending.remove(entry)
            job.status = SyncJobStatus.RUNNING
            job.started_at = now
            self._active[job.id] = job
            if len(self._active) > self.max_concurrent:
                raise QueueInvariantError(
                    f"{len(self._active)} running jobs exceeds cap {self.max_concurrent}"
                )
            admitted.append(job)
            logger.info(
                "Admitted job %s (user=%s, type=%s, priority=%s)",
                job.id,
                job.user_id,
                job.type.value,
                job.priority.value,
            )
        return admitted

    def _notify(self, admitted: list[SyncJob]) -> None:
        if self.on_admit is None:
            return
        for job in admitted:
            self.on_admit(job)

    def _finish(self, job_id: str) -> SyncJob:
        job = self._active.pop(job_id, None)
        if job is None:
            self._get(job_id)
            raise ValueError(f"Job {job_id} is not running")
        job.completed_at = self._clock()
        return job

    # Public API

    def submit(self, job: SyncJob) -> str:
        """Add a job. It starts right away if a slot is free and its scope is clear."""
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} was already submitted")
            job.status = SyncJobStatus.PENDING
            if job.scheduled_at is None:
                job.scheduled_at = self._clock()
            self._jobs[job.id] = job
            self._enqueue(job)
            admitted = self._admit()
            if job.status is SyncJobStatus.PENDING:
                job.status = SyncJobStatus.QUEUED
        logger.debug("Submitted job %s (status=%s)", job.id, job.status.value)
        self._notify(admitted)
        return job.id

    def status(self, job_id: str) -> SyncJob:
        """Copy of the job's current state."""
        with self._lock:
            return copy.deepcopy(self._get(job_id))

    def cancel(self, job_id: str) -> bool:
        """Cancel a job that has not started. Running or finished jobs return False."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not job.status.is_waiting:
                return False
            self._remove_pending(job_id)
            job.status = SyncJobStatus.CANCELLED
            job.completed_at = self._clock()
        logger.info("Cancelled job %s", job_id)
        return True

    def snapshot(self) -> list[SyncJob]:
        """Copies of the waiting jobs, in admission order."""
        with self._lock:
            return [copy.deepcopy(self._jobs[e[3]]) for e in self._pending]

    def active(self) -> list[SyncJob]:
        """Copies of the running jobs."""
        with self._lock:
            return [copy.deepcopy(j) for j in self._active.values()]

    def jobs(self, user_id: Optional[str] = None) -> list[SyncJob]:
        """Copies of every known job, oldest first."""
        with self._lock:
            jobs = [j for j in self._jobs.values() if user_id is None or j.user_id == user_id]
            return [copy.deepcopy(j) for j in sorted(jobs, key=lambda j: j.created_at)]

    def complete(self, job_id: str, result: Optional[SyncResult] = None) -> None:
        """Mark a running job completed and admit whatever can run next."""
        with self._lock:
            job = self._finish(job_id)
            job.status = SyncJobStatus.COMPLETED
            if result is not None:
                job.record_result(result)
            admitted = self._admit()
        self._notify(admitted)

    def fail(
        self,
        job_id: str,
        error: Optional[SyncError] = None,
        result: Optional[SyncResult] = None,
    ) -> None:
        """Mark a running job failed and admit whatever can run next."""
        with self._lock:
            job = self._finish(job_id)
            job.status = SyncJobStatus.FAILED
            if result is not None:
                job.record_result(result)
            if error is not None:
                job.error = error
            admitted = self._admit()
        logger.warning(
            "Job %s failed: %s", job_id, job.error.message if job.error else "unknown error"
        )
        self._notify(admitted)

    def retry(
        self,
        job_id: str,
        delay: float,
        priority: Optional[SyncPriority] = None,
        error: Optional[SyncError] = None,
    ) -> datetime:
        """Send a running job back to the queue to run again after ``delay`` seconds.

        Returns:
            The time the job becomes eligible again.
        """
        with self._lock:
            job = self._active.pop(job_id, None)
            if job is None:
                self._get(job_id)
                raise ValueError(f"Job {job_id} is not running")
            job.retry_count += 1
            job.status = SyncJobStatus.RETRYING
            job.started_at = None
            if error is not None:
                job.error = error
            if priority is not None:
                job.priority = priority
            job.scheduled_at = self._clock() + timedelta(seconds=delay)
            self._enqueue(job)
            admitted = self._admit()
            scheduled_at = job.scheduled_at
        logger.info(
            "Job %s scheduled for retry %d in %.1fs (priority=%s)",
            job_id,
            job.retry_count,
            delay,
            job.priority.value,
        )
        self._notify(admitted)
        return scheduled_at

    def admit_ready(self) -> list[SyncJob]:
        """Admit waiting jobs that have become eligible. Returns copies of them."""
        with self._lock:
            admitted = self._admit()
            copies = [copy.deepcopy(j) for j in admitted]
        self._notify(admitted)
        return copies

    def next_scheduled_at(self) -> Optional[datetime]:
        """Earliest future scheduled time among waiting jobs, if any."""
        now = self._clock()
        with self._lock:
            future = [
                self._jobs[e[3]].scheduled_at
                for e in self._pending
                if self._jobs[e[3]].scheduled_at and self._jobs[e[3]].scheduled_at > now
            ]
        return min(future) if future else None

    def counts(self) -> dict[str, int]:
        """Number of known jobs per status."""
        with self._lock:
            counts = {s.value: 0 for s in SyncJobStatus}
            for job in self._jobs.values():
                counts[job.status.value] += 1
            return counts

    @property
    def is_idle(self) -> bool:
        """True when nothing is running or waiting."""
        with self._lock:
            return not self._active and not self._pending
