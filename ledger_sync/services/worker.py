"""Worker pool that runs admitted sync jobs with bounded concurrency."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from ..config import QueueConfig
from ..models import SyncError, SyncJob, SyncResult
from .queue import SyncQueue
from .sync import SyncEngine

logger = logging.getLogger(__name__)

# Error codes that retrying the whole job will not fix
_NON_RETRYABLE_CODES = {"CONSENT_REQUIRED", "INVALID_CREDENTIALS"}


class SyncWorkerPool:
    """Drains a SyncQueue on a thread pool sized to the queue's cap.

    The pool registers itself as the queue's admission callback: whenever the
    queue moves a job to running, the job is handed to a worker thread. Failed
    jobs are retried with exponential backoff; rate-limited jobs get one more
    attempt at a lower priority.
    """

    def __init__(
        self,
        queue: SyncQueue,
        engine: SyncEngine,
        config: Optional[QueueConfig] = None,
    ):
        self._queue = queue
        self._engine = engine
        self._config = config or QueueConfig()
        self._executor = ThreadPoolExecutor(
            max_workers=queue.max_concurrent, thread_name_prefix="ledger-sync"
        )
        self._lock = threading.Lock()
        self._futures: dict[str, Future] = {}
        self._timers: list[threading.Timer] = []
        self._rate_limit_requeued: set[str] = set()
        self._results: dict[str, SyncResult] = {}
        self._idle = threading.Condition(self._lock)
        self._closed = False
        queue.on_admit = self._dispatch

    def submit(self, job: SyncJob) -> str:
        """Queue a job for execution."""
        return self._queue.submit(job)

    def result(self, job_id: str) -> Optional[SyncResult]:
        """Result of the job's last run, if it has run."""
        with self._lock:
            return self._results.get(job_id)

    def _dispatch(self, job: SyncJob) -> None:
        with self._lock:
            closed = self._closed
            if not closed:
                self._futures[job.id] = self._executor.submit(self._run, job)
        if closed:
            # Failing the job re-enters _dispatch for the next admitted job
            logger.warning("Pool is shut down; job %s will not run", job.id)
            self._queue.fail(
                job.id, SyncError(code="SHUTDOWN", message="Worker pool shut down", retryable=False)
            )

    def _run(self, job: SyncJob) -> None:
        try:
            result = self._engine.run_job(job)
        except Exception as e:
            logger.exception("Sync job %s crashed", job.id)
            result = SyncResult(user_id=job.user_id, job_id=job.id, success=False)
            result.error = SyncError(code="SYNC_ERROR", message=str(e), retryable=False)

        # The job stays active in the queue until settled, so wait() cannot
        # observe an idle pool between these two steps
        with self._lock:
            self._results[job.id] = result
            self._futures.pop(job.id, None)
        try:
            self._settle(job, result)
        finally:
            with self._lock:
                self._idle.notify_all()

    def _settle(self, job: SyncJob, result: SyncResult) -> None:
        if result.success:
            self._queue.complete(job.id, result)
            return

        error = result.error or SyncError(code="SYNC_ERROR", message="Sync failed")
        if error.code == "RATE_LIMIT_EXCEEDED" and job.id not in self._rate_limit_requeued:
            self._rate_limit_requeued.add(job.id)
            delay = error.retry_after or self._config.retry_base_delay_seconds
            self._schedule_retry(job, delay, error, lower_priority=True)
            return
        retryable = (
            error.retryable
            and error.code not in _NON_RETRYABLE_CODES
            and not result.requires_reauth
            and error.code != "RATE_LIMIT_EXCEEDED"
        )
        if retryable and job.retry_count < job.max_retries:
            delay = self._config.retry_base_delay_seconds * (2**job.retry_count)
            self._schedule_retry(job, delay, error)
            return
        self._queue.fail(job.id, error, result)

    def _schedule_retry(
        self, job: SyncJob, delay: float, error: SyncError, lower_priority: bool = False
    ) -> None:
        priority = job.priority.lower() if lower_priority else None
        self._queue.retry(job.id, delay, priority=priority, error=error)
        timer = threading.Timer(delay, self._queue.admit_ready)
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is idle. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._futures or not self._queue.is_idle:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                # Poll as well: cancellations and retry timers do not notify
                self._idle.wait(0.05 if remaining is None else min(remaining, 0.05))
            return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> SyncWorkerPool:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
