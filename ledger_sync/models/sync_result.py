"""Results, progress and statistics emitted by the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .reconciliation import DuplicateDetectionResult


@dataclass
class SyncError:
    """Error surfaced on a sync result."""

    code: str
    message: str
    retryable: bool = False
    retry_after: Optional[float] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PartialFailure:
    """One account that failed while the rest of the job continued."""

    account_id: str
    error: SyncError
    attempts: int = 1


@dataclass
class ConflictRecord:
    """Audit entry for a local/provider conflict that was resolved."""

    record_id: str
    conflict_fields: list[str]
    strategy: str


@dataclass
class SyncResult:
    """Outcome of a sync_accounts / sync_transactions / run_job call."""

    user_id: str = ""
    job_id: Optional[str] = None
    success: bool = False
    accounts_processed: int = 0
    accounts_succeeded: int = 0
    accounts_failed: int = 0
    transactions_processed: int = 0
    transactions_added: int = 0
    transactions_updated: int = 0
    duplicates_detected: int = 0
    batches_processed: int = 0
    records_skipped: int = 0
    retry_attempts: int = 0
    partial_failures: list[PartialFailure] = field(default_factory=list)
    conflicts: list[ConflictRecord] = field(default_factory=list)
    review_queue: list[DuplicateDetectionResult] = field(default_factory=list)
    # Active accounts stored by an account pass
    synced_account_ids: list[str] = field(default_factory=list)
    error: Optional[SyncError] = None
    requires_reauth: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def duration(self) -> Optional[float]:
        """Wall-clock seconds, once completed."""
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def merge(self, other: SyncResult) -> None:
        """Fold a sub-result (e.g. the transaction pass of a full sync) into this one."""
        self.accounts_processed = max(self.accounts_processed, other.accounts_processed)
        self.accounts_succeeded = max(self.accounts_succeeded, other.accounts_succeeded)
        self.accounts_failed = max(self.accounts_failed, other.accounts_failed)
        self.transactions_processed += other.transactions_processed
        self.transactions_added += other.transactions_added
        self.transactions_updated += other.transactions_updated
        self.duplicates_detected += other.duplicates_detected
        self.batches_processed += other.batches_processed
        self.records_skipped += other.records_skipped
        self.retry_attempts += other.retry_attempts
        self.partial_failures.extend(other.partial_failures)
        self.conflicts.extend(other.conflicts)
        self.review_queue.extend(other.review_queue)
        self.synced_account_ids.extend(
            a for a in other.synced_account_ids if a not in self.synced_account_ids
        )
        self.requires_reauth = self.requires_reauth or other.requires_reauth
        if other.error and not self.error:
            self.error = other.error


@dataclass
class SyncProgress:
    """Queryable progress of a running job."""

    percentage: int = 0
    current_step: str = "Initializing"


@dataclass
class ProviderStats:
    syncs: int = 0
    successes: int = 0
    failures: int = 0
    avg_duration: float = 0.0


@dataclass
class SyncStatistics:
    """Per-user aggregate of finished sync jobs."""

    user_id: str
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    average_duration: float = 0.0
    last_successful_sync: Optional[datetime] = None
    last_failed_sync: Optional[datetime] = None
    total_records_processed: int = 0
    total_errors: int = 0
    provider_stats: dict[str, ProviderStats] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.total_syncs == 0:
            return 0.0
        return self.successful_syncs / self.total_syncs

    def record(self, provider: str, result: SyncResult) -> None:
        """Fold one finished result into the running averages."""
        duration = result.duration or 0.0
        self.total_syncs += 1
        self.total_records_processed += result.transactions_processed
        self.total_errors += len(result.partial_failures) + (1 if result.error else 0)
        if result.success:
            self.successful_syncs += 1
            self.last_successful_sync = result.completed_at
        else:
            self.failed_syncs += 1
            self.last_failed_sync = result.completed_at
        self.average_duration += (duration - self.average_duration) / self.total_syncs

        stats = self.provider_stats.setdefault(provider, ProviderStats())
        stats.syncs += 1
        if result.success:
            stats.successes += 1
        else:
            stats.failures += 1
        stats.avg_duration += (duration - stats.avg_duration) / stats.syncs
