"""Sync job entity and its lifecycle enums."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .sync_result import SyncError, SyncResult


class SyncType(Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    BALANCES_ONLY = "balances_only"
    TRANSACTIONS_ONLY = "transactions_only"


class SyncPriority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is admitted first."""
        return _PRIORITY_RANK[self]

    def lower(self) -> SyncPriority:
        """One level lower, bottoming out at LOW."""
        ordered = sorted(SyncPriority, key=lambda p: p.rank)
        return ordered[max(self.rank - 1, 0)]


_PRIORITY_RANK = {
    SyncPriority.LOW: 0,
    SyncPriority.NORMAL: 1,
    SyncPriority.HIGH: 2,
    SyncPriority.URGENT: 3,
}


class SyncJobStatus(Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RETRYING = "retrying"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncJobStatus.COMPLETED, SyncJobStatus.FAILED, SyncJobStatus.CANCELLED)

    @property
    def is_waiting(self) -> bool:
        """True while the job sits in the pending queue."""
        return self in (SyncJobStatus.PENDING, SyncJobStatus.QUEUED, SyncJobStatus.RETRYING)


@dataclass
class SyncJob:
    """Unit of sync work for one user and account scope.

    Owned by the sync queue and engine. Callers get copies from
    ``SyncQueue.status`` and must not mutate the queue's instance.
    """

    user_id: str
    credentials_ref: str
    provider: str = "plaid"
    item_id: Optional[str] = None
    account_ids: list[str] = field(default_factory=list)
    type: SyncType = SyncType.INCREMENTAL
    priority: SyncPriority = SyncPriority.NORMAL
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SyncJobStatus = SyncJobStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    call_timeout: Optional[float] = None

    # Counters copied from the last SyncResult
    accounts_processed: int = 0
    accounts_succeeded: int = 0
    accounts_failed: int = 0
    transactions_processed: int = 0
    transactions_added: int = 0
    transactions_updated: int = 0
    duplicates_detected: int = 0
    batches_processed: int = 0

    retry_count: int = 0
    max_retries: int = 3
    error: Optional[SyncError] = None

    def overlaps(self, other: SyncJob) -> bool:
        """True if both jobs touch at least one common (user, account) pair.

        An empty ``account_ids`` means every account of the user.
        """
        if self.user_id != other.user_id:
            return False
        if not self.account_ids or not other.account_ids:
            return True
        return bool(set(self.account_ids) & set(other.account_ids))

    def record_result(self, result: SyncResult) -> None:
        """Copy result counters onto the job."""
        self.accounts_processed = result.accounts_processed
        self.accounts_succeeded = result.accounts_succeeded
        self.accounts_failed = result.accounts_failed
        self.transactions_processed = result.transactions_processed
        self.transactions_added = result.transactions_added
        self.transactions_updated = result.transactions_updated
        self.duplicates_detected = result.duplicates_detected
        self.batches_processed = result.batches_processed
        self.error = result.error
