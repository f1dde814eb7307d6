"""Periodic incremental syncs per user."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from ..models import SyncJob, SyncPriority, SyncType

logger = logging.getLogger(__name__)


class SyncFrequency(Enum):
    REAL_TIME = "real_time"  # driven by provider webhooks, never by the scheduler
    EVERY_15_MINUTES = "every_15_minutes"
    EVERY_30_MINUTES = "every_30_minutes"
    HOURLY = "hourly"
    EVERY_4_HOURS = "every_4_hours"
    DAILY = "daily"
    MANUAL = "manual"

    @property
    def interval(self) -> Optional[timedelta]:
        """Time between scheduled syncs, or None if the scheduler never fires."""
        return _INTERVALS.get(self)

    @classmethod
    def from_interval(cls, interval: timedelta) -> SyncFrequency:
        """Shortest periodic frequency that is not more frequent than ``interval``."""
        periodic = sorted(_INTERVALS.items(), key=lambda item: item[1])
        for frequency, value in periodic:
            if value >= interval:
                return frequency
        return periodic[-1][0]


_INTERVALS = {
    SyncFrequency.EVERY_15_MINUTES: timedelta(minutes=15),
    SyncFrequency.EVERY_30_MINUTES: timedelta(minutes=30),
    SyncFrequency.HOURLY: timedelta(hours=1),
    SyncFrequency.EVERY_4_HOURS: timedelta(hours=4),
    SyncFrequency.DAILY: timedelta(days=1),
}


@dataclass
class UserSyncConfig:
    """Scheduling settings for one user."""

    user_id: str
    credentials_ref: str
    provider: str = "plaid"
    account_ids: list[str] = field(default_factory=list)
    frequency: SyncFrequency = SyncFrequency.EVERY_30_MINUTES
    enabled: bool = True
    last_sync: Optional[datetime] = None
    next_sync: Optional[datetime] = None


class SyncScheduler:
    """Submits low-priority incremental jobs for users whose next sync is due.

    Call ``tick()`` periodically (e.g. from a timer or a cron-style loop).

    Args:
        submit: Where jobs go; usually ``SyncWorkerPool.submit`` or ``SyncQueue.submit``.
        clock: Source of the current time.
    """

    def __init__(
        self,
        submit: Callable[[SyncJob], str],
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._submit = submit
        self._clock = clock
        self._lock = threading.Lock()
        self._configs: dict[str, UserSyncConfig] = {}

    def _next_sync(self, frequency: SyncFrequency) -> Optional[datetime]:
        interval = frequency.interval
        return self._clock() + interval if interval else None

    def configure(
        self,
        user_id: str,
        credentials_ref: str,
        frequency: SyncFrequency = SyncFrequency.EVERY_30_MINUTES,
        enabled: bool = True,
        provider: str = "plaid",
        account_ids: Optional[list[str]] = None,
    ) -> UserSyncConfig:
        """Create or replace a user's schedule. The first sync is one interval away."""
        config = UserSyncConfig(
            user_id=user_id,
            credentials_ref=credentials_ref,
            provider=provider,
            account_ids=list(account_ids or []),
            frequency=frequency,
            enabled=enabled,
            next_sync=self._next_sync(frequency),
        )
        with self._lock:
            previous = self._configs.get(user_id)
            if previous is not None:
                config.last_sync = previous.last_sync
            self._configs[user_id] = config
        logger.info(
            "Configured sync for user %s: frequency=%s enabled=%s",
            user_id,
            frequency.value,
            enabled,
        )
        return config

    def get(self, user_id: str) -> Optional[UserSyncConfig]:
        with self._lock:
            return self._configs.get(user_id)

    def pause(self, user_id: str) -> bool:
        """Stop scheduled syncs for a user. False if the user has no schedule."""
        with self._lock:
            config = self._configs.get(user_id)
            if config is None:
                return False
            config.enabled = False
        logger.info("Paused sync for user %s", user_id)
        return True

    def resume(self, user_id: str) -> bool:
        """Re-enable scheduled syncs; the next one is a full interval away."""
        with self._lock:
            config = self._configs.get(user_id)
            if config is None:
                return False
            config.enabled = True
            config.next_sync = self._next_sync(config.frequency)
        logger.info("Resumed sync for user %s", user_id)
        return True

    def due(self) -> list[UserSyncConfig]:
        now = self._clock()
        with self._lock:
            return [
                c
                for c in self._configs.values()
                if c.enabled and c.next_sync is not None and c.next_sync <= now
            ]

    def tick(self) -> list[str]:
        """Submit a job for every due user. Returns the submitted job ids."""
        job_ids = []
        for config in self.due():
            job = SyncJob(
                user_id=config.user_id,
                credentials_ref=config.credentials_ref,
                provider=config.provider,
                account_ids=list(config.account_ids),
                type=SyncType.INCREMENTAL,
                priority=SyncPriority.LOW,
            )
            try:
                job_ids.append(self._submit(job))
            except ValueError as e:
                logger.warning("Scheduled sync for user %s not submitted: %s", config.user_id, e)
                continue
            with self._lock:
                config.last_sync = self._clock()
                config.next_sync = self._next_sync(config.frequency)
            logger.debug("Scheduled sync job %s for user %s", job.id, config.user_id)
        return job_ids
