"""Sync engine for pulling aggregator data into the local store.

Provides the sync operations the queue and CLI drive:
- sync_accounts: refresh accounts and balances
- sync_transactions: fetch transactions per account and reconcile each
  record against the store (update, merge into a duplicate, hold for review,
  or insert)
- run_job: execute a queued SyncJob by type and keep per-user statistics

Errors never escape sync_accounts / sync_transactions; they are reported on
the returned SyncResult.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, TypeVar

from tqdm import tqdm

from ..clients.errors import (
    AuthenticationError,
    ErrorKind,
    ProviderError,
    RecordError,
    classify_error,
    error_code,
)
from ..clients.protocols import ConsentGate, ConsentType, Permission, ProviderClient, Store
from ..config import Config
from ..models import (
    Account,
    AccountActivity,
    ConflictRecord,
    DateRange,
    PartialFailure,
    RecommendedAction,
    SyncError,
    SyncJob,
    SyncProgress,
    SyncResult,
    SyncStatistics,
    SyncType,
    Transaction,
)
from .conflicts import resolve
from .duplicates import DuplicateDetector
from .normalizer import normalize_account, normalize_transaction
from .quality import calculate_quality_score
from .transformer import DataTransformer

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUIRED_PERMISSIONS = [Permission.READ_ACCOUNTS, Permission.READ_TRANSACTIONS]


@dataclass
class _SyncContext:
    """Per-call state threaded through one sync operation."""

    user_id: str
    access_token: str
    result: SyncResult
    timeout: Optional[float]
    job_id: Optional[str] = None
    rate_limit_hits: int = 0


def calculate_optimal_sync_frequency(
    activity: AccountActivity, now: Optional[datetime] = None
) -> timedelta:
    """Suggest how often an account should be synced.

    Busy accounts (5+ transactions a day, or activity in the last day) every
    15 minutes, quiet ones (nothing in 3 days) every 4 hours, the rest hourly.
    """
    now = now or datetime.now()
    last = activity.last_transaction_date
    if activity.avg_daily_transactions >= 5 or (last is not None and now - last <= timedelta(days=1)):
        return timedelta(minutes=15)
    if last is None or now - last > timedelta(days=3):
        return timedelta(hours=4)
    return timedelta(hours=1)


class SyncEngine:
    """Executes sync work against one provider and one store.

    Args:
        provider: Aggregator adapter.
        store: Persistence for accounts, transactions and sync watermarks.
        consent: Consent gate checked before any provider call.
        transformer: Enrichment pipeline (a default one is built if omitted).
        detector: Duplicate detector (built from config if omitted).
        config: Full configuration; only sync/retry/duplicates sections are used.
        sleep: Used for backoff waits; tests pass a recorder.
        clock: Source of the current time.
        show_progress: Show a tqdm bar per account while syncing transactions.
    """

    def __init__(
        self,
        provider: ProviderClient,
        store: Store,
        consent: ConsentGate,
        transformer: Optional[DataTransformer] = None,
        detector: Optional[DuplicateDetector] = None,
        config: Optional[Config] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
        show_progress: bool = False,
    ):
        self._provider = provider
        self._store = store
        self._consent = consent
        self._config = config or Config()
        self._transformer = transformer or DataTransformer()
        self._detector = detector or DuplicateDetector(self._config.duplicates)
        self._sleep = sleep
        self._clock = clock
        self._show_progress = show_progress
        self._lock = threading.Lock()
        self._progress: dict[str, SyncProgress] = {}
        self._statistics: dict[str, SyncStatistics] = {}

    @property
    def provider_name(self) -> str:
        return getattr(self._provider, "provider", "unknown")

    # Progress and statistics

    def _set_progress(self, job_id: Optional[str], percentage: int, step: str) -> None:
        if job_id is None:
            return
        with self._lock:
            self._progress[job_id] = SyncProgress(percentage=percentage, current_step=step)

    def get_sync_progress(self, job_id: str) -> Optional[SyncProgress]:
        """Progress of a job run by this engine, or None if it never ran here."""
        with self._lock:
            progress = self._progress.get(job_id)
            return SyncProgress(progress.percentage, progress.current_step) if progress else None

    def get_sync_statistics(self, user_id: str) -> SyncStatistics:
        """Aggregate statistics of the user's finished jobs."""
        with self._lock:
            stats = self._statistics.get(user_id)
            if stats is None:
                return SyncStatistics(user_id=user_id)
            return copy.deepcopy(stats)

    def calculate_optimal_sync_frequency(self, activity: AccountActivity) -> timedelta:
        return calculate_optimal_sync_frequency(activity, now=self._clock())

    # Provider calls with retry

    def _call(self, ctx: _SyncContext, what: str, fn: Callable[[], T]) -> T:
        """Invoke a provider call, retrying transient and rate-limit errors."""
        retry = self._config.retry
        attempt = 0
        rate_limit_retried = False
        while True:
            attempt += 1
            try:
                return fn()
            except Exception as e:
                kind = classify_error(e)
                if kind is ErrorKind.TRANSIENT and attempt < retry.max_attempts:
                    delay = retry.delay_for(attempt)
                    ctx.result.retry_attempts += 1
                    logger.warning(
                        "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                        what,
                        attempt,
                        retry.max_attempts,
                        e,
                        delay,
                    )
                    self._sleep(delay)
                    continue
                if kind is ErrorKind.RATE_LIMITED and not rate_limit_retried:
                    floor = retry.rate_limit_floor_seconds * (2**ctx.rate_limit_hits)
                    wait = max(getattr(e, "retry_after", None) or 0.0, floor)
                    ctx.rate_limit_hits += 1
                    if wait > retry.rate_limit_max_wait_seconds:
                        logger.warning(
                            "%s rate limited; required wait %.1fs exceeds limit", what, wait
                        )
                        raise
                    rate_limit_retried = True
                    ctx.result.retry_attempts += 1
                    logger.warning("%s rate limited; waiting %.1fs", what, wait)
                    self._sleep(wait)
                    continue
                raise

    # Result helpers

    @staticmethod
    def _to_sync_error(exc: BaseException) -> SyncError:
        kind = classify_error(exc)
        return SyncError(
            code=error_code(exc),
            message=str(exc) or type(exc).__name__,
            retryable=kind.retryable,
            retry_after=getattr(exc, "retry_after", None),
        )

    def _check_consent(self, user_id: str, result: SyncResult) -> bool:
        if self._consent.has_consent(user_id, ConsentType.FINANCIAL_DATA, REQUIRED_PERMISSIONS):
            return True
        logger.warning("User %s has not granted financial data consent", user_id)
        result.error = SyncError(
            code="CONSENT_REQUIRED",
            message="User consent required for financial data access",
            retryable=False,
        )
        return False

    def _top_level_failure(self, ctx: _SyncContext, exc: Exception, what: str) -> None:
        kind = classify_error(exc)
        ctx.result.error = self._to_sync_error(exc)
        if kind is ErrorKind.AUTHENTICATION:
            ctx.result.requires_reauth = True
            logger.warning("%s: credentials rejected for user %s", what, ctx.user_id)
        elif kind is ErrorKind.PERMANENT and not isinstance(exc, ProviderError):
            logger.exception("%s failed for user %s", what, ctx.user_id)
        else:
            logger.warning("%s failed for user %s: %s", what, ctx.user_id, exc)

    def _finish(self, result: SyncResult) -> SyncResult:
        result.completed_at = self._clock()
        logger.info(
            "Sync for %s finished: success=%s accounts=%d/%d txns processed=%d added=%d "
            "updated=%d duplicates=%d skipped=%d",
            result.user_id,
            result.success,
            result.accounts_succeeded,
            result.accounts_processed,
            result.transactions_processed,
            result.transactions_added,
            result.transactions_updated,
            result.duplicates_detected,
            result.records_skipped,
        )
        return result

    # Accounts

    def _fetch_accounts(self, ctx: _SyncContext) -> list[Account]:
        raw_accounts = self._call(
            ctx,
            "get_accounts",
            lambda: self._provider.get_accounts(ctx.access_token, timeout=ctx.timeout),
        )
        accounts = []
        for raw in raw_accounts:
            try:
                accounts.append(normalize_account(raw, ctx.user_id, self.provider_name))
            except RecordError as e:
                ctx.result.records_skipped += 1
                logger.warning("Skipping malformed account record: %s", e)
        return accounts

    def sync_accounts(
        self,
        user_id: str,
        credentials_ref: str,
        account_ids: Optional[list[str]] = None,
        job_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> SyncResult:
        """Refresh the user's accounts (and balances) from the provider."""
        result = SyncResult(user_id=user_id, job_id=job_id, started_at=self._clock())
        if not self._check_consent(user_id, result):
            return self._finish(result)

        ctx = _SyncContext(
            user_id=user_id,
            access_token=credentials_ref,
            result=result,
            timeout=timeout or self._config.sync.provider_timeout_seconds,
            job_id=job_id,
        )
        self._set_progress(job_id, 5, "Fetching accounts")
        try:
            accounts = self._fetch_accounts(ctx)
        except Exception as e:
            self._top_level_failure(ctx, e, "Account sync")
            return self._finish(result)

        if account_ids:
            accounts = [a for a in accounts if a.id in account_ids]
        for account in accounts:
            result.accounts_processed += 1
            try:
                self._store.upsert_account(account)
            except Exception as e:
                logger.exception("Failed to store account %s", account.id)
                result.accounts_failed += 1
                result.partial_failures.append(PartialFailure(account.id, self._to_sync_error(e)))
                continue
            result.accounts_succeeded += 1
            if account.is_active:
                result.synced_account_ids.append(account.id)

        result.success = result.accounts_failed == 0 or result.accounts_succeeded > 0
        return self._finish(result)

    # Transactions

    def _date_range(self, user_id: str, account_id: str, sync_type: SyncType) -> DateRange:
        now = self._clock()
        sync_cfg = self._config.sync
        if sync_type is SyncType.INCREMENTAL:
            last_synced = self._store.get_last_synced(user_id, account_id)
            if last_synced is not None:
                start = min(last_synced - timedelta(days=sync_cfg.sync_overlap_days), now)
                logger.debug(
                    "Incremental sync of %s: last_synced=%s, since=%s", account_id, last_synced, start
                )
                return DateRange(start, now)
            logger.debug("No sync state for %s, fetching full history window", account_id)
        return DateRange.last_days(sync_cfg.full_history_days, now)

    def _dedup_window(self, account_id: str, batch: list[Transaction]) -> list[Transaction]:
        """Existing records that could be duplicates of anything in the batch.

        Records already linked to a distinct posted transaction of this provider
        are left out: the provider reports them as different transactions.
        """
        days = self._config.duplicates.window_days
        start = min(t.date for t in batch) - timedelta(days=days)
        end = max(t.date for t in batch) + timedelta(days=days)
        existing = self._store.find_window(account_id, DateRange(start, end))
        return [t for t in existing if self._is_dedup_target(t)]

    def _is_dedup_target(self, txn: Transaction) -> bool:
        return txn.provider_transaction_id is None or txn.provider != self.provider_name or txn.pending

    def _reconcile_existing(
        self, ctx: _SyncContext, local: Transaction, incoming: Transaction
    ) -> Transaction:
        strategy = self._config.sync.conflict_strategy
        resolved = resolve(local, incoming, strategy)
        record = resolved.record
        record.quality_score = calculate_quality_score(record, now=self._clock()).overall_score
        self._store.upsert(record)
        if resolved.has_conflicts:
            ctx.result.conflicts.append(
                ConflictRecord(record.id, list(resolved.conflict_fields), strategy.value)
            )
        return record

    def _process_batch(self, ctx: _SyncContext, account_id: str, raw_batch: list[dict]) -> None:
        result = ctx.result
        candidates: list[Transaction] = []
        for raw in raw_batch:
            result.transactions_processed += 1
            try:
                txn = normalize_transaction(raw, ctx.user_id, self.provider_name)
                enriched, _ = self._transformer.transform(txn)
            except RecordError as e:
                result.records_skipped += 1
                logger.warning("Skipping malformed transaction record: %s", e)
                continue
            except Exception:
                result.records_skipped += 1
                logger.exception("Skipping transaction record that failed to process")
                continue
            candidates.append(enriched)

        if not candidates:
            return
        window = self._dedup_window(account_id, candidates)

        for txn in candidates:
            existing = self._store.find_by_provider_id(txn.provider_transaction_id)
            if existing is not None:
                self._reconcile_existing(ctx, existing, txn)
                result.transactions_updated += 1
                logger.debug("UPDATE txn %s (provider id %s)", existing.id, txn.provider_transaction_id)
                continue

            detection = self._detector.detect(txn, window)
            if detection.recommended_action is RecommendedAction.MERGE:
                target = next(t for t in window if t.id == detection.best_match_id)
                merged = self._reconcile_existing(ctx, target, txn)
                window = [t for t in window if t.id != merged.id]
                result.duplicates_detected += 1
                logger.debug(
                    "MERGE provider txn %s into %s (confidence %.2f)",
                    txn.provider_transaction_id,
                    merged.id,
                    detection.confidence,
                )
                continue
            if detection.recommended_action is RecommendedAction.MANUAL_REVIEW:
                txn.needs_review = True
                txn.review_candidate_ids = list(detection.duplicate_ids)
                self._store.upsert(txn)
                result.transactions_added += 1
                result.duplicates_detected += 1
                result.review_queue.append(detection)
                logger.info(
                    "Flagged provider txn %s for review: looks like %s (confidence %.2f)",
                    txn.provider_transaction_id,
                    ", ".join(detection.duplicate_ids),
                    detection.confidence,
                )
                continue

            self._store.upsert(txn)
            result.transactions_added += 1
            if self._is_dedup_target(txn):
                window.append(txn)
            logger.debug("INSERT txn %s (%s %.2f)", txn.id, txn.description, txn.amount)

    def _sync_account_transactions(
        self,
        ctx: _SyncContext,
        account_id: str,
        sync_type: SyncType,
        position: tuple[int, int],
    ) -> None:
        sync_cfg = self._config.sync
        date_range = self._date_range(ctx.user_id, account_id, sync_type)
        index, count = position
        offset = 0
        total: Optional[int] = None

        with tqdm(
            desc=f"Syncing {account_id}", unit="txn", disable=not self._show_progress
        ) as pbar:
            while total is None or offset < total:
                page = self._call(
                    ctx,
                    f"get_transactions({account_id})",
                    lambda: self._provider.get_transactions(
                        ctx.access_token,
                        date_range,
                        [account_id],
                        offset=offset,
                        count=sync_cfg.page_size,
                        timeout=ctx.timeout,
                    ),
                )
                total = page.total_transactions
                pbar.total = total
                if not page.transactions:
                    break
                for start in range(0, len(page.transactions), sync_cfg.batch_size):
                    batch = page.transactions[start : start + sync_cfg.batch_size]
                    self._process_batch(ctx, account_id, batch)
                    ctx.result.batches_processed += 1
                    pbar.update(len(batch))
                    done = min(offset + start + len(batch), total)
                    fraction = (index + done / max(total, 1)) / count
                    self._set_progress(
                        ctx.job_id,
                        min(int(10 + fraction * 85), 99),
                        f"Processing transactions for {account_id} ({done}/{total})",
                    )
                offset += len(page.transactions)

    def sync_transactions(
        self,
        user_id: str,
        credentials_ref: str,
        account_ids: Optional[list[str]] = None,
        sync_type: SyncType = SyncType.INCREMENTAL,
        job_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> SyncResult:
        """Fetch and reconcile transactions for each account.

        Accounts are processed independently: a failing account is recorded
        as a partial failure and the others continue. The result succeeds if
        at least one account synced (or there was nothing to sync).
        """
        result = SyncResult(user_id=user_id, job_id=job_id, started_at=self._clock())
        if not self._check_consent(user_id, result):
            return self._finish(result)

        ctx = _SyncContext(
            user_id=user_id,
            access_token=credentials_ref,
            result=result,
            timeout=timeout or self._config.sync.provider_timeout_seconds,
            job_id=job_id,
        )

        if not account_ids:
            self._set_progress(job_id, 5, "Fetching accounts")
            try:
                account_ids = [a.id for a in self._fetch_accounts(ctx) if a.is_active]
            except Exception as e:
                self._top_level_failure(ctx, e, "Transaction sync")
                return self._finish(result)

        for index, account_id in enumerate(account_ids):
            result.accounts_processed += 1
            started = self._clock()
            try:
                self._sync_account_transactions(
                    ctx, account_id, sync_type, position=(index, len(account_ids))
                )
            except Exception as e:
                kind = classify_error(e)
                error = self._to_sync_error(e)
                result.accounts_failed += 1
                result.partial_failures.append(PartialFailure(account_id, error))
                if kind is ErrorKind.PERMANENT and not isinstance(e, ProviderError):
                    logger.exception("Unexpected error syncing account %s", account_id)
                else:
                    logger.warning("Account %s failed to sync: %s", account_id, e)
                if isinstance(e, AuthenticationError):
                    # The token is shared by every account; the rest would fail too
                    result.requires_reauth = True
                    result.error = error
                    break
                continue
            result.accounts_succeeded += 1
            self._store.set_last_synced(user_id, account_id, started)

        if result.accounts_succeeded > 0:
            result.success = True
        elif result.accounts_failed == 0:
            result.success = result.error is None
        else:
            result.success = False
            if result.error is None:
                result.error = result.partial_failures[0].error
        return self._finish(result)

    # Jobs

    def run_job(self, job: SyncJob) -> SyncResult:
        """Execute a job by type and fold the outcome into the user's statistics."""
        self._set_progress(job.id, 0, "Initializing")
        timeout = job.call_timeout or self._config.sync.provider_timeout_seconds
        logger.info(
            "Running %s sync job %s for user %s (accounts=%s)",
            job.type.value,
            job.id,
            job.user_id,
            job.account_ids or "all",
        )

        if job.type is SyncType.BALANCES_ONLY:
            result = self.sync_accounts(
                job.user_id, job.credentials_ref, job.account_ids, job_id=job.id, timeout=timeout
            )
        elif job.type is SyncType.FULL:
            result = self.sync_accounts(
                job.user_id, job.credentials_ref, job.account_ids, job_id=job.id, timeout=timeout
            )
            # Reuse the accounts just fetched instead of asking the provider again
            account_ids = job.account_ids or result.synced_account_ids
            if result.error is None and account_ids:
                transactions = self.sync_transactions(
                    job.user_id,
                    job.credentials_ref,
                    account_ids,
                    SyncType.FULL,
                    job_id=job.id,
                    timeout=timeout,
                )
                result.merge(transactions)
                result.success = transactions.success
                result.completed_at = transactions.completed_at
        elif job.type is SyncType.TRANSACTIONS_ONLY:
            result = self.sync_transactions(
                job.user_id,
                job.credentials_ref,
                job.account_ids,
                SyncType.TRANSACTIONS_ONLY,
                job_id=job.id,
                timeout=timeout,
            )
        elif job.type is SyncType.INCREMENTAL:
            result = self.sync_transactions(
                job.user_id,
                job.credentials_ref,
                job.account_ids,
                SyncType.INCREMENTAL,
                job_id=job.id,
                timeout=timeout,
            )
        else:
            raise ValueError(f"Unsupported sync type: {job.type}")

        self._set_progress(job.id, 100, "Completed" if result.success else "Failed")
        with self._lock:
            stats = self._statistics.setdefault(job.user_id, SyncStatistics(user_id=job.user_id))
            stats.record(job.provider or self.provider_name, result)
        return result
