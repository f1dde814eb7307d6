"""Services for ledger-sync."""

from .categorizer import RuleCategorizer, default_rules
from .conflicts import find_conflicts, resolve
from .currency import CurrencyConverter
from .duplicates import DuplicateDetector
from .merchants import MerchantNormalizer
from .normalizer import normalize_account, normalize_transaction
from .quality import calculate_quality_score
from .queue import JobNotFoundError, QueueInvariantError, SyncQueue
from .scheduler import SyncFrequency, SyncScheduler, UserSyncConfig
from .sync import SyncEngine, calculate_optimal_sync_frequency
from .transformer import DataTransformer, clean_description
from .worker import SyncWorkerPool

__all__ = [
    # Sync
    "SyncEngine",
    "SyncQueue",
    "SyncScheduler",
    "SyncWorkerPool",
    "SyncFrequency",
    "UserSyncConfig",
    "JobNotFoundError",
    "QueueInvariantError",
    "calculate_optimal_sync_frequency",
    # Reconciliation
    "DuplicateDetector",
    "find_conflicts",
    "resolve",
    # Transformation
    "CurrencyConverter",
    "DataTransformer",
    "MerchantNormalizer",
    "RuleCategorizer",
    "calculate_quality_score",
    "clean_description",
    "default_rules",
    "normalize_account",
    "normalize_transaction",
]
