"""Data models for ledger-sync."""

from .reconciliation import (
    ConflictResolutionStrategy,
    DataQualityIssue,
    DataQualityScore,
    DuplicateDetectionResult,
    EnrichmentResult,
    EnrichmentType,
    RecommendedAction,
    ResolvedRecord,
)
from .rules import (
    CategorizationRule,
    CategoryMatch,
    ConditionField,
    ConditionOperator,
    CurrencyRate,
    MerchantNormalization,
    RuleCondition,
)
from .sync_job import SyncJob, SyncJobStatus, SyncPriority, SyncType
from .sync_result import (
    ConflictRecord,
    PartialFailure,
    ProviderStats,
    SyncError,
    SyncProgress,
    SyncResult,
    SyncStatistics,
)
from .transaction import (
    USER_EDITABLE_FIELDS,
    Account,
    AccountActivity,
    DateRange,
    Location,
    Transaction,
    TransactionPage,
)

__all__ = [
    # Records
    "Account",
    "AccountActivity",
    "DateRange",
    "Location",
    "Transaction",
    "TransactionPage",
    "USER_EDITABLE_FIELDS",
    # Jobs
    "SyncJob",
    "SyncJobStatus",
    "SyncPriority",
    "SyncType",
    # Results
    "ConflictRecord",
    "PartialFailure",
    "ProviderStats",
    "SyncError",
    "SyncProgress",
    "SyncResult",
    "SyncStatistics",
    # Rules
    "CategorizationRule",
    "CategoryMatch",
    "ConditionField",
    "ConditionOperator",
    "CurrencyRate",
    "MerchantNormalization",
    "RuleCondition",
    # Reconciliation
    "ConflictResolutionStrategy",
    "DataQualityIssue",
    "DataQualityScore",
    "DuplicateDetectionResult",
    "EnrichmentResult",
    "EnrichmentType",
    "RecommendedAction",
    "ResolvedRecord",
]
