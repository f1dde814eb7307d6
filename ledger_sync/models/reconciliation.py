"""Duplicate detection, conflict resolution and enrichment result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .transaction import Transaction


class ConflictResolutionStrategy(Enum):
    PROVIDER_WINS = "provider_wins"
    LOCAL_WINS = "local_wins"
    MERGE = "merge"


@dataclass
class ResolvedRecord:
    """Resolved transaction plus the audit trail of how it was produced."""

    record: Transaction
    strategy: ConflictResolutionStrategy
    conflict_fields: list[str] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflict_fields)


class RecommendedAction(Enum):
    MERGE = "merge"
    KEEP_SEPARATE = "keep_separate"
    MANUAL_REVIEW = "manual_review"


@dataclass
class DuplicateDetectionResult:
    transaction_id: str
    duplicate_ids: list[str] = field(default_factory=list)
    confidence: float = 0.0
    reasons: list[str] = field(default_factory=list)
    recommended_action: RecommendedAction = RecommendedAction.KEEP_SEPARATE
    best_match_id: str | None = None

    @property
    def is_duplicate(self) -> bool:
        return bool(self.duplicate_ids)


class EnrichmentType(Enum):
    DESCRIPTION_CLEANING = "description_cleaning"
    MERCHANT_NORMALIZATION = "merchant_normalization"
    CATEGORY_PREDICTION = "category_prediction"
    CURRENCY_CONVERSION = "currency_conversion"
    LOCATION_ENRICHMENT = "location_enrichment"


@dataclass
class DataQualityIssue:
    type: str  # missing_field, invalid_format, inconsistent_data, outdated_data
    field: str
    description: str
    severity: str  # low, medium, high
    fixable: bool


@dataclass
class DataQualityScore:
    transaction_id: str
    overall_score: float
    completeness: float
    accuracy: float
    consistency: float
    timeliness: float
    issues: list[DataQualityIssue] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass
class EnrichmentResult:
    """What the transformer changed on one record."""

    transaction_id: str
    original_data: dict[str, Any]
    enriched_data: dict[str, Any] = field(default_factory=dict)
    enrichments: list[EnrichmentType] = field(default_factory=list)
    confidence: float = 0.0
    quality: DataQualityScore | None = None
    timestamp: datetime = field(default_factory=datetime.now)
