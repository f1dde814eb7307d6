"""Duplicate detection between an incoming record and existing records.

Each existing record is scored against the candidate:

- exact amount (within tolerance): +40
- dates within the window: +20
- description similarity above threshold: +30
- merchant similarity above threshold (both present): +10

A score of 70 or more marks a duplicate. Confidence is the best score / 100;
at 0.9 or above the records are merged, above 0.7 they are held for review
and at exactly 0.7 they are kept separate.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..config import DuplicateConfig
from ..models import DuplicateDetectionResult, RecommendedAction, Transaction
from ..utils.similarity import description_similarity, string_similarity

logger = logging.getLogger(__name__)


def score_pair(
    candidate: Transaction,
    existing: Transaction,
    config: DuplicateConfig,
) -> tuple[int, list[str]]:
    """Score one pair. Returns (points, reasons)."""
    score = 0
    reasons: list[str] = []

    amount_match = abs(existing.amount - candidate.amount) < config.amount_tolerance
    if amount_match:
        score += config.amount_points
        reasons.append("Exact amount match")
    elif (
        config.date_points + config.description_points + config.merchant_points
        < config.duplicate_score
    ):
        # Cannot reach the threshold without the amount; skip string work
        return 0, []

    if abs((existing.date - candidate.date).total_seconds()) <= config.window_days * 86400:
        score += config.date_points
        reasons.append(f"Date within {config.window_days} days")

    if description_similarity(existing.description, candidate.description) > config.description_threshold:
        score += config.description_points
        reasons.append("High description similarity")

    if existing.merchant_name and candidate.merchant_name:
        merchant_sim = string_similarity(
            existing.merchant_name.lower(), candidate.merchant_name.lower()
        )
        if merchant_sim > config.merchant_threshold:
            score += config.merchant_points
            reasons.append("Merchant name match")

    return score, reasons


def recommend_action(confidence: float, config: DuplicateConfig) -> RecommendedAction:
    if confidence >= config.merge_confidence:
        return RecommendedAction.MERGE
    if confidence > config.review_confidence:
        return RecommendedAction.MANUAL_REVIEW
    return RecommendedAction.KEEP_SEPARATE


class DuplicateDetector:
    """Scores a candidate record against a window of existing records."""

    def __init__(self, config: Optional[DuplicateConfig] = None):
        self._config = config or DuplicateConfig()

    @property
    def config(self) -> DuplicateConfig:
        return self._config

    def detect(
        self, candidate: Transaction, existing_window: Iterable[Transaction]
    ) -> DuplicateDetectionResult:
        """Find existing records that look like the candidate.

        Records with the candidate's own id are skipped. ``best_match_id`` is
        the highest-scoring duplicate (first one wins ties).
        """
        result = DuplicateDetectionResult(transaction_id=candidate.id)
        best_score = 0

        for existing in existing_window:
            if existing.id == candidate.id:
                continue
            score, reasons = score_pair(candidate, existing, self._config)
            if score < self._config.duplicate_score:
                continue
            result.duplicate_ids.append(existing.id)
            result.reasons.extend(reasons)
            if score > best_score:
                best_score = score
                result.best_match_id = existing.id

        if result.duplicate_ids:
            result.confidence = best_score / 100
            result.recommended_action = recommend_action(result.confidence, self._config)
            logger.debug(
                "Candidate %s matches %d record(s), confidence=%.2f -> %s",
                candidate.id,
                len(result.duplicate_ids),
                result.confidence,
                result.recommended_action.value,
            )
        return result
