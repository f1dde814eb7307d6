"""Data quality scoring for a single transaction."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from ..models import DataQualityIssue, DataQualityScore, Transaction
from ..utils.similarity import string_similarity

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def calculate_quality_score(txn: Transaction, now: Optional[datetime] = None) -> DataQualityScore:
    """Score completeness, accuracy, consistency and timeliness (each 0-1).

    The overall score is their mean.
    """
    now = now or datetime.now()
    issues: list[DataQualityIssue] = []
    recommendations: list[str] = []
    description = (txn.description or "").strip()

    completeness = 1.0
    if not description:
        completeness -= 0.2
        issues.append(
            DataQualityIssue(
                "missing_field", "description", "Transaction description is missing", "high", False
            )
        )
        recommendations.append("Ensure transaction descriptions are captured")
    if not txn.category:
        completeness -= 0.1
        issues.append(
            DataQualityIssue(
                "missing_field", "category", "Transaction category is missing", "medium", True
            )
        )
        recommendations.append("Categorize transaction automatically or manually")
    if not txn.merchant_name and description:
        completeness -= 0.1
        issues.append(
            DataQualityIssue(
                "missing_field", "merchant_name", "Merchant name is missing", "low", True
            )
        )
        recommendations.append("Extract merchant name from description")

    accuracy = 1.0
    if txn.amount <= 0:
        accuracy -= 0.3
        issues.append(
            DataQualityIssue(
                "invalid_format", "amount", "Transaction amount is zero or negative", "high", False
            )
        )
    if txn.currency and not _CURRENCY_CODE.match(txn.currency):
        accuracy -= 0.1
        issues.append(
            DataQualityIssue("invalid_format", "currency", "Invalid currency format", "medium", True)
        )
        recommendations.append("Use ISO 4217 currency codes")

    consistency = 1.0
    if txn.merchant_name and description:
        similarity = string_similarity(txn.merchant_name.lower(), description.lower())
        if similarity < 0.3:
            consistency -= 0.1
            issues.append(
                DataQualityIssue(
                    "inconsistent_data",
                    "merchant_name",
                    "Merchant name does not match description",
                    "low",
                    True,
                )
            )

    timeliness = 1.0
    if (now - txn.date).total_seconds() > 90 * 86400:
        timeliness -= 0.2
        issues.append(
            DataQualityIssue(
                "outdated_data", "date", "Transaction is more than 90 days old", "low", False
            )
        )

    return DataQualityScore(
        transaction_id=txn.id,
        overall_score=(completeness + accuracy + consistency + timeliness) / 4,
        completeness=completeness,
        accuracy=accuracy,
        consistency=consistency,
        timeliness=timeliness,
        issues=issues,
        recommendations=recommendations,
    )
