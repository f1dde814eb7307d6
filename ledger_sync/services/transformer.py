"""Data transformation pipeline applied to every incoming transaction.

Steps, in order:
1. Description cleaning
2. Merchant normalization
3. Categorization
4. Currency conversion to the base currency
5. Location enrichment (when an enricher is configured)

followed by a data quality score. Fields the user edited locally
(description, category) are left alone.
"""

from __future__ import annotations

import copy
import logging
import re
from datetime import datetime
from typing import Any, Callable, Optional

from ..clients.protocols import LocationEnricher
from ..models import EnrichmentResult, EnrichmentType, Location, Transaction
from .categorizer import RuleCategorizer
from .currency import CurrencyConverter
from .merchants import MerchantNormalizer
from .quality import calculate_quality_score

logger = logging.getLogger(__name__)

_PREFIX = re.compile(
    r"^(DEBIT CARD PURCHASE|CREDIT CARD PURCHASE|ACH DEBIT|ACH CREDIT)\s*", re.IGNORECASE
)
_STATUS_SUFFIX = re.compile(r"\s*(PENDING|POSTED)$", re.IGNORECASE)
_CARD_SUFFIX = re.compile(r"\s*\d{4}$")
_REFERENCES = [
    re.compile(r"\s*#\d+\s*"),
    re.compile(r"\s*\bREF\s*\d+\s*", re.IGNORECASE),
    re.compile(r"\s*\bTXN\s*\d+\s*", re.IGNORECASE),
]
_WHITESPACE = re.compile(r"\s+")


def clean_description(description: str) -> str:
    """Strip aggregator boilerplate from a transaction description.

    >>> clean_description("DEBIT CARD PURCHASE WHOLE FOODS #123 POSTED")
    'WHOLE FOODS'
    """
    cleaned = _PREFIX.sub("", description.strip())
    cleaned = _STATUS_SUFFIX.sub("", cleaned)
    # References go before the card-number suffix so "#4521" is removed whole
    for pattern in _REFERENCES:
        cleaned = pattern.sub(" ", cleaned)
    cleaned = _CARD_SUFFIX.sub("", cleaned.strip())
    return _WHITESPACE.sub(" ", cleaned).strip()


class DataTransformer:
    """Enriches one transaction at a time.

    Collaborators are injected so the same categorizer (and its rule usage
    statistics) and merchant cache can be shared across sync jobs.
    """

    def __init__(
        self,
        categorizer: Optional[RuleCategorizer] = None,
        merchants: Optional[MerchantNormalizer] = None,
        currency: Optional[CurrencyConverter] = None,
        location_enricher: Optional[LocationEnricher] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.categorizer = categorizer or RuleCategorizer()
        self.merchants = merchants or MerchantNormalizer()
        self.currency = currency or CurrencyConverter()
        self.location_enricher = location_enricher
        self._clock = clock

    def transform(self, record: Transaction) -> tuple[Transaction, EnrichmentResult]:
        """Return an enriched copy of ``record`` and what was changed."""
        txn = copy.deepcopy(record)
        result = EnrichmentResult(
            transaction_id=record.id,
            original_data=_snapshot(record),
        )

        self._clean_description(txn, result)
        self._normalize_merchant(txn, result)
        self._categorize(txn, result)
        self._convert_currency(txn, result)
        self._enrich_location(txn, result)

        now = self._clock()
        txn.updated_at = now
        if result.enrichments and not result.confidence:
            result.confidence = 0.8

        quality = calculate_quality_score(txn, now=now)
        txn.quality_score = quality.overall_score
        result.quality = quality
        result.timestamp = now

        logger.debug(
            "Transaction %s enriched with %d enrichments (quality=%.2f)",
            txn.id,
            len(result.enrichments),
            quality.overall_score,
        )
        return txn, result

    def _clean_description(self, txn: Transaction, result: EnrichmentResult) -> None:
        if txn.is_edited("description") or not txn.description:
            return
        cleaned = clean_description(txn.description)
        if cleaned and cleaned != txn.description:
            if txn.original_description is None:
                txn.original_description = txn.description
            txn.description = cleaned
            result.enriched_data["description"] = cleaned
            result.enrichments.append(EnrichmentType.DESCRIPTION_CLEANING)

    def _normalize_merchant(self, txn: Transaction, result: EnrichmentResult) -> None:
        if not txn.merchant_name:
            return
        normalization = self.merchants.normalize(txn.merchant_name)
        if normalization is None:
            return
        txn.merchant_name = normalization.normalized_name
        result.enriched_data["merchant_name"] = normalization.normalized_name
        result.enrichments.append(EnrichmentType.MERCHANT_NORMALIZATION)
        if normalization.category and not txn.category and not txn.is_edited("category"):
            txn.category = normalization.category
            txn.subcategory = normalization.subcategory
            txn.category_confidence = normalization.confidence
            result.enriched_data["category"] = normalization.category

    def _categorize(self, txn: Transaction, result: EnrichmentResult) -> None:
        if txn.is_edited("category"):
            return
        match = self.categorizer.categorize(txn)
        # Heuristic and fallback guesses never replace a category we already have
        if match.source != "rule" and txn.category:
            return
        if match.category == txn.category and match.subcategory == txn.subcategory:
            txn.category_confidence = match.confidence
            return
        txn.category = match.category
        txn.subcategory = match.subcategory
        txn.category_confidence = match.confidence
        result.enriched_data["category"] = match.category
        result.enriched_data["subcategory"] = match.subcategory
        result.enrichments.append(EnrichmentType.CATEGORY_PREDICTION)
        result.confidence = max(result.confidence, match.confidence)

    def _convert_currency(self, txn: Transaction, result: EnrichmentResult) -> None:
        base = self.currency.base_currency
        if not txn.currency or txn.currency.upper() == base:
            return
        converted = self.currency.convert(txn.amount, txn.currency, base)
        if converted is None:
            return
        txn.converted_amount = converted
        txn.converted_currency = base
        result.enriched_data["converted_amount"] = converted
        result.enriched_data["converted_currency"] = base
        result.enrichments.append(EnrichmentType.CURRENCY_CONVERSION)

    def _enrich_location(self, txn: Transaction, result: EnrichmentResult) -> None:
        if txn.location is None or self.location_enricher is None:
            return
        try:
            extra = self.location_enricher.enrich(txn.location)
        except Exception as e:
            logger.warning("Location enrichment failed for %s: %s", txn.id, e)
            return
        if not extra:
            return
        txn.location = Location.from_dict({**txn.location.to_dict(), **extra})
        result.enriched_data["location"] = extra
        result.enrichments.append(EnrichmentType.LOCATION_ENRICHMENT)


def _snapshot(txn: Transaction) -> dict[str, Any]:
    """Plain-dict view of the fields the pipeline may change."""
    return {
        "description": txn.description,
        "merchant_name": txn.merchant_name,
        "category": txn.category,
        "subcategory": txn.subcategory,
        "amount": txn.amount,
        "currency": txn.currency,
        "location": txn.location.to_dict() if txn.location else None,
    }
