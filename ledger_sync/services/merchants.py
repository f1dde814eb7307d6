"""Merchant name normalization with a cache of known normalizations."""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime
from typing import Optional

from ..models import MerchantNormalization

logger = logging.getLogger(__name__)

HEURISTIC_CONFIDENCE = 0.7

_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\s*#\s*\d+$"), ""),  # reference numbers
    (re.compile(r"\s*\d{4,}$"), ""),  # trailing store / terminal numbers
    (re.compile(r"[\s,]*\b(INC|LLC|CORP|LTD|CO)\.?\s*$", re.IGNORECASE), ""),
    (re.compile(r"^THE\s+", re.IGNORECASE), ""),
    (re.compile(r"\s+"), " "),
]


def apply_normalization_patterns(name: str) -> str:
    """Strip the usual noise from a merchant string.

    >>> apply_normalization_patterns("THE HOME DEPOT #4521")
    'HOME DEPOT'
    """
    normalized = name
    for pattern, replacement in _PATTERNS:
        normalized = pattern.sub(replacement, normalized)
    return normalized.strip()


class MerchantNormalizer:
    """Looks up or derives the canonical name of a merchant.

    Known normalizations are cached by lowercased original name. Heuristic
    entries never replace a verified one.
    """

    def __init__(self, normalizations: Optional[list[MerchantNormalization]] = None):
        self._cache: dict[str, MerchantNormalization] = {}
        self._lock = threading.Lock()
        for entry in normalizations or []:
            self._cache[entry.original_name.lower()] = entry

    @property
    def normalizations(self) -> list[MerchantNormalization]:
        with self._lock:
            return list(self._cache.values())

    def get(self, merchant_name: str) -> Optional[MerchantNormalization]:
        with self._lock:
            return self._cache.get(merchant_name.lower())

    def register(
        self,
        original_name: str,
        normalized_name: str,
        category: Optional[str] = None,
        subcategory: Optional[str] = None,
        confidence: float = 1.0,
        verified: bool = True,
    ) -> MerchantNormalization:
        """Store a normalization. An unverified entry never replaces a verified one."""
        key = original_name.lower()
        with self._lock:
            existing = self._cache.get(key)
            if existing is not None and existing.verified and not verified:
                return existing
            entry = MerchantNormalization(
                original_name=original_name,
                normalized_name=normalized_name,
                category=category,
                subcategory=subcategory,
                confidence=confidence,
                verified=verified,
            )
            if existing is not None:
                entry.created_at = existing.created_at
            self._cache[key] = entry
        return entry

    def verify(self, original_name: str, normalized_name: Optional[str] = None) -> bool:
        """Mark a cached normalization as verified, optionally correcting its name."""
        with self._lock:
            entry = self._cache.get(original_name.lower())
            if entry is None:
                return False
            if normalized_name:
                entry.normalized_name = normalized_name
            entry.verified = True
            entry.confidence = 1.0
            entry.updated_at = datetime.now()
            return True

    def normalize(self, merchant_name: str) -> Optional[MerchantNormalization]:
        """Return the normalization for a merchant, or None if it is already clean."""
        if not merchant_name:
            return None
        cached = self.get(merchant_name)
        if cached is not None:
            return cached

        normalized = apply_normalization_patterns(merchant_name)
        if not normalized or normalized == merchant_name:
            return None
        logger.debug("Normalized merchant %r -> %r", merchant_name, normalized)
        return self.register(
            merchant_name, normalized, confidence=HEURISTIC_CONFIDENCE, verified=False
        )
