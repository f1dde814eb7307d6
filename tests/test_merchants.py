"""Tests for merchant name normalization."""

import pytest

from ledger_sync.models import MerchantNormalization
from ledger_sync.services.merchants import (
    HEURISTIC_CONFIDENCE,
    MerchantNormalizer,
    apply_normalization_patterns,
)


class TestPatterns:
    """Tests for the noise-stripping patterns."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("STARBUCKS #4521", "STARBUCKS"),
            ("SHELL OIL 57442", "SHELL OIL"),
            ("ACME CORP", "ACME"),
            ("Widgets, Inc.", "Widgets"),
            ("THE HOME DEPOT #4521", "HOME DEPOT"),
            ("TRADER  JOE'S", "TRADER JOE'S"),
            ("NETFLIX.COM", "NETFLIX.COM"),
        ],
    )
    def test_patterns(self, raw, expected):
        assert apply_normalization_patterns(raw) == expected


class TestMerchantNormalizer:
    """Tests for the normalization cache."""

    def test_heuristic_normalization_is_cached(self):
        normalizer = MerchantNormalizer()
        result = normalizer.normalize("STARBUCKS #4521")
        assert result.normalized_name == "STARBUCKS"
        assert result.confidence == HEURISTIC_CONFIDENCE
        assert not result.verified
        assert result.category is None
        assert normalizer.get("starbucks #4521") is result

    def test_clean_name_returns_none(self):
        assert MerchantNormalizer().normalize("Netflix") is None
        assert MerchantNormalizer().normalize("") is None

    def test_known_normalization_wins(self):
        known = MerchantNormalization(
            original_name="SQ *BLUE BOTTLE",
            normalized_name="Blue Bottle Coffee",
            category="Food and Drink",
            verified=True,
            confidence=1.0,
        )
        normalizer = MerchantNormalizer([known])
        result = normalizer.normalize("sq *blue bottle")
        assert result.normalized_name == "Blue Bottle Coffee"
        assert result.category == "Food and Drink"

    def test_heuristic_never_replaces_verified(self):
        normalizer = MerchantNormalizer()
        normalizer.register("AMZN MKTP", "Amazon", category="Shopping")
        kept = normalizer.register("AMZN MKTP", "AMZN", verified=False, confidence=0.7)
        assert kept.normalized_name == "Amazon"
        assert normalizer.get("AMZN MKTP").verified

    def test_verify_corrects_name(self):
        normalizer = MerchantNormalizer()
        normalizer.normalize("CHIPOTLE 1187")
        assert normalizer.verify("CHIPOTLE 1187", "Chipotle")
        entry = normalizer.get("CHIPOTLE 1187")
        assert entry.normalized_name == "Chipotle"
        assert entry.verified
        assert entry.confidence == 1.0

    def test_verify_unknown(self):
        assert not MerchantNormalizer().verify("nobody")
