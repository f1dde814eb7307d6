"""Tests for string similarity helpers."""

import pytest

from ledger_sync.utils.similarity import (
    description_similarity,
    levenshtein_distance,
    normalize_description,
    string_similarity,
)


class TestLevenshtein:
    """Tests for edit distance."""

    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ("", "", 0),
            ("abc", "", 3),
            ("kitten", "sitting", 3),
            ("flaw", "lawn", 2),
            ("same", "same", 0),
        ],
    )
    def test_distance(self, a, b, expected):
        assert levenshtein_distance(a, b) == expected

    def test_symmetric(self):
        assert levenshtein_distance("starbucks", "starbuck") == levenshtein_distance(
            "starbuck", "starbucks"
        )


class TestStringSimilarity:
    """Tests for edit-distance similarity."""

    def test_identical(self):
        assert string_similarity("whole foods", "whole foods") == 1.0

    def test_both_empty(self):
        """Two empty strings are identical."""
        assert string_similarity("", "") == 1.0

    def test_one_empty(self):
        assert string_similarity("abc", "") == 0.0

    def test_partial(self):
        """One edit in ten characters is 0.9 similar."""
        assert string_similarity("abcdefghij", "abcdefghiX") == pytest.approx(0.9)


class TestDescriptionSimilarity:
    """Tests for description normalization and comparison."""

    def test_normalize_strips_boilerplate_and_references(self):
        assert normalize_description("DEBIT CARD PURCHASE STARBUCKS #4521") == "starbucks"
        assert normalize_description("Whole Foods Mkt, REF 88812") == "whole foods mkt"

    def test_equal_after_normalization(self):
        assert description_similarity("STARBUCKS #4521", "Starbucks") == 1.0

    def test_token_prefix_scores_high(self):
        """A truncated merchant name still looks like the same purchase."""
        assert description_similarity("STARBUCKS #4521", "Starbucks Coffee") == 0.9

    def test_unrelated_descriptions(self):
        assert description_similarity("NETFLIX.COM", "SHELL OIL") < 0.5

    def test_empty_never_matches(self):
        assert description_similarity("", "") == 0.0
        assert description_similarity("#1234", "Starbucks") == 0.0
