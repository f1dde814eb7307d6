"""String similarity helpers used for duplicate detection and quality scoring."""

from __future__ import annotations

import re

# Card-network boilerplate aggregators prepend to descriptions
_BOILERPLATE_PREFIX = re.compile(
    r"^(debit card purchase|credit card purchase|ach debit|ach credit|pos purchase)\s*",
    re.IGNORECASE,
)
_REFERENCE = re.compile(r"(#\s*\d+|\b(?:ref|txn)\s*\d+)", re.IGNORECASE)
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert/delete/substitute, all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """Edit-distance similarity in [0, 1]: (longer - distance) / longer.

    Two empty strings are identical (1.0).
    """
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(a, b)) / longer


def normalize_description(text: str) -> str:
    """Case-fold and strip the noise that differs between feeds of one purchase.

    Examples:
        "DEBIT CARD PURCHASE STARBUCKS #4521" -> "starbucks"
        "Whole Foods Mkt, REF 88812" -> "whole foods mkt"
    """
    text = _BOILERPLATE_PREFIX.sub("", text.strip())
    text = _REFERENCE.sub(" ", text)
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def description_similarity(a: str, b: str) -> float:
    """Similarity of two transaction descriptions in [0, 1].

    Normalized-equal descriptions score 1.0. When one description's tokens are
    a leading prefix of the other's (truncated or extended merchant names,
    e.g. "STARBUCKS #4521" vs "Starbucks Coffee") the score is 0.9. Otherwise
    the normalized edit-distance similarity is used. A description that
    normalizes to nothing never matches.
    """
    norm_a = normalize_description(a)
    norm_b = normalize_description(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0

    tokens_a = norm_a.split()
    tokens_b = norm_b.split()
    shorter, longer = sorted((tokens_a, tokens_b), key=len)
    if longer[: len(shorter)] == shorter:
        return 0.9
    return string_similarity(norm_a, norm_b)
