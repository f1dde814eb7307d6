"""Pure helper functions."""

from .rules import evaluate_condition, evaluate_rule, get_field_value
from .similarity import (
    description_similarity,
    levenshtein_distance,
    normalize_description,
    string_similarity,
)

__all__ = [
    "description_similarity",
    "evaluate_condition",
    "evaluate_rule",
    "get_field_value",
    "levenshtein_distance",
    "normalize_description",
    "string_similarity",
]
