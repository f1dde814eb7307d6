"""Evaluation of data-driven categorization rule conditions."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Union

from ..models import CategorizationRule, ConditionField, ConditionOperator, RuleCondition

if TYPE_CHECKING:
    from ..models import Transaction

logger = logging.getLogger(__name__)


def get_field_value(txn: Transaction, field: ConditionField) -> Union[str, float]:
    """Extract the value a condition tests from a transaction.

    Missing text fields read as an empty string; location reads as its
    "City, Region" label.
    """
    if field is ConditionField.DESCRIPTION:
        return txn.description or ""
    if field is ConditionField.MERCHANT:
        return txn.merchant_name or ""
    if field is ConditionField.AMOUNT:
        return txn.amount
    if field is ConditionField.CATEGORY:
        return txn.category or ""
    if field is ConditionField.LOCATION:
        return txn.location.display if txn.location else ""
    raise ValueError(f"Unsupported condition field: {field}")


def _to_number(value: Union[str, float]) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_condition(value: Union[str, float], condition: RuleCondition) -> bool:
    """Check a single condition against an extracted field value."""
    op = condition.operator

    if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left = _to_number(value)
        right = _to_number(condition.value)
        if left is None or right is None:
            return False
        return left > right if op is ConditionOperator.GREATER_THAN else left < right

    text = str(value)
    expected = str(condition.value)

    if op is ConditionOperator.REGEX:
        flags = 0 if condition.case_sensitive else re.IGNORECASE
        try:
            return re.search(expected, text, flags) is not None
        except re.error as e:
            logger.warning("Invalid regex in rule condition %r: %s", expected, e)
            return False

    if not condition.case_sensitive:
        text = text.lower()
        expected = expected.lower()

    if op is ConditionOperator.CONTAINS:
        return expected in text
    if op is ConditionOperator.EQUALS:
        return text == expected
    if op is ConditionOperator.STARTS_WITH:
        return text.startswith(expected)
    if op is ConditionOperator.ENDS_WITH:
        return text.endswith(expected)
    raise ValueError(f"Unsupported condition operator: {op}")


def evaluate_rule(txn: Transaction, rule: CategorizationRule) -> bool:
    """True when the rule is enabled and every condition holds."""
    if not rule.enabled or not rule.conditions:
        return False
    return all(evaluate_condition(get_field_value(txn, c.field), c) for c in rule.conditions)
