"""Rule-based transaction categorization.

Enabled rules are evaluated in descending priority (declaration order breaks
ties); the first rule whose conditions all hold wins. Without a matching rule
a keyword heuristic over the description is tried, then the fallback
category.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Iterable, Optional

from ..config import CategorizationConfig
from ..models import (
    CategorizationRule,
    CategoryMatch,
    ConditionField,
    ConditionOperator,
    RuleCondition,
    Transaction,
)
from ..utils.rules import evaluate_rule

logger = logging.getLogger(__name__)

# Keyword heuristics, checked in order against the lowercased description
KEYWORD_CATEGORIES: list[tuple[tuple[str, ...], str]] = [
    (("grocery", "supermarket"), "Groceries"),
    (("gas", "fuel"), "Gas & Fuel"),
    (("restaurant", "food"), "Restaurants"),
    (("atm", "withdrawal"), "Cash & ATM"),
]


def default_rules() -> list[CategorizationRule]:
    """Built-in rules used when the configuration defines none."""
    return [
        CategorizationRule(
            id="rule_grocery",
            name="Grocery Stores",
            description="Categorize grocery store transactions",
            priority=100,
            conditions=[
                RuleCondition(ConditionField.DESCRIPTION, ConditionOperator.CONTAINS, "grocery")
            ],
            category="Groceries",
            confidence=0.9,
        ),
        CategorizationRule(
            id="rule_gas",
            name="Gas Stations",
            description="Categorize gas station transactions",
            priority=100,
            conditions=[
                RuleCondition(ConditionField.DESCRIPTION, ConditionOperator.CONTAINS, "gas")
            ],
            category="Gas & Fuel",
            confidence=0.9,
        ),
    ]


class RuleCategorizer:
    """Holds the categorization rules and applies them to transactions.

    Rule usage statistics are updated on every match, so one instance may be
    shared between worker threads; all rule state is guarded by a lock.
    """

    def __init__(
        self,
        config: Optional[CategorizationConfig] = None,
        rules: Optional[Iterable[CategorizationRule]] = None,
    ):
        self._config = config or CategorizationConfig()
        if rules is None:
            rules = self._config.rules or default_rules()
        self._rules: list[CategorizationRule] = list(rules)
        self._lock = threading.Lock()

    @property
    def rules(self) -> list[CategorizationRule]:
        """Rules in evaluation order (priority descending, stable)."""
        with self._lock:
            return sorted(self._rules, key=lambda r: -r.priority)

    def add_rule(self, rule: CategorizationRule) -> None:
        with self._lock:
            if any(r.id == rule.id for r in self._rules):
                raise ValueError(f"Rule id already exists: {rule.id}")
            self._rules.append(rule)
        logger.info("Added categorization rule %s (%s)", rule.id, rule.name)

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            before = len(self._rules)
            self._rules = [r for r in self._rules if r.id != rule_id]
            return len(self._rules) < before

    def _set_enabled(self, rule_id: str, enabled: bool) -> bool:
        with self._lock:
            for rule in self._rules:
                if rule.id == rule_id:
                    rule.enabled = enabled
                    return True
        return False

    def enable_rule(self, rule_id: str) -> bool:
        """Enable a rule. Returns False if no rule has that id."""
        return self._set_enabled(rule_id, True)

    def disable_rule(self, rule_id: str) -> bool:
        """Disable a rule. Returns False if no rule has that id."""
        return self._set_enabled(rule_id, False)

    def match_rule(self, txn: Transaction) -> Optional[CategorizationRule]:
        """First enabled rule (by priority) whose conditions all hold."""
        for rule in self.rules:
            if evaluate_rule(txn, rule):
                with self._lock:
                    rule.usage_count += 1
                    rule.last_used = datetime.now()
                return rule
        return None

    def heuristic_category(self, description: str) -> Optional[str]:
        text = description.lower()
        for keywords, category in KEYWORD_CATEGORIES:
            if any(k in text for k in keywords):
                return category
        return None

    def categorize(self, txn: Transaction) -> CategoryMatch:
        """Pick a category for the transaction. Deterministic for a fixed rule set."""
        rule = self.match_rule(txn)
        if rule is not None:
            logger.debug("Rule %s matched %s -> %s", rule.id, txn.id, rule.category)
            return CategoryMatch(
                category=rule.category,
                subcategory=rule.subcategory,
                confidence=rule.confidence,
                rule_id=rule.id,
                source="rule",
            )

        category = self.heuristic_category(txn.description or "")
        if category is not None:
            return CategoryMatch(
                category=category,
                confidence=self._config.heuristic_confidence,
                source="heuristic",
            )
        return CategoryMatch(
            category=self._config.fallback_category,
            confidence=self._config.fallback_confidence,
            source="fallback",
        )
