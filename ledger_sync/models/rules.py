"""Categorization rules, merchant normalizations and currency rates."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class ConditionField(Enum):
    DESCRIPTION = "description"
    MERCHANT = "merchant"
    AMOUNT = "amount"
    CATEGORY = "category"
    LOCATION = "location"


class ConditionOperator(Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


@dataclass(frozen=True)
class RuleCondition:
    """Single predicate over one transaction field."""

    field: ConditionField
    operator: ConditionOperator
    value: Union[str, float]
    case_sensitive: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleCondition:
        return cls(
            field=ConditionField(data["field"]),
            operator=ConditionOperator(data["operator"]),
            value=data["value"],
            case_sensitive=bool(data.get("case_sensitive", False)),
        )


@dataclass
class CategorizationRule:
    """Data-driven categorization rule. Higher priority is evaluated first."""

    name: str
    category: str
    conditions: list[RuleCondition]
    priority: int = 0
    subcategory: Optional[str] = None
    confidence: float = 0.9
    enabled: bool = True
    description: str = ""
    id: str = field(default_factory=lambda: f"rule_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.now)
    last_used: Optional[datetime] = None
    usage_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CategorizationRule:
        """Build a rule from a config table ([[categorization.rules]])."""
        conditions = [RuleCondition.from_dict(c) for c in data.get("conditions", [])]
        if not conditions:
            raise ValueError(f"Rule '{data.get('name', '?')}' has no conditions")
        kwargs: dict[str, Any] = {
            "name": data["name"],
            "category": data["category"],
            "conditions": conditions,
            "priority": int(data.get("priority", 0)),
            "subcategory": data.get("subcategory"),
            "confidence": float(data.get("confidence", 0.9)),
            "enabled": bool(data.get("enabled", True)),
            "description": data.get("description", ""),
        }
        if "id" in data:
            kwargs["id"] = data["id"]
        return cls(**kwargs)


@dataclass
class CategoryMatch:
    """Outcome of categorizing one transaction."""

    category: str
    confidence: float
    subcategory: Optional[str] = None
    rule_id: Optional[str] = None
    source: str = "rule"  # 'rule', 'heuristic' or 'fallback'


@dataclass
class MerchantNormalization:
    """Maps a noisy merchant string to its canonical name."""

    original_name: str
    normalized_name: str
    category: Optional[str] = None
    subcategory: Optional[str] = None
    confidence: float = 0.7
    verified: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class CurrencyRate:
    """Exchange rate observation: 1 from_currency = rate to_currency."""

    from_currency: str
    to_currency: str
    rate: float
    timestamp: datetime
    source: str = "manual"
