"""Canonical account and transaction records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

# Fields the user may change locally; edits to these are tracked in edited_fields.
USER_EDITABLE_FIELDS = frozenset({"description", "category", "subcategory", "notes"})


@dataclass
class Location:
    """Geolocation attached to a transaction."""

    address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def display(self) -> str:
        """City/region label, e.g. 'New York, NY'."""
        parts = [p for p in (self.city, self.region) if p]
        return ", ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Location:
        known = {k: data.get(k) for k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class Account:
    """Normalized bank account."""

    id: str
    user_id: str
    name: str
    provider: str = ""
    type: str = "depository"
    subtype: Optional[str] = None
    mask: Optional[str] = None
    institution: Optional[str] = None
    balance: Optional[float] = None
    available_balance: Optional[float] = None
    currency: str = "USD"
    is_active: bool = True
    updated_at: Optional[datetime] = None


@dataclass
class Transaction:
    """Normalized transaction, the shape every service and the store work with.

    ``id`` is the local record id. ``provider_transaction_id`` is the
    aggregator's id and is the idempotency key for re-syncs; manually entered
    records have none until a sync merges a provider duplicate into them.
    """

    id: str
    account_id: str
    date: datetime
    amount: float
    description: str = ""
    user_id: str = ""
    provider: str = ""
    provider_transaction_id: Optional[str] = None
    original_description: Optional[str] = None
    merchant_name: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    category_confidence: Optional[float] = None
    currency: str = "USD"
    pending: bool = False
    location: Optional[Location] = None
    notes: Optional[str] = None
    edited_fields: set[str] = field(default_factory=set)
    converted_amount: Optional[float] = None
    converted_currency: Optional[str] = None
    quality_score: Optional[float] = None
    conflict_resolution: Optional[str] = None
    # Set when the record may duplicate the listed records and a person should decide
    needs_review: bool = False
    review_candidate_ids: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_edited(self, field_name: str) -> bool:
        """Return True if the user changed this field locally."""
        return field_name in self.edited_fields

    def edit(self, **changes: Any) -> None:
        """Apply user edits and remember which editable fields were touched."""
        for name, value in changes.items():
            if name not in USER_EDITABLE_FIELDS:
                raise ValueError(f"Field '{name}' is not user-editable")
            setattr(self, name, value)
            self.edited_fields.add(name)


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range used for provider fetches and store windows."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"DateRange start {self.start} is after end {self.end}")

    @classmethod
    def around(cls, moment: datetime, days: int) -> DateRange:
        """Window of +/- ``days`` around ``moment``."""
        return cls(moment - timedelta(days=days), moment + timedelta(days=days))

    @classmethod
    def last_days(cls, days: int, now: datetime) -> DateRange:
        return cls(now - timedelta(days=days), now)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


@dataclass
class TransactionPage:
    """One page of provider transactions."""

    transactions: list[dict[str, Any]]
    total_transactions: int


@dataclass
class AccountActivity:
    """Activity summary used to pick a sync frequency."""

    account_id: str
    transaction_count: int = 0
    last_transaction_date: Optional[datetime] = None
    avg_daily_transactions: float = 0.0
