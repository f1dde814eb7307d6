"""Protocol definitions for the engine's external collaborators.

These protocols define the interface the sync engine expects from provider
adapters, persistence and the consent service, so real and mock
implementations stay interchangeable.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol

from ..models import Account, DateRange, Location, Transaction, TransactionPage

RawRecord = dict[str, Any]


class ConsentType(Enum):
    FINANCIAL_DATA = "financial_data"


class Permission(Enum):
    READ_ACCOUNTS = "read_accounts"
    READ_TRANSACTIONS = "read_transactions"


class ProviderClient(Protocol):
    """Aggregator adapter (Plaid, Yodlee, ...)."""

    provider: str

    def get_accounts(
        self, access_token: str, timeout: Optional[float] = None
    ) -> list[RawRecord]:
        """Fetch raw account records."""
        ...

    def get_transactions(
        self,
        access_token: str,
        date_range: DateRange,
        account_ids: list[str],
        offset: int = 0,
        count: int = 500,
        timeout: Optional[float] = None,
    ) -> TransactionPage:
        """Fetch one page of raw transactions."""
        ...


class Store(Protocol):
    """Persistence for reconciled records and sync bookkeeping."""

    def find_by_provider_id(self, provider_transaction_id: str) -> Optional[Transaction]:
        """Look up a record by the aggregator's transaction id."""
        ...

    def find_window(self, account_id: str, date_range: DateRange) -> list[Transaction]:
        """Records of one account inside a date range."""
        ...

    def upsert(self, record: Transaction) -> bool:
        """Insert or replace a record. Returns True if it was inserted."""
        ...

    def upsert_account(self, account: Account) -> bool:
        """Insert or replace an account. Returns True if it was inserted."""
        ...

    def get_last_synced(self, user_id: str, account_id: str) -> Optional[datetime]:
        """When the account was last synced successfully."""
        ...

    def set_last_synced(self, user_id: str, account_id: str, when: datetime) -> None:
        """Advance the account's sync watermark."""
        ...


class ConsentGate(Protocol):
    def has_consent(
        self, user_id: str, consent_type: ConsentType, permissions: list[Permission]
    ) -> bool:
        """True if the user granted every permission for the consent type."""
        ...


class LocationEnricher(Protocol):
    def enrich(self, location: Location) -> Optional[dict[str, Any]]:
        """Return extra location attributes (e.g. coordinates) or None."""
        ...
