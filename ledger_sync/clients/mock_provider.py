"""Mock aggregator client for testing and offline runs.

Generates a deterministic set of accounts and transactions (Plaid-shaped raw
records) from a seed and serves them through the ProviderClient interface,
including pagination. Failures can be scripted per account to exercise the
engine's retry and partial-failure handling.
"""

from __future__ import annotations

import logging
import random
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Any, Optional

from ..models import DateRange, TransactionPage

logger = logging.getLogger(__name__)

_MERCHANTS = [
    ("STARBUCKS #4521", "Starbucks", ["Food and Drink", "Coffee Shop"]),
    ("WHOLE FOODS MARKET", "Whole Foods", ["Shops", "Supermarkets and Groceries"]),
    ("SHELL OIL 57442", "Shell", ["Travel", "Gas Stations"]),
    ("AMAZON MKTPLACE PMTS", "Amazon", ["Shops", "Digital Purchase"]),
    ("CHIPOTLE 1187", "Chipotle", ["Food and Drink", "Restaurants"]),
    ("ATM WITHDRAWAL 0042", None, ["Transfer", "Withdrawal"]),
    ("NETFLIX.COM", "Netflix", ["Service", "Subscription"]),
    ("TRADER JOE'S #552", "Trader Joe's", ["Shops", "Supermarkets and Groceries"]),
]

_CITIES = [("New York", "NY"), ("Austin", "TX"), ("Seattle", "WA"), ("Denver", "CO")]


class MockProviderClient:
    """Deterministic in-memory ProviderClient.

    Args:
        num_accounts: Number of accounts to generate.
        transactions_per_account: Transactions generated per account.
        days: Spread of generated transaction dates, ending at ``now``.
        seed: Random seed; the same seed always yields the same data.
        now: Reference time (defaults to the current time).
        provider: Name reported by the ``provider`` attribute.
    """

    def __init__(
        self,
        num_accounts: int = 3,
        transactions_per_account: int = 25,
        days: int = 30,
        seed: int = 42,
        now: Optional[datetime] = None,
        provider: str = "mock",
    ):
        self.provider = provider
        self._rng = random.Random(seed)
        self._now = now or datetime.now()
        self.accounts: list[dict[str, Any]] = []
        self.transactions: list[dict[str, Any]] = []
        # account_id -> exceptions raised (in order) on the next get_transactions calls
        self._transaction_failures: dict[str, deque[Exception]] = defaultdict(deque)
        self._account_failures: deque[Exception] = deque()
        self.calls: list[dict[str, Any]] = []
        self._generate(num_accounts, transactions_per_account, days)

    def _generate(self, num_accounts: int, per_account: int, days: int) -> None:
        for i in range(num_accounts):
            account_id = f"acc-{i + 1}"
            self.accounts.append(
                {
                    "account_id": account_id,
                    "name": f"Mock Checking {i + 1}",
                    "official_name": f"Mock Bank Checking {i + 1}",
                    "type": "depository",
                    "subtype": "checking",
                    "mask": f"{1000 + i}",
                    "balances": {
                        "current": round(self._rng.uniform(500, 5000), 2),
                        "available": round(self._rng.uniform(100, 500), 2),
                        "iso_currency_code": "USD",
                    },
                }
            )
            for n in range(per_account):
                self.transactions.append(self._make_transaction(account_id, n, days))

    def _make_transaction(self, account_id: str, n: int, days: int) -> dict[str, Any]:
        name, merchant, category = self._rng.choice(_MERCHANTS)
        city, region = self._rng.choice(_CITIES)
        offset = timedelta(days=self._rng.uniform(0, days))
        return {
            "transaction_id": f"{account_id}-txn-{n + 1:05d}",
            "account_id": account_id,
            "amount": round(self._rng.uniform(2, 250), 2),
            "date": (self._now - offset).strftime("%Y-%m-%d"),
            "name": name,
            "merchant_name": merchant,
            "category": category,
            "pending": self._rng.random() < 0.05,
            "iso_currency_code": "USD",
            "location": {"city": city, "region": region, "country": "US"},
        }

    def add_transaction(self, raw: dict[str, Any]) -> None:
        """Append a hand-written raw transaction."""
        self.transactions.append(raw)

    def fail_transactions(self, account_id: str, *errors: Exception) -> None:
        """Raise ``errors`` in order on the next get_transactions calls for the account."""
        self._transaction_failures[account_id].extend(errors)

    def fail_accounts(self, *errors: Exception) -> None:
        """Raise ``errors`` in order on the next get_accounts calls."""
        self._account_failures.extend(errors)

    def get_accounts(
        self, access_token: str, timeout: Optional[float] = None
    ) -> list[dict[str, Any]]:
        self.calls.append({"method": "get_accounts", "timeout": timeout})
        if self._account_failures:
            raise self._account_failures.popleft()
        return [dict(a) for a in self.accounts]

    def get_transactions(
        self,
        access_token: str,
        date_range: DateRange,
        account_ids: list[str],
        offset: int = 0,
        count: int = 500,
        timeout: Optional[float] = None,
    ) -> TransactionPage:
        self.calls.append(
            {
                "method": "get_transactions",
                "account_ids": list(account_ids),
                "date_range": date_range,
                "offset": offset,
                "count": count,
                "timeout": timeout,
            }
        )
        for account_id in account_ids:
            failures = self._transaction_failures.get(account_id)
            if failures:
                raise failures.popleft()

        start = date_range.start.strftime("%Y-%m-%d")
        end = date_range.end.strftime("%Y-%m-%d")
        matching = [
            t
            for t in self.transactions
            if t["account_id"] in account_ids and start <= t["date"] <= end
        ]
        logger.debug(
            "Mock provider: %d transactions for %s (offset=%d, count=%d)",
            len(matching),
            account_ids,
            offset,
            count,
        )
        return TransactionPage(
            transactions=[dict(t) for t in matching[offset : offset + count]],
            total_transactions=len(matching),
        )
