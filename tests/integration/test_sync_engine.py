"""Integration tests for SyncEngine.

Tests the engine end to end with a hand-written provider and a real SQLite
store: pagination and batching, reconciliation against existing records, and
error handling.
"""

from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Any, Optional

import pytest

from ledger_sync.clients import AuthenticationError, RateLimitError, StaticConsentGate, TransientProviderError
from ledger_sync.config import Config, DuplicateConfig
from ledger_sync.models import DateRange, SyncType, Transaction, TransactionPage
from ledger_sync.services.duplicates import DuplicateDetector

USER = "user-1"


class FakeProvider:
    """Mock aggregator client for testing."""

    provider = "plaid"

    def __init__(self, accounts: Optional[list[str]] = None):
        self.accounts = accounts or ["acc-1"]
        self.transactions: list[dict[str, Any]] = []
        self.failures: dict[str, deque[Exception]] = defaultdict(deque)
        self.page_requests: list[tuple[str, int]] = []

    def add(self, txn_id: str, account_id: str, date: datetime, /, amount: float, name: str, **extra):
        self.transactions.append(
            {
                "transaction_id": txn_id,
                "account_id": account_id,
                "date": date.strftime("%Y-%m-%d"),
                "amount": amount,
                "name": name,
                "pending": False,
                "iso_currency_code": "USD",
                **extra,
            }
        )

    def get_accounts(self, access_token: str, timeout: Optional[float] = None) -> list[dict]:
        return [{"account_id": a, "name": f"Account {a}"} for a in self.accounts]

    def get_transactions(
        self,
        access_token: str,
        date_range: DateRange,
        account_ids: list[str],
        offset: int = 0,
        count: int = 500,
        timeout: Optional[float] = None,
    ) -> TransactionPage:
        for account_id in account_ids:
            self.page_requests.append((account_id, offset))
            if self.failures[account_id]:
                raise self.failures[account_id].popleft()
        matching = [
            t
            for t in self.transactions
            if t["account_id"] in account_ids
            and date_range.contains(datetime.fromisoformat(t["date"][:10]))
        ]
        return TransactionPage(
            transactions=matching[offset : offset + count], total_transactions=len(matching)
        )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def sync_engine(make_engine, provider):
    return make_engine(provider)


def _manual_entry(now: datetime, **overrides) -> Transaction:
    """A record the user typed in before the bank reported it."""
    fields = {
        "id": "manual-1",
        "user_id": USER,
        "account_id": "acc-1",
        "date": now - timedelta(days=5),
        "amount": 4.5,
        "description": "Starbucks Coffee",
    }
    fields.update(overrides)
    return Transaction(**fields)


class TestLargeSync:
    """Tests for pagination and batching at volume."""

    def test_thousand_transactions(self, make_engine, provider, database, now, tmp_path):
        for i in range(1000):
            provider.add(
                f"t{i:04d}",
                "acc-1",
                now - timedelta(days=i % 20),
                amount=round(1 + i * 0.05, 2),
                name=f"STORE {i}",
            )
        engine = make_engine(provider, config=Config(data_dir=tmp_path))
        result = engine.sync_transactions(USER, "token", ["acc-1"])

        assert result.success
        assert result.transactions_processed == 1000
        assert result.transactions_added == 1000
        assert result.batches_processed > 1
        assert database.get_transaction_count() == 1000
        # Two pages of 500
        assert provider.page_requests == [("acc-1", 0), ("acc-1", 500)]


class TestReconciliation:
    """Tests for update / merge / review / insert decisions."""

    def test_known_provider_id_is_updated(self, sync_engine, provider, database, now):
        """A re-reported transaction updates the stored row and keeps user edits."""
        provider.add("t1", "acc-1", now - timedelta(days=2), 1200.0, "RENT PAYMENT")
        sync_engine.sync_transactions(USER, "token", ["acc-1"])
        stored = database.find_by_provider_id("t1")
        stored.edit(description="Rent (June)", notes="paid early")
        database.upsert(stored)

        provider.transactions[0]["amount"] = 1250.0
        result = sync_engine.sync_transactions(USER, "token", ["acc-1"], sync_type=SyncType.FULL)

        assert result.transactions_updated == 1
        assert result.transactions_added == 0
        assert database.get_transaction_count() == 1
        updated = database.find_by_provider_id("t1")
        assert updated.id == stored.id
        assert updated.amount == 1250.0
        assert updated.description == "Rent (June)"
        assert updated.notes == "paid early"
        assert updated.conflict_resolution == "merge"
        assert result.conflicts and "amount" in result.conflicts[0].conflict_fields

    def test_same_transaction_twice_in_one_page(self, sync_engine, provider, database, now):
        provider.add("t1", "acc-1", now - timedelta(days=2), 9.99, "NETFLIX.COM")
        provider.add("t1", "acc-1", now - timedelta(days=2), 9.99, "NETFLIX.COM")
        result = sync_engine.sync_transactions(USER, "token", ["acc-1"])
        assert result.transactions_added == 1
        assert result.transactions_updated == 1
        assert database.get_transaction_count() == 1

    def test_provider_record_merges_into_manual_entry(self, sync_engine, provider, database, now):
        """STARBUCKS #4521 from the bank is the user's "Starbucks Coffee"."""
        manual = _manual_entry(now)
        manual.edit(description="Starbucks Coffee", notes="team coffee")
        database.upsert(manual)
        provider.add(
            "sb-1",
            "acc-1",
            now - timedelta(days=4),
            4.5,
            "STARBUCKS #4521",
            merchant_name="Starbucks",
        )

        result = sync_engine.sync_transactions(USER, "token", ["acc-1"])

        assert result.duplicates_detected == 1
        assert result.transactions_added == 0
        assert database.get_transaction_count() == 1
        merged = database.get_transaction("manual-1")
        assert merged.provider_transaction_id == "sb-1"
        assert merged.provider == "plaid"
        assert merged.description == "Starbucks Coffee"
        assert merged.notes == "team coffee"
        assert merged.merchant_name == "Starbucks"
        assert merged.conflict_resolution == "merge"

        # The next sync recognizes the provider id
        again = sync_engine.sync_transactions(USER, "token", ["acc-1"], sync_type=SyncType.FULL)
        assert again.transactions_updated == 1
        assert database.get_transaction_count() == 1

    def test_uncertain_match_is_stored_and_flagged(self, make_engine, provider, database, now):
        """A likely duplicate is kept and flagged so a person can decide."""
        engine = make_engine(provider, detector=DuplicateDetector(DuplicateConfig(date_points=25)))
        database.upsert(
            _manual_entry(now, description="SQ *BLUE BOTTLE", merchant_name="Blue Bottle", amount=6.0)
        )
        provider.add(
            "bb-1",
            "acc-1",
            now - timedelta(days=5),
            6.0,
            "BLUE BOTTLE COFFEE OAKLAND",
            merchant_name="Blue Bottle",
        )

        result = engine.sync_transactions(USER, "token", ["acc-1"])

        assert result.duplicates_detected == 1
        assert result.transactions_added == 1
        assert len(result.review_queue) == 1
        assert result.review_queue[0].duplicate_ids == ["manual-1"]
        assert database.get_transaction_count() == 2
        flagged = database.find_by_provider_id("bb-1")
        assert flagged.needs_review
        assert flagged.review_candidate_ids == ["manual-1"]
        assert [t.id for t in database.get_review_transactions()] == [flagged.id]
        assert database.get_transaction("manual-1").provider_transaction_id is None

        # Re-syncing updates the flagged row and keeps the flag
        again = engine.sync_transactions(USER, "token", ["acc-1"], sync_type=SyncType.FULL)
        assert again.transactions_updated == 1
        assert database.get_transaction_count() == 2
        assert database.find_by_provider_id("bb-1").needs_review

    def test_repeat_purchase_at_same_merchant_is_inserted(self, sync_engine, provider, database, now):
        """Same amount and merchant a day apart, different description: a second purchase."""
        database.upsert(
            _manual_entry(
                now,
                date=now - timedelta(days=1),
                amount=12.0,
                description="Lunch with team",
                merchant_name="Chipotle",
            )
        )
        provider.add("ch-1", "acc-1", now, 12.0, "CHIPOTLE 1234 ONLINE ORDER", merchant_name="Chipotle")

        result = sync_engine.sync_transactions(USER, "token", ["acc-1"])

        assert result.transactions_added == 1
        assert result.duplicates_detected == 0
        assert result.review_queue == []
        assert database.get_transaction_count() == 2
        assert not database.find_by_provider_id("ch-1").needs_review

    def test_identical_provider_transactions_stay_separate(self, sync_engine, provider, database, now):
        """Two coffees on the same day are two transactions when the bank says so."""
        day = now - timedelta(days=1)
        provider.add("c1", "acc-1", day, 3.75, "BLUE BOTTLE", merchant_name="Blue Bottle")
        provider.add("c2", "acc-1", day, 3.75, "BLUE BOTTLE", merchant_name="Blue Bottle")
        result = sync_engine.sync_transactions(USER, "token", ["acc-1"])
        assert result.transactions_added == 2
        assert result.duplicates_detected == 0
        assert database.get_transaction_count() == 2

    def test_pending_record_is_replaced_by_posted(self, sync_engine, provider, database, now):
        """The posted version (new provider id) of a pending charge merges into it."""
        day = now - timedelta(days=2)
        provider.add("pend-1", "acc-1", day, 42.0, "SHELL OIL 57442", merchant_name="Shell", pending=True)
        sync_engine.sync_transactions(USER, "token", ["acc-1"])
        provider.transactions.clear()
        provider.add("post-1", "acc-1", day, 42.0, "SHELL OIL 57442", merchant_name="Shell")

        result = sync_engine.sync_transactions(USER, "token", ["acc-1"], sync_type=SyncType.FULL)

        assert result.duplicates_detected == 1
        assert database.get_transaction_count() == 1
        stored = database.find_by_provider_id("post-1")
        assert stored is not None
        assert not stored.pending


class TestFailures:
    """Tests for error handling across accounts."""

    def test_one_transient_failure_among_three_accounts(self, make_engine, now, sleeps):
        provider = FakeProvider(accounts=["acc-1", "acc-2", "acc-3"])
        for n, account in enumerate(provider.accounts):
            provider.add(f"{account}-t1", account, now - timedelta(days=1), 10.0 + n, "GROCERY OUTLET")
        provider.failures["acc-2"].append(TransientProviderError("Gateway timeout", status=504))

        result = make_engine(provider).sync_transactions(USER, "token")

        assert result.success
        assert result.accounts_succeeded == 3
        assert result.retry_attempts >= 1
        assert result.partial_failures == []
        assert result.transactions_added == 3
        assert sleeps == [0.5]

    def test_date_with_utc_offset_does_not_fail_account(self, sync_engine, provider, database, now):
        provider.add("g1", "acc-1", now - timedelta(days=1), 25.0, "GROCERY OUTLET")
        provider.add("z1", "acc-1", now, 8.0, "CORNER DELI", date="2024-06-14T10:00:00+00:00")

        result = sync_engine.sync_transactions(USER, "token", ["acc-1"])

        assert result.success
        assert result.accounts_failed == 0
        assert result.partial_failures == []
        assert result.transactions_added == 2
        assert database.find_by_provider_id("z1").date.tzinfo is None

    def test_record_that_fails_to_process_is_skipped(self, make_engine, provider, transformer, database, now):
        """One bad record costs that record only, never the account."""

        class BrokenOnDeli:
            def transform(self, txn):
                if txn.description == "CORNER DELI":
                    raise TypeError("cannot enrich")
                return transformer.transform(txn)

        provider.add("g1", "acc-1", now - timedelta(days=1), 25.0, "GROCERY OUTLET")
        provider.add("z1", "acc-1", now, 8.0, "CORNER DELI")

        result = make_engine(provider, transformer=BrokenOnDeli()).sync_transactions(USER, "token", ["acc-1"])

        assert result.success
        assert result.accounts_failed == 0
        assert result.records_skipped == 1
        assert result.transactions_processed == 2
        assert result.transactions_added == 1
        assert database.find_by_provider_id("g1") is not None

    def test_consent_refused(self, make_engine, provider, database):
        result = make_engine(provider, consent=StaticConsentGate()).sync_transactions(USER, "token")
        assert not result.success
        assert result.error.code == "CONSENT_REQUIRED"
        assert provider.page_requests == []
        assert database.get_transaction_count() == 0

    def test_rejected_credentials(self, make_engine, now):
        provider = FakeProvider(accounts=["acc-1", "acc-2"])
        provider.failures["acc-1"].append(AuthenticationError("ITEM_LOGIN_REQUIRED"))
        result = make_engine(provider).sync_transactions(USER, "token")
        assert not result.success
        assert result.requires_reauth
        assert result.error.code == "INVALID_CREDENTIALS"
        # acc-2 is never attempted with a dead token
        assert [r[0] for r in provider.page_requests] == ["acc-1"]

    def test_rate_limited(self, sync_engine, provider, database, now, sleeps):
        provider.add("t1", "acc-1", now - timedelta(days=1), 15.0, "CHIPOTLE 1187")
        provider.failures["acc-1"].append(RateLimitError(retry_after=3))
        result = sync_engine.sync_transactions(USER, "token", ["acc-1"])
        assert result.success
        assert sleeps == [3]
        assert result.retry_attempts == 1
        assert database.get_transaction_count() == 1
