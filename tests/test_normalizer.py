"""Tests for mapping provider raw records to canonical records."""

from datetime import datetime, timezone

import pytest

from ledger_sync.clients.errors import RecordError
from ledger_sync.services.normalizer import normalize_account, normalize_transaction


class TestPlaidTransactions:
    """Tests for Plaid-shaped records (Plaid and the mock provider)."""

    def test_maps_fields(self, raw_transaction):
        txn = normalize_transaction(raw_transaction, "user-1", "plaid")
        assert txn.id.startswith("txn_")
        assert txn.provider_transaction_id == "acc-1-txn-90001"
        assert txn.provider == "plaid"
        assert txn.user_id == "user-1"
        assert txn.account_id == "acc-1"
        assert txn.date == datetime(2024, 6, 10)
        assert txn.amount == 4.5
        assert txn.description == "STARBUCKS #4521"
        assert txn.original_description == "STARBUCKS #4521"
        assert txn.category == "Food and Drink"
        assert txn.subcategory == "Coffee Shop"
        assert txn.location.display == "New York, NY"
        assert not txn.pending

    def test_fresh_local_id_each_time(self, raw_transaction):
        a = normalize_transaction(raw_transaction, "user-1", "mock")
        b = normalize_transaction(raw_transaction, "user-1", "mock")
        assert a.id != b.id

    def test_single_level_category(self, raw_transaction):
        raw_transaction["category"] = ["Transfer"]
        txn = normalize_transaction(raw_transaction, "user-1", "plaid")
        assert txn.category == "Transfer"
        assert txn.subcategory is None

    @pytest.mark.parametrize("missing", ["transaction_id", "account_id", "date", "amount"])
    def test_missing_required_field(self, raw_transaction, missing):
        del raw_transaction[missing]
        with pytest.raises(RecordError):
            normalize_transaction(raw_transaction, "user-1", "plaid")

    def test_unparseable_values(self, raw_transaction):
        raw_transaction["date"] = "last tuesday"
        with pytest.raises(RecordError) as exc_info:
            normalize_transaction(raw_transaction, "user-1", "plaid")
        assert exc_info.value.record_id == "acc-1-txn-90001"

    def test_offset_date_becomes_naive_local_time(self, raw_transaction):
        raw_transaction["date"] = "2024-06-14T10:00:00+00:00"
        txn = normalize_transaction(raw_transaction, "user-1", "plaid")
        expected = datetime(2024, 6, 14, 10, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        assert txn.date.tzinfo is None
        assert txn.date == expected

    def test_not_a_mapping(self):
        with pytest.raises(RecordError):
            normalize_transaction(["not", "a", "record"], "user-1", "plaid")


class TestYodlee:
    """Tests for Yodlee records."""

    def test_transaction(self):
        raw = {
            "id": 7781,
            "accountId": 1200,
            "transactionDate": "2024-06-09",
            "amount": {"amount": 23.1, "currency": "EUR"},
            "description": {"original": "PAYPAL *SPOTIFY 4029357733", "simple": "Spotify"},
            "merchant": {"name": "Spotify", "address": {"city": "Stockholm", "country": "SE"}},
            "category": "Entertainment",
            "status": "PENDING",
        }
        txn = normalize_transaction(raw, "user-1", "yodlee")
        assert txn.provider_transaction_id == "7781"
        assert txn.account_id == "1200"
        assert txn.amount == 23.1
        assert txn.currency == "EUR"
        assert txn.description == "Spotify"
        assert txn.original_description == "PAYPAL *SPOTIFY 4029357733"
        assert txn.merchant_name == "Spotify"
        assert txn.pending
        assert txn.location.city == "Stockholm"

    def test_account(self):
        raw = {
            "id": 1200,
            "accountName": "Everyday Checking",
            "CONTAINER": "BANK",
            "accountType": "CHECKING",
            "providerName": "Dag Site",
            "balance": {"amount": 1520.3, "currency": "USD"},
        }
        account = normalize_account(raw, "user-1", "yodlee")
        assert account.id == "1200"
        assert account.type == "bank"
        assert account.balance == 1520.3
        assert account.institution == "Dag Site"


class TestAccounts:
    """Tests for Plaid-shaped accounts."""

    def test_account(self, mock_provider):
        account = normalize_account(mock_provider.accounts[0], "user-1", "mock")
        assert account.id == "acc-1"
        assert account.name == "Mock Checking 1"
        assert account.provider == "mock"
        assert account.balance is not None

    def test_account_without_id(self):
        with pytest.raises(RecordError):
            normalize_account({"name": "Nameless"}, "user-1", "plaid")
