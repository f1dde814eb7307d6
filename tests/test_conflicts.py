"""Tests for conflict resolution between local and provider records."""

import copy
from datetime import datetime

import pytest

from ledger_sync.models import ConflictResolutionStrategy, Location
from ledger_sync.services.conflicts import find_conflicts, resolve


@pytest.fixture
def local(make_transaction):
    """Stored record the user has annotated."""
    txn = make_transaction(
        id="local-1",
        provider="mock",
        provider_transaction_id="prov-1",
        description="Morning coffee",
        category="Food and Drink",
        notes="with Sam",
        pending=True,
    )
    txn.edited_fields = {"description", "notes"}
    return txn


@pytest.fixture
def provider(make_transaction):
    """Fresh provider version of the same transaction."""
    return make_transaction(
        id="incoming-1",
        provider="mock",
        provider_transaction_id="prov-1",
        description="STARBUCKS",
        category="Coffee Shop",
        amount=4.75,
        pending=False,
        date=datetime(2024, 6, 11),
        location=Location(city="Seattle", region="WA"),
    )


class TestFindConflicts:
    """Tests for conflict detection."""

    def test_lists_differing_fields(self, local, provider):
        fields = find_conflicts(local, provider)
        assert {"amount", "date", "pending", "description", "category", "location"} <= set(fields)
        assert "account_id" not in fields

    def test_provider_none_is_not_a_conflict(self, local, provider):
        provider.merchant_name = None
        assert "merchant_name" not in find_conflicts(local, provider)


class TestResolve:
    """Tests for each strategy."""

    def test_provider_wins_round_trips_description(self, local, provider):
        resolved = resolve(local, provider, ConflictResolutionStrategy.PROVIDER_WINS)
        assert resolved.record.description == "STARBUCKS"
        assert resolved.record.amount == 4.75
        assert resolved.record.category == "Coffee Shop"
        assert "description" not in resolved.record.edited_fields

    def test_local_wins_round_trips_description(self, local, provider):
        resolved = resolve(local, provider, ConflictResolutionStrategy.LOCAL_WINS)
        assert resolved.record.description == "Morning coffee"
        assert resolved.record.amount == 4.5
        # Gaps are still filled from the provider
        assert resolved.record.location == Location(city="Seattle", region="WA")

    def test_local_wins_fills_empty_strings(self, local, provider):
        local.description = ""
        resolved = resolve(local, provider, ConflictResolutionStrategy.LOCAL_WINS)
        assert resolved.record.description == "STARBUCKS"

    def test_merge_keeps_user_edits_and_notes(self, local, provider):
        resolved = resolve(local, provider, ConflictResolutionStrategy.MERGE)
        record = resolved.record
        assert record.description == "Morning coffee"
        assert record.notes == "with Sam"
        # Unedited category follows the provider
        assert record.category == "Coffee Shop"
        # Structural fields come from the provider
        assert record.amount == 4.75
        assert record.pending is False
        assert record.date == datetime(2024, 6, 11)
        assert record.location.city == "Seattle"

    def test_merge_keeps_edited_category(self, local, provider):
        local.edit(category="Treats")
        local.category_confidence = 1.0
        provider.category_confidence = 0.5
        record = resolve(local, provider).record
        assert record.category == "Treats"
        assert record.category_confidence == 1.0

    def test_default_strategy_is_merge(self, local, provider):
        assert resolve(local, provider).strategy is ConflictResolutionStrategy.MERGE

    @pytest.mark.parametrize("strategy", list(ConflictResolutionStrategy))
    def test_identity_and_tagging(self, local, provider, strategy):
        """The local id survives; the provider id and strategy are recorded."""
        resolved = resolve(local, provider, strategy)
        assert resolved.record.id == "local-1"
        assert resolved.record.provider_transaction_id == "prov-1"
        assert resolved.record.conflict_resolution == strategy.value
        assert resolved.has_conflicts

    @pytest.mark.parametrize("strategy", list(ConflictResolutionStrategy))
    def test_inputs_not_mutated(self, local, provider, strategy):
        local_before = copy.deepcopy(local)
        provider_before = copy.deepcopy(provider)
        resolve(local, provider, strategy)
        assert local == local_before
        assert provider == provider_before

    def test_manual_record_gains_provider_id(self, make_transaction, provider):
        """Merging a provider duplicate links the manual record to the provider."""
        manual = make_transaction(id="manual-1", provider_transaction_id=None, provider="")
        record = resolve(manual, provider).record
        assert record.id == "manual-1"
        assert record.provider_transaction_id == "prov-1"
        assert record.provider == "mock"
