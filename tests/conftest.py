"""Shared pytest fixtures for ledger-sync tests."""

from datetime import datetime
from pathlib import Path

import pytest

from ledger_sync.clients import MockProviderClient, StaticConsentGate
from ledger_sync.config import Config, DuplicateConfig, RetryConfig, SyncConfig, load_config
from ledger_sync.db.database import Database
from ledger_sync.models import Location, Transaction
from ledger_sync.services import (
    CurrencyConverter,
    DataTransformer,
    DuplicateDetector,
    MerchantNormalizer,
    RuleCategorizer,
    SyncEngine,
)

# Fixed "now" so generated data, date windows and quality scores are stable
NOW = datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture
def now():
    """Reference time shared by clocks and generated data."""
    return NOW


@pytest.fixture
def temp_db_path(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "test_ledger.db"


@pytest.fixture
def database(temp_db_path):
    """Create a test database instance."""
    db = Database(temp_db_path)
    yield db
    db.close()


@pytest.fixture(scope="session")
def test_config():
    """Load test configuration from tests/test_config.toml."""
    config_path = Path(__file__).parent / "test_config.toml"
    return load_config(config_path)


@pytest.fixture
def sample_config(tmp_path):
    """Configuration with small pages and batches so pagination is exercised."""
    return Config(
        sync=SyncConfig(batch_size=10, page_size=25),
        retry=RetryConfig(),
        duplicates=DuplicateConfig(),
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def make_transaction():
    """Factory for transactions with sensible defaults; override any field."""

    def _make(**overrides) -> Transaction:
        fields = {
            "id": "txn-001",
            "account_id": "acc-1",
            "user_id": "user-1",
            "date": datetime(2024, 6, 10),
            "amount": 4.5,
            "description": "STARBUCKS #4521",
            "merchant_name": "Starbucks",
            "currency": "USD",
        }
        fields.update(overrides)
        return Transaction(**fields)

    return _make


@pytest.fixture
def sample_transaction(make_transaction):
    """A posted provider transaction."""
    return make_transaction(
        id="txn-001",
        provider="mock",
        provider_transaction_id="prov-001",
        category="Food and Drink",
        subcategory="Coffee Shop",
        location=Location(city="New York", region="NY", country="US"),
    )


@pytest.fixture
def raw_transaction():
    """Plaid-shaped raw transaction as the mock provider serves it."""
    return {
        "transaction_id": "acc-1-txn-90001",
        "account_id": "acc-1",
        "amount": 4.5,
        "date": "2024-06-10",
        "name": "STARBUCKS #4521",
        "merchant_name": "Starbucks",
        "category": ["Food and Drink", "Coffee Shop"],
        "pending": False,
        "iso_currency_code": "USD",
        "location": {"city": "New York", "region": "NY", "country": "US"},
    }


# Sync-related fixtures


@pytest.fixture
def sleeps():
    """Records backoff waits instead of sleeping."""
    return []


@pytest.fixture
def consent():
    """Consent gate that allows every user."""
    return StaticConsentGate(allow_all=True)


@pytest.fixture
def mock_provider(now):
    """Deterministic mock aggregator: 3 accounts x 25 transactions."""
    return MockProviderClient(num_accounts=3, transactions_per_account=25, seed=42, now=now)


@pytest.fixture
def transformer(now):
    """Transformer with default rules and a fixed clock."""
    return DataTransformer(
        categorizer=RuleCategorizer(),
        merchants=MerchantNormalizer(),
        currency=CurrencyConverter(clock=lambda: now),
        clock=lambda: now,
    )


@pytest.fixture
def make_engine(database, consent, transformer, sample_config, sleeps, now):
    """Factory for a SyncEngine over the test database; pass a provider."""

    def _make(provider, **overrides) -> SyncEngine:
        kwargs = {
            "provider": provider,
            "store": database,
            "consent": consent,
            "transformer": transformer,
            "detector": DuplicateDetector(sample_config.duplicates),
            "config": sample_config,
            "sleep": sleeps.append,
            "clock": lambda: now,
        }
        kwargs.update(overrides)
        return SyncEngine(**kwargs)

    return _make


@pytest.fixture
def engine(make_engine, mock_provider):
    """SyncEngine over the mock provider and the test database."""
    return make_engine(mock_provider)
