"""Tests for currency conversion."""

from datetime import datetime, timedelta

import pytest

from ledger_sync.config import CurrencyConfig
from ledger_sync.models import CurrencyRate
from ledger_sync.services.currency import CurrencyConverter

NOW = datetime(2024, 6, 15, 12, 0)


@pytest.fixture
def converter():
    converter = CurrencyConverter(clock=lambda: NOW)
    converter.set_rate("EUR", "USD", 1.1, timestamp=NOW - timedelta(hours=1))
    return converter


class TestConvert:
    """Tests for conversion lookups."""

    def test_same_currency_is_identity(self, converter):
        assert converter.convert(42.5, "usd", "USD") == 42.5
        assert converter.convert(42.5, "JPY", "JPY") == 42.5

    def test_direct_rate(self, converter):
        assert converter.convert(100, "EUR", "USD") == pytest.approx(110.0)

    def test_inverse_rate(self, converter):
        assert converter.convert(110, "USD", "EUR") == pytest.approx(100.0)

    def test_unknown_pair(self, converter):
        assert converter.convert(10, "GBP", "USD") is None

    def test_stale_rate_is_not_used(self):
        """A rate older than the max age yields None, never a 1:1 conversion."""
        converter = CurrencyConverter(clock=lambda: NOW)
        converter.set_rate("EUR", "USD", 1.1, timestamp=NOW - timedelta(hours=25))
        assert converter.convert(100, "EUR", "USD") is None
        assert converter.convert(100, "USD", "EUR") is None

    def test_max_age_from_config(self):
        converter = CurrencyConverter(CurrencyConfig(max_rate_age_hours=48), clock=lambda: NOW)
        converter.set_rate("EUR", "USD", 1.1, timestamp=NOW - timedelta(hours=25))
        assert converter.convert(100, "EUR", "USD") == pytest.approx(110.0)


class TestRates:
    """Tests for rate management."""

    def test_config_rates_are_seeded(self):
        converter = CurrencyConverter(
            CurrencyConfig(rates={"gbp_usd": 1.25}), clock=lambda: NOW
        )
        assert converter.convert(2, "GBP", "USD") == pytest.approx(2.5)
        assert converter.rates[0].source == "config"

    def test_bad_rate_key(self):
        with pytest.raises(ValueError):
            CurrencyConverter(CurrencyConfig(rates={"EURUSD": 1.1}))

    def test_rate_must_be_positive(self, converter):
        with pytest.raises(ValueError):
            converter.set_rate("EUR", "USD", 0)

    def test_update_rates(self, converter):
        count = converter.update_rates(
            [
                CurrencyRate("CAD", "USD", 0.73, NOW),
                CurrencyRate("EUR", "USD", 1.2, NOW),
            ]
        )
        assert count == 2
        assert converter.convert(100, "EUR", "USD") == pytest.approx(120.0)
        assert converter.convert(100, "CAD", "USD") == pytest.approx(73.0)
