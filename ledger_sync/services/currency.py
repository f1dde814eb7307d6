"""Currency conversion against a table of timestamped rates."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from ..config import CurrencyConfig
from ..models import CurrencyRate

logger = logging.getLogger(__name__)


class CurrencyConverter:
    """Converts amounts using direct or inverse rates younger than the max age.

    A missing or stale rate yields None; amounts are never converted 1:1 as
    a fallback.
    """

    def __init__(
        self,
        config: Optional[CurrencyConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._config = config or CurrencyConfig()
        self._clock = clock
        self._rates: dict[tuple[str, str], CurrencyRate] = {}
        self._lock = threading.Lock()
        now = clock()
        for key, rate in self._config.rates.items():
            try:
                from_currency, to_currency = key.upper().split("_")
            except ValueError as e:
                raise ValueError(f"Rate key must look like 'EUR_USD', got {key!r}") from e
            self.set_rate(from_currency, to_currency, rate, timestamp=now, source="config")

    @property
    def base_currency(self) -> str:
        return self._config.base_currency

    @property
    def rates(self) -> list[CurrencyRate]:
        with self._lock:
            return list(self._rates.values())

    def set_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: float,
        timestamp: Optional[datetime] = None,
        source: str = "manual",
    ) -> CurrencyRate:
        if rate <= 0:
            raise ValueError(f"Exchange rate must be positive: {rate}")
        entry = CurrencyRate(
            from_currency=from_currency.upper(),
            to_currency=to_currency.upper(),
            rate=rate,
            timestamp=timestamp or self._clock(),
            source=source,
        )
        with self._lock:
            self._rates[(entry.from_currency, entry.to_currency)] = entry
        return entry

    def update_rates(self, rates: Iterable[CurrencyRate]) -> int:
        """Replace rates in bulk (e.g. from a rate feed). Returns the count stored."""
        count = 0
        with self._lock:
            for rate in rates:
                self._rates[(rate.from_currency.upper(), rate.to_currency.upper())] = rate
                count += 1
        logger.info("Updated %d currency rates", count)
        return count

    def _fresh(self, rate: Optional[CurrencyRate]) -> bool:
        if rate is None:
            return False
        max_age = timedelta(hours=self._config.max_rate_age_hours)
        return self._clock() - rate.timestamp < max_age

    def convert(self, amount: float, from_currency: str, to_currency: str) -> Optional[float]:
        """Convert an amount, or return None when no fresh rate is known."""
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return amount

        with self._lock:
            direct = self._rates.get((from_currency, to_currency))
            inverse = self._rates.get((to_currency, from_currency))
        if self._fresh(direct):
            return amount * direct.rate
        if self._fresh(inverse):
            return amount / inverse.rate

        logger.warning("Currency rate not available: %s to %s", from_currency, to_currency)
        return None
