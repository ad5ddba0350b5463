"""Synthetic last-resort quote provider.

Never touches the network and always serves every ticker, so a chain ending
in this provider cannot exhaust. Known tickers come from a reference table;
unknown tickers get a stable per-ticker base price. Each call applies a
small random jitter so repeated fetches move like a live feed.
"""

from __future__ import annotations

import random
from typing import Sequence

from quote_relay.core.config import MockConfig
from quote_relay.core.models import PriceRange, ProviderQuote, Timeframe

# Reference snapshots for common tickers.
REFERENCE_QUOTES: dict[str, dict] = {
    "AAPL": {
        "price": 150.25, "previous_close": 146.5, "open_price": 149.0,
        "volume": 45_000_000, "market_cap": 2.5e12, "pe_ratio": 25.5,
        "day_range": (148.0, 152.0), "year_range": (120.0, 180.0),
    },
    "GOOGL": {
        "price": 2800.50, "previous_close": 2834.0, "open_price": 2820.0,
        "volume": 25_000_000, "market_cap": 1.8e12, "pe_ratio": 28.3,
        "day_range": (2780.0, 2850.0), "year_range": (2200.0, 3000.0),
    },
    "MSFT": {
        "price": 320.75, "previous_close": 315.0, "open_price": 319.0,
        "volume": 35_000_000, "market_cap": 2.4e12, "pe_ratio": 32.1,
        "day_range": (318.0, 325.0), "year_range": (250.0, 350.0),
    },
    "TSLA": {
        "price": 850.25, "previous_close": 808.0, "open_price": 825.0,
        "volume": 80_000_000, "market_cap": 8.5e11, "pe_ratio": 85.2,
        "day_range": (820.0, 870.0), "year_range": (600.0, 900.0),
    },
    "NVDA": {
        "price": 450.80, "previous_close": 434.0, "open_price": 445.0,
        "volume": 60_000_000, "market_cap": 1.1e12, "pe_ratio": 45.1,
        "day_range": (440.0, 460.0), "year_range": (300.0, 500.0),
    },
    "SPY": {
        "price": 420.50, "previous_close": 417.0, "open_price": 419.0,
        "volume": 80_000_000, "market_cap": 4.0e11, "pe_ratio": 22.5,
        "day_range": (418.0, 422.0), "year_range": (380.0, 450.0),
    },
    "QQQ": {
        "price": 380.25, "previous_close": 375.5, "open_price": 379.0,
        "volume": 45_000_000, "market_cap": 1.8e11, "pe_ratio": 28.5,
        "day_range": (378.0, 382.0), "year_range": (320.0, 400.0),
    },
}


class MockQuoteProvider:
    """Deterministic-per-seed synthetic quotes.

    Parameters
    ----------
    config : MockConfig
        ``jitter`` is the maximum relative price move per call; ``seed``
        makes the sequence reproducible.
    """

    def __init__(self, config: MockConfig | None = None) -> None:
        self._config = config or MockConfig()
        self._rng = random.Random(self._config.seed)

    @property
    def name(self) -> str:
        return "mock"

    async def aclose(self) -> None:
        return None

    async def fetch_batch(
        self,
        tickers: Sequence[str],
        timeframe: Timeframe = Timeframe.ONE_DAY,
    ) -> dict[str, ProviderQuote]:
        return {ticker: self._quote_for(ticker) for ticker in tickers}

    def _quote_for(self, ticker: str) -> ProviderQuote:
        reference = REFERENCE_QUOTES.get(ticker)
        if reference is None:
            return self._synthetic(ticker)

        price = round(reference["price"] * self._jitter(), 2)
        low, high = reference["day_range"]
        year_low, year_high = reference["year_range"]
        return ProviderQuote(
            ticker=ticker,
            price=price,
            previous_close=reference["previous_close"],
            open_price=reference["open_price"],
            volume=reference["volume"],
            market_cap=reference["market_cap"],
            pe_ratio=reference["pe_ratio"],
            day_range=PriceRange(low=min(low, price), high=max(high, price)),
            year_range=PriceRange(low=min(year_low, price), high=max(year_high, price)),
            source="mock",
        )

    def _synthetic(self, ticker: str) -> ProviderQuote:
        # Stable per ticker (and seed), independent of call order.
        base_rng = random.Random(f"{self._config.seed}:{ticker}")
        base = 50 + base_rng.random() * 200
        volume = base_rng.randint(1_000_000, 11_000_000)
        price = round(base * self._jitter(), 2)
        return ProviderQuote(
            ticker=ticker,
            price=price,
            open_price=round(base, 2),
            volume=volume,
            day_range=PriceRange(
                low=round(min(base, price) * 0.95, 2),
                high=round(max(base, price) * 1.05, 2),
            ),
            year_range=PriceRange(
                low=round(min(base, price) * 0.7, 2),
                high=round(max(base, price) * 1.3, 2),
            ),
            source="mock",
        )

    def _jitter(self) -> float:
        if not self._config.jitter:
            return 1.0
        return 1 + self._rng.uniform(-self._config.jitter, self._config.jitter)
