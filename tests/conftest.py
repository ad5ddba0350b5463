"""Shared pytest fixtures for quote-relay."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Sequence

import pytest

from quote_relay.cache.history import PriceHistoryStore
from quote_relay.cache.market_hours import MarketClock
from quote_relay.cache.quote_cache import QuoteCache
from quote_relay.core.config import CacheConfig
from quote_relay.core.models import PriceRange, ProviderQuote, Quote, Timeframe

# Wednesday 2024-01-10 10:00 America/New_York
MARKET_OPEN_UTC = datetime(2024, 1, 10, 15, 0, tzinfo=timezone.utc)
# Saturday 2024-01-13 10:00 America/New_York
MARKET_CLOSED_UTC = datetime(2024, 1, 13, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticProvider:
    """In-memory provider serving a fixed quote table.

    Records every batch it was asked for. ``delay`` simulates upstream
    latency; ``error`` makes every call raise.
    """

    def __init__(
        self,
        name: str,
        quotes: dict[str, ProviderQuote] | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self._name = name
        self.quotes = dict(quotes or {})
        self.delay = delay
        self.error = error
        self.calls: list[list[str]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    async def fetch_batch(
        self,
        tickers: Sequence[str],
        timeframe: Timeframe = Timeframe.ONE_DAY,
    ) -> dict[str, ProviderQuote]:
        self.calls.append(list(tickers))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {t: self.quotes[t] for t in tickers if t in self.quotes}

    async def aclose(self) -> None:
        self.closed = True


def provider_quote(
    ticker: str,
    price: float,
    previous_close: float | None = None,
    **kwargs,
) -> ProviderQuote:
    return ProviderQuote(
        ticker=ticker,
        price=price,
        previous_close=previous_close,
        source=kwargs.pop("source", "test"),
        **kwargs,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def open_market() -> MarketClock:
    return MarketClock(now=lambda: MARKET_OPEN_UTC)


@pytest.fixture
def closed_market() -> MarketClock:
    return MarketClock(now=lambda: MARKET_CLOSED_UTC)


@pytest.fixture
def make_quote():
    """Factory for ProviderQuote objects."""
    return provider_quote


@pytest.fixture
def static_provider():
    """The StaticProvider class, for building fake provider chains."""
    return StaticProvider


@pytest.fixture
def sample_quote() -> Quote:
    return Quote(
        ticker="AAPL",
        price=150.25,
        previous_close=146.5,
        change_percent=2.56,
        volume=45_000_000,
        day_range=PriceRange(low=148.0, high=152.0),
        source="test",
    )


@pytest.fixture
def history(fake_clock: FakeClock) -> PriceHistoryStore:
    return PriceHistoryStore(clock=fake_clock)


@pytest.fixture
def cache(fake_clock: FakeClock, open_market: MarketClock) -> QuoteCache:
    return QuoteCache(CacheConfig(), market_clock=open_market, clock=fake_clock)
