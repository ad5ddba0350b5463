"""Tests for quote_relay.providers.mock."""

import pytest

from quote_relay.core.config import MockConfig
from quote_relay.providers.base import QuoteProvider
from quote_relay.providers.mock import REFERENCE_QUOTES, MockQuoteProvider


class TestMockQuoteProvider:
    def test_satisfies_protocol(self):
        assert isinstance(MockQuoteProvider(), QuoteProvider)

    async def test_serves_every_ticker(self):
        provider = MockQuoteProvider()
        quotes = await provider.fetch_batch(["AAPL", "ZZZZ", "BRK.B"])
        assert set(quotes) == {"AAPL", "ZZZZ", "BRK.B"}
        assert all(q.source == "mock" for q in quotes.values())

    async def test_known_ticker_near_reference(self):
        provider = MockQuoteProvider(MockConfig(jitter=0.01, seed=1))
        quote = (await provider.fetch_batch(["AAPL"]))["AAPL"]
        reference = REFERENCE_QUOTES["AAPL"]["price"]
        assert quote.price == pytest.approx(reference, rel=0.011)
        assert quote.previous_close == REFERENCE_QUOTES["AAPL"]["previous_close"]
        assert quote.day_range.low <= quote.price <= quote.day_range.high

    async def test_zero_jitter_is_exact(self):
        provider = MockQuoteProvider(MockConfig(jitter=0.0))
        quote = (await provider.fetch_batch(["MSFT"]))["MSFT"]
        assert quote.price == REFERENCE_QUOTES["MSFT"]["price"]

    async def test_unknown_ticker_stable_per_seed(self):
        a = MockQuoteProvider(MockConfig(jitter=0.0, seed=42))
        b = MockQuoteProvider(MockConfig(jitter=0.0, seed=42))
        qa = (await a.fetch_batch(["ZZZZ"]))["ZZZZ"]
        qb = (await b.fetch_batch(["YYYY", "ZZZZ"]))["ZZZZ"]
        assert qa.price == qb.price
        assert 50 <= qa.price <= 250
        assert qa.previous_close is None

    async def test_seeded_sequence_reproducible(self):
        a = MockQuoteProvider(MockConfig(seed=7))
        b = MockQuoteProvider(MockConfig(seed=7))
        pa = [(await a.fetch_batch(["TSLA"]))["TSLA"].price for _ in range(3)]
        pb = [(await b.fetch_batch(["TSLA"]))["TSLA"].price for _ in range(3)]
        assert pa == pb
