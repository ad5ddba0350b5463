"""Tests for quote_relay.cache.quote_cache."""

from __future__ import annotations

import asyncio

import pytest

from quote_relay.cache.quote_cache import QuoteCache
from quote_relay.core.config import CacheConfig
from quote_relay.core.models import CachePriority, PriceRange, Quote


def _quote(
    ticker: str,
    change: float = 0.5,
    low: float | None = 99.5,
    high: float | None = 100.5,
    previous_close: float | None = 99.5,
) -> Quote:
    return Quote(
        ticker=ticker,
        price=100.0,
        previous_close=previous_close,
        change_percent=change,
        day_range=PriceRange(low=low, high=high) if low is not None else None,
        source="test",
    )


LOW_VOL = dict(change=0.5, low=99.5, high=100.5)  # ~0.0075
MEDIUM_VOL = dict(change=3.0, low=97.0, high=100.0)  # ~0.030
HIGH_VOL = dict(change=8.0, low=90.0, high=100.0)  # ~0.093


class TestVolatility:
    def test_blends_change_and_spread(self, cache):
        v = cache.calculate_volatility(_quote("X", change=2.0, low=99.0, high=101.0))
        assert v == pytest.approx((0.02 + 0.02) / 2)

    def test_change_only(self, cache):
        v = cache.calculate_volatility(_quote("X", change=4.0, low=None))
        assert v == pytest.approx(0.04)

    def test_no_information_uses_default(self, cache):
        q = _quote("X", change=0.0, low=None, previous_close=None)
        assert cache.calculate_volatility(q) == cache.config.default_volatility

    def test_clamped(self, cache):
        v = cache.calculate_volatility(_quote("X", change=400.0, low=1.0, high=300.0))
        assert v == 0.5


class TestPriority:
    def test_high_interest_ticker(self, cache):
        assert cache.determine_priority("SPY", 0.0) == CachePriority.HIGH

    def test_volatile_ticker_is_medium(self, cache):
        assert cache.determine_priority("ZZZZ", 0.06) == CachePriority.MEDIUM

    def test_calm_ticker_is_low(self, cache):
        assert cache.determine_priority("ZZZZ", 0.01) == CachePriority.LOW


class TestTTL:
    @pytest.mark.parametrize(
        "volatility, ttl",
        [(0.10, 30.0), (0.05, 60.0), (0.03, 60.0), (0.02, 300.0), (0.0, 300.0)],
    )
    def test_ttl_by_volatility_during_session(self, cache, volatility, ttl):
        assert cache.ttl_for(volatility, market_open=True) == ttl

    def test_ttl_non_increasing_in_volatility(self, cache):
        ttls = [cache.ttl_for(v / 100, market_open=True) for v in range(0, 50)]
        assert all(a >= b for a, b in zip(ttls, ttls[1:]))

    def test_after_hours_ttl_dominates(self, cache):
        for v in (0.0, 0.03, 0.2):
            assert cache.ttl_for(v, market_open=False) == 600.0
            assert cache.ttl_for(v, market_open=False) >= cache.ttl_for(v, market_open=True)


class TestGetPut:
    def test_miss_then_hit(self, cache):
        assert cache.get("AAPL") is None
        q = _quote("AAPL")
        cache.put("AAPL", q)
        assert cache.get("AAPL") == q
        stats = cache.stats()
        assert (stats.hits, stats.misses) == (1, 1)
        assert stats.hit_rate == 0.5

    def test_access_tracking(self, cache, fake_clock):
        cache.put("AAPL", _quote("AAPL"))
        fake_clock.advance(3)
        cache.get("AAPL")
        cache.get("AAPL")
        info = cache.entry_info("AAPL")
        assert info.access_count == 2
        assert info.age == pytest.approx(3.0)

    def test_high_volatility_expires_after_30s(self, cache, fake_clock):
        cache.put("ZZZZ", _quote("ZZZZ", **HIGH_VOL))
        fake_clock.advance(29)
        assert cache.get("ZZZZ") is not None
        fake_clock.advance(2)
        assert cache.get("ZZZZ") is None
        assert cache.stats().expirations == 1

    def test_medium_volatility_ttl(self, cache, fake_clock):
        cache.put("ZZZZ", _quote("ZZZZ", **MEDIUM_VOL))
        fake_clock.advance(59)
        assert cache.is_cached("ZZZZ")
        fake_clock.advance(2)
        assert not cache.is_cached("ZZZZ")

    def test_low_volatility_ttl(self, cache, fake_clock):
        cache.put("ZZZZ", _quote("ZZZZ", **LOW_VOL))
        fake_clock.advance(299)
        assert cache.is_cached("ZZZZ")
        fake_clock.advance(2)
        assert not cache.is_cached("ZZZZ")

    def test_after_hours_extends_ttl(self, closed_market, fake_clock):
        cache = QuoteCache(market_clock=closed_market, clock=fake_clock)
        cache.put("ZZZZ", _quote("ZZZZ", **HIGH_VOL))
        fake_clock.advance(599)
        assert cache.get("ZZZZ") is not None
        fake_clock.advance(2)
        assert cache.get("ZZZZ") is None

    def test_replace_resets_entry(self, cache, fake_clock):
        cache.put("AAPL", _quote("AAPL"))
        cache.get("AAPL")
        fake_clock.advance(10)
        cache.put("AAPL", _quote("AAPL", change=1.0))
        info = cache.entry_info("AAPL")
        assert info.access_count == 0
        assert info.age == 0

    def test_invalidate_and_clear(self, cache):
        cache.put("AAPL", _quote("AAPL"))
        assert cache.invalidate("AAPL") is True
        assert cache.invalidate("AAPL") is False
        cache.put("MSFT", _quote("MSFT"))
        cache.clear()
        assert len(cache) == 0

    def test_is_cached_is_not_an_access(self, cache):
        cache.put("AAPL", _quote("AAPL"))
        assert cache.is_cached("AAPL")
        assert cache.entry_info("AAPL").access_count == 0
        assert cache.stats().hits == 0


class TestEviction:
    @pytest.fixture
    def small_cache(self, fake_clock, open_market) -> QuoteCache:
        config = CacheConfig(max_entries=5, eviction_fraction=0.2)
        return QuoteCache(config, market_clock=open_market, clock=fake_clock)

    def test_never_exceeds_capacity(self, small_cache, fake_clock):
        for i in range(20):
            fake_clock.advance(1)
            small_cache.put(f"T{i}", _quote(f"T{i}"))
            assert len(small_cache) <= 5

    def test_high_priority_survives_pressure(self, small_cache, fake_clock):
        small_cache.put("AAPL", _quote("AAPL"))
        for ticker in ["LOWA", "LOWB", "LOWC", "LOWD", "LOWE", "LOWF"]:
            fake_clock.advance(1)
            small_cache.put(ticker, _quote(ticker))
        assert small_cache.is_cached("AAPL")
        assert small_cache.stats().evictions == 2

    def test_no_high_evicted_while_low_remains(self, small_cache, fake_clock):
        for ticker in ["SPY", "QQQ", "NVDA", "LOWA"]:
            small_cache.put(ticker, _quote(ticker))
            fake_clock.advance(1)
        small_cache.put("LOWB", _quote("LOWB"))
        small_cache.put("LOWC", _quote("LOWC"))
        for ticker in ["SPY", "QQQ", "NVDA"]:
            assert small_cache.is_cached(ticker)
        assert not small_cache.is_cached("LOWA")

    def test_least_used_low_entry_goes_first(self, small_cache, fake_clock):
        for ticker in ["LOWA", "LOWB", "LOWC", "LOWD", "LOWE"]:
            small_cache.put(ticker, _quote(ticker))
            fake_clock.advance(1)
        small_cache.get("LOWA")
        small_cache.get("LOWB")
        small_cache.put("NEW", _quote("NEW"))
        assert small_cache.is_cached("LOWA")
        assert not small_cache.is_cached("LOWC")

    def test_replacing_existing_does_not_evict(self, small_cache):
        for ticker in ["LOWA", "LOWB", "LOWC", "LOWD", "LOWE"]:
            small_cache.put(ticker, _quote(ticker))
        small_cache.put("LOWA", _quote("LOWA", change=1.0))
        assert len(small_cache) == 5
        assert small_cache.stats().evictions == 0


class TestSweep:
    def test_sweep_removes_only_expired(self, cache, fake_clock):
        cache.put("FAST", _quote("FAST", **HIGH_VOL))
        cache.put("SLOW", _quote("SLOW", **LOW_VOL))
        fake_clock.advance(31)
        assert cache.sweep() == 1
        assert cache.entry_info("FAST") is None
        assert cache.entry_info("SLOW") is not None

    async def test_background_sweep(self, fake_clock, open_market):
        cache = QuoteCache(
            CacheConfig(cleanup_interval=0.01), market_clock=open_market, clock=fake_clock
        )
        cache.put("FAST", _quote("FAST", **HIGH_VOL))
        fake_clock.advance(31)
        cache.start()
        await asyncio.sleep(0.05)
        await cache.stop()
        assert len(cache) == 0

    async def test_stop_without_start(self, cache):
        await cache.stop()


class TestStats:
    def test_priority_distribution(self, cache):
        cache.put("SPY", _quote("SPY"))
        cache.put("ZZZZ", _quote("ZZZZ", **HIGH_VOL))
        cache.put("YYYY", _quote("YYYY"))
        stats = cache.stats()
        assert stats.total_entries == 3
        assert stats.priority_distribution == {"high": 1, "medium": 1, "low": 1}
        assert stats.average_volatility > 0
