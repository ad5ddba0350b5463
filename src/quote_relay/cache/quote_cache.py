"""Volatility- and market-hours-aware quote cache.

Architecture
------------
Each successful fetch is stored as a ``CacheEntry`` tagged with a derived
volatility score (0–0.5) and a priority tier. The TTL is not frozen at write
time: it is recomputed on every validity check from the entry's volatility
and whether the market is open *now*, so an entry written at 15:59 picks up
the longer after-hours TTL once the bell rings.

TTL selection, first match wins:

1. Market closed (outside the regular session or weekend) -> ``after_hours_ttl``
2. volatility > ``high_volatility_threshold``            -> ``high_volatility_ttl``
3. volatility > ``medium_volatility_threshold``          -> ``medium_volatility_ttl``
4. otherwise                                             -> ``low_volatility_ttl``

Capacity is enforced before admitting a new ticker. Eviction ranks entries
by priority tier first, then ``priority_weight * access_count``, then least
recent access, and drops the lowest ``eviction_fraction`` of the cache.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from quote_relay.cache.market_hours import MarketClock
from quote_relay.core.config import CacheConfig
from quote_relay.core.models import CacheEntryInfo, CachePriority, CacheStats, Quote

logger = logging.getLogger(__name__)

MAX_VOLATILITY = 0.5

PRIORITY_WEIGHTS: dict[CachePriority, int] = {
    CachePriority.HIGH: 3,
    CachePriority.MEDIUM: 2,
    CachePriority.LOW: 1,
}


@dataclass
class CacheEntry:
    """A cached quote plus the bookkeeping used for expiry and eviction.

    Only ``access_count`` and ``last_access`` change after creation.
    """

    quote: Quote
    timestamp: float
    volatility: float
    priority: CachePriority
    access_count: int = 0
    last_access: float = 0.0

    @property
    def eviction_rank(self) -> tuple[int, int, float]:
        weight = PRIORITY_WEIGHTS[self.priority]
        return (weight, weight * self.access_count, self.last_access)


class QuoteCache:
    """Most recent successful quote per ticker with adaptive TTL.

    Parameters
    ----------
    config : CacheConfig
        TTLs, thresholds, capacity, and the high-interest ticker list.
    market_clock : MarketClock
        Decides whether the after-hours TTL applies.
    clock : Callable[[], float]
        Monotonic clock in seconds. Default: ``time.monotonic``.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        market_clock: MarketClock | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CacheConfig()
        self._market = market_clock or MarketClock()
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._high_interest = frozenset(self._config.high_interest_tickers)
        self._sweep_task: asyncio.Task | None = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def config(self) -> CacheConfig:
        return self._config

    # --- Read / write ---

    def get(self, ticker: str) -> Quote | None:
        """Return the cached quote, or None on miss or expiry."""
        entry = self._entries.get(ticker)
        if entry is None:
            self._misses += 1
            logger.debug("Cache miss for %s", ticker)
            return None

        now = self._clock()
        if self._is_expired(entry, now):
            del self._entries[ticker]
            self._misses += 1
            self._expirations += 1
            logger.debug("Cache entry for %s expired", ticker)
            return None

        entry.access_count += 1
        entry.last_access = now
        self._hits += 1
        logger.debug("Cache hit for %s (access #%d)", ticker, entry.access_count)
        return entry.quote

    def put(self, ticker: str, quote: Quote) -> CacheEntry:
        """Store ``quote`` for ``ticker``, evicting first if at capacity."""
        now = self._clock()
        volatility = self.calculate_volatility(quote)
        priority = self.determine_priority(ticker, volatility)

        if ticker not in self._entries and len(self._entries) >= self._config.max_entries:
            self._evict()

        entry = CacheEntry(
            quote=quote,
            timestamp=now,
            volatility=volatility,
            priority=priority,
            last_access=now,
        )
        self._entries[ticker] = entry

        logger.debug(
            "Cached %s with TTL %.0fs (volatility: %.4f, priority: %s)",
            ticker,
            self.ttl_for(volatility),
            volatility,
            priority.value,
        )
        return entry

    def invalidate(self, ticker: str) -> bool:
        return self._entries.pop(ticker, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Quote cache cleared")

    # --- Volatility, priority, TTL ---

    def calculate_volatility(self, quote: Quote) -> float:
        """Blend absolute change and day-range spread into a 0–0.5 score."""
        components: list[float] = []

        if quote.previous_close is not None or quote.change_percent != 0:
            components.append(abs(quote.change_percent) / 100)

        day_range = quote.day_range
        if day_range is not None and day_range.midpoint > 0:
            components.append(day_range.spread / day_range.midpoint)

        if not components:
            return self._config.default_volatility

        volatility = sum(components) / len(components)
        return max(0.0, min(volatility, MAX_VOLATILITY))

    def determine_priority(self, ticker: str, volatility: float) -> CachePriority:
        if ticker in self._high_interest:
            return CachePriority.HIGH
        if volatility > self._config.high_volatility_threshold:
            return CachePriority.MEDIUM
        return CachePriority.LOW

    def ttl_for(self, volatility: float, market_open: bool | None = None) -> float:
        """TTL in seconds for a volatility score under the given market state."""
        if market_open is None:
            market_open = self._market.is_market_open()

        if not market_open:
            return self._config.after_hours_ttl
        if volatility > self._config.high_volatility_threshold:
            return self._config.high_volatility_ttl
        if volatility > self._config.medium_volatility_threshold:
            return self._config.medium_volatility_ttl
        return self._config.low_volatility_ttl

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.timestamp) > self.ttl_for(entry.volatility)

    # --- Eviction & sweep ---

    def _evict(self) -> int:
        """Drop the lowest-ranked ``eviction_fraction`` of the cache."""
        count = max(1, math.ceil(self._config.max_entries * self._config.eviction_fraction))
        ranked = sorted(self._entries.items(), key=lambda item: item[1].eviction_rank)
        victims = [ticker for ticker, _ in ranked[:count]]
        for ticker in victims:
            del self._entries[ticker]
        self._evictions += len(victims)
        logger.info("Evicted %d cache entries", len(victims))
        return len(victims)

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        market_open = self._market.is_market_open()
        expired = [
            ticker
            for ticker, entry in self._entries.items()
            if (now - entry.timestamp) > self.ttl_for(entry.volatility, market_open)
        ]
        for ticker in expired:
            del self._entries[ticker]
        self._expirations += len(expired)
        if expired:
            logger.info("Cleaned up %d expired cache entries", len(expired))
        return len(expired)

    def start(self) -> None:
        """Start the periodic background sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name="quote-cache-sweep"
        )

    async def stop(self) -> None:
        """Cancel the background sweep and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.cleanup_interval)
            self.sweep()

    # --- Introspection ---

    def is_cached(self, ticker: str) -> bool:
        """True if a valid entry exists. Does not count as an access."""
        entry = self._entries.get(ticker)
        return entry is not None and not self._is_expired(entry, self._clock())

    def entry_info(self, ticker: str) -> CacheEntryInfo | None:
        entry = self._entries.get(ticker)
        if entry is None:
            return None
        now = self._clock()
        ttl = self.ttl_for(entry.volatility)
        age = now - entry.timestamp
        return CacheEntryInfo(
            ticker=ticker,
            is_valid=age <= ttl,
            age=age,
            ttl=ttl,
            volatility=entry.volatility,
            priority=entry.priority,
            access_count=entry.access_count,
        )

    def stats(self) -> CacheStats:
        total = self._hits + self._misses
        entries = list(self._entries.values())
        distribution = {p.value: 0 for p in CachePriority}
        for entry in entries:
            distribution[entry.priority.value] += 1
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            expirations=self._expirations,
            total_entries=len(entries),
            max_entries=self._config.max_entries,
            hit_rate=self._hits / total if total else 0.0,
            average_volatility=(
                sum(e.volatility for e in entries) / len(entries) if entries else 0.0
            ),
            priority_distribution=distribution,
        )
