"""Composition root — wires config into a ready-to-use quote pipeline.

Every component is built exactly once here and handed to the components
that need it; nothing reaches for module-level state.

    RelayConfig
        ├─ MarketClock(market_hours)
        ├─ QuoteCache(cache, market_clock)
        ├─ PriceHistoryStore(history)
        ├─ ProviderChain(create_providers(providers), history)
        └─ QuoteCoalescer(dispatcher, cache, chain)
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Sequence

from quote_relay.cache.history import PriceHistoryStore
from quote_relay.cache.market_hours import MarketClock
from quote_relay.cache.quote_cache import QuoteCache
from quote_relay.core.config import RelayConfig
from quote_relay.core.models import (
    CacheStats,
    DispatcherStats,
    HistoryStats,
    QueueStatus,
    Quote,
    RequestPriority,
)
from quote_relay.dispatch.coalescer import QuoteCoalescer
from quote_relay.providers.base import QuoteProvider
from quote_relay.providers.chain import ProviderChain, create_providers
from quote_relay.providers.retry import RetryPolicy

logger = logging.getLogger(__name__)


class QuotePipeline:
    """Public facade: ``await pipeline.fetch_quote("AAPL")``.

    Use as an async context manager so the cache sweep is started and every
    provider client is closed:

        async with build_pipeline(config) as pipeline:
            quote = await pipeline.fetch_quote("AAPL", priority="high")
    """

    def __init__(
        self,
        coalescer: QuoteCoalescer,
        cache: QuoteCache,
        history: PriceHistoryStore,
        chain: ProviderChain,
    ) -> None:
        self.coalescer = coalescer
        self.cache = cache
        self.history = history
        self.chain = chain
        self._closed = False

    async def __aenter__(self) -> QuotePipeline:
        self.cache.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def fetch_quote(
        self,
        ticker: str,
        priority: RequestPriority | str = RequestPriority.NORMAL,
    ) -> Quote:
        return await self.coalescer.request_quote(ticker, priority)

    def dispatcher_stats(self) -> DispatcherStats:
        return self.coalescer.stats()

    def queue_status(self) -> QueueStatus:
        return self.coalescer.queue_status()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def history_stats(self) -> HistoryStats:
        return self.history.stats()

    async def aclose(self) -> None:
        """Fail pending requests, stop the sweep, and close provider clients."""
        if self._closed:
            return
        self._closed = True
        await self.coalescer.aclose()
        await self.cache.stop()
        await self.chain.aclose()
        logger.info("Quote pipeline closed")


def build_pipeline(
    config: RelayConfig | None = None,
    providers: Sequence[tuple[QuoteProvider, RetryPolicy]] | None = None,
    clock: Callable[[], float] = time.monotonic,
    market_clock: MarketClock | None = None,
) -> QuotePipeline:
    """Build a QuotePipeline from config.

    ``providers`` overrides the configured provider list (tests inject fakes
    here); ``clock`` and ``market_clock`` make time controllable.
    """
    config = config or RelayConfig()
    market_clock = market_clock or MarketClock(config.market_hours)

    cache = QuoteCache(config.cache, market_clock=market_clock, clock=clock)
    history = PriceHistoryStore(config.history, clock=clock)
    if providers is None:
        providers = create_providers(config.providers)
    chain = ProviderChain(providers, history)
    coalescer = QuoteCoalescer(
        config.dispatcher,
        cache,
        chain,
        timeframe=config.providers.timeframe,
        clock=clock,
    )

    logger.info("Quote pipeline built with providers: %s", ", ".join(chain.provider_names()))
    return QuotePipeline(coalescer, cache, history, chain)
