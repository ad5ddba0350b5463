"""Ordered provider fallback with history-backed change computation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from quote_relay.cache.history import PriceHistoryStore, percent_change
from quote_relay.core.config import ProvidersConfig
from quote_relay.core.exceptions import ConfigError, ProviderError, ProviderExhaustedError
from quote_relay.core.models import ProviderQuote, Quote, Timeframe
from quote_relay.providers.alpha_vantage import AlphaVantageProvider
from quote_relay.providers.base import QuoteProvider
from quote_relay.providers.mock import MockQuoteProvider
from quote_relay.providers.retry import RetryPolicy
from quote_relay.providers.yahoo import YahooFinanceProvider

logger = logging.getLogger(__name__)

BatchResult = dict[str, Quote | ProviderExhaustedError]


class ProviderChain:
    """Tries providers strictly in order until every ticker is served.

    A provider that raises ``ProviderError`` is skipped for the whole
    remaining batch; tickers it merely omitted move on to the next provider.
    Every ticker's quote therefore comes from exactly one provider.

    Parameters
    ----------
    providers : Sequence[tuple[QuoteProvider, RetryPolicy]]
        Providers in priority order, each with its own retry policy.
    history : PriceHistoryStore
        Written after every served ticker; read to synthesize changes.
    """

    def __init__(
        self,
        providers: Sequence[tuple[QuoteProvider, RetryPolicy]],
        history: PriceHistoryStore,
    ) -> None:
        if not providers:
            raise ConfigError(
                "ProviderChain needs at least one provider",
                context={"field": "providers.order", "value": []},
            )
        self._providers = list(providers)
        self._history = history

    def provider_names(self) -> list[str]:
        return [provider.name for provider, _ in self._providers]

    async def aclose(self) -> None:
        for provider, _ in self._providers:
            await provider.aclose()

    async def fetch_batch(
        self,
        tickers: Sequence[str],
        timeframe: Timeframe = Timeframe.ONE_DAY,
    ) -> BatchResult:
        """Resolve each ticker to a Quote or a ProviderExhaustedError."""
        remaining = list(dict.fromkeys(tickers))
        results: BatchResult = {}
        tried: list[str] = []

        for provider, policy in self._providers:
            if not remaining:
                break
            tried.append(provider.name)
            batch = list(remaining)

            try:
                served = await policy.run(
                    lambda: provider.fetch_batch(batch, timeframe),
                    label=f"{provider.name} batch of {len(batch)}",
                )
            except ProviderError as e:
                logger.warning(
                    "Provider %s failed for %s, falling back: %s",
                    provider.name,
                    ", ".join(batch),
                    e,
                )
                continue

            for ticker in batch:
                raw = served.get(ticker)
                if raw is None:
                    continue
                results[ticker] = self._finalize(ticker, raw)
                remaining.remove(ticker)

            if remaining:
                logger.info(
                    "Provider %s served %d/%d tickers; unserved: %s",
                    provider.name,
                    len(batch) - len(remaining),
                    len(batch),
                    ", ".join(remaining),
                )

        for ticker in remaining:
            logger.error("All providers failed for %s (tried: %s)", ticker, ", ".join(tried))
            results[ticker] = ProviderExhaustedError(
                f"All providers failed for {ticker}",
                context={"ticker": ticker, "providers": list(tried)},
            )

        return results

    def _finalize(self, ticker: str, raw: ProviderQuote) -> Quote:
        """Record the price in history and attach a change percent."""
        self._history.record(ticker, raw.price)

        if raw.has_usable_previous_close:
            change = percent_change(raw.price, raw.previous_close)
        elif self._history.has_usable_history(ticker):
            change = self._history.percent_change(ticker, raw.price) or 0.0
            logger.debug("Using price history for %s change: %.2f%%", ticker, change)
        else:
            change = 0.0

        return Quote.from_provider(
            raw.model_copy(update={"ticker": ticker}),
            change_percent=change,
            fetched_at=datetime.now(timezone.utc),
        )


def create_providers(
    config: ProvidersConfig,
) -> list[tuple[QuoteProvider, RetryPolicy]]:
    """Instantiate enabled providers in configured order.

    A provider that cannot be constructed (e.g. Alpha Vantage without an
    API key) is skipped with a warning.
    """
    providers: list[tuple[QuoteProvider, RetryPolicy]] = []
    for name in config.order:
        if name == "yahoo" and config.yahoo.enabled:
            providers.append(
                (YahooFinanceProvider(config.yahoo), RetryPolicy(config.yahoo.retry))
            )
        elif name == "alpha_vantage" and config.alpha_vantage.enabled:
            try:
                provider = AlphaVantageProvider(config.alpha_vantage)
            except ConfigError as e:
                logger.warning("Alpha Vantage provider not available: %s", e)
                continue
            providers.append((provider, RetryPolicy(config.alpha_vantage.retry)))
        elif name == "mock" and config.mock.enabled:
            # Synthetic data cannot fail transiently; one attempt is enough.
            providers.append((MockQuoteProvider(config.mock), RetryPolicy()))
    return providers
