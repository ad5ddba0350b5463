"""Alpha Vantage GLOBAL_QUOTE provider.

The free tier allows a handful of calls per minute, so requests go through
an ``AsyncLimiter`` sized from config instead of fixed sleeps. Throttling
notes in the response body are surfaced as ``RateLimitError`` and retried by
the chain's policy.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx
from aiolimiter import AsyncLimiter

from quote_relay.core.config import AlphaVantageConfig
from quote_relay.core.exceptions import ConfigError, ProviderError, RateLimitError
from quote_relay.core.models import PriceRange, ProviderQuote, Timeframe
from quote_relay.providers.base import parse_float, parse_int

logger = logging.getLogger(__name__)

_THROTTLE_KEYS = ("Note", "Information")


class AlphaVantageAdapter:
    """Transforms a ``Global Quote`` object into a ProviderQuote."""

    def adapt(self, raw_data: Any, ticker: str) -> ProviderQuote | None:
        if not raw_data:
            return None
        price = parse_float(raw_data.get("05. price"))
        if price is None or price <= 0:
            return None

        low = parse_float(raw_data.get("04. low"))
        high = parse_float(raw_data.get("03. high"))
        day_range = (
            PriceRange(low=low, high=high)
            if low is not None and high is not None and high >= low
            else None
        )

        return ProviderQuote(
            ticker=ticker,
            price=price,
            previous_close=parse_float(raw_data.get("08. previous close")),
            open_price=parse_float(raw_data.get("02. open")),
            volume=parse_int(raw_data.get("06. volume")),
            day_range=day_range,
            source="alpha_vantage",
        )


class AlphaVantageProvider:
    """Fetches quotes one ticker at a time from Alpha Vantage.

    Raises
    ------
    ConfigError
        At construction if no API key is configured.
    """

    def __init__(
        self,
        config: AlphaVantageConfig | None = None,
        client: httpx.AsyncClient | None = None,
        adapter: AlphaVantageAdapter | None = None,
    ) -> None:
        self._config = config or AlphaVantageConfig()
        if not self._config.api_key:
            raise ConfigError(
                "Alpha Vantage provider requires an API key",
                context={"field": "providers.alpha_vantage.api_key", "value": None},
            )
        self._adapter = adapter or AlphaVantageAdapter()
        self._limiter = AsyncLimiter(
            max_rate=self._config.rate_limit, time_period=self._config.rate_period
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout),
        )

    @property
    def name(self) -> str:
        return "alpha_vantage"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_batch(
        self,
        tickers: Sequence[str],
        timeframe: Timeframe = Timeframe.ONE_DAY,
    ) -> dict[str, ProviderQuote]:
        # GLOBAL_QUOTE is a daily quote; timeframe does not change the call.
        quotes: dict[str, ProviderQuote] = {}
        for ticker in tickers:
            quote = await self._fetch_quote(ticker)
            if quote is not None:
                quotes[ticker] = quote
        return quotes

    async def _fetch_quote(self, ticker: str) -> ProviderQuote | None:
        params = {
            "function": "GLOBAL_QUOTE",
            "symbol": ticker,
            "apikey": self._config.api_key,
        }

        await self._limiter.acquire()
        try:
            resp = await self._client.get(self._config.base_url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(
                f"Alpha Vantage HTTP {status} for {ticker}",
                context={"provider": self.name, "status_code": status},
                retryable=status >= 500,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                f"Alpha Vantage request error for {ticker}: {e}",
                context={"provider": self.name},
                retryable=True,
            ) from e
        except ValueError as e:
            raise ProviderError(
                f"Alpha Vantage returned invalid JSON for {ticker}",
                context={"provider": self.name},
            ) from e

        if not isinstance(data, dict):
            raise self._malformed(ticker, "response is not a JSON object")

        if data.get("Error Message"):
            logger.warning("Alpha Vantage rejected %s: %s", ticker, data["Error Message"])
            return None

        for key in _THROTTLE_KEYS:
            if data.get(key):
                raise RateLimitError(
                    "Alpha Vantage call frequency limit reached",
                    context={"provider": self.name, "detail": str(data[key])[:200]},
                )

        raw = data.get("Global Quote")
        if raw and not isinstance(raw, dict):
            raise self._malformed(ticker, "Global Quote is not an object")

        try:
            return self._adapter.adapt(raw, ticker)
        except ValueError as e:
            logger.warning("Alpha Vantage returned malformed quote for %s: %s", ticker, e)
            return None

    def _malformed(self, ticker: str, detail: str) -> ProviderError:
        return ProviderError(
            f"Alpha Vantage returned a malformed payload for {ticker}: {detail}",
            context={"provider": self.name, "url": self._config.base_url},
        )
