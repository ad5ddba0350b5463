"""Yahoo Finance quote provider — direct HTTP implementation.

Uses the unauthenticated ``/v8/finance/chart/`` endpoint via httpx. The
chart response's ``meta`` block carries the live quote fields (regular
market price, day range, 52-week range, previous close), so one chart
request per ticker is enough to build a quote.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx
from aiolimiter import AsyncLimiter

from quote_relay.core.config import YahooConfig
from quote_relay.core.exceptions import ProviderError, RateLimitError
from quote_relay.core.models import PriceRange, ProviderQuote, Timeframe
from quote_relay.providers.base import parse_float, parse_int

logger = logging.getLogger(__name__)

_CHART_PATH = "/v8/finance/chart"
_USER_AGENT = "Mozilla/5.0 (compatible; quote-relay/0.1)"

# Map timeframes to Yahoo Finance (range, interval) pairs
_TIMEFRAME_MAP: dict[Timeframe, tuple[str, str]] = {
    Timeframe.ONE_DAY: ("1d", "5m"),
    Timeframe.ONE_WEEK: ("5d", "30m"),
    Timeframe.ONE_MONTH: ("1mo", "1d"),
    Timeframe.ONE_YEAR: ("1y", "1d"),
}

_RETRYABLE_STATUS = {500, 502, 503, 504}


class YahooQuoteAdapter:
    """Transforms a Yahoo Finance ``chart.result[0]`` object into a ProviderQuote."""

    def __init__(self, timeframe: Timeframe = Timeframe.ONE_DAY) -> None:
        self._timeframe = timeframe

    def adapt(self, raw_data: Any, ticker: str) -> ProviderQuote | None:
        meta = raw_data.get("meta") or {}
        if not isinstance(meta, dict):
            return None
        price = parse_float(meta.get("regularMarketPrice"))
        if price is None or price <= 0:
            return None

        # For intraday the session's previous close is the reference; for
        # longer timeframes the close before the chart window is.
        if self._timeframe == Timeframe.ONE_DAY:
            previous = parse_float(meta.get("previousClose")) or parse_float(
                meta.get("chartPreviousClose")
            )
        else:
            previous = parse_float(meta.get("chartPreviousClose"))

        return ProviderQuote(
            ticker=ticker,
            price=price,
            previous_close=previous,
            open_price=parse_float(meta.get("regularMarketOpen")),
            volume=parse_int(meta.get("regularMarketVolume")) or _last_volume(raw_data),
            market_cap=parse_float(meta.get("marketCap")),
            pe_ratio=parse_float(meta.get("trailingPE")),
            dividend_yield=parse_float(meta.get("trailingAnnualDividendYield")),
            day_range=_range(
                meta.get("regularMarketDayLow"), meta.get("regularMarketDayHigh")
            ),
            year_range=_range(
                meta.get("fiftyTwoWeekLow"), meta.get("fiftyTwoWeekHigh")
            ),
            source="yahoo_finance",
        )


def _range(low: Any, high: Any) -> PriceRange | None:
    lo, hi = parse_float(low), parse_float(high)
    if lo is None or hi is None or hi < lo:
        return None
    return PriceRange(low=lo, high=hi)


def _last_volume(raw_data: dict) -> int | None:
    indicators = raw_data.get("indicators")
    quotes = indicators.get("quote") if isinstance(indicators, dict) else None
    if not quotes or not isinstance(quotes, list) or not isinstance(quotes[0], dict):
        return None
    volumes = [v for v in (quotes[0].get("volume") or []) if v is not None]
    return int(volumes[-1]) if volumes else None


class YahooFinanceProvider:
    """Fetches quotes from Yahoo Finance's chart API.

    Tickers in a batch are fetched concurrently, one request each, under a
    shared rate limiter. A ticker Yahoo does not know is omitted from the
    result. If every ticker failed because of transport or HTTP errors the
    whole batch raises ``ProviderError`` so the chain can fall back.

    Parameters
    ----------
    config : YahooConfig
        Base URL, timeout, and rate limit.
    client : httpx.AsyncClient | None
        Shared client. Created (and owned) by the provider if None.
    """

    def __init__(
        self,
        config: YahooConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or YahooConfig()
        self._limiter = AsyncLimiter(
            max_rate=self._config.rate_limit, time_period=self._config.rate_period
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
            timeout=httpx.Timeout(self._config.timeout),
            follow_redirects=True,
        )

    @property
    def name(self) -> str:
        return "yahoo"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_batch(
        self,
        tickers: Sequence[str],
        timeframe: Timeframe = Timeframe.ONE_DAY,
    ) -> dict[str, ProviderQuote]:
        adapter = YahooQuoteAdapter(timeframe)
        results = await asyncio.gather(
            *(self._fetch_one(ticker, timeframe, adapter) for ticker in tickers),
            return_exceptions=True,
        )

        quotes: dict[str, ProviderQuote] = {}
        errors: list[ProviderError] = []
        for ticker, result in zip(tickers, results):
            if isinstance(result, ProviderError):
                errors.append(result)
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                quotes[ticker] = result

        if errors and not quotes:
            raise ProviderError(
                f"Yahoo Finance failed for {len(errors)}/{len(tickers)} tickers: {errors[0]}",
                context={
                    "provider": self.name,
                    "tickers": list(tickers),
                    "status_code": errors[0].context.get("status_code"),
                },
                retryable=any(e.retryable for e in errors),
            )
        if errors:
            logger.warning(
                "Yahoo Finance served %d/%d tickers; %d failed",
                len(quotes),
                len(tickers),
                len(errors),
            )
        return quotes

    async def _fetch_one(
        self,
        ticker: str,
        timeframe: Timeframe,
        adapter: YahooQuoteAdapter,
    ) -> ProviderQuote | None:
        raw = await self._fetch_chart(ticker, timeframe)
        if raw is None:
            return None
        try:
            return adapter.adapt(raw, ticker)
        except ValueError as e:
            logger.warning("Yahoo Finance returned malformed quote for %s: %s", ticker, e)
            return None

    async def _fetch_chart(self, ticker: str, timeframe: Timeframe) -> dict | None:
        """Fetch raw chart data for a single ticker.

        Returns the ``chart.result[0]`` object, None if Yahoo does not know
        the ticker, and raises ProviderError on transport or server errors.
        """
        range_, interval = _TIMEFRAME_MAP[timeframe]
        url = f"{self._config.base_url}{_CHART_PATH}/{ticker}"
        params = {"range": range_, "interval": interval}

        await self._limiter.acquire()
        try:
            resp = await self._client.get(url, params=params)
        except httpx.RequestError as e:
            raise ProviderError(
                f"Yahoo Finance request error for {ticker}: {e}",
                context={"provider": self.name, "url": url},
                retryable=True,
            ) from e

        if resp.status_code == 429:
            raise RateLimitError(
                f"Yahoo Finance rate limited request for {ticker}",
                context={
                    "provider": self.name,
                    "url": url,
                    "status_code": 429,
                    "retry_after": parse_float(resp.headers.get("Retry-After")),
                },
            )
        if resp.status_code == 404:
            logger.info("Yahoo Finance does not know ticker %s", ticker)
            return None
        if resp.status_code != 200:
            raise ProviderError(
                f"Yahoo Finance HTTP {resp.status_code} for {ticker}",
                context={
                    "provider": self.name,
                    "url": url,
                    "status_code": resp.status_code,
                },
                retryable=resp.status_code in _RETRYABLE_STATUS,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError(
                f"Yahoo Finance returned invalid JSON for {ticker}",
                context={"provider": self.name, "url": url},
            ) from e

        chart = data.get("chart") if isinstance(data, dict) else None
        if not isinstance(chart, dict):
            raise self._malformed(ticker, url, "no chart object")

        err = chart.get("error")
        if err:
            if not isinstance(err, dict):
                err = {"description": err}
            logger.warning(
                "Yahoo Finance API error for %s: %s (%s)",
                ticker,
                err.get("code"),
                err.get("description"),
            )
            return None

        results = chart.get("result")
        if not results:
            logger.warning("Yahoo Finance returned no results for %s", ticker)
            return None
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise self._malformed(ticker, url, "chart.result is not a list of objects")

        return results[0]

    def _malformed(self, ticker: str, url: str, detail: str) -> ProviderError:
        return ProviderError(
            f"Yahoo Finance returned a malformed payload for {ticker}: {detail}",
            context={"provider": self.name, "url": url},
        )
