"""Integration tests for the assembled quote pipeline.

Real components wired by build_pipeline; HTTP is mocked with respx.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from quote_relay import build_pipeline
from quote_relay.core.exceptions import PipelineClosedError, ProviderExhaustedError
from quote_relay.core.models import ProviderQuote
from quote_relay.providers.retry import RetryPolicy

pytestmark = pytest.mark.integration

CHART = "https://query1.finance.yahoo.com/v8/finance/chart"


def _chart(price: float, previous: float) -> dict:
    return {
        "chart": {
            "result": [
                {
                    "meta": {
                        "regularMarketPrice": price,
                        "previousClose": previous,
                        "regularMarketDayLow": price - 1,
                        "regularMarketDayHigh": price + 1,
                    }
                }
            ],
            "error": None,
        }
    }


class TestAssembledPipeline:
    @respx.mock
    async def test_primary_and_fallback_in_one_batch(self, relay_config, open_market):
        respx.get(f"{CHART}/AAPL").mock(return_value=httpx.Response(200, json=_chart(150.0, 146.5)))
        respx.get(f"{CHART}/MSFT").mock(return_value=httpx.Response(200, json=_chart(320.0, 315.0)))
        respx.get(f"{CHART}/ZZZZ").mock(return_value=httpx.Response(404))

        async with build_pipeline(relay_config, market_clock=open_market) as pipeline:
            aapl, msft, zzzz = await asyncio.gather(
                pipeline.fetch_quote("AAPL"),
                pipeline.fetch_quote("msft"),
                pipeline.fetch_quote("ZZZZ"),
            )
            stats = pipeline.dispatcher_stats()

        assert aapl.source == "yahoo_finance"
        assert aapl.change_percent == pytest.approx((150.0 - 146.5) / 146.5 * 100)
        assert msft.price == 320.0
        assert zzzz.source == "mock"
        assert zzzz.change_percent == 0.0
        assert stats.total_batches == 1

    @respx.mock
    async def test_primary_outage_falls_back_to_mock(self, relay_config, open_market):
        respx.get(f"{CHART}/AAPL").mock(return_value=httpx.Response(503))

        async with build_pipeline(relay_config, market_clock=open_market) as pipeline:
            quote = await pipeline.fetch_quote("AAPL", priority="high")

        assert quote.source == "mock"
        assert quote.price == 150.25

    @respx.mock
    async def test_repeat_request_served_from_cache(self, relay_config, open_market):
        route = respx.get(f"{CHART}/SPY").mock(
            return_value=httpx.Response(200, json=_chart(420.5, 417.0))
        )

        async with build_pipeline(relay_config, market_clock=open_market) as pipeline:
            first = await pipeline.fetch_quote("SPY")
            second = await pipeline.fetch_quote("SPY")
            cache_stats = pipeline.cache_stats()
            history_stats = pipeline.history_stats()

        assert first == second
        assert route.call_count == 1
        assert cache_stats.priority_distribution["high"] == 1
        assert history_stats.size == 1


class TestInjectedProviders:
    async def test_exhausted_chain(self, relay_config, static_provider, open_market):
        empty = static_provider("empty", {})
        async with build_pipeline(
            relay_config, providers=[(empty, RetryPolicy())], market_clock=open_market
        ) as pipeline:
            with pytest.raises(ProviderExhaustedError):
                await pipeline.fetch_quote("ZZZZ")

    async def test_aclose_closes_providers_and_rejects_requests(
        self, relay_config, static_provider, open_market
    ):
        provider = static_provider("p", {"AAPL": ProviderQuote(ticker="AAPL", price=1.0)})
        pipeline = build_pipeline(
            relay_config, providers=[(provider, RetryPolicy())], market_clock=open_market
        )
        async with pipeline:
            await pipeline.fetch_quote("AAPL")
        assert provider.closed is True
        with pytest.raises(PipelineClosedError):
            await pipeline.fetch_quote("MSFT")
        await pipeline.aclose()

    async def test_history_change_across_fetches(
        self, relay_config, static_provider, open_market, fake_clock
    ):
        provider = static_provider("p", {"ZZZZ": ProviderQuote(ticker="ZZZZ", price=100.0)})
        pipeline = build_pipeline(
            relay_config,
            providers=[(provider, RetryPolicy())],
            clock=fake_clock,
            market_clock=open_market,
        )
        async with pipeline:
            assert (await pipeline.fetch_quote("ZZZZ")).change_percent == 0.0
            fake_clock.advance(400)  # past every session TTL
            provider.quotes["ZZZZ"] = ProviderQuote(ticker="ZZZZ", price=102.0)
            quote = await pipeline.fetch_quote("ZZZZ")
        assert quote.change_percent == pytest.approx(2.0)
