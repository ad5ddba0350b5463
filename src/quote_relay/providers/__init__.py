"""Quote providers and the fallback chain.

Built-in implementations:

- ``YahooFinanceProvider``: Yahoo Finance chart API (primary).
- ``AlphaVantageProvider``: Alpha Vantage GLOBAL_QUOTE (needs an API key).
- ``MockQuoteProvider``: synthetic quotes, the last resort.

Adding a new source:
1. Write a provider with ``name``, ``fetch_batch()`` and ``aclose()``.
2. Give it an adapter that builds ``ProviderQuote`` from the raw payload.
3. Add it to ``create_providers`` and the ``providers.order`` config.
"""

from quote_relay.providers.alpha_vantage import AlphaVantageAdapter, AlphaVantageProvider
from quote_relay.providers.base import QuoteAdapter, QuoteProvider
from quote_relay.providers.chain import ProviderChain, create_providers
from quote_relay.providers.mock import MockQuoteProvider
from quote_relay.providers.retry import RetryPolicy
from quote_relay.providers.yahoo import YahooFinanceProvider, YahooQuoteAdapter

__all__ = [
    # Protocols
    "QuoteAdapter",
    "QuoteProvider",
    # Chain
    "ProviderChain",
    "RetryPolicy",
    "create_providers",
    # Yahoo Finance
    "YahooFinanceProvider",
    "YahooQuoteAdapter",
    # Alpha Vantage
    "AlphaVantageAdapter",
    "AlphaVantageProvider",
    # Mock
    "MockQuoteProvider",
]
