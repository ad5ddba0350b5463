"""In-memory quote cache, price history, and market-hours clock."""

from quote_relay.cache.history import PriceHistoryStore, percent_change
from quote_relay.cache.market_hours import MarketClock
from quote_relay.cache.quote_cache import CacheEntry, QuoteCache

__all__ = [
    "CacheEntry",
    "MarketClock",
    "PriceHistoryStore",
    "QuoteCache",
    "percent_change",
]
