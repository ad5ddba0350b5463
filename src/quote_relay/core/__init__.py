"""quote_relay.core — Foundation types, config, and exceptions."""

from quote_relay.core.config import (
    AlphaVantageConfig,
    CacheConfig,
    DispatcherConfig,
    HistoryConfig,
    MarketHoursConfig,
    MockConfig,
    ProvidersConfig,
    RelayConfig,
    RetryConfig,
    YahooConfig,
    load_config,
)
from quote_relay.core.exceptions import (
    ConfigError,
    InvalidTickerError,
    PipelineClosedError,
    ProviderError,
    ProviderExhaustedError,
    QueueFullError,
    QuoteRelayError,
    QuoteRequestError,
    RateLimitError,
    RequestTimeoutError,
)
from quote_relay.core.models import (
    CacheEntryInfo,
    CachePriority,
    CacheStats,
    DispatcherStats,
    HistoryStats,
    PriceHistoryRecord,
    PriceRange,
    ProviderName,
    ProviderQuote,
    QueueStatus,
    Quote,
    RequestPriority,
    Ticker,
    Timeframe,
    is_valid_ticker,
    normalize_ticker,
)

__all__ = [
    # Type aliases
    "Ticker",
    "ProviderName",
    # Enums
    "RequestPriority",
    "CachePriority",
    "Timeframe",
    # Quote models
    "PriceRange",
    "ProviderQuote",
    "Quote",
    "PriceHistoryRecord",
    # Stats models
    "CacheEntryInfo",
    "CacheStats",
    "DispatcherStats",
    "HistoryStats",
    "QueueStatus",
    # Ticker helpers
    "normalize_ticker",
    "is_valid_ticker",
    # Config
    "RelayConfig",
    "DispatcherConfig",
    "CacheConfig",
    "HistoryConfig",
    "MarketHoursConfig",
    "ProvidersConfig",
    "RetryConfig",
    "YahooConfig",
    "AlphaVantageConfig",
    "MockConfig",
    "load_config",
    # Exceptions
    "QuoteRelayError",
    "ConfigError",
    "QuoteRequestError",
    "InvalidTickerError",
    "QueueFullError",
    "RequestTimeoutError",
    "ProviderExhaustedError",
    "PipelineClosedError",
    "ProviderError",
    "RateLimitError",
]
