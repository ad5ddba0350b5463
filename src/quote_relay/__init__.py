"""quote-relay: batched, cached, multi-provider market quote acquisition."""

from quote_relay.core import (
    InvalidTickerError,
    PipelineClosedError,
    ProviderExhaustedError,
    QueueFullError,
    Quote,
    QuoteRelayError,
    QuoteRequestError,
    RelayConfig,
    RequestPriority,
    RequestTimeoutError,
    load_config,
)
from quote_relay.pipeline import QuotePipeline, build_pipeline

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "build_pipeline",
    "load_config",
    "QuotePipeline",
    "RelayConfig",
    "Quote",
    "RequestPriority",
    "QuoteRelayError",
    "QuoteRequestError",
    "InvalidTickerError",
    "QueueFullError",
    "RequestTimeoutError",
    "ProviderExhaustedError",
    "PipelineClosedError",
]
