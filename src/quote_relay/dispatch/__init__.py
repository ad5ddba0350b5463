"""Request coalescing and batch dispatch."""

from quote_relay.dispatch.coalescer import BatchFetcher, BatchRequest, QuoteCoalescer

__all__ = [
    "BatchFetcher",
    "BatchRequest",
    "QuoteCoalescer",
]
