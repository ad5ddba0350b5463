"""Custom exception hierarchy for quote-relay."""

from typing import Any


class QuoteRelayError(Exception):
    """Base exception for all quote-relay errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(QuoteRelayError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value (redacted for secrets)
    """


class QuoteRequestError(QuoteRelayError):
    """A single quote request could not be served.

    Base for every failure surfaced to callers of fetch_quote(). Policy:
    the caller decides whether to retry; the pipeline keeps running.

    Context keys:
        ticker: str — the normalized ticker of the failed request
    """


class InvalidTickerError(QuoteRequestError):
    """Empty or malformed ticker supplied at the API boundary.

    Rejected before the request enters the queue.

    Context keys:
        ticker: str — the raw value supplied by the caller
    """


class QueueFullError(QuoteRequestError):
    """The pending queue was saturated and this request was sacrificed.

    Context keys:
        ticker: str
        priority: str — priority of the dropped request
        max_queue_size: int
    """


class RequestTimeoutError(QuoteRequestError):
    """The request outlived its individual deadline.

    Recoverable: the caller may retry.

    Context keys:
        ticker: str
        timeout: float — the deadline in seconds
        stage: str — "queued" or "in_flight"
    """


class ProviderExhaustedError(QuoteRequestError):
    """Every provider in the chain failed for a ticker.

    Terminal for the request; sibling tickers in the batch are unaffected.

    Context keys:
        ticker: str
        providers: list[str] — providers that were tried
    """


class PipelineClosedError(QuoteRequestError):
    """The pipeline shut down or its queue was cleared while the request waited."""


class ProviderError(QuoteRelayError):
    """A single provider could not serve a batch.

    Internal: triggers fallback to the next provider and never crosses the
    ProviderChain boundary.

    Context keys:
        provider: str — provider name
        status_code: int | None — HTTP status code if applicable
        url: str | None — the URL that was being fetched
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message, context)
        self.retryable = retryable


class RateLimitError(ProviderError):
    """Upstream rate limit hit (HTTP 429 or a provider throttling note).

    Policy: back off and retry under the provider's RetryPolicy.

    Context keys:
        retry_after: float | None — seconds suggested by the provider
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, context, retryable=True)
