"""Request coalescer — batches concurrent quote requests into upstream calls.

Architecture
------------
Callers await ``request_quote()``. A cache hit returns immediately; a miss
becomes a ``BatchRequest`` (an ``asyncio.Future`` plus a cancellable
timeout) in a bounded, priority-aware queue owned by this object.

    request_quote → cache hit? ─yes→ Quote
                        │no
                        ▼
                  queue (high first) ──size or delay──▶ batch ──▶ fetcher
                                                          │
                              cache.put ◀── Quote ◀───────┘
                                  │
                       resolve every request for that ticker

All queue mutation happens in synchronous code on the event loop, so it is
serialized by construction. At most one batch is in flight; when it
completes the queue is re-checked and the next batch scheduled.

Guarantees:
- Requests for the same ticker in one batch share one upstream fetch and
  receive the same Quote or the same error.
- Every request resolves, fails, or times out. A request's timeout never
  affects any other request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Protocol, Sequence

from quote_relay.cache.quote_cache import QuoteCache
from quote_relay.core.config import DispatcherConfig
from quote_relay.core.exceptions import (
    InvalidTickerError,
    PipelineClosedError,
    ProviderExhaustedError,
    QueueFullError,
    QuoteRequestError,
    RequestTimeoutError,
)
from quote_relay.core.models import (
    DispatcherStats,
    QueueStatus,
    Quote,
    RequestPriority,
    Timeframe,
    is_valid_ticker,
    normalize_ticker,
)

logger = logging.getLogger(__name__)

# Lowest priority is sacrificed first when the queue is full.
_EVICTION_ORDER = (RequestPriority.LOW, RequestPriority.NORMAL)


class BatchFetcher(Protocol):
    """Anything that resolves a batch of tickers, e.g. ProviderChain."""

    async def fetch_batch(
        self,
        tickers: Sequence[str],
        timeframe: Timeframe = Timeframe.ONE_DAY,
    ) -> Mapping[str, Quote | Exception]: ...


@dataclass(eq=False)
class BatchRequest:
    """One caller's pending ask. Resolved exactly once."""

    ticker: str
    priority: RequestPriority
    enqueued_at: float
    future: asyncio.Future = field(repr=False)
    timeout_handle: asyncio.TimerHandle | None = field(default=None, repr=False)
    in_flight: bool = False

    @property
    def done(self) -> bool:
        return self.future.done()

    def resolve(self, quote: Quote) -> bool:
        if self.future.done():
            return False
        self.future.set_result(quote)
        return True

    def fail(self, error: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True


class QuoteCoalescer:
    """Single-owner batch dispatcher in front of a BatchFetcher.

    Parameters
    ----------
    config : DispatcherConfig
        Batch size, batch delay, queue capacity, and per-request timeout.
    cache : QuoteCache
        Consulted before queuing and again before each fetch.
    fetcher : BatchFetcher
        Resolves tickers upstream (normally a ProviderChain).
    timeframe : Timeframe
        Passed through to the fetcher.
    clock : Callable[[], float]
        Monotonic clock used for queue wait statistics.
    """

    def __init__(
        self,
        config: DispatcherConfig,
        cache: QuoteCache,
        fetcher: BatchFetcher,
        timeframe: Timeframe = Timeframe.ONE_DAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._cache = cache
        self._fetcher = fetcher
        self._timeframe = timeframe
        self._clock = clock

        self._queue: list[BatchRequest] = []
        self._timer: asyncio.TimerHandle | None = None
        self._processing = False
        self._dispatch_task: asyncio.Task | None = None
        self._closed = False

        self._total_requests = 0
        self._cache_hits = 0
        self._batched_requests = 0
        self._failed_requests = 0
        self._timed_out_requests = 0
        self._dropped_requests = 0
        self._total_batches = 0
        self._upstream_tickers = 0

    # --- Public API ---

    async def request_quote(
        self,
        ticker: str,
        priority: RequestPriority | str = RequestPriority.NORMAL,
    ) -> Quote:
        """Return a quote for ``ticker``, batching the upstream fetch.

        Raises
        ------
        InvalidTickerError
            Empty or malformed ticker.
        QuoteRequestError
            Unknown priority.
        QueueFullError
            The request was dropped to make room in a saturated queue.
        RequestTimeoutError
            The request outlived ``request_timeout``.
        ProviderExhaustedError
            No provider could serve the ticker.
        PipelineClosedError
            The coalescer was closed or its queue cleared.
        """
        normalized = normalize_ticker(ticker)
        if not is_valid_ticker(normalized):
            raise InvalidTickerError(
                f"Invalid ticker symbol: {ticker!r}",
                context={"ticker": ticker},
            )
        try:
            priority = RequestPriority(priority)
        except ValueError as e:
            raise QuoteRequestError(
                f"Invalid request priority: {priority!r}",
                context={"ticker": normalized, "priority": priority},
            ) from e

        if self._closed:
            raise PipelineClosedError(
                "Quote coalescer is closed",
                context={"ticker": normalized},
            )

        self._total_requests += 1
        cached = self._cache.get(normalized)
        if cached is not None:
            self._cache_hits += 1
            return cached

        loop = asyncio.get_running_loop()
        request = BatchRequest(
            ticker=normalized,
            priority=priority,
            enqueued_at=self._clock(),
            future=loop.create_future(),
        )
        request.future.add_done_callback(lambda _: self._on_request_done(request))

        if self._enqueue(request):
            request.timeout_handle = loop.call_later(
                self._config.request_timeout, self._expire, request
            )
            self._schedule()

        return await request.future

    def stats(self) -> DispatcherStats:
        return DispatcherStats(
            total_requests=self._total_requests,
            cache_hits=self._cache_hits,
            batched_requests=self._batched_requests,
            failed_requests=self._failed_requests,
            timed_out_requests=self._timed_out_requests,
            dropped_requests=self._dropped_requests,
            total_batches=self._total_batches,
            upstream_tickers=self._upstream_tickers,
            average_batch_size=(
                self._batched_requests / self._total_batches
                if self._total_batches
                else 0.0
            ),
        )

    def queue_status(self) -> QueueStatus:
        now = self._clock()
        waits = [now - r.enqueued_at for r in self._queue]
        return QueueStatus(
            queue_length=len(self._queue),
            is_processing=self._processing,
            average_wait_time=sum(waits) / len(waits) if waits else 0.0,
        )

    def clear_queue(self) -> int:
        """Fail every queued request with PipelineClosedError."""
        self._cancel_timer()
        pending, self._queue = self._queue, []
        for request in pending:
            request.fail(
                PipelineClosedError(
                    "Queue cleared",
                    context={"ticker": request.ticker},
                )
            )
        if pending:
            logger.info("Cleared %d pending quote requests", len(pending))
        return len(pending)

    async def aclose(self) -> None:
        """Stop accepting requests, fail queued ones, and let the in-flight batch finish."""
        self._closed = True
        self.clear_queue()
        task = self._dispatch_task
        if task is not None and not task.done():
            await asyncio.wait([task])

    # --- Queue management ---

    def _enqueue(self, request: BatchRequest) -> bool:
        """Insert ``request``; returns False if it was rejected outright."""
        if len(self._queue) >= self._config.max_queue_size:
            victim = self._select_victim(request.priority)
            if victim is None:
                self._drop(request)
                return False
            self._queue.remove(victim)
            self._drop(victim)

        if request.priority == RequestPriority.HIGH:
            # Behind earlier high requests, ahead of everything else.
            index = 0
            while index < len(self._queue) and self._queue[index].priority == RequestPriority.HIGH:
                index += 1
            self._queue.insert(index, request)
        else:
            self._queue.append(request)
        return True

    def _select_victim(self, incoming: RequestPriority) -> BatchRequest | None:
        """Oldest request of the lowest priority present."""
        for priority in _EVICTION_ORDER:
            candidates = [r for r in self._queue if r.priority == priority]
            if candidates:
                return min(candidates, key=lambda r: r.enqueued_at)
        if incoming == RequestPriority.HIGH and self._queue:
            return min(self._queue, key=lambda r: r.enqueued_at)
        return None

    def _drop(self, request: BatchRequest) -> None:
        self._dropped_requests += 1
        logger.warning(
            "Queue full (%d), dropping %s request for %s",
            self._config.max_queue_size,
            request.priority.value,
            request.ticker,
        )
        request.fail(
            QueueFullError(
                f"Queue full - request for {request.ticker} dropped",
                context={
                    "ticker": request.ticker,
                    "priority": request.priority.value,
                    "max_queue_size": self._config.max_queue_size,
                },
            )
        )

    def _expire(self, request: BatchRequest) -> None:
        request.timeout_handle = None
        if request.done:
            return
        stage = "in_flight" if request.in_flight else "queued"
        if not request.in_flight and request in self._queue:
            self._queue.remove(request)
        self._timed_out_requests += 1
        logger.warning(
            "Request for %s timed out after %.1fs (%s)",
            request.ticker,
            self._config.request_timeout,
            stage,
        )
        request.fail(
            RequestTimeoutError(
                f"Request timeout for {request.ticker}",
                context={
                    "ticker": request.ticker,
                    "timeout": self._config.request_timeout,
                    "stage": stage,
                },
            )
        )

    def _on_request_done(self, request: BatchRequest) -> None:
        if request.timeout_handle is not None:
            request.timeout_handle.cancel()
            request.timeout_handle = None
        # Caller cancelled while still queued.
        if request.future.cancelled() and not request.in_flight and request in self._queue:
            self._queue.remove(request)

    # --- Dispatch ---

    def _schedule(self) -> None:
        if self._processing or not self._queue:
            return
        if len(self._queue) >= self._config.batch_size:
            self._start_dispatch()
            return
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._config.batch_delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._start_dispatch()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_dispatch(self) -> None:
        if self._processing or not self._queue:
            return
        self._cancel_timer()
        self._processing = True
        batch = self._take_batch()
        self._dispatch_task = asyncio.get_running_loop().create_task(
            self._process_batch(batch), name="quote-batch"
        )

    def _take_batch(self) -> list[BatchRequest]:
        """Remove the first ``batch_size`` requests plus queued duplicates of their tickers."""
        size = self._config.batch_size
        batch = self._queue[:size]
        rest = self._queue[size:]
        tickers = {r.ticker for r in batch}
        batch.extend(r for r in rest if r.ticker in tickers)
        self._queue = [r for r in rest if r.ticker not in tickers]
        for request in batch:
            request.in_flight = True
        return batch

    async def _process_batch(self, batch: list[BatchRequest]) -> None:
        try:
            await self._resolve_batch(batch)
        finally:
            self._processing = False
            self._dispatch_task = None
            if not self._closed:
                self._schedule()

    async def _resolve_batch(self, batch: list[BatchRequest]) -> None:
        by_ticker: dict[str, list[BatchRequest]] = {}
        for request in batch:
            if not request.done:
                by_ticker.setdefault(request.ticker, []).append(request)

        # A previous batch may already have cached some of these tickers.
        to_fetch: list[str] = []
        for ticker, requests in by_ticker.items():
            cached = self._cache.get(ticker)
            if cached is None:
                to_fetch.append(ticker)
                continue
            for request in requests:
                request.resolve(cached)

        if not to_fetch:
            return

        self._total_batches += 1
        self._batched_requests += len(batch)
        self._upstream_tickers += len(to_fetch)
        logger.info(
            "Processing batch of %d requests (%d tickers): %s",
            len(batch),
            len(to_fetch),
            ", ".join(to_fetch),
        )

        try:
            results = await self._fetcher.fetch_batch(to_fetch, self._timeframe)
        except Exception as e:
            logger.exception("Batch fetch failed for %s", ", ".join(to_fetch))
            for ticker in to_fetch:
                error = ProviderExhaustedError(
                    f"Batch fetch failed for {ticker}: {e}",
                    context={"ticker": ticker, "providers": []},
                )
                error.__cause__ = e
                self._fail_all(by_ticker[ticker], error)
            return

        for ticker in to_fetch:
            outcome = results.get(ticker)
            if isinstance(outcome, Quote):
                self._cache.put(ticker, outcome)
                for request in by_ticker[ticker]:
                    request.resolve(outcome)
                continue

            if isinstance(outcome, QuoteRequestError):
                error = outcome
            else:
                error = ProviderExhaustedError(
                    f"No data returned for {ticker}",
                    context={"ticker": ticker, "providers": []},
                )
                if isinstance(outcome, Exception):
                    error.__cause__ = outcome
            self._fail_all(by_ticker[ticker], error)

    def _fail_all(self, requests: list[BatchRequest], error: QuoteRequestError) -> None:
        for request in requests:
            if request.fail(error):
                self._failed_requests += 1
