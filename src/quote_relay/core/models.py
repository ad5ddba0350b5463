"""Pydantic data models — the pipeline's type contracts."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --- Type Aliases ---

Ticker = str
ProviderName = str

TICKER_PATTERN = re.compile(r"^\^?[A-Z0-9][A-Z0-9.\-=]{0,11}$")

# --- Enumerations ---


class RequestPriority(StrEnum):
    """Queue placement of a pending quote request."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class CachePriority(StrEnum):
    """Eviction resistance tier of a cache entry."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Timeframe(StrEnum):
    """Chart timeframes a provider may be asked for."""

    ONE_DAY = "1D"
    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    ONE_YEAR = "1Y"


def normalize_ticker(raw: str) -> Ticker:
    """Strip and uppercase a ticker. Returns "" for non-string input."""
    if not isinstance(raw, str):
        return ""
    return raw.strip().upper()


def is_valid_ticker(ticker: str) -> bool:
    return bool(TICKER_PATTERN.match(ticker))


# --- Quote Models ---


class PriceRange(BaseModel):
    """Low/high price band (day range, 52-week range)."""

    model_config = ConfigDict(frozen=True)

    low: float
    high: float

    @model_validator(mode="after")
    def high_gte_low(self) -> PriceRange:
        if self.high < self.low:
            raise ValueError(f"high ({self.high}) must be >= low ({self.low})")
        return self

    @property
    def midpoint(self) -> float:
        return (self.high + self.low) / 2

    @property
    def spread(self) -> float:
        return self.high - self.low


class ProviderQuote(BaseModel):
    """A quote as returned by a single provider, before change computation.

    Providers are not required to know the previous close; the chain fills
    in ``change_percent`` from history when it is missing.
    """

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    price: float
    previous_close: float | None = None
    open_price: float | None = None
    volume: int | None = None
    market_cap: float | None = None
    pe_ratio: float | None = None
    dividend_yield: float | None = None
    beta: float | None = None
    eps: float | None = None
    day_range: PriceRange | None = None
    year_range: PriceRange | None = None
    source: str = "unknown"

    @field_validator("price")
    @classmethod
    def price_positive(cls, v: float) -> float:
        if not v > 0:
            raise ValueError(f"price must be > 0, got {v}")
        return v

    @field_validator("volume")
    @classmethod
    def volume_non_negative(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError(f"volume must be >= 0, got {v}")
        return v

    @property
    def has_usable_previous_close(self) -> bool:
        """A previous close counts only if positive and distinct from price."""
        return (
            self.previous_close is not None
            and self.previous_close > 0
            and self.previous_close != self.price
        )


class Quote(ProviderQuote):
    """Immutable point-in-time snapshot for one ticker.

    Produced by the provider chain, consumed by the cache and callers.
    A newer quote replaces an older one; quotes are never mutated.
    """

    change_percent: float
    fetched_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def from_provider(
        cls,
        raw: ProviderQuote,
        change_percent: float,
        fetched_at: datetime | None = None,
    ) -> Quote:
        data = raw.model_dump()
        data["change_percent"] = change_percent
        if fetched_at is not None:
            data["fetched_at"] = fetched_at
        return cls.model_validate(data)


# --- History Models ---


class PriceHistoryRecord(BaseModel):
    """The last two observed prices for one ticker."""

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    current_price: float
    current_timestamp: float
    previous_price: float | None = None
    previous_timestamp: float | None = None

    @model_validator(mode="after")
    def previous_before_current(self) -> PriceHistoryRecord:
        if (
            self.previous_timestamp is not None
            and self.previous_timestamp >= self.current_timestamp
        ):
            raise ValueError(
                "previous_timestamp must be earlier than current_timestamp"
            )
        return self


class HistoryStats(BaseModel):
    """Size information for the price history store."""

    model_config = ConfigDict(frozen=True)

    size: int
    max_size: int


# --- Cache Models ---


class CacheEntryInfo(BaseModel):
    """Read-only view of a single cache entry."""

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    is_valid: bool
    age: float
    ttl: float
    volatility: float
    priority: CachePriority
    access_count: int


class CacheStats(BaseModel):
    """Counters and distribution for the quote cache."""

    model_config = ConfigDict(frozen=True)

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    total_entries: int = 0
    max_entries: int = 0
    hit_rate: float = 0.0
    average_volatility: float = 0.0
    priority_distribution: dict[str, int] = Field(default_factory=dict)


# --- Dispatcher Models ---


class DispatcherStats(BaseModel):
    """Counters for the request coalescer."""

    model_config = ConfigDict(frozen=True)

    total_requests: int = 0
    cache_hits: int = 0
    batched_requests: int = 0
    failed_requests: int = 0
    timed_out_requests: int = 0
    dropped_requests: int = 0
    total_batches: int = 0
    upstream_tickers: int = 0
    average_batch_size: float = 0.0


class QueueStatus(BaseModel):
    """Snapshot of the pending queue."""

    model_config = ConfigDict(frozen=True)

    queue_length: int
    is_processing: bool
    average_wait_time: float
