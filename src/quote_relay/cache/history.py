"""Bounded in-memory store of the last two observed prices per ticker.

Used to synthesize a percent change when a provider omits the previous
close. Only the provider chain writes here.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from quote_relay.core.config import HistoryConfig
from quote_relay.core.models import HistoryStats, PriceHistoryRecord

logger = logging.getLogger(__name__)

# Smallest step used to keep per-ticker timestamps strictly increasing
# when the clock has not advanced between two writes.
_MIN_TICK = 1e-6


def percent_change(current: float, previous: float) -> float:
    """((current - previous) / previous) * 100."""
    return ((current - previous) / previous) * 100


class PriceHistoryStore:
    """Last-two-prices store with recency-based eviction.

    Parameters
    ----------
    config : HistoryConfig
        Entry cap and retention window.
    clock : Callable[[], float]
        Monotonic clock in seconds. Default: ``time.monotonic``.
    """

    def __init__(
        self,
        config: HistoryConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or HistoryConfig()
        self._clock = clock
        self._records: dict[str, PriceHistoryRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, ticker: str) -> bool:
        return ticker in self._records

    def record(self, ticker: str, price: float) -> PriceHistoryRecord:
        """Store ``price`` as current, shifting the old current to previous."""
        now = self._clock()
        existing = self._records.pop(ticker, None)

        if existing is None:
            record = PriceHistoryRecord(
                ticker=ticker,
                current_price=price,
                current_timestamp=now,
            )
        else:
            stamp = max(now, existing.current_timestamp + _MIN_TICK)
            record = PriceHistoryRecord(
                ticker=ticker,
                current_price=price,
                current_timestamp=stamp,
                previous_price=existing.current_price,
                previous_timestamp=existing.current_timestamp,
            )

        # Re-inserting keeps dict order == write order, oldest first.
        self._records[ticker] = record
        self._purge(now)
        return record

    def get(self, ticker: str) -> PriceHistoryRecord | None:
        return self._records.get(ticker)

    def previous_price(self, ticker: str) -> float | None:
        record = self._records.get(ticker)
        if record is None:
            return None
        return record.previous_price

    def has_usable_history(self, ticker: str) -> bool:
        """True only if a previous price exists and differs from the current one."""
        record = self._records.get(ticker)
        return (
            record is not None
            and record.previous_price is not None
            and record.previous_price > 0
            and record.previous_price != record.current_price
        )

    def percent_change(self, ticker: str, current: float) -> float | None:
        """Percent change of ``current`` against the stored previous price."""
        previous = self.previous_price(ticker)
        if not previous:
            return None
        return percent_change(current, previous)

    def stats(self) -> HistoryStats:
        return HistoryStats(size=len(self._records), max_size=self._config.max_entries)

    def clear(self) -> None:
        self._records.clear()

    def _purge(self, now: float) -> None:
        """Enforce the entry cap: stale records first, then oldest writes."""
        overflow = len(self._records) - self._config.max_entries
        if overflow <= 0:
            return

        cutoff = now - self._config.retention_seconds
        stale = [
            ticker
            for ticker, record in self._records.items()
            if record.current_timestamp < cutoff
        ]
        for ticker in stale:
            del self._records[ticker]

        removed = len(stale)
        while len(self._records) > self._config.max_entries:
            oldest = next(iter(self._records))
            del self._records[oldest]
            removed += 1

        logger.debug(
            "Purged %d price history records (%d stale)", removed, len(stale)
        )
