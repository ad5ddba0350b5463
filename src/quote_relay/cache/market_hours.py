"""Regular-session market hours check."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from quote_relay.core.config import MarketHoursConfig


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MarketClock:
    """Answers whether the reference exchange is in its regular session.

    Weekends always count as closed. Exchange holidays are not modelled.
    """

    def __init__(
        self,
        config: MarketHoursConfig | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or MarketHoursConfig()
        self._tz = ZoneInfo(self._config.timezone)
        self._now = now

    def local_time(self, now: datetime | None = None) -> datetime:
        """Return ``now`` (or the clock's current time) in exchange local time.

        Naive datetimes are taken as UTC.
        """
        moment = now if now is not None else self._now()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self._tz)

    def is_market_open(self, now: datetime | None = None) -> bool:
        local = self.local_time(now)
        if local.weekday() >= 5:
            return False
        current = local.time().replace(tzinfo=None)
        return self._config.open_time <= current < self._config.close_time

    def is_after_hours(self, now: datetime | None = None) -> bool:
        return not self.is_market_open(now)
