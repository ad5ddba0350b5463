"""Exponential backoff around a single provider call."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from quote_relay.core.config import RetryConfig
from quote_relay.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """Retries retryable ``ProviderError``s with exponential backoff.

    Non-retryable errors and the final failed attempt propagate unchanged.
    A ``retry_after`` in the error context overrides the computed delay
    (still capped by ``max_delay``).
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or RetryConfig()
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def delay_for(self, attempt: int, error: ProviderError | None = None) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if error is not None:
            retry_after = error.context.get("retry_after")
            if isinstance(retry_after, (int, float)) and retry_after >= 0:
                return min(float(retry_after), self._config.max_delay)
        delay = self._config.base_delay * self._config.backoff ** (attempt - 1)
        return min(delay, self._config.max_delay)

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "") -> T:
        last_error: ProviderError | None = None
        for attempt in range(1, self._config.max_attempts + 1):
            try:
                return await operation()
            except ProviderError as e:
                if not e.retryable:
                    raise
                last_error = e
                if attempt == self._config.max_attempts:
                    break
                delay = self.delay_for(attempt, e)
                logger.warning(
                    "%s failed (%s), retrying in %.2fs (attempt %d/%d)",
                    label or "Provider call",
                    e,
                    delay,
                    attempt,
                    self._config.max_attempts,
                )
                await self._sleep(delay)

        raise last_error
