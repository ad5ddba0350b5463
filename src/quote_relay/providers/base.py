"""Quote provider protocol — the source-agnostic interface layer.

Architecture
------------
The provider system uses the same adapter split throughout:

    Upstream API → adapter.adapt(raw) → ProviderQuote → ProviderChain → Quote

- **QuoteProvider** is what the chain talks to. A provider either returns a
  mapping for the tickers it could serve (tickers it could not serve are
  simply omitted) or raises ``ProviderError`` when it cannot serve the batch
  at all.

- **QuoteAdapter** turns one raw upstream payload into a ``ProviderQuote``.
  Adding a new source means writing one provider and one adapter; the chain
  and the dispatcher never change.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

from quote_relay.core.models import ProviderQuote, Timeframe


@runtime_checkable
class QuoteAdapter(Protocol):
    """Transforms one raw upstream payload into a ProviderQuote.

    Returns None when the payload lacks a usable price.
    """

    def adapt(self, raw_data: Any, ticker: str) -> ProviderQuote | None: ...


@runtime_checkable
class QuoteProvider(Protocol):
    """A single upstream quote source."""

    @property
    def name(self) -> str: ...

    async def fetch_batch(
        self,
        tickers: Sequence[str],
        timeframe: Timeframe = Timeframe.ONE_DAY,
    ) -> dict[str, ProviderQuote]:
        """Fetch quotes for ``tickers``.

        Returns
        -------
        dict[str, ProviderQuote]
            Served tickers only. Raises ProviderError if nothing could be
            served because the source itself failed.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
        ...


def parse_float(value: Any) -> float | None:
    """Best-effort float parse. Returns None for missing or unparseable values."""
    if value is None or value == "":
        return None
    try:
        result = float(str(value).replace(",", "").rstrip("%"))
    except (TypeError, ValueError):
        return None
    if result != result:  # NaN
        return None
    return result


def parse_int(value: Any) -> int | None:
    parsed = parse_float(value)
    return int(parsed) if parsed is not None else None
