"""Coinbase Exchange adapter.

Endpoint: https://api.exchange.coinbase.com/products/{SYMBOL}-USD/ticker
Rate Limit: High (no key required)

The ticker exposes the last trade price together with the best bid and ask.
Half of the bid/ask spread is used as the confidence width.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .base import AdapterError, BaseAdapter, PriceSample, register_adapter

logger = logging.getLogger(__name__)


def parse_timestamp(value: str) -> float:
    """Parse an ISO-8601 timestamp ("2024-01-01T00:00:00.123Z") to unix seconds."""
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


@dataclass(frozen=True)
class CoinbaseTicker:
    """A parsed Coinbase ticker response."""

    price: float
    bid: float
    ask: float
    time: float

    @classmethod
    def from_json(cls, raw: Any) -> CoinbaseTicker:
        """Validate and parse a ticker payload.

        :raises AdapterError: If the payload is malformed.
        """
        if not isinstance(raw, dict) or "price" not in raw:
            raise AdapterError(f"[coinbase] No price in response: {raw!r}"[:200])
        try:
            return cls(
                price=float(raw["price"]),
                bid=float(raw["bid"]),
                ask=float(raw["ask"]),
                time=parse_timestamp(raw["time"]),
            )
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise AdapterError(f"[coinbase] Failed to parse ticker: {e}") from e


@register_adapter
class CoinbaseAdapter(BaseAdapter):
    """Adapter for the Coinbase Exchange public ticker.

    No API key required for public ticker endpoint.
    """

    name = "coinbase"
    BASE_URL = "https://api.exchange.coinbase.com"

    async def fetch(self, symbol: str) -> PriceSample:
        """Fetch the ticker for SYMBOL-USD.

        :param symbol: Token symbol (e.g., "SOL").
        :returns: Normalized PriceSample.
        :raises AdapterError: On request or parse failure.
        """
        symbol = symbol.upper()
        product = f"{symbol}-USD"
        url = f"{self.BASE_URL}/products/{product}/ticker"

        response = await self._get(url)
        ticker = CoinbaseTicker.from_json(self._json(response))

        if ticker.price <= 0:
            raise AdapterError(f"[coinbase] Non-positive price for {product}")

        # A crossed or empty book gives no usable spread
        spread = ticker.ask - ticker.bid
        confidence = spread / 2 if spread > 0 else 0.0

        return PriceSample.capture(
            symbol=symbol,
            price=ticker.price,
            confidence=confidence,
            timestamp=ticker.time,
            source=self.name,
        )
