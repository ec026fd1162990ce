"""Pyth Network adapter (Hermes price service).

Endpoint: https://hermes.pyth.network/v2/updates/price/latest?ids[]={feed_id}
Rate Limit: High (no key required)
Units: integer mantissa + exponent, e.g. price=2551234567, expo=-8 -> 25.51234567

Hermes returns the latest aggregate price, its confidence interval and an
exponential moving average for each requested feed id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .base import (
    AdapterConfigError,
    AdapterError,
    BaseAdapter,
    PriceSample,
    register_adapter,
)

logger = logging.getLogger(__name__)

# Legacy numeric market status codes, present on some Pyth payloads.
PYTH_STATUS = {0: "unknown", 1: "trading", 2: "halted", 3: "auction"}


@dataclass(frozen=True)
class PythPrice:
    """One price component of a Hermes update (mantissa + exponent)."""

    price: int
    conf: int
    expo: int
    publish_time: int

    @property
    def value(self) -> float:
        return self.price * 10.0**self.expo

    @property
    def confidence(self) -> float:
        return self.conf * 10.0**self.expo

    @classmethod
    def from_json(cls, raw: Any) -> PythPrice:
        """Validate and parse a Hermes price object.

        :raises AdapterError: If the payload is malformed.
        """
        if not isinstance(raw, dict):
            raise AdapterError(f"[pyth] Expected price object, got {type(raw).__name__}")
        try:
            return cls(
                price=int(raw["price"]),
                conf=int(raw["conf"]),
                expo=int(raw["expo"]),
                publish_time=int(raw["publish_time"]),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise AdapterError(f"[pyth] Malformed price object: {e}") from e


@dataclass(frozen=True)
class PythPriceUpdate:
    """A parsed Hermes price update for a single feed."""

    feed_id: str
    price: PythPrice
    ema_price: PythPrice | None
    status: str | None

    @classmethod
    def from_json(cls, raw: Any) -> PythPriceUpdate:
        """Validate and parse a single entry of the Hermes ``parsed`` list.

        :raises AdapterError: If the payload is malformed.
        """
        if not isinstance(raw, dict) or "price" not in raw:
            raise AdapterError(f"[pyth] Malformed price update: {raw!r}"[:200])

        price = PythPrice.from_json(raw["price"])
        ema_raw = raw.get("ema_price")
        ema_price = PythPrice.from_json(ema_raw) if ema_raw is not None else None

        status = None
        status_code = raw["price"].get("status")
        if status_code is not None:
            status = PYTH_STATUS.get(status_code, "unknown")

        return cls(
            feed_id=str(raw.get("id", "")).lower().removeprefix("0x"),
            price=price,
            ema_price=ema_price,
            status=status,
        )


@register_adapter
class PythAdapter(BaseAdapter):
    """Adapter for the Pyth Hermes price service.

    No API key required. Feed ids are fixed per symbol.
    """

    name = "pyth"
    BASE_URL = "https://hermes.pyth.network"

    # Pyth price feed ids (USD quoted)
    FEED_IDS = {
        "SOL": "ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",
        "USDC": "eaa020c61cc479712813461ce153894a96a6c00b21ed0cfc2798d1f9a9e9c94a",
        "ETH": "ff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace",
        "BTC": "e62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43",
        "RAY": "91568ba9a4654e5c3d7c84821c931dd6b6b24d8d9fd68a9dd6600ab5d724d044",
        "USDT": "2b89b9dc8fdf9f34709a5b106b472f0f39bb6ca9ce04b0fd7f2e971688e2e53b",
    }

    def supports_symbol(self, symbol: str) -> bool:
        return symbol.upper() in self.FEED_IDS

    async def fetch(self, symbol: str) -> PriceSample:
        """Fetch the latest price update from Hermes.

        :param symbol: Token symbol (e.g., "SOL").
        :returns: Normalized PriceSample.
        :raises AdapterConfigError: If no Pyth feed is known for the symbol.
        :raises AdapterError: On request or parse failure.
        """
        symbol = symbol.upper()
        feed_id = self.FEED_IDS.get(symbol)
        if not feed_id:
            raise AdapterConfigError(f"[pyth] No price feed configured for {symbol}")

        url = f"{self.BASE_URL}/v2/updates/price/latest"
        response = await self._get(url, params={"ids[]": feed_id, "parsed": "true"})
        data = self._json(response)

        parsed = data.get("parsed") if isinstance(data, dict) else None
        if not parsed:
            raise AdapterError(f"[pyth] No price data returned for {symbol}")

        update = PythPriceUpdate.from_json(parsed[0])
        if update.price.value <= 0:
            raise AdapterError(
                f"[pyth] Non-positive price for {symbol}: {update.price.value}"
            )

        logger.debug(
            f"[pyth] {symbol}: price={update.price.value:.6f} "
            f"conf={update.price.confidence:.6f} publish_time={update.price.publish_time}"
        )

        return PriceSample.capture(
            symbol=symbol,
            price=update.price.value,
            confidence=update.price.confidence,
            timestamp=float(update.price.publish_time),
            source=self.name,
            ema_price=update.ema_price.value if update.ema_price else None,
            trading_status=update.status,
        )
