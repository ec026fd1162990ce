"""Switchboard on-demand adapter.

Endpoint: {base_url}/feeds/{feed_id}/result
Units: 18-decimal fixed point, e.g. value="25510000000000000000" -> 25.51

The gateway returns the latest oracle result for a pull feed: the median
value, the standard deviation across oracle responses (used as the
confidence width), the slot and the result timestamp. Results delivered over
the Surge low-latency network are flagged as high trust.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from .base import (
    AdapterConfigError,
    AdapterError,
    BaseAdapter,
    PriceSample,
    register_adapter,
)

logger = logging.getLogger(__name__)

# Switchboard on-chain results are i128 values scaled by 10^18.
FIXED_POINT_DECIMALS = 18


def from_fixed_point(raw: str | int, decimals: int = FIXED_POINT_DECIMALS) -> float:
    """Convert a fixed-point integer (as int or decimal string) to float.

    :raises ValueError: If the value is not an integer.
    """
    try:
        scaled = Decimal(str(raw))
    except InvalidOperation as e:
        raise ValueError(f"Invalid fixed-point value {raw!r}") from e
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Fixed-point value must be an integer, got {raw!r}")
    return float(scaled.scaleb(-decimals))


@dataclass(frozen=True)
class SwitchboardResult:
    """A parsed Switchboard feed result."""

    value: float
    std_dev: float
    slot: int
    timestamp: float
    surge: bool

    @classmethod
    def from_json(cls, raw: Any) -> SwitchboardResult:
        """Validate and parse a gateway response.

        :raises AdapterError: If the payload is malformed.
        """
        if not isinstance(raw, dict) or not isinstance(raw.get("result"), dict):
            raise AdapterError(f"[switchboard] Malformed result: {raw!r}"[:200])
        result = raw["result"]
        try:
            return cls(
                value=from_fixed_point(result["value"]),
                std_dev=from_fixed_point(result.get("std_dev", 0)),
                slot=int(result.get("slot", 0)),
                timestamp=float(result["timestamp"]),
                surge=bool(raw.get("surge", False)),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise AdapterError(f"[switchboard] Malformed result: {e}") from e


@register_adapter
class SwitchboardAdapter(BaseAdapter):
    """Adapter for Switchboard on-demand pull feeds.

    The gateway URL is configurable so that a self-hosted crossbar can be used.
    """

    name = "switchboard"
    BASE_URL = "https://crossbar.switchboard.xyz"

    # Feed hashes are deployment specific; pass them via feed_ids.
    FEED_IDS: dict[str, str] = {}

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        base_url: str | None = None,
        feed_ids: dict[str, str] | None = None,
    ):
        """Initialize with optional gateway and feed overrides."""
        super().__init__(api_key=api_key, timeout=timeout)
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        feeds = self.FEED_IDS if feed_ids is None else feed_ids
        self.feed_ids = {k.upper(): v for k, v in feeds.items()}

    def supports_symbol(self, symbol: str) -> bool:
        return symbol.upper() in self.feed_ids

    async def fetch(self, symbol: str) -> PriceSample:
        """Fetch the latest feed result.

        :param symbol: Token symbol (e.g., "SOL").
        :returns: Normalized PriceSample.
        :raises AdapterConfigError: If no feed is known for the symbol.
        :raises AdapterError: On request or parse failure.
        """
        symbol = symbol.upper()
        feed_id = self.feed_ids.get(symbol)
        if not feed_id:
            raise AdapterConfigError(
                f"[switchboard] No feed configured for {symbol}"
            )

        headers = {"x-api-key": self.api_key} if self.has_api_key else None
        response = await self._get(
            f"{self.base_url}/feeds/{feed_id}/result", headers=headers
        )
        result = SwitchboardResult.from_json(self._json(response))

        if result.value <= 0:
            raise AdapterError(
                f"[switchboard] Non-positive price for {symbol}: {result.value}"
            )

        logger.debug(
            f"[switchboard] {symbol}: value={result.value:.6f} "
            f"std_dev={result.std_dev:.6f} slot={result.slot} surge={result.surge}"
        )

        return PriceSample.capture(
            symbol=symbol,
            price=result.value,
            confidence=result.std_dev,
            timestamp=result.timestamp,
            source=self.name,
            high_trust=result.surge,
        )
