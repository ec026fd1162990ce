"""Simulated adapter for tests and local demos.

Produces a seeded random walk around a reference price. It makes no network
calls and must never be configured for production feeds.
"""

from __future__ import annotations

import random
import time

from .base import AdapterConfigError, BaseAdapter, PriceSample, register_adapter


@register_adapter
class SimulatedAdapter(BaseAdapter):
    """Random-walk price source.

    :ivar reference_prices: Starting price per symbol.
    :ivar volatility: Max relative step per fetch (0.002 = 0.2%).
    :ivar confidence_percent: Confidence width as percent of price.
    :ivar lag: Seconds subtracted from the capture time (simulated staleness).
    """

    name = "simulated"

    REFERENCE_PRICES = {
        "SOL": 25.5,
        "USDC": 1.0,
        "USDT": 1.0,
        "ETH": 2400.0,
        "BTC": 43000.0,
    }

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        reference_prices: dict[str, float] | None = None,
        seed: int | None = None,
        volatility: float = 0.002,
        confidence_percent: float = 0.05,
        lag: float = 0.0,
    ):
        super().__init__(api_key=api_key, timeout=timeout)
        prices = self.REFERENCE_PRICES if reference_prices is None else reference_prices
        self.reference_prices = {k.upper(): v for k, v in prices.items()}
        self.volatility = volatility
        self.confidence_percent = confidence_percent
        self.lag = lag
        self._rng = random.Random(seed)
        self._last: dict[str, float] = {}

    def supports_symbol(self, symbol: str) -> bool:
        return symbol.upper() in self.reference_prices

    async def fetch(self, symbol: str) -> PriceSample:
        symbol = symbol.upper()
        if symbol not in self.reference_prices:
            raise AdapterConfigError(f"[simulated] No reference price for {symbol}")

        previous = self._last.get(symbol, self.reference_prices[symbol])
        step = self._rng.uniform(-self.volatility, self.volatility)
        price = previous * (1 + step)
        self._last[symbol] = price

        now = time.time()
        return PriceSample.capture(
            symbol=symbol,
            price=price,
            confidence=price * self.confidence_percent / 100,
            timestamp=now - self.lag,
            source=self.name,
            now=now,
        )
