"""Scripted adapters and sample builders shared by the feed engine tests."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from typing import Any

from feed_engine.src.adapters import BaseAdapter, PriceSample
from feed_engine.src.FeedConfig import DEFAULT_KEY, FeedConfig


class FakeAdapter(BaseAdapter):
    """Scripted price source.

    Each call consumes the next outcome for the symbol, repeating the last
    one once the script is exhausted. A float outcome becomes a fresh
    sample at that price; an exception is raised; a PriceSample is returned
    as is.
    """

    name = "fake"

    def __init__(
        self,
        source: str,
        outcomes: Sequence[Any] | Mapping[str, Sequence[Any]],
        *,
        staleness: float = 1.0,
        confidence_percent: float = 0.05,
        delay: float = 0.0,
    ) -> None:
        super().__init__()
        self.name = source
        self.outcomes = outcomes
        self.staleness = staleness
        self.confidence_percent = confidence_percent
        self.delay = delay
        self.calls: dict[str, int] = {}
        self.active = 0
        self.max_active = 0

    @property
    def call_count(self) -> int:
        return sum(self.calls.values())

    def _next(self, symbol: str) -> Any:
        script = self.outcomes
        if isinstance(script, Mapping):
            script = script[symbol]
        index = self.calls[symbol] - 1
        return script[min(index, len(script) - 1)]

    async def fetch(self, symbol: str) -> PriceSample:
        symbol = symbol.upper()
        self.calls[symbol] = self.calls.get(symbol, 0) + 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self._next(symbol)
        finally:
            self.active -= 1

        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, PriceSample):
            return outcome
        return make_sample(
            symbol,
            float(outcome),
            source=self.name,
            confidence=float(outcome) * self.confidence_percent / 100,
            staleness=self.staleness,
        )


def make_sample(
    symbol: str = "SOL",
    price: float = 100.0,
    *,
    source: str = "pyth",
    confidence: float = 0.05,
    staleness: float = 2.0,
    **extra: Any,
) -> PriceSample:
    """Sample captured ``staleness`` seconds ago."""
    return PriceSample(
        symbol=symbol,
        price=price,
        confidence=confidence,
        timestamp=time.time() - staleness,
        source=source,
        staleness=staleness,
        **extra,
    )


def make_configs(**symbols: FeedConfig) -> dict[str, FeedConfig]:
    """Config table with a single-source DEFAULT entry."""
    configs = {DEFAULT_KEY: FeedConfig(symbol=DEFAULT_KEY, primary_source="pyth", fallback_sources=())}
    configs.update(symbols)
    return configs

