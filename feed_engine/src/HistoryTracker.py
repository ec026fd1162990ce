"""HistoryTracker: Bounded per-symbol price series and trend analytics.

Each symbol's series is append-only with strictly increasing timestamps and
three bounds, applied on every append:

    1. Retention: points older than retention_period are dropped
    2. Capacity: the oldest points beyond max_data_points are dropped (FIFO)
    3. Compression: above compression_threshold, every Nth point is kept,
       N = ceil(len / (threshold * 0.8)), always keeping the latest point

Analytics (regression, moving averages, RSI, momentum, support/resistance)
are computed on demand and never stored.

.. code-block:: python

    >>> tracker = HistoryTracker()
    >>> for i, price in enumerate(range(100, 120)):
    ...     tracker.add_point("SOL", HistoryPoint(t0 + i, price, 0.1, "pyth", 1.0))
    >>> analysis = tracker.analyze_trend("SOL")
    >>> analysis.trend, analysis.strength
    ('up', 'moderate')
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Any

from . import indicators
from .adapters.base import PriceSample

logger = logging.getLogger(__name__)

MIN_TREND_POINTS = 5
COMPRESSION_TARGET_RATIO = 0.8


@dataclass(frozen=True)
class HistoryConfig:
    """History bounds for one symbol.

    :ivar symbol: Token symbol.
    :ivar max_data_points: Maximum retained points.
    :ivar retention_period: Seconds a point is retained.
    :ivar sampling_interval: Expected seconds between points; used as the
        prediction horizon.
    :ivar enable_compression: Down-sample above compression_threshold.
    :ivar compression_threshold: Point count that triggers compression.
    """

    symbol: str
    max_data_points: int = 500
    retention_period: float = 43200
    sampling_interval: float = 10
    enable_compression: bool = True
    compression_threshold: int = 300

    def __post_init__(self) -> None:
        if self.max_data_points < 1:
            raise ValueError("max_data_points must be at least 1")
        if self.retention_period <= 0:
            raise ValueError("retention_period must be positive")
        if self.compression_threshold < 2:
            raise ValueError("compression_threshold must be at least 2")


DEFAULT_HISTORY_CONFIGS: dict[str, HistoryConfig] = {
    "SOL": HistoryConfig(
        symbol="SOL",
        max_data_points=1000,
        retention_period=86400,  # 24 hours
        sampling_interval=5,
        compression_threshold=500,
    ),
    "USDC": HistoryConfig(
        symbol="USDC",
        max_data_points=500,
        retention_period=86400,
        sampling_interval=10,
        compression_threshold=300,
    ),
    "ETH": HistoryConfig(
        symbol="ETH",
        max_data_points=1000,
        retention_period=86400,
        sampling_interval=5,
        compression_threshold=500,
    ),
    "DEFAULT": HistoryConfig(symbol="DEFAULT"),
}


@dataclass(frozen=True)
class HistoryPoint:
    """One accepted price.

    :ivar timestamp: Capture time of the accepted sample.
    :ivar price: Accepted price.
    :ivar confidence: Confidence width of the accepted price.
    :ivar source: Source id (or aggregation method) that produced it.
    :ivar staleness: Staleness of the sample when accepted.
    """

    timestamp: float
    price: float
    confidence: float
    source: str
    staleness: float

    @classmethod
    def from_sample(cls, sample: PriceSample) -> HistoryPoint:
        return cls(
            timestamp=sample.timestamp,
            price=sample.price,
            confidence=sample.confidence,
            source=sample.source,
            staleness=sample.staleness,
        )


@dataclass(frozen=True)
class Prediction:
    next_price: float
    time_horizon: float
    confidence: float


@dataclass(frozen=True)
class TrendAnalysis:
    """Trend and indicator snapshot for one symbol.

    :ivar trend: Direction from the regression slope.
    :ivar strength: Bucket of the absolute slope percent.
    :ivar confidence: R^2 clamped to [0.1, 0.9].
    :ivar slope: Regression slope (price per sample).
    :ivar slope_percent: Slope as percent of the first price.
    :ivar r_squared: Regression R^2.
    """

    symbol: str
    trend: indicators.TrendDirection
    strength: indicators.TrendStrength
    confidence: float
    slope: float
    slope_percent: float
    r_squared: float
    prediction: Prediction
    sma20: float
    ema20: float
    rsi: float
    momentum: float
    momentum_signal: indicators.MomentumSignal
    volatility: float
    volatility_level: indicators.VolatilityLevel
    support: float
    resistance: float


@dataclass(frozen=True)
class HistoryStats:
    symbol: str
    data_points: int
    time_span: float
    first_timestamp: float
    last_timestamp: float
    min_price: float
    max_price: float
    current_price: float
    average_price: float
    average_confidence: float
    volatility: float
    trend: indicators.TrendDirection


@dataclass(frozen=True)
class PriceComparison:
    """Open/high/low/close over a lookback window.

    :ivar volatility_change: Volatility of the second half of the window
        minus that of the first half, in percentage points.
    """

    symbol: str
    timeframe: str
    open: float
    close: float
    high: float
    low: float
    price_change: float
    price_change_percent: float
    volatility_change: float


def _clamp_confidence(r_squared: float) -> float:
    return max(0.1, min(0.9, r_squared))


class HistoryTracker:
    """In-memory price history for all symbols.

    Callers serialize appends per symbol; the tracker itself holds no locks.
    """

    def __init__(self, configs: dict[str, HistoryConfig] | None = None) -> None:
        self._configs: dict[str, HistoryConfig] = dict(configs or DEFAULT_HISTORY_CONFIGS)
        if "DEFAULT" not in self._configs:
            self._configs["DEFAULT"] = DEFAULT_HISTORY_CONFIGS["DEFAULT"]
        self._history: dict[str, list[HistoryPoint]] = {}

    def get_config(self, symbol: str) -> HistoryConfig:
        symbol = symbol.upper()
        return self._configs.get(symbol) or replace(self._configs["DEFAULT"], symbol=symbol)

    def set_config(self, symbol: str, **overrides: Any) -> HistoryConfig:
        """Override history bounds for a symbol.

        :raises TypeError: On unknown field names.
        :raises ValueError: On invalid values.
        """
        symbol = symbol.upper()
        config = replace(self.get_config(symbol), **overrides, symbol=symbol)
        self._configs[symbol] = config
        logger.info(f"{symbol}: history config updated")
        return config

    @property
    def symbols(self) -> list[str]:
        return list(self._history)

    def add_point(self, symbol: str, point: HistoryPoint, now: float | None = None) -> bool:
        """Append a point and apply retention, capacity and compression.

        :param symbol: Token symbol.
        :param point: Point to append.
        :param now: Current time for the retention cutoff.
        :returns: False if the point was skipped because its timestamp does
            not increase the series.
        """
        symbol = symbol.upper()
        history = self._history.setdefault(symbol, [])
        if history and point.timestamp <= history[-1].timestamp:
            logger.debug(
                f"{symbol}: skipping history point at {point.timestamp} "
                f"(last {history[-1].timestamp})"
            )
            return False

        history.append(point)
        config = self.get_config(symbol)

        cutoff = (time.time() if now is None else now) - config.retention_period
        if history[0].timestamp <= cutoff:
            history[:] = [p for p in history if p.timestamp > cutoff]

        if len(history) > config.max_data_points:
            del history[: len(history) - config.max_data_points]

        if config.enable_compression and len(history) > config.compression_threshold:
            self.compress(symbol)
        return True

    def record_sample(self, sample: PriceSample, now: float | None = None) -> bool:
        """Append an accepted sample."""
        return self.add_point(sample.symbol, HistoryPoint.from_sample(sample), now=now)

    def compress(self, symbol: str) -> int:
        """Down-sample a symbol's series.

        :returns: Number of points removed.
        """
        symbol = symbol.upper()
        history = self._history.get(symbol)
        if not history:
            return 0
        config = self.get_config(symbol)
        ratio = math.ceil(len(history) / (config.compression_threshold * COMPRESSION_TARGET_RATIO))
        if ratio <= 1:
            return 0

        compressed = history[::ratio]
        if compressed[-1] is not history[-1]:
            compressed.append(history[-1])

        removed = len(history) - len(compressed)
        logger.info(f"{symbol}: compressed history {len(history)} -> {len(compressed)} points")
        self._history[symbol] = compressed
        return removed

    def get_history(self, symbol: str, window: float | None = None) -> list[HistoryPoint]:
        """Get a copy of a symbol's series.

        :param window: Optional lookback in seconds from now.
        """
        history = self._history.get(symbol.upper(), [])
        if window is None:
            return list(history)
        cutoff = time.time() - window
        return [p for p in history if p.timestamp > cutoff]

    def get_prices(self, symbol: str, last: int | None = None) -> list[float]:
        history = self._history.get(symbol.upper(), [])
        if last is not None:
            history = history[-last:]
        return [p.price for p in history]

    def analyze_trend(self, symbol: str) -> TrendAnalysis | None:
        """Regression trend and indicators (None with fewer than 5 points)."""
        symbol = symbol.upper()
        prices = self.get_prices(symbol)
        if len(prices) < MIN_TREND_POINTS:
            logger.debug(f"{symbol}: insufficient data for trend analysis ({len(prices)})")
            return None

        regression = indicators.linear_regression(prices)
        slope_percent = regression.slope / prices[0] * 100
        confidence = _clamp_confidence(regression.r_squared)
        momentum = indicators.momentum(prices, 10)
        volatility = indicators.volatility_percent(prices)
        support, resistance = indicators.support_resistance(prices, 20)

        return TrendAnalysis(
            symbol=symbol,
            trend=indicators.classify_trend(slope_percent),
            strength=indicators.classify_strength(slope_percent),
            confidence=confidence,
            slope=regression.slope,
            slope_percent=slope_percent,
            r_squared=regression.r_squared,
            prediction=Prediction(
                next_price=max(0.0, regression.predict(len(prices))),
                time_horizon=self.get_config(symbol).sampling_interval,
                confidence=confidence,
            ),
            sma20=indicators.sma(prices, 20),
            ema20=indicators.ema(prices, 20),
            rsi=indicators.rsi(prices, 14),
            momentum=momentum,
            momentum_signal=indicators.classify_momentum(momentum),
            volatility=volatility,
            volatility_level=indicators.classify_volatility(volatility),
            support=support,
            resistance=resistance,
        )

    def get_stats(self, symbol: str) -> HistoryStats | None:
        symbol = symbol.upper()
        history = self._history.get(symbol)
        if not history:
            return None

        prices = [p.price for p in history]
        trend = self.analyze_trend(symbol)
        return HistoryStats(
            symbol=symbol,
            data_points=len(history),
            time_span=history[-1].timestamp - history[0].timestamp,
            first_timestamp=history[0].timestamp,
            last_timestamp=history[-1].timestamp,
            min_price=min(prices),
            max_price=max(prices),
            current_price=prices[-1],
            average_price=sum(prices) / len(prices),
            average_confidence=sum(p.confidence for p in history) / len(history),
            volatility=indicators.volatility_percent(prices),
            trend=trend.trend if trend else "stable",
        )

    def compare_timeframe(
        self, symbol: str, window: float, label: str | None = None
    ) -> PriceComparison | None:
        """Compare open and close over the last ``window`` seconds.

        :returns: PriceComparison, or None with fewer than 2 points.
        """
        symbol = symbol.upper()
        prices = [p.price for p in self.get_history(symbol, window)]
        if len(prices) < 2:
            return None

        half = len(prices) // 2
        first, last = prices[0], prices[-1]
        return PriceComparison(
            symbol=symbol,
            timeframe=label or f"{window:g}s",
            open=first,
            close=last,
            high=max(prices),
            low=min(prices),
            price_change=last - first,
            price_change_percent=(last - first) / first * 100,
            volatility_change=(
                indicators.volatility_percent(prices[half:])
                - indicators.volatility_percent(prices[:half])
            ),
        )

    def prune_expired(self, now: float | None = None) -> int:
        """Drop points beyond each symbol's retention period.

        :returns: Number of points removed across all symbols.
        """
        now = time.time() if now is None else now
        removed = 0
        for symbol, history in self._history.items():
            cutoff = now - self.get_config(symbol).retention_period
            kept = [p for p in history if p.timestamp > cutoff]
            removed += len(history) - len(kept)
            history[:] = kept
        if removed:
            logger.info(f"History cleanup removed {removed} expired points")
        return removed

    def clear_history(self, symbol: str | None = None) -> None:
        if symbol is None:
            self._history.clear()
        else:
            self._history.pop(symbol.upper(), None)

    def get_system_stats(self) -> dict[str, int]:
        return {
            "tracked_symbols": len(self._history),
            "total_data_points": sum(len(h) for h in self._history.values()),
        }
