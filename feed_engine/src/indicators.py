"""Technical indicators over a price series.

All functions are pure and take prices in chronological order (oldest
first). Short series degrade to neutral values instead of raising.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from statistics import fmean, pstdev
from typing import Literal

TrendDirection = Literal["up", "down", "stable"]
TrendStrength = Literal["weak", "moderate", "strong", "very_strong"]
MomentumSignal = Literal["bullish", "bearish", "neutral"]
VolatilityLevel = Literal["low", "medium", "high", "extreme"]

TREND_THRESHOLD_PERCENT = 0.1
MOMENTUM_THRESHOLD = 0.01


@dataclass(frozen=True)
class Regression:
    """Least-squares fit of price against sample index.

    :ivar slope: Price change per sample.
    :ivar intercept: Fitted price at index 0.
    :ivar r_squared: Coefficient of determination.
    """

    slope: float
    intercept: float
    r_squared: float

    def predict(self, index: float) -> float:
        return self.intercept + self.slope * index


def linear_regression(prices: Sequence[float]) -> Regression:
    """Closed-form least squares over (index, price).

    A flat series fits perfectly (R^2 = 1). Fewer than two points yield a
    zero slope and R^2 = 0.
    """
    n = len(prices)
    if n < 2:
        return Regression(slope=0.0, intercept=prices[0] if prices else 0.0, r_squared=0.0)

    sum_x = n * (n - 1) / 2
    sum_y = math.fsum(prices)
    sum_xy = math.fsum(i * p for i, p in enumerate(prices))
    sum_x2 = n * (n - 1) * (2 * n - 1) / 6

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n

    mean = sum_y / n
    ss_total = math.fsum((p - mean) ** 2 for p in prices)
    ss_residual = math.fsum((p - (intercept + slope * i)) ** 2 for i, p in enumerate(prices))

    if ss_total == 0:
        r_squared = 1.0 if ss_residual == 0 else 0.0
    else:
        r_squared = max(0.0, 1 - ss_residual / ss_total)

    return Regression(slope=slope, intercept=intercept, r_squared=r_squared)


def sma(prices: Sequence[float], period: int = 20) -> float:
    """Simple moving average of the last ``period`` prices.

    Returns the last price if the series is shorter than the period.
    """
    if not prices:
        return 0.0
    if len(prices) < period:
        return prices[-1]
    return fmean(prices[-period:])


def ema(prices: Sequence[float], period: int = 20) -> float:
    """Exponential moving average seeded with the SMA of the first window."""
    if not prices:
        return 0.0
    if len(prices) < period:
        return prices[-1]

    multiplier = 2 / (period + 1)
    value = fmean(prices[:period])
    for price in prices[period:]:
        value = (price - value) * multiplier + value
    return value


def rsi(prices: Sequence[float], period: int = 14) -> float:
    """Relative Strength Index over the last ``period`` changes.

    Returns 50 (neutral) with fewer than ``period + 1`` prices and 100 when
    there are no losses. The result is always in [0, 100].
    """
    if len(prices) < period + 1:
        return 50.0

    changes = [b - a for a, b in zip(prices[-period - 1 : -1], prices[-period:])]
    avg_gain = sum(c for c in changes if c > 0) / period
    avg_loss = sum(-c for c in changes if c < 0) / period

    if avg_loss == 0:
        return 100.0
    return 100 - 100 / (1 + avg_gain / avg_loss)


def momentum(prices: Sequence[float], period: int = 10) -> float:
    """Relative change against the price ``period`` samples ago (0 if too short)."""
    if len(prices) <= period:
        return 0.0
    past = prices[-period - 1]
    return (prices[-1] - past) / past


def volatility_percent(prices: Sequence[float]) -> float:
    """Population standard deviation as percent of the mean (0 if < 2 points)."""
    if len(prices) < 2:
        return 0.0
    return pstdev(prices) / fmean(prices) * 100


def classify_trend(slope_percent: float) -> TrendDirection:
    if slope_percent > TREND_THRESHOLD_PERCENT:
        return "up"
    if slope_percent < -TREND_THRESHOLD_PERCENT:
        return "down"
    return "stable"


def classify_strength(slope_percent: float) -> TrendStrength:
    magnitude = abs(slope_percent)
    if magnitude > 2:
        return "very_strong"
    if magnitude > 1:
        return "strong"
    if magnitude > 0.3:
        return "moderate"
    return "weak"


def classify_momentum(value: float) -> MomentumSignal:
    if value > MOMENTUM_THRESHOLD:
        return "bullish"
    if value < -MOMENTUM_THRESHOLD:
        return "bearish"
    return "neutral"


def classify_volatility(percent: float) -> VolatilityLevel:
    if percent < 1:
        return "low"
    if percent < 3:
        return "medium"
    if percent < 8:
        return "high"
    return "extreme"


def support_resistance(prices: Sequence[float], window: int = 20) -> tuple[float, float]:
    """Min and max over the trailing window."""
    recent = prices[-window:]
    return min(recent), max(recent)
