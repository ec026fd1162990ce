"""ConfidenceAnalyzer: Trust scoring for a single price sample.

The verdict is a pure function of (PriceSample, FeedConfig). It does not look
at other sources or at history; that is the job of the cross-validator and
the quality report.

Scoring:
    1. Pick a level from joint thresholds on confidence width (% of price)
       and staleness, each level mapping to a base score
    2. Apply cumulative staleness penalties beyond 30s/60s/120s
    3. Boost high-trust sources by 10%
    4. Clamp to [0, 100] and derive the recommendation

.. code-block:: python

    >>> sample = PriceSample("SOL", 100.0, 0.05, 1000.0, "pyth", staleness=2.0)
    >>> verdict = analyze_confidence(sample, build_feed_config("SOL"))
    >>> verdict.level, verdict.score, verdict.recommendation
    ('very_high', 95.0, 'use')
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .adapters.base import PriceSample
from .FeedConfig import FeedConfig

ConfidenceLevel = Literal["very_high", "high", "medium", "low", "very_low"]
StalenessLevel = Literal["fresh", "acceptable", "stale", "expired"]
Recommendation = Literal["use", "use_with_caution", "fallback", "reject"]

# (level, max confidence %, max staleness seconds, base score)
LEVEL_THRESHOLDS: tuple[tuple[ConfidenceLevel, float, float, float], ...] = (
    ("very_high", 0.1, 10, 95),
    ("high", 0.5, 30, 85),
    ("medium", 1.0, 60, 70),
    ("low", 2.0, 120, 50),
)
VERY_LOW_SCORE = 25.0

# (staleness above, multiplier), applied cumulatively
STALENESS_PENALTIES: tuple[tuple[float, float], ...] = (
    (30, 0.9),
    (60, 0.8),
    (120, 0.6),
)
HIGH_TRUST_BOOST = 1.1

FRESH_SECONDS = 10
HIGH_UNCERTAINTY_PERCENT = 1.0
EMA_DEVIATION_PERCENT = 5.0

STALE_DATA = "STALE_DATA"
HIGH_UNCERTAINTY = "HIGH_UNCERTAINTY"
PRICE_DEVIATION = "PRICE_DEVIATION"
NON_TRADING_STATUS = "NON_TRADING_STATUS"


@dataclass(frozen=True)
class ConfidenceVerdict:
    """Trust verdict for one sample.

    :ivar level: Confidence level bucket.
    :ivar score: Numeric score in [0, 100].
    :ivar flags: Quality flags raised for the sample.
    :ivar recommendation: Usage recommendation derived from the score.
    :ivar confidence_percent: Confidence width as percent of price.
    :ivar staleness: Sample age in seconds.
    :ivar deviation_from_ema: Percent deviation from the provider EMA (0 if
        the provider exposes none).
    :ivar notes: Human-readable advice, one per raised flag.
    """

    level: ConfidenceLevel
    score: float
    flags: tuple[str, ...]
    recommendation: Recommendation
    confidence_percent: float
    staleness: float
    deviation_from_ema: float = 0.0
    notes: tuple[str, ...] = ()


def classify_staleness(staleness: float, max_staleness: float) -> StalenessLevel:
    """Bucket a sample age against the feed's max staleness."""
    if staleness < FRESH_SECONDS:
        return "fresh"
    if staleness < max_staleness:
        return "acceptable"
    if staleness < max_staleness * 2:
        return "stale"
    return "expired"


def deviation_from_ema(sample: PriceSample) -> float:
    """Percent deviation of the sample price from its provider EMA."""
    if not sample.ema_price:
        return 0.0
    return abs(sample.price - sample.ema_price) / sample.ema_price * 100


def recommendation_for_score(score: float) -> Recommendation:
    if score >= 90:
        return "use"
    if score >= 75:
        return "use_with_caution"
    if score >= 60:
        return "fallback"
    return "reject"


def _level_and_base(
    confidence_percent: float, staleness: float
) -> tuple[ConfidenceLevel, float]:
    for level, max_conf, max_age, base in LEVEL_THRESHOLDS:
        if confidence_percent < max_conf and staleness < max_age:
            return level, float(base)
    return "very_low", VERY_LOW_SCORE


def analyze_confidence(sample: PriceSample, config: FeedConfig) -> ConfidenceVerdict:
    """Score a sample for trust.

    :param sample: The sample to score.
    :param config: Feed configuration of the sample's symbol.
    :returns: ConfidenceVerdict with a score in [0, 100].
    """
    confidence_percent = sample.confidence_percent
    staleness = sample.staleness

    level, score = _level_and_base(confidence_percent, staleness)

    for threshold, multiplier in STALENESS_PENALTIES:
        if staleness > threshold:
            score *= multiplier

    if sample.high_trust or sample.source in config.high_trust_sources:
        score *= HIGH_TRUST_BOOST

    score = min(100.0, max(0.0, score))

    flags: list[str] = []
    notes: list[str] = []
    ema_deviation = deviation_from_ema(sample)

    if staleness > config.max_staleness:
        flags.append(STALE_DATA)
        notes.append("Consider using cached data or alternative sources")
    if confidence_percent > HIGH_UNCERTAINTY_PERCENT:
        flags.append(HIGH_UNCERTAINTY)
        notes.append("Price has high uncertainty - use with caution")
    if ema_deviation > EMA_DEVIATION_PERCENT:
        flags.append(PRICE_DEVIATION)
        notes.append("Price significantly deviates from EMA - possible volatility")
    if sample.trading_status is not None and sample.trading_status != "trading":
        flags.append(NON_TRADING_STATUS)
        notes.append(
            f"Market status is {sample.trading_status} - trading may be restricted"
        )

    return ConfidenceVerdict(
        level=level,
        score=score,
        flags=tuple(flags),
        recommendation=recommendation_for_score(score),
        confidence_percent=confidence_percent,
        staleness=staleness,
        deviation_from_ema=ema_deviation,
        notes=tuple(notes),
    )
