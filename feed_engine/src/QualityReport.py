"""QualityReport: Overall quality verdict for a served price.

Combines four analyses into one 0-100 score:

    ========================  ======  ==========================================
    Category                  Weight  Sub-score
    ========================  ======  ==========================================
    Confidence                40%     ConfidenceVerdict.score
    Staleness                 25%     fresh 100, acceptable 85, stale 60,
                                      expired 30
    Consistency               20%     stable 100, moderate 85, volatile 70,
                                      extreme 40
    Reliability               15%     share of the last 20 history points with
                                      staleness < 60s (100 with no history)
    ========================  ======  ==========================================

Reports are advisory. The feed manager caches them for a short TTL and never
persists them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Literal

from . import indicators
from .adapters.base import PriceSample
from .ConfidenceAnalyzer import (
    NON_TRADING_STATUS,
    ConfidenceVerdict,
    Recommendation,
    StalenessLevel,
    analyze_confidence,
    classify_staleness,
    deviation_from_ema,
)
from .CrossValidator import CrossValidationReport
from .FeedConfig import FeedConfig
from .HistoryTracker import HistoryTracker

logger = logging.getLogger(__name__)

Stability = Literal["stable", "moderate", "volatile", "extreme"]

CONFIDENCE_WEIGHT = 0.40
STALENESS_WEIGHT = 0.25
CONSISTENCY_WEIGHT = 0.20
RELIABILITY_WEIGHT = 0.15

STALENESS_SCORES: dict[str, float] = {
    "fresh": 100,
    "acceptable": 85,
    "stale": 60,
    "expired": 30,
}
STABILITY_SCORES: dict[str, float] = {
    "stable": 100,
    "moderate": 85,
    "volatile": 70,
    "extreme": 40,
}

VOLATILITY_WINDOW = 10
MIN_VOLATILITY_POINTS = 3
RELIABILITY_WINDOW = 20
RELIABLE_STALENESS_SECONDS = 60

STALENESS_ADVICE: dict[str, str] = {
    "fresh": "Price data is very fresh - safe to use",
    "acceptable": "Price data is acceptable for most use cases",
    "stale": "Price data is stale - consider using cached data or alternative sources",
    "expired": "Price data is too old - do not use for critical operations",
}


@dataclass(frozen=True)
class StalenessReport:
    seconds: float
    level: StalenessLevel
    recommendation: str


@dataclass(frozen=True)
class ConsistencyReport:
    """Short-window price consistency.

    :ivar deviation_from_ema: Percent deviation from the provider EMA.
    :ivar volatility: Volatility of the last 10 history points in percent
        (0 with fewer than 3 points).
    :ivar stability: Bucket of the volatility.
    """

    deviation_from_ema: float
    volatility: float
    stability: Stability


@dataclass(frozen=True)
class ReliabilityReport:
    source: str
    success_rate: float
    sample_size: int
    last_success: float


@dataclass(frozen=True)
class QualityReport:
    """Overall quality verdict for one symbol.

    :ivar overall_score: Weighted score, rounded to an integer in [0, 100].
    :ivar warnings: Human-readable problems found.
    :ivar actions: Suggested action for each warning, in the same order.
    """

    symbol: str
    overall_score: int
    confidence: ConfidenceVerdict
    staleness: StalenessReport
    consistency: ConsistencyReport
    reliability: ReliabilityReport
    recommendation: Recommendation
    warnings: tuple[str, ...]
    actions: tuple[str, ...]
    generated_at: float
    cross_validation: CrossValidationReport | None = None


def classify_stability(volatility: float) -> Stability:
    if volatility < 1:
        return "stable"
    if volatility < 3:
        return "moderate"
    if volatility < 8:
        return "volatile"
    return "extreme"


def overall_score(
    confidence: ConfidenceVerdict,
    staleness: StalenessReport,
    consistency: ConsistencyReport,
    reliability: ReliabilityReport,
) -> int:
    score = (
        confidence.score * CONFIDENCE_WEIGHT
        + STALENESS_SCORES[staleness.level] * STALENESS_WEIGHT
        + STABILITY_SCORES[consistency.stability] * CONSISTENCY_WEIGHT
        + min(reliability.success_rate, 100) * RELIABILITY_WEIGHT
    )
    return round(score)


def recommend(
    score: float, confidence: ConfidenceVerdict, staleness: StalenessReport
) -> Recommendation:
    if score >= 90 and confidence.level == "very_high":
        return "use"
    if score >= 75 and staleness.level != "expired":
        return "use_with_caution"
    if score >= 60 or staleness.level == "stale":
        return "fallback"
    return "reject"


class QualityReportGenerator:
    """Builds quality reports from a sample, its feed config and history.

    :ivar history: History tracker used for consistency and reliability.
    """

    def __init__(self, history: HistoryTracker) -> None:
        self.history = history

    def analyze_staleness(self, sample: PriceSample, config: FeedConfig) -> StalenessReport:
        level = classify_staleness(sample.staleness, config.max_staleness)
        return StalenessReport(
            seconds=sample.staleness,
            level=level,
            recommendation=STALENESS_ADVICE[level],
        )

    def analyze_consistency(self, sample: PriceSample) -> ConsistencyReport:
        recent = self.history.get_prices(sample.symbol, last=VOLATILITY_WINDOW)
        volatility = (
            indicators.volatility_percent(recent)
            if len(recent) >= MIN_VOLATILITY_POINTS
            else 0.0
        )
        return ConsistencyReport(
            deviation_from_ema=deviation_from_ema(sample),
            volatility=volatility,
            stability=classify_stability(volatility),
        )

    def analyze_reliability(self, sample: PriceSample) -> ReliabilityReport:
        recent = self.history.get_history(sample.symbol)[-RELIABILITY_WINDOW:]
        if recent:
            fresh = sum(1 for p in recent if p.staleness < RELIABLE_STALENESS_SECONDS)
            success_rate = fresh / len(recent) * 100
        else:
            success_rate = 100.0
        return ReliabilityReport(
            source=sample.source,
            success_rate=success_rate,
            sample_size=len(recent),
            last_success=sample.timestamp,
        )

    def generate(
        self,
        sample: PriceSample,
        config: FeedConfig,
        cross_validation: CrossValidationReport | None = None,
    ) -> QualityReport:
        """Generate a report for a sample.

        :param sample: The sample being served (the lead sample for
            aggregated prices).
        :param config: Feed configuration of the symbol.
        :param cross_validation: Optional cross-validation round for the sample.
        :returns: QualityReport.
        """
        confidence = analyze_confidence(sample, config)
        staleness = self.analyze_staleness(sample, config)
        consistency = self.analyze_consistency(sample)
        reliability = self.analyze_reliability(sample)

        score = overall_score(confidence, staleness, consistency, reliability)
        warnings, actions = self._warnings_and_actions(
            confidence, staleness, consistency, config, cross_validation
        )

        report = QualityReport(
            symbol=sample.symbol,
            overall_score=score,
            confidence=confidence,
            staleness=staleness,
            consistency=consistency,
            reliability=reliability,
            recommendation=recommend(score, confidence, staleness),
            warnings=tuple(warnings),
            actions=tuple(actions),
            generated_at=time.time(),
            cross_validation=cross_validation,
        )
        logger.debug(
            f"{sample.symbol}: quality {score} ({report.recommendation}, "
            f"confidence {confidence.level})"
        )
        return report

    @staticmethod
    def _warnings_and_actions(
        confidence: ConfidenceVerdict,
        staleness: StalenessReport,
        consistency: ConsistencyReport,
        config: FeedConfig,
        cross_validation: CrossValidationReport | None,
    ) -> tuple[list[str], list[str]]:
        warnings: list[str] = []
        actions: list[str] = []

        if staleness.level == "stale":
            warnings.append("Price data is stale")
            actions.append("Consider refreshing price data")
        elif staleness.level == "expired":
            warnings.append("Price data is expired")
            actions.append("Use fallback price source or cached data")

        if confidence.level in ("low", "very_low"):
            warnings.append("Low price confidence")
            actions.append("Increase slippage tolerance or delay transaction")
        elif confidence.score / 100 < config.confidence_threshold:
            warnings.append("Confidence below feed threshold")
            actions.append("Prefer a higher-confidence source for this feed")

        if consistency.deviation_from_ema > config.max_ema_deviation:
            warnings.append("Significant price deviation from EMA")
            actions.append("Verify price against alternative sources")

        if consistency.stability in ("volatile", "extreme"):
            warnings.append("High price volatility detected")
            actions.append("Consider using wider price ranges or delaying operations")

        if NON_TRADING_STATUS in confidence.flags:
            warnings.append("Market not in trading status")
            actions.append("Verify market status before executing trades")

        if cross_validation is not None and cross_validation.breaches:
            sources = ", ".join(r.other_source for r in cross_validation.breaches)
            warnings.append(
                f"Price deviates {cross_validation.max_deviation:.2f}% from {sources}"
            )
            actions.append("Compare sources before relying on this price")

        return warnings, actions
