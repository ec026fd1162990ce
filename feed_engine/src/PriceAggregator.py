"""PriceAggregator: Trust-weighted consensus across price samples.

Each sample is weighted by its confidence score and staleness:

    weight = max(0.1, score / 100 * staleness_penalty)

where staleness_penalty is 1.0 under 60s, 0.8 under 120s, 0.6 under 300s
and 0.3 beyond. The aggregated price always lies within the min/max of the
contributing prices.

Methods:
    - weighted_average: sum(price * weight) / sum(weight) (default)
    - median: median with outlier exclusion against the initial median
    - highest_confidence: the single sample with the largest weight

.. code-block:: python

    >>> aggregator = PriceAggregator()
    >>> result = aggregator.aggregate([(sample_a, verdict_a), (sample_b, verdict_b)])
    >>> result.success
    True
    >>> result.metadata["sources"]
    ['pyth', 'coinbase']
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from statistics import median as _median
from typing import TYPE_CHECKING, Literal, TypedDict

from .adapters.base import PriceSample
from .ConfidenceAnalyzer import ConfidenceVerdict

if TYPE_CHECKING:
    from .CrossValidator import CrossValidationResult
    from .errors import FeedWarning

AggregationMethod = Literal["weighted_average", "median", "highest_confidence"]
AGGREGATION_METHODS: tuple[str, ...] = ("weighted_average", "median", "highest_confidence")

MIN_WEIGHT = 0.1

# (staleness below, penalty)
STALENESS_PENALTY_BUCKETS: tuple[tuple[float, float], ...] = (
    (60, 1.0),
    (120, 0.8),
    (300, 0.6),
)
MAX_STALENESS_PENALTY = 0.3


def staleness_penalty(staleness: float) -> float:
    """Weight multiplier for a sample of the given age."""
    for limit, penalty in STALENESS_PENALTY_BUCKETS:
        if staleness < limit:
            return penalty
    return MAX_STALENESS_PENALTY


def source_weight(score: float, staleness: float) -> float:
    """Aggregation weight for a sample with the given confidence score and age."""
    return max(MIN_WEIGHT, score / 100 * staleness_penalty(staleness))


@dataclass(frozen=True)
class SourceContribution:
    """A sample that contributed to an aggregated price.

    :ivar sample: The contributing sample.
    :ivar weight: Aggregation weight.
    :ivar score: Confidence score the weight was derived from.
    """

    sample: PriceSample
    weight: float
    score: float

    @property
    def source(self) -> str:
        return self.sample.source


class AggregationError(TypedDict, total=False):
    """Error information when aggregation fails.

    :ivar error: Error type identifier.
    :ivar available: Number of samples available.
    :ivar dropped: Dict of sources dropped as outliers.
    """

    error: str
    available: int
    dropped: dict[str, float]


class AggregationMetadata(TypedDict, total=False):
    """Metadata about a successful aggregation.

    :ivar sources: Sources used in the final calculation.
    :ivar dropped: Dict of sources dropped as outliers (median only).
    :ivar count: Number of sources used.
    :ivar initial_median: Median before outlier filtering (median only).
    """

    sources: list[str]
    dropped: dict[str, float]
    count: int
    initial_median: float


@dataclass
class AggregationResult:
    """Result of price aggregation.

    :ivar price: Aggregated price, or None if aggregation failed.
    :ivar confidence: Weighted confidence width.
    :ivar score: Weighted confidence score.
    :ivar contributions: Samples used, with their weights.
    :ivar metadata: Additional information about the aggregation.
    """

    price: float | None
    metadata: AggregationMetadata | AggregationError
    confidence: float = 0.0
    score: float = 0.0
    contributions: tuple[SourceContribution, ...] = ()

    @property
    def success(self) -> bool:
        """Check if aggregation was successful."""
        return self.price is not None

    @property
    def error(self) -> str | None:
        """Get error type if aggregation failed."""
        if self.price is None:
            return self.metadata.get("error")
        return None

    @property
    def lead(self) -> SourceContribution | None:
        """Contribution with the largest weight (first on ties)."""
        if not self.contributions:
            return None
        return max(self.contributions, key=lambda c: c.weight)


@dataclass(frozen=True)
class AggregatedPrice:
    """The price served for a symbol, with its provenance and quality.

    :ivar symbol: Token symbol.
    :ivar price: Served price.
    :ivar confidence: Weighted confidence width (same unit as price).
    :ivar confidence_score: Weighted confidence score (0-100).
    :ivar contributions: Contributing samples with their weights.
    :ivar method: "primary", "fallback" or an aggregation method.
    :ivar staleness: Minimum staleness across contributing samples.
    :ivar cross_validated: True if cross-validation ran with no breach.
    :ivar source: Source id of the lead sample.
    :ivar aggregated: True if the price was combined from several samples.
    :ivar timestamp: Capture time of the freshest contributing sample.
    :ivar fetched_at: When the price was produced.
    :ivar quality_score: Overall quality score of the lead sample.
    :ivar max_deviation: Largest cross-validation deviation in percent.
    :ivar validation: Cross-validation results.
    :ivar warnings: Human-readable quality warnings.
    :ivar actions: Suggested actions matching the warnings.
    :ivar alerts: Non-fatal FeedWarning instances.
    """

    symbol: str
    price: float
    confidence: float
    confidence_score: float
    contributions: tuple[SourceContribution, ...]
    method: str
    staleness: float
    cross_validated: bool
    source: str
    aggregated: bool
    timestamp: float
    fetched_at: float
    quality_score: float | None = None
    max_deviation: float = 0.0
    validation: tuple[CrossValidationResult, ...] = ()
    warnings: tuple[str, ...] = ()
    actions: tuple[str, ...] = ()
    alerts: tuple[FeedWarning, ...] = ()

    @property
    def sources(self) -> list[str]:
        return [c.source for c in self.contributions]

    @property
    def confidence_percent(self) -> float:
        return self.confidence / self.price * 100

    def age(self, now: float) -> float:
        """Staleness at ``now``, including time spent in the cache."""
        return self.staleness + max(0.0, now - self.fetched_at)


class PriceAggregator:
    """Combines several scored samples into one price.

    :ivar method: Aggregation method.
    :ivar max_deviation_percent: Outlier threshold for the median method.
    :ivar min_sources: Minimum samples required.

    .. code-block:: python

        >>> agg = PriceAggregator(method="median", max_deviation_percent=5.0)
        >>> result = agg.aggregate(scored)
        >>> result.metadata["dropped"]
        {'rogue': 200.0}
    """

    def __init__(
        self,
        method: AggregationMethod = "weighted_average",
        max_deviation_percent: float = 5.0,
        min_sources: int = 1,
    ) -> None:
        """Initialize the aggregator.

        :param method: One of weighted_average, median, highest_confidence.
        :param max_deviation_percent: Maximum deviation from the initial
            median before a sample is dropped as an outlier (median only).
        :param min_sources: Minimum number of samples required.
        :raises ValueError: If parameters are invalid.
        """
        if method not in AGGREGATION_METHODS:
            raise ValueError(f"Unknown aggregation method {method!r}")
        if min_sources < 1:
            raise ValueError("min_sources must be at least 1")
        if max_deviation_percent <= 0:
            raise ValueError("max_deviation_percent must be positive")

        self.method = method
        self.max_deviation_percent = max_deviation_percent
        self.min_sources = min_sources

    @staticmethod
    def weigh(
        scored: Sequence[tuple[PriceSample, ConfidenceVerdict]],
    ) -> list[SourceContribution]:
        """Attach aggregation weights to scored samples."""
        return [
            SourceContribution(
                sample=sample,
                weight=source_weight(verdict.score, sample.staleness),
                score=verdict.score,
            )
            for sample, verdict in scored
        ]

    def aggregate(
        self,
        scored: Sequence[tuple[PriceSample, ConfidenceVerdict]],
    ) -> AggregationResult:
        """Aggregate scored samples into a single price.

        :param scored: (sample, verdict) pairs, one per source.
        :returns: AggregationResult with price and metadata, or None price
            with error info.
        """
        contributions = self.weigh(scored)

        if len(contributions) < self.min_sources:
            return AggregationResult(
                price=None,
                metadata={
                    "error": "insufficient_sources",
                    "available": len(contributions),
                },
            )

        if self.method == "median":
            return self._median(contributions)
        if self.method == "highest_confidence":
            lead = max(contributions, key=lambda c: c.weight)
            return self._result(lead.sample.price, [lead])

        total = sum(c.weight for c in contributions)
        price = sum(c.sample.price * c.weight for c in contributions) / total
        return self._result(price, contributions)

    def _median(self, contributions: list[SourceContribution]) -> AggregationResult:
        initial_median = _median(c.sample.price for c in contributions)

        filtered: list[SourceContribution] = []
        dropped: dict[str, float] = {}

        for contribution in contributions:
            price = contribution.sample.price
            deviation = abs(price - initial_median) / initial_median * 100
            if deviation <= self.max_deviation_percent:
                filtered.append(contribution)
            else:
                dropped[contribution.source] = price

        if len(filtered) < self.min_sources:
            return AggregationResult(
                price=None,
                metadata={
                    "error": "too_many_outliers",
                    "dropped": dropped,
                },
            )

        result = self._result(_median(c.sample.price for c in filtered), filtered)
        result.metadata["dropped"] = dropped
        result.metadata["initial_median"] = initial_median
        return result

    @staticmethod
    def _result(
        price: float, contributions: list[SourceContribution]
    ) -> AggregationResult:
        total = sum(c.weight for c in contributions)
        prices = [c.sample.price for c in contributions]
        # Float summation can drift past the bounds when all prices are equal
        price = min(max(price, min(prices)), max(prices))
        return AggregationResult(
            price=price,
            confidence=sum(c.sample.confidence * c.weight for c in contributions) / total,
            score=sum(c.score * c.weight for c in contributions) / total,
            contributions=tuple(contributions),
            metadata={
                "sources": [c.source for c in contributions],
                "count": len(contributions),
            },
        )
