"""CrossValidator: Pairwise deviation between a primary sample and secondaries.

Deviation is measured relative to the primary price:

    deviation = |primary - other| / primary * 100

A pair is within threshold iff deviation <= threshold (a deviation exactly
at the threshold counts as within). The validator never rejects a sample;
whether a breach disqualifies the primary is a policy of the feed manager.

.. code-block:: python

    >>> validator = CrossValidator(threshold_percent=2.0)
    >>> report = validator.validate(primary, [secondary])
    >>> round(report.max_deviation, 2)
    4.76
    >>> report.all_within_threshold
    False
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass

from .adapters.base import PriceSample


def percent_deviation(reference: float, other: float) -> float:
    """Percent deviation of ``other`` relative to ``reference``."""
    return abs(reference - other) / reference * 100


@dataclass(frozen=True)
class CrossValidationResult:
    """Comparison of one secondary sample against the primary.

    :ivar primary_source: Source id of the primary sample.
    :ivar other_source: Source id of the compared sample.
    :ivar primary_price: Primary price.
    :ivar other_price: Compared price.
    :ivar deviation: Percent deviation relative to the primary price.
    :ivar within_threshold: True iff deviation <= threshold.
    :ivar timestamp: When the comparison was made.
    """

    primary_source: str
    other_source: str
    primary_price: float
    other_price: float
    deviation: float
    within_threshold: bool
    timestamp: float


@dataclass(frozen=True)
class CrossValidationReport:
    """Result set of one validation round.

    :ivar results: One result per secondary sample, in input order.
    :ivar max_deviation: Largest deviation in the round (0 if empty).
    :ivar threshold: Threshold the round was evaluated against.
    """

    results: tuple[CrossValidationResult, ...]
    max_deviation: float
    threshold: float

    @property
    def all_within_threshold(self) -> bool:
        return all(r.within_threshold for r in self.results)

    @property
    def breaches(self) -> tuple[CrossValidationResult, ...]:
        """Results whose deviation exceeds the threshold."""
        return tuple(r for r in self.results if not r.within_threshold)


class CrossValidator:
    """Compares samples from independent sources for the same symbol.

    :ivar threshold_percent: Maximum deviation considered consistent.
    """

    def __init__(self, threshold_percent: float) -> None:
        """Initialize the validator.

        :param threshold_percent: Deviation threshold in percent.
        :raises ValueError: If the threshold is not positive.
        """
        if threshold_percent <= 0:
            raise ValueError("threshold_percent must be positive")
        self.threshold_percent = threshold_percent

    def compare(
        self, primary: PriceSample, other: PriceSample, *, now: float | None = None
    ) -> CrossValidationResult:
        """Compare one secondary sample against the primary."""
        deviation = percent_deviation(primary.price, other.price)
        return CrossValidationResult(
            primary_source=primary.source,
            other_source=other.source,
            primary_price=primary.price,
            other_price=other.price,
            deviation=deviation,
            within_threshold=deviation <= self.threshold_percent,
            timestamp=time.time() if now is None else now,
        )

    def validate(
        self,
        primary: PriceSample,
        others: Iterable[PriceSample],
        *,
        now: float | None = None,
    ) -> CrossValidationReport:
        """Compare every secondary sample against the primary.

        Samples for a different symbol or from the primary's own source are
        ignored.

        :param primary: The accepted sample.
        :param others: Secondary samples.
        :returns: CrossValidationReport with all results and the max deviation.
        """
        results = tuple(
            self.compare(primary, other, now=now)
            for other in others
            if other.symbol == primary.symbol and other.source != primary.source
        )
        max_deviation = max((r.deviation for r in results), default=0.0)
        return CrossValidationReport(
            results=results,
            max_deviation=max_deviation,
            threshold=self.threshold_percent,
        )
