"""Feed-level errors and non-fatal warnings.

Only NotConfigured and AllSourcesFailed propagate to callers of the feed
manager. FeedWarning subclasses are recorded on the returned price and
never raised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .PriceAggregator import AggregatedPrice


class FeedError(Exception):
    """Base exception for feed manager errors."""

    pass


class NotConfigured(FeedError):
    """Raised when no source in the chain knows the requested symbol.

    :ivar symbol: The symbol that was requested.
    """

    def __init__(self, symbol: str, sources: list[str] | tuple[str, ...] = ()):
        self.symbol = symbol
        self.sources = tuple(sources)
        super().__init__(f"No source configured for {symbol} (tried {list(sources)})")


class AllSourcesFailed(FeedError):
    """Raised when primary, fallback and aggregation attempts are exhausted.

    :ivar symbol: The symbol that was requested.
    :ivar errors: (source, exception) pairs in the order they were attempted.
    :ivar last_known: Last successfully served price, if any, so callers can
        degrade to it with an explicit staleness indicator.
    """

    def __init__(
        self,
        symbol: str,
        errors: list[tuple[str, BaseException]],
        last_known: AggregatedPrice | None = None,
    ):
        self.symbol = symbol
        self.errors = list(errors)
        self.last_known = last_known
        summary = ", ".join(f"{source}: {err}" for source, err in self.errors) or "no attempts"
        super().__init__(f"All sources failed for {symbol} ({summary})")


class FeedWarning(Warning):
    """Base class for non-fatal conditions attached to an AggregatedPrice."""

    pass


class StaleDataWarning(FeedWarning):
    """The served sample is older than the feed's max staleness.

    :ivar staleness: Sample age in seconds.
    :ivar max_staleness: Configured limit in seconds.
    """

    def __init__(self, source: str, staleness: float, max_staleness: float):
        self.source = source
        self.staleness = staleness
        self.max_staleness = max_staleness
        super().__init__(
            f"[{source}] Stale data: {staleness:.1f}s exceeds {max_staleness:.1f}s"
        )


class CrossValidationDeviation(FeedWarning):
    """A secondary source deviates from the primary beyond the threshold.

    :ivar primary_source: Source id of the accepted sample.
    :ivar other_source: Source id of the deviating sample.
    :ivar deviation: Percent deviation relative to the primary price.
    :ivar threshold: Configured deviation threshold in percent.
    """

    def __init__(
        self,
        primary_source: str,
        other_source: str,
        deviation: float,
        threshold: float,
    ):
        self.primary_source = primary_source
        self.other_source = other_source
        self.deviation = deviation
        self.threshold = threshold
        super().__init__(
            f"[{other_source}] Deviates {deviation:.2f}% from {primary_source} "
            f"(threshold {threshold:.2f}%)"
        )
