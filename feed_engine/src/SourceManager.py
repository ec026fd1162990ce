"""SourceManager: Per-source health tracking with exponential backoff.

When a source fails (provider error or timeout), it enters a backoff period.
The backoff duration doubles with each consecutive failure, up to a maximum
(default 5 minutes). A successful fetch resets the counter.

The feed manager asks for the fallback chain through order_sources(), which
skips sources in backoff unless the whole chain is backing off, so a symbol
is never left without anything to try.

.. code-block:: python

    >>> manager = SourceManager(["pyth", "switchboard", "coingecko"])
    >>> manager.record_failure("pyth", "timeout")
    5.0
    >>> manager.order_sources(["pyth", "switchboard", "coingecko"])
    ['switchboard', 'coingecko']
    >>> manager.record_success("pyth")
    >>> manager.get_source_status("pyth").consecutive_failures
    0
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class SourceStatus:
    """Tracks the health of a single source.

    :ivar consecutive_failures: Number of consecutive failures.
    :ivar backoff_until: Unix timestamp when backoff period ends.
    :ivar total_failures: Total failures since tracking began.
    :ivar total_successes: Total successes since tracking began.
    :ivar last_error: Message of the most recent failure.
    :ivar last_success: Unix timestamp of the most recent success.
    """

    consecutive_failures: int = 0
    backoff_until: float = 0.0
    total_failures: int = 0
    total_successes: int = 0
    last_error: str | None = None
    last_success: float | None = None

    @property
    def success_rate(self) -> float:
        """Percentage of successful fetches (100 before any attempt)."""
        attempts = self.total_successes + self.total_failures
        if attempts == 0:
            return 100.0
        return self.total_successes / attempts * 100


class SourceManager:
    """Manages source health with exponential backoff.

    Backoff schedule:
        - First failure: 5 second backoff
        - Second failure: 10 second backoff
        - Third failure: 20 second backoff
        - ... up to max_backoff_seconds (default 300 = 5 minutes)

    Sources are shared across symbols: a provider that is down for one
    symbol is usually down for all of them.

    :ivar sources: List of tracked source names.
    :ivar base_backoff_seconds: Initial backoff duration after first failure.
    :ivar max_backoff_seconds: Maximum backoff duration.
    """

    DEFAULT_BASE_BACKOFF_SECONDS = 5
    DEFAULT_MAX_BACKOFF_SECONDS = 300  # 5 minutes

    def __init__(
        self,
        sources: Iterable[str] = (),
        base_backoff_seconds: float = DEFAULT_BASE_BACKOFF_SECONDS,
        max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS,
    ) -> None:
        """Initialize the source manager.

        :param sources: Source names to track. Unknown sources are added on
            first use.
        :param base_backoff_seconds: Initial backoff duration after first failure.
        :param max_backoff_seconds: Maximum backoff duration (caps exponential growth).
        """
        self.sources: list[str] = []
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._status: dict[str, SourceStatus] = {}
        for source in sources:
            self.add_source(source)

    def record_failure(self, source: str, error: str | None = None) -> float:
        """Record a failure for a source and apply exponential backoff.

        :param source: Source name that failed.
        :param error: Optional error message kept for monitoring.
        :returns: The backoff duration in seconds.
        """
        self.add_source(source)

        status = self._status[source]
        status.consecutive_failures += 1
        status.total_failures += 1
        status.last_error = error

        # Exponential backoff: base * 2^(failures-1), capped at max
        backoff_seconds = min(
            self.base_backoff_seconds * (2 ** (status.consecutive_failures - 1)),
            self.max_backoff_seconds,
        )
        status.backoff_until = time.time() + backoff_seconds

        logger.debug(
            f"[{source}] Failure #{status.consecutive_failures}, "
            f"backoff {backoff_seconds:.1f}s"
        )
        return backoff_seconds

    def record_success(self, source: str) -> None:
        """Record a successful fetch, resetting the failure counter.

        :param source: Source name that succeeded.
        """
        self.add_source(source)

        status = self._status[source]
        if status.consecutive_failures:
            logger.info(
                f"[{source}] Recovered after {status.consecutive_failures} failures"
            )
        status.consecutive_failures = 0
        status.backoff_until = 0.0
        status.total_successes += 1
        status.last_success = time.time()

    def is_source_active(self, source: str) -> bool:
        """Check if a source is available (not in backoff).

        Sources that were never seen are active.
        """
        status = self._status.get(source)
        return status is None or time.time() >= status.backoff_until

    def get_active_sources(self) -> list[str]:
        """Get tracked sources that are not currently in backoff."""
        return [s for s in self.sources if self.is_source_active(s)]

    def order_sources(self, chain: Iterable[str]) -> list[str]:
        """Filter a fallback chain for the next attempt.

        Sources in backoff are skipped, unless every source in the chain is
        in backoff, in which case the full chain is returned.

        :param chain: Configured chain (primary first).
        :returns: Sources to try, in configured order.
        """
        chain = list(chain)
        active = [s for s in chain if self.is_source_active(s)]
        if not active:
            logger.debug(f"All sources in backoff, trying full chain: {chain}")
            return chain
        if len(active) < len(chain):
            skipped = [s for s in chain if s not in active]
            logger.debug(f"Skipping sources in backoff: {skipped}")
        return active

    def get_source_status(self, source: str) -> SourceStatus | None:
        """Get the status of a specific source.

        :returns: SourceStatus or None if source not tracked.
        """
        return self._status.get(source)

    def get_all_status(self) -> dict[str, SourceStatus]:
        """Get status of all sources."""
        return dict(self._status)

    def get_backoff_remaining(self, source: str) -> float:
        """Get remaining backoff time for a source in seconds (0 if none)."""
        if source not in self._status:
            return 0.0
        remaining = self._status[source].backoff_until - time.time()
        return max(0.0, remaining)

    def add_source(self, source: str) -> None:
        if source not in self.sources:
            self.sources.append(source)
        if source not in self._status:
            self._status[source] = SourceStatus()

    def reset_source(self, source: str) -> None:
        """Reset a source's status (clear backoff and failure count)."""
        if source in self._status:
            self._status[source] = SourceStatus()

    def reset_all(self) -> None:
        """Reset all sources to initial state."""
        self._status = {s: SourceStatus() for s in self.sources}
