"""FetchCoordinator: Bounded, timed and retried adapter calls.

Every adapter call goes through a global semaphore (to protect provider rate
limits) and asyncio.wait_for (so a hung provider counts as a timeout).
Failures are normalized to AdapterError subclasses so that the feed manager
only has one error family to reason about.

Architecture:
    - fetch_once(): one bounded, timed call to one source
    - fetch_with_retry(): repeated calls with linear backoff (delay * attempt);
      AdapterConfigError is never retried
    - fetch_all(): concurrent sweep of several sources for one symbol
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from .adapters.base import (
    AdapterConfigError,
    AdapterError,
    AdapterTimeout,
    BaseAdapter,
    PriceSample,
)

logger = logging.getLogger(__name__)


class FetchCoordinator:
    """Coordinates adapter calls for the feed manager.

    :ivar adapters: Dict mapping source names to adapter instances.
    :ivar fetch_timeout: Timeout for a single adapter call in seconds.
    :ivar max_concurrent: Maximum concurrent outbound adapter calls.
    """

    def __init__(
        self,
        adapters: dict[str, BaseAdapter],
        fetch_timeout: float = 10.0,
        max_concurrent: int = 8,
    ) -> None:
        """Initialize the fetch coordinator.

        :param adapters: Dict mapping source names to adapter instances.
        :param fetch_timeout: Timeout for fetch requests (default: 10.0).
        :param max_concurrent: Global bound on in-flight adapter calls.
        :raises ValueError: If limits are not positive.
        """
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.adapters = adapters
        self.fetch_timeout = fetch_timeout
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def fetch_once(self, source: str, symbol: str) -> PriceSample:
        """Fetch one sample from one source.

        :param source: Source name.
        :param symbol: Token symbol.
        :returns: PriceSample from the adapter.
        :raises AdapterConfigError: If the source is unknown or has no feed.
        :raises AdapterTimeout: If the call exceeded fetch_timeout.
        :raises AdapterError: On any other failure.
        """
        adapter = self.adapters.get(source)
        if adapter is None:
            raise AdapterConfigError(f"[{source}] Source not configured")

        async with self._semaphore:
            try:
                return await asyncio.wait_for(
                    adapter.fetch(symbol), timeout=self.fetch_timeout
                )
            except asyncio.TimeoutError as e:
                raise AdapterTimeout(
                    f"[{source}] Timeout fetching {symbol} after {self.fetch_timeout}s"
                ) from e
            except AdapterError:
                raise
            except Exception as e:
                # Malformed provider data surfaces as ValueError/KeyError etc.
                raise AdapterError(f"[{source}] Error fetching {symbol}: {e}") from e

    async def fetch_with_retry(
        self,
        source: str,
        symbol: str,
        attempts: int,
        delay: float,
    ) -> PriceSample:
        """Fetch with retries and linear backoff between attempts.

        :param attempts: Maximum number of attempts (at least 1).
        :param delay: Base delay; attempt N waits delay * N before retrying.
        :returns: The first successful sample.
        :raises AdapterConfigError: Immediately, without retrying.
        :raises AdapterError: The last error once attempts are exhausted.
        """
        last_error: AdapterError | None = None
        for attempt in range(1, max(1, attempts) + 1):
            try:
                return await self.fetch_once(source, symbol)
            except AdapterConfigError:
                raise
            except AdapterError as e:
                last_error = e
                if attempt < attempts:
                    backoff = delay * attempt
                    logger.warning(
                        f"[{source}] Attempt {attempt}/{attempts} for {symbol} "
                        f"failed: {e}; retrying in {backoff:.1f}s"
                    )
                    await asyncio.sleep(backoff)
                else:
                    logger.warning(
                        f"[{source}] Attempt {attempt}/{attempts} for {symbol} failed: {e}"
                    )

        assert last_error is not None
        raise last_error

    async def fetch_all(
        self,
        sources: Iterable[str],
        symbol: str,
    ) -> dict[str, PriceSample | AdapterError]:
        """Fetch one sample from every source concurrently.

        :param sources: Source names to query.
        :param symbol: Token symbol.
        :returns: Dict mapping source name to its sample or its error.
        """
        sources = list(dict.fromkeys(sources))
        if not sources:
            return {}

        results = await asyncio.gather(
            *(self.fetch_once(source, symbol) for source in sources),
            return_exceptions=True,
        )

        outcome: dict[str, PriceSample | AdapterError] = {}
        for source, result in zip(sources, results, strict=True):
            if isinstance(result, AdapterError | PriceSample):
                outcome[source] = result
            elif isinstance(result, BaseException):
                # CancelledError and friends are not provider failures
                raise result
        return outcome
