"""FeedManager: Main orchestrator for multi-source price feeds.

Each symbol moves through the states

    unknown -> fetching -> {healthy, degraded, failed}

re-entering ``fetching`` on every cache miss or forced refresh.

get_price(symbol) algorithm:
    1. Serve the cached price if it is younger than refresh_interval and its
       staleness (including time in cache) is below max_staleness
    2. Try the primary source up to retry_attempts times with linear backoff;
       on success optionally cross-validate against the other sources
    3. Otherwise try each fallback source in configured order
    4. If every discrete source failed and aggregation is enabled, sweep all
       sources concurrently and aggregate whatever succeeded
    5. On success score the result, set healthy (quality >= 80) or degraded,
       cache it, append it to history and re-arm the background refresh

Only NotConfigured and AllSourcesFailed reach the caller. Stale data and
cross-validation breaches are recorded on the result as non-fatal alerts.

Architecture:
    - One in-flight fetch task per symbol; concurrent callers await it
    - FetchCoordinator bounds outbound calls with a global semaphore
    - SourceManager tracks per-source health across symbols
    - Per-symbol asyncio.Lock guards cache writes and history appends
    - RefreshScheduler owns one cancellable refresh timer per tracked symbol
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any, Literal, TypedDict

from .adapters import (
    AdapterConfigError,
    AdapterError,
    BaseAdapter,
    PriceSample,
    get_adapter,
    get_available_adapters,
)
from .ConfidenceAnalyzer import analyze_confidence
from .CrossValidator import CrossValidationReport, CrossValidator
from .errors import (
    AllSourcesFailed,
    CrossValidationDeviation,
    FeedError,
    FeedWarning,
    NotConfigured,
    StaleDataWarning,
)
from .FeedConfig import DEFAULT_KEY, FeedConfig, build_feed_config, load_feed_configs, merge_feed_config
from .FetchCoordinator import FetchCoordinator
from .HistoryTracker import HistoryPoint, HistoryTracker
from .PriceAggregator import (
    AggregatedPrice,
    AggregationMethod,
    AggregationResult,
    PriceAggregator,
)
from .PriceCache import CacheKey, CachePolicy, PriceCache
from .QualityReport import QualityReport, QualityReportGenerator
from .RefreshScheduler import RefreshScheduler
from .SourceManager import SourceManager, SourceStatus

logger = logging.getLogger(__name__)

FeedState = Literal["unknown", "fetching", "healthy", "degraded", "failed"]

HEALTHY_QUALITY_SCORE = 80
HEALTHY_SYSTEM_PERCENT = 90
DEGRADED_SYSTEM_PERCENT = 70


@dataclass
class FeedStatus:
    """Monitoring state of one symbol.

    :ivar state: Current feed state.
    :ivar tracked: Whether background refresh is active.
    :ivar last_update: When the last successful price was produced.
    :ivar last_quality: Quality score of the last successful price.
    :ivar error_count: Total failed fetches.
    :ivar last_error: Message of the most recent failure.
    """

    symbol: str
    state: FeedState = "unknown"
    tracked: bool = False
    last_update: float | None = None
    last_price: float | None = None
    last_source: str | None = None
    last_quality: float | None = None
    error_count: int = 0
    last_error: str | None = None


class FeedManagerStats(TypedDict):
    """Aggregate request statistics.

    :ivar total_requests: get_price calls.
    :ivar cache_hits: Calls served from cache.
    :ivar cache_hit_rate: Percentage of calls served from cache.
    :ivar fetches: Fetches started (cache misses not coalesced).
    :ivar failures: Fetches that raised.
    :ivar average_latency_ms: Mean duration of fetches.
    :ivar uptime: Seconds since the manager was created.
    :ivar feeds: Number of symbols per state.
    """

    total_requests: int
    cache_hits: int
    cache_hit_rate: float
    fetches: int
    failures: int
    average_latency_ms: float
    uptime: float
    feeds: dict[str, int]


class SystemHealth(TypedDict):
    overall: Literal["healthy", "degraded", "critical"]
    percent_healthy: float
    active_feeds: int
    issues: list[str]


class FeedManager:
    """Service object serving trusted prices for many symbols.

    Construct once at startup, share by reference and ``await close()`` on
    shutdown.

    :ivar adapters: Dict mapping source names to adapter instances.
    :ivar history: Price history shared with the quality report generator.
    :ivar aggregation_method: Method used when aggregating several samples.
    """

    def __init__(
        self,
        configs: Mapping[str, FeedConfig] | None = None,
        adapters: Mapping[str, BaseAdapter] | None = None,
        api_keys: Mapping[str, str] | None = None,
        fetch_timeout: float = 10.0,
        max_concurrent: int = 8,
        aggregation_method: AggregationMethod = "weighted_average",
        history: HistoryTracker | None = None,
        quality_ttl: float = 5.0,
        source_manager: SourceManager | None = None,
        scheduler_backoff: float = 1.0,
        scheduler_max_backoff: float = 60.0,
    ) -> None:
        """Initialize the feed manager.

        :param configs: Feed configurations keyed by symbol. Must contain a
            ``DEFAULT`` entry; defaults to load_feed_configs().
        :param adapters: Adapter instances keyed by source name. When omitted,
            every registered adapter referenced by a configuration is created.
        :param api_keys: Dict mapping source names to API keys.
        :param fetch_timeout: Timeout for a single adapter call in seconds.
        :param max_concurrent: Global bound on concurrent adapter calls.
        :param aggregation_method: weighted_average, median or highest_confidence.
        :param history: History tracker (a fresh one by default).
        :param quality_ttl: Seconds a quality report stays cached.
        :param source_manager: Source health tracker (a fresh one by default).
        :param scheduler_backoff: First retry delay after a failed background refresh.
        :param scheduler_max_backoff: Maximum background retry delay.
        :raises ValueError: If configs lack DEFAULT or the aggregation method is unknown.
        """
        self._configs: dict[str, FeedConfig] = dict(configs or load_feed_configs())
        if DEFAULT_KEY not in self._configs:
            raise ValueError(f"Feed configs must contain a {DEFAULT_KEY!r} entry")

        # Fails early on an unknown method
        PriceAggregator(method=aggregation_method)
        self.aggregation_method = aggregation_method

        if adapters is None:
            adapters = self._create_adapters(api_keys or {})
        self.adapters: dict[str, BaseAdapter] = dict(adapters)

        self.history = history or HistoryTracker()
        self._sources = source_manager or SourceManager(self.adapters)
        self._coordinator = FetchCoordinator(
            self.adapters, fetch_timeout=fetch_timeout, max_concurrent=max_concurrent
        )
        self._reports = QualityReportGenerator(self.history)
        self._prices: PriceCache[AggregatedPrice] = PriceCache(CachePolicy(ttl=30.0))
        self._quality: PriceCache[QualityReport] = PriceCache(CachePolicy(ttl=quality_ttl))
        self._scheduler = RefreshScheduler(
            self._background_refresh,
            base_backoff=scheduler_backoff,
            max_backoff=scheduler_max_backoff,
        )

        self._status: dict[str, FeedStatus] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, asyncio.Task[AggregatedPrice]] = {}
        self._last_known: dict[str, AggregatedPrice] = {}
        self._tracked: set[str] = set()

        self._started_at = time.time()
        self._requests = 0
        self._cache_hits = 0
        self._fetches = 0
        self._failures = 0
        self._latency_total = 0.0

        logger.info(
            f"FeedManager initialized: sources={sorted(self.adapters)}, "
            f"symbols={sorted(k for k in self._configs if k != DEFAULT_KEY)}, "
            f"fetch_timeout={fetch_timeout}s, max_concurrent={max_concurrent}, "
            f"aggregation={aggregation_method}"
        )

    def _create_adapters(self, api_keys: Mapping[str, str]) -> dict[str, BaseAdapter]:
        available = get_available_adapters()
        wanted: list[str] = []
        for config in self._configs.values():
            for source in config.sources:
                if source not in wanted:
                    wanted.append(source)

        unknown = [s for s in wanted if s not in available]
        if unknown:
            logger.warning(f"No adapter registered for sources {unknown}; they will be skipped")
        return {
            source: get_adapter(source, api_key=api_keys.get(source))
            for source in wanted
            if source in available
        }

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_feed_config(self, symbol: str) -> FeedConfig:
        """Configuration for a symbol (the DEFAULT template if it has none)."""
        symbol = symbol.upper()
        config = self._configs.get(symbol)
        if config is None:
            config = build_feed_config(symbol, defaults=self._configs)
        return config

    def set_feed_config(self, symbol: str, **overrides: Any) -> FeedConfig:
        """Override fields of a symbol's configuration.

        Cached prices and reports of the symbol are dropped.

        :raises ValueError: On unknown fields or invalid values.
        """
        symbol = symbol.upper()
        config = merge_feed_config(self.get_feed_config(symbol), overrides)
        self._configs[symbol] = config
        self.clear_cache(symbol)
        logger.info(f"{symbol}: feed config updated ({', '.join(sorted(overrides))})")
        return config

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def _lock(self, symbol: str) -> asyncio.Lock:
        lock = self._locks.get(symbol)
        if lock is None:
            lock = self._locks[symbol] = asyncio.Lock()
        return lock

    def _feed_status(self, symbol: str) -> FeedStatus:
        status = self._status.get(symbol)
        if status is None:
            status = self._status[symbol] = FeedStatus(symbol=symbol)
        return status

    def _set_state(self, symbol: str, state: FeedState) -> None:
        status = self._feed_status(symbol)
        if status.state != state:
            level = logging.WARNING if state in ("degraded", "failed") else logging.DEBUG
            logger.log(level, f"{symbol}: {status.state} -> {state}")
            status.state = state

    async def get_price(self, symbol: str, force_refresh: bool = False) -> AggregatedPrice:
        """Get a trusted price for a symbol.

        Concurrent calls for the same symbol share one fetch.

        :param symbol: Token symbol.
        :param force_refresh: Skip the cache.
        :returns: AggregatedPrice. A cache hit returns the cached object.
        :raises NotConfigured: If no source knows the symbol.
        :raises AllSourcesFailed: If every source and aggregation failed.
        """
        symbol = symbol.upper()
        self._requests += 1
        config = self.get_feed_config(symbol)

        if not force_refresh:
            async with self._lock(symbol):
                cached = self._cached_price(symbol, config)
            if cached is not None:
                self._cache_hits += 1
                logger.debug(f"{symbol}: cache hit ({cached.price:.6f} from {cached.source})")
                return cached

        task = self._inflight.get(symbol)
        if task is None:
            task = asyncio.create_task(self._refresh(symbol, config), name=f"fetch-{symbol}")
            self._inflight[symbol] = task
            task.add_done_callback(lambda t, s=symbol: self._on_fetch_done(s, t))
        else:
            logger.debug(f"{symbol}: joining in-flight fetch")

        return await asyncio.shield(task)

    def _on_fetch_done(self, symbol: str, task: asyncio.Task) -> None:
        if self._inflight.get(symbol) is task:
            del self._inflight[symbol]
        # Mark the exception retrieved; every waiter sees it through shield()
        if not task.cancelled():
            task.exception()

    def _cached_price(self, symbol: str, config: FeedConfig) -> AggregatedPrice | None:
        entry = self._prices.get_entry(CacheKey(symbol))
        if entry is None:
            return None
        if entry.age(time.time()) >= config.refresh_interval:
            return None
        if entry.value.age(time.time()) >= config.max_staleness:
            logger.debug(f"{symbol}: cached price too stale, refetching")
            return None
        return entry.value

    async def get_prices(
        self, symbols: Iterable[str], force_refresh: bool = False
    ) -> dict[str, AggregatedPrice]:
        """Get prices for several symbols concurrently.

        Failures are logged and omitted from the result.
        """
        symbols = list(dict.fromkeys(s.upper() for s in symbols))
        results = await asyncio.gather(
            *(self.get_price(s, force_refresh) for s in symbols),
            return_exceptions=True,
        )

        prices: dict[str, AggregatedPrice] = {}
        for symbol, result in zip(symbols, results, strict=True):
            if isinstance(result, AggregatedPrice):
                prices[symbol] = result
            elif isinstance(result, Exception):
                logger.warning(f"{symbol}: omitted from batch: {result}")
            else:
                raise result
        return prices

    def get_last_known(self, symbol: str) -> AggregatedPrice | None:
        """Last successfully served price, regardless of age."""
        return self._last_known.get(symbol.upper())

    async def _refresh(self, symbol: str, config: FeedConfig) -> AggregatedPrice:
        self._fetches += 1
        self._set_state(symbol, "fetching")
        started = time.monotonic()
        try:
            price = await self._fetch(symbol, config)
        except FeedError as e:
            self._failures += 1
            status = self._feed_status(symbol)
            status.error_count += 1
            status.last_error = str(e)
            self._set_state(symbol, "failed" if isinstance(e, AllSourcesFailed) else "unknown")
            logger.error(f"{symbol}: {e}")
            raise
        finally:
            self._latency_total += time.monotonic() - started

        async with self._lock(symbol):
            self._prices.set(CacheKey(symbol), price, ttl=config.refresh_interval)
            self.history.add_point(
                symbol,
                HistoryPoint(
                    timestamp=price.timestamp,
                    price=price.price,
                    confidence=price.confidence,
                    source=price.source if not price.aggregated else price.method,
                    staleness=price.staleness,
                ),
            )
            self._last_known[symbol] = price

        status = self._feed_status(symbol)
        status.last_update = price.fetched_at
        status.last_price = price.price
        status.last_source = price.source
        status.last_quality = price.quality_score
        status.last_error = None
        self._set_state(symbol, self._classify(price, config))

        logger.info(
            f"{symbol}: {price.price:.6f} from {price.source} ({price.method}), "
            f"staleness {price.staleness:.1f}s, quality {price.quality_score}"
        )

        if symbol in self._tracked:
            self._scheduler.schedule(symbol, config.refresh_interval)
        return price

    @staticmethod
    def _classify(price: AggregatedPrice, config: FeedConfig) -> FeedState:
        if price.staleness >= config.max_staleness:
            return "degraded"
        if price.quality_score is None or price.quality_score < HEALTHY_QUALITY_SCORE:
            return "degraded"
        return "healthy"

    async def _fetch(self, symbol: str, config: FeedConfig) -> AggregatedPrice:
        errors: list[tuple[str, BaseException]] = []
        config_errors: set[str] = set()
        failed: set[str] = set()
        # Samples obtained this round, including ones fetched for cross-validation
        seen: dict[str, PriceSample] = {}
        rejected: set[str] = set()

        chain = self._sources.order_sources(config.sources)
        for source in config.sources:
            if source not in chain:
                failed.add(source)
                errors.append((source, AdapterError(f"[{source}] Skipped: in backoff")))
        for source in chain:
            if source in failed or source in config_errors:
                continue
            sample = seen.get(source)
            if sample is None:
                attempts = config.retry_attempts if source == config.primary_source else 1
                try:
                    sample = await self._coordinator.fetch_with_retry(
                        source, symbol, attempts, config.retry_delay
                    )
                except AdapterConfigError as e:
                    logger.info(f"[{source}] Not configured for {symbol}: {e}")
                    config_errors.add(source)
                    errors.append((source, e))
                    continue
                except AdapterError as e:
                    self._sources.record_failure(source, str(e))
                    failed.add(source)
                    errors.append((source, e))
                    logger.warning(f"[{source}] Failed for {symbol}: {e}")
                    continue
                self._sources.record_success(source)
                seen[source] = sample

            validation = None
            if config.enable_cross_validation:
                skip = config_errors | failed | {source}
                others = [s for s in config.sources if s not in skip]
                seen.update(await self._collect(symbol, others, seen, errors, config_errors, failed))
                validation = CrossValidator(config.price_deviation_threshold).validate(
                    sample, [seen[s] for s in others if s in seen]
                )
                if validation.breaches and config.reject_on_deviation:
                    rejected.add(source)
                    errors.append(
                        (
                            source,
                            CrossValidationDeviation(
                                source,
                                validation.breaches[0].other_source,
                                validation.max_deviation,
                                config.price_deviation_threshold,
                            ),
                        )
                    )
                    logger.warning(
                        f"[{source}] Rejected for {symbol}: deviates "
                        f"{validation.max_deviation:.2f}% from other sources"
                    )
                    continue

            method = "primary" if source == config.primary_source else "fallback"
            if method == "fallback":
                logger.warning(f"{symbol}: served by fallback source {source}")
            result = PriceAggregator().aggregate([(sample, analyze_confidence(sample, config))])
            return self._build(symbol, config, result, method, False, validation)

        # Sources in backoff are failures, not evidence the symbol is unknown
        if config_errors.issuperset(config.sources):
            raise NotConfigured(symbol, config.sources)

        if config.enable_aggregation:
            skip = config_errors | set(seen)
            seen.update(
                await self._collect(
                    symbol,
                    [s for s in config.sources if s not in skip],
                    seen,
                    errors,
                    config_errors,
                    failed,
                )
            )
            if seen:
                logger.warning(
                    f"{symbol}: no single source accepted, aggregating {sorted(seen)}"
                )
                return self._aggregate(symbol, config, list(seen.values()))

        raise AllSourcesFailed(symbol, errors, self._last_known.get(symbol))

    async def _collect(
        self,
        symbol: str,
        sources: list[str],
        seen: Mapping[str, PriceSample],
        errors: list[tuple[str, BaseException]],
        config_errors: set[str],
        failed: set[str],
    ) -> dict[str, PriceSample]:
        """Fetch sources not yet seen this round, recording outcomes."""
        pending = [s for s in sources if s not in seen and s not in failed]
        samples: dict[str, PriceSample] = {}
        for source, outcome in (await self._coordinator.fetch_all(pending, symbol)).items():
            if isinstance(outcome, PriceSample):
                self._sources.record_success(source)
                samples[source] = outcome
            elif isinstance(outcome, AdapterConfigError):
                config_errors.add(source)
                errors.append((source, outcome))
            else:
                self._sources.record_failure(source, str(outcome))
                failed.add(source)
                errors.append((source, outcome))
        return samples

    def _aggregate(
        self, symbol: str, config: FeedConfig, samples: list[PriceSample]
    ) -> AggregatedPrice:
        scored = [(sample, analyze_confidence(sample, config)) for sample in samples]
        aggregator = PriceAggregator(
            method=self.aggregation_method,
            max_deviation_percent=config.price_deviation_threshold,
        )
        result = aggregator.aggregate(scored)
        method = self.aggregation_method
        if not result.success:
            logger.warning(
                f"{symbol}: {method} aggregation failed ({result.error}), "
                f"using highest confidence sample"
            )
            method = "highest_confidence"
            result = PriceAggregator(method=method).aggregate(scored)

        validation = None
        if config.enable_cross_validation and len(samples) > 1:
            lead = result.lead.sample
            validation = CrossValidator(config.price_deviation_threshold).validate(
                lead, [s for s in samples if s is not lead]
            )
        return self._build(symbol, config, result, method, True, validation)

    def _build(
        self,
        symbol: str,
        config: FeedConfig,
        result: AggregationResult,
        method: str,
        aggregated: bool,
        validation: CrossValidationReport | None,
    ) -> AggregatedPrice:
        lead = result.lead.sample
        report = self._reports.generate(lead, config, validation)
        staleness = min(c.sample.staleness for c in result.contributions)

        alerts: list[FeedWarning] = []
        if staleness > config.max_staleness:
            alert = StaleDataWarning(lead.source, staleness, config.max_staleness)
            logger.warning(f"{symbol}: {alert}")
            alerts.append(alert)
        if validation is not None:
            for breach in validation.breaches:
                alert = CrossValidationDeviation(
                    breach.primary_source,
                    breach.other_source,
                    breach.deviation,
                    validation.threshold,
                )
                logger.warning(f"{symbol}: {alert}")
                alerts.append(alert)

        price = AggregatedPrice(
            symbol=symbol,
            price=result.price,
            confidence=result.confidence,
            confidence_score=result.score,
            contributions=result.contributions,
            method=method,
            staleness=staleness,
            cross_validated=bool(validation and validation.results and not validation.breaches),
            source=lead.source,
            aggregated=aggregated,
            timestamp=max(c.sample.timestamp for c in result.contributions),
            fetched_at=time.time(),
            quality_score=report.overall_score,
            max_deviation=validation.max_deviation if validation else 0.0,
            validation=validation.results if validation else (),
            warnings=report.warnings,
            actions=report.actions,
            alerts=tuple(alerts),
        )
        self._quality.set(CacheKey(symbol, "quality"), report)
        return price

    # ------------------------------------------------------------------
    # Quality and history
    # ------------------------------------------------------------------

    async def get_quality_report(self, symbol: str) -> QualityReport:
        """Quality report for the price currently served for a symbol.

        Reports are cached for a short TTL.

        :raises NotConfigured: If no source knows the symbol.
        :raises AllSourcesFailed: If no price can be obtained.
        """
        symbol = symbol.upper()
        key = CacheKey(symbol, "quality")
        report = self._quality.get(key)
        if report is not None:
            return report

        price = await self.get_price(symbol)
        lead = max(price.contributions, key=lambda c: c.weight).sample
        # Account for time spent in the price cache
        lead = replace(lead, staleness=lead.staleness + max(0.0, time.time() - price.fetched_at))
        validation = None
        if price.validation:
            validation = CrossValidationReport(
                results=price.validation,
                max_deviation=price.max_deviation,
                threshold=self.get_feed_config(symbol).price_deviation_threshold,
            )
        report = self._reports.generate(lead, self.get_feed_config(symbol), validation)
        self._quality.set(key, report)
        return report

    def get_history(self, symbol: str, window: float | None = None) -> list[HistoryPoint]:
        """Accepted prices for a symbol, optionally within the last ``window`` seconds."""
        return self.history.get_history(symbol, window)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def start_tracking(self, symbol: str) -> None:
        """Start background refresh for a symbol.

        The first fetch runs immediately in the background.
        """
        symbol = symbol.upper()
        if symbol in self._tracked:
            return
        self._tracked.add(symbol)
        self._feed_status(symbol).tracked = True
        self._scheduler.schedule(symbol, 0)
        logger.info(f"{symbol}: tracking started")

    async def stop_tracking(self, symbol: str) -> None:
        """Stop background refresh and cancel any in-flight fetch."""
        symbol = symbol.upper()
        self._tracked.discard(symbol)
        if symbol in self._status:
            self._status[symbol].tracked = False
        self._scheduler.cancel(symbol)

        task = self._inflight.pop(symbol, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            if self._feed_status(symbol).state == "fetching":
                self._set_state(symbol, "unknown")
        logger.info(f"{symbol}: tracking stopped")

    @property
    def tracked_symbols(self) -> list[str]:
        return sorted(self._tracked)

    async def _background_refresh(self, symbol: str) -> None:
        try:
            await self.get_price(symbol, force_refresh=True)
        except NotConfigured as e:
            logger.error(f"{symbol}: {e}; tracking stopped")
            self._tracked.discard(symbol)
            self._feed_status(symbol).tracked = False

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def get_feed_status(self, symbol: str) -> FeedStatus | None:
        return self._status.get(symbol.upper())

    def get_all_feed_statuses(self) -> dict[str, FeedStatus]:
        return dict(self._status)

    def get_source_status(self) -> dict[str, SourceStatus]:
        """Per-source health, keyed by source name."""
        return self._sources.get_all_status()

    def get_stats(self) -> FeedManagerStats:
        feeds: dict[str, int] = {}
        for status in self._status.values():
            feeds[status.state] = feeds.get(status.state, 0) + 1
        return FeedManagerStats(
            total_requests=self._requests,
            cache_hits=self._cache_hits,
            cache_hit_rate=(self._cache_hits / self._requests * 100) if self._requests else 0.0,
            fetches=self._fetches,
            failures=self._failures,
            average_latency_ms=(self._latency_total / self._fetches * 1000) if self._fetches else 0.0,
            uptime=time.time() - self._started_at,
            feeds=feeds,
        )

    def get_system_health(self) -> SystemHealth:
        """Overall health across all known feeds.

        healthy when >= 90% of feeds are healthy, degraded when >= 70%,
        critical otherwise. No feeds counts as healthy.
        """
        statuses = list(self._status.values())
        healthy = sum(1 for s in statuses if s.state == "healthy")
        percent = healthy / len(statuses) * 100 if statuses else 100.0

        if percent >= HEALTHY_SYSTEM_PERCENT:
            overall = "healthy"
        elif percent >= DEGRADED_SYSTEM_PERCENT:
            overall = "degraded"
        else:
            overall = "critical"

        issues: list[str] = []
        for status in statuses:
            if status.state == "failed":
                issues.append(f"{status.symbol} feed failed: {status.last_error or 'Unknown error'}")
            elif status.state == "degraded":
                issues.append(
                    f"{status.symbol} feed degraded: quality {status.last_quality} "
                    f"(low confidence or high staleness)"
                )

        return SystemHealth(
            overall=overall,
            percent_healthy=percent,
            active_feeds=sum(1 for s in statuses if s.state != "failed"),
            issues=issues,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clear_cache(self, symbol: str | None = None) -> None:
        """Drop cached prices and quality reports (all, or one symbol's)."""
        self._prices.clear(symbol)
        self._quality.clear(symbol)

    async def close(self) -> None:
        """Cancel background work and close the shared HTTP client."""
        self._tracked.clear()
        await self._scheduler.cancel_all()

        tasks = list(self._inflight.values())
        self._inflight.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await BaseAdapter.close_shared_client()
        logger.info("FeedManager closed")
