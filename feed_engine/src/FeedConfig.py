"""FeedConfig: Per-symbol feed configuration with explicit defaults and merging.

Configurations are immutable. Changes go through merge_feed_config(), which
validates override keys and returns a new instance instead of mutating or
spreading dictionaries.

.. code-block:: python

    >>> config = build_feed_config("SOL")
    >>> config.primary_source
    'pyth'
    >>> tighter = merge_feed_config(config, {"price_deviation_threshold": 1.0})
    >>> tighter.price_deviation_threshold
    1.0
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

DEFAULT_KEY = "DEFAULT"


@dataclass(frozen=True)
class FeedConfig:
    """Configuration for one symbol's price feed.

    :ivar symbol: Token symbol this configuration applies to.
    :ivar primary_source: Source id tried first.
    :ivar fallback_sources: Source ids tried in order when the primary fails.
    :ivar refresh_interval: Seconds a cached price stays valid; also the
        background refresh period.
    :ivar max_staleness: Maximum acceptable sample age in seconds.
    :ivar confidence_threshold: Minimum confidence score (0-1) before the
        quality report warns; samples below it are still served.
    :ivar price_deviation_threshold: Max percent deviation between sources.
    :ivar retry_attempts: Attempts against the primary source.
    :ivar retry_delay: Base backoff delay in seconds (multiplied by attempt).
    :ivar enable_aggregation: Aggregate partial results when all sources fail
        individually.
    :ivar enable_cross_validation: Compare the accepted sample with the
        other configured sources.
    :ivar max_ema_deviation: Percent deviation from the exponential average
        tolerated before a consistency warning.
    :ivar reject_on_deviation: Disqualify a sample whose cross-validation
        breaches the threshold and continue with the fallback chain.
    :ivar high_trust_sources: Source ids whose confidence score is boosted.
    """

    symbol: str
    primary_source: str = "pyth"
    fallback_sources: tuple[str, ...] = ("switchboard", "coingecko")
    refresh_interval: float = 15.0
    max_staleness: float = 120.0
    confidence_threshold: float = 0.7
    price_deviation_threshold: float = 5.0
    retry_attempts: int = 2
    retry_delay: float = 2.0
    enable_aggregation: bool = False
    enable_cross_validation: bool = False
    max_ema_deviation: float = 10.0
    reject_on_deviation: bool = False
    high_trust_sources: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        # Normalize collection types so that JSON lists are accepted
        object.__setattr__(self, "symbol", self.symbol.upper())
        object.__setattr__(self, "fallback_sources", tuple(self.fallback_sources))
        object.__setattr__(
            self, "high_trust_sources", frozenset(self.high_trust_sources)
        )

        if not self.primary_source:
            raise ValueError("primary_source must be set")
        if self.primary_source in self.fallback_sources:
            raise ValueError("primary_source must not be repeated in fallback_sources")
        if self.refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")
        if self.max_staleness <= 0:
            raise ValueError("max_staleness must be positive")
        if self.refresh_interval > self.max_staleness:
            raise ValueError("refresh_interval must not exceed max_staleness")
        if not 0 <= self.confidence_threshold <= 1:
            raise ValueError("confidence_threshold must be between 0 and 1")
        if self.price_deviation_threshold <= 0:
            raise ValueError("price_deviation_threshold must be positive")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be non-negative")
        if self.max_ema_deviation <= 0:
            raise ValueError("max_ema_deviation must be positive")

    @property
    def sources(self) -> tuple[str, ...]:
        """Primary followed by fallback sources, in configured order."""
        return (self.primary_source, *self.fallback_sources)


DEFAULT_FEED_CONFIGS: dict[str, FeedConfig] = {
    "SOL": FeedConfig(
        symbol="SOL",
        refresh_interval=5,
        max_staleness=30,
        confidence_threshold=0.8,
        price_deviation_threshold=2.0,
        retry_attempts=3,
        retry_delay=1.0,
        enable_aggregation=True,
        enable_cross_validation=True,
        max_ema_deviation=5.0,
    ),
    "USDC": FeedConfig(
        symbol="USDC",
        refresh_interval=10,
        max_staleness=60,
        confidence_threshold=0.9,
        price_deviation_threshold=0.5,  # Stablecoin - tight band
        retry_attempts=3,
        retry_delay=1.0,
        enable_aggregation=True,
        enable_cross_validation=True,
        max_ema_deviation=1.0,
    ),
    "ETH": FeedConfig(
        symbol="ETH",
        refresh_interval=5,
        max_staleness=30,
        confidence_threshold=0.8,
        price_deviation_threshold=2.0,
        retry_attempts=3,
        retry_delay=1.0,
        enable_aggregation=True,
        enable_cross_validation=True,
        max_ema_deviation=5.0,
    ),
    "BTC": FeedConfig(
        symbol="BTC",
        refresh_interval=5,
        max_staleness=30,
        confidence_threshold=0.8,
        price_deviation_threshold=1.5,
        retry_attempts=3,
        retry_delay=1.0,
        enable_aggregation=True,
        enable_cross_validation=True,
        max_ema_deviation=3.0,
    ),
    DEFAULT_KEY: FeedConfig(symbol=DEFAULT_KEY),
}

_FIELD_NAMES = frozenset(f.name for f in fields(FeedConfig))


def merge_feed_config(base: FeedConfig, overrides: Mapping[str, Any]) -> FeedConfig:
    """Return a copy of ``base`` with the given fields replaced.

    :param base: Configuration to start from.
    :param overrides: Field name to new value. ``symbol`` may be overridden.
    :returns: New validated FeedConfig.
    :raises ValueError: On unknown field names or invalid values.
    """
    unknown = set(overrides) - _FIELD_NAMES
    if unknown:
        raise ValueError(f"Unknown feed config fields: {sorted(unknown)}")
    return replace(base, **overrides)


def build_feed_config(
    symbol: str,
    overrides: Mapping[str, Any] | None = None,
    defaults: Mapping[str, FeedConfig] = DEFAULT_FEED_CONFIGS,
) -> FeedConfig:
    """Build the configuration for a symbol from defaults plus overrides.

    Symbols without a dedicated default use the ``DEFAULT`` entry.

    :param symbol: Token symbol.
    :param overrides: Optional field overrides.
    :param defaults: Default configurations keyed by symbol.
    :returns: Validated FeedConfig for ``symbol``.
    """
    symbol = symbol.upper()
    base = defaults.get(symbol) or defaults[DEFAULT_KEY]
    return merge_feed_config(base, {**(overrides or {}), "symbol": symbol})


def load_feed_configs(
    overrides: Mapping[str, Mapping[str, Any]] | None = None,
    defaults: Mapping[str, FeedConfig] = DEFAULT_FEED_CONFIGS,
) -> dict[str, FeedConfig]:
    """Build the full configuration table from defaults and per-symbol overrides.

    :param overrides: Symbol to field overrides. A ``DEFAULT`` entry changes
        the template used for symbols without their own configuration.
    :returns: Dict mapping symbol to FeedConfig, always containing ``DEFAULT``.
    """
    configs = dict(defaults)
    for symbol, symbol_overrides in (overrides or {}).items():
        configs[symbol.upper()] = build_feed_config(symbol, symbol_overrides, configs)
    return configs


def read_overrides_file(path: str | Path) -> dict[str, dict[str, Any]]:
    """Read per-symbol overrides from a JSON file.

    Expected format: ``{"SOL": {"refresh_interval": 3}, "DEFAULT": {...}}``

    :raises ValueError: If the file does not contain a JSON object of objects.
    """
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
        raise ValueError(f"{path}: expected a JSON object mapping symbols to objects")
    return data
