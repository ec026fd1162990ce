#!/usr/bin/env python3
"""Multi-Source Price Feed Engine.

Fetches token prices from oracle networks and market data APIs, scores
each answer for trust, cross-validates sources and serves a single price
with a quality verdict. Runs either once (--once) or as a tracking service
that logs system health periodically.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.adapters import get_available_adapters
from .src.FeedConfig import (
    DEFAULT_FEED_CONFIGS,
    FeedConfig,
    load_feed_configs,
    merge_feed_config,
    read_overrides_file,
)
from .src.FeedManager import FeedManager
from .src.PriceAggregator import AGGREGATION_METHODS

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: source1=key1,source2=key2
    Example: coingecko=demo:CG-abc123,switchboard=xyz789

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping source names to API keys.
    """
    if not api_key_str:
        return {}

    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            source, key = item.split("=", 1)
            api_keys[source.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys() -> dict[str, str]:
    """Parse API keys from API_KEY_<SOURCE> environment variables.

    :returns: Dict mapping source names to API keys.
    """
    api_keys = {}
    for key, value in os.environ.items():
        if key.startswith("API_KEY_") and value:
            api_keys[key[len("API_KEY_"):].lower()] = value
    return api_keys


def build_configs(
    sources: list[str],
    overrides_path: str | None,
) -> dict[str, FeedConfig]:
    """Build the feed configuration table.

    A source chain given on the command line replaces the chain of every
    default configuration. Per-symbol overrides from the JSON file are
    applied last.

    :param sources: Primary source followed by fallbacks (may be empty).
    :param overrides_path: Optional JSON file of per-symbol overrides.
    :raises ValueError: On invalid overrides.
    """
    defaults = dict(DEFAULT_FEED_CONFIGS)
    if sources:
        chain = {"primary_source": sources[0], "fallback_sources": tuple(sources[1:])}
        defaults = {symbol: merge_feed_config(c, chain) for symbol, c in defaults.items()}

    overrides = read_overrides_file(overrides_path) if overrides_path else {}
    return load_feed_configs(overrides, defaults)


async def run(
    manager: FeedManager,
    symbols: list[str],
    once: bool,
    interval: float,
) -> int:
    """Serve prices until cancelled, or once.

    :returns: Process exit code.
    """
    try:
        if once:
            prices = await manager.get_prices(symbols)
            for symbol in symbols:
                price = prices.get(symbol)
                if price is None:
                    logger.error(f"{symbol}: no price available")
                    continue
                report = await manager.get_quality_report(symbol)
                logger.info(
                    f"{symbol}: ${price.price:.6f} +/- {price.confidence:.6f} "
                    f"source={price.source} method={price.method} "
                    f"staleness={price.staleness:.1f}s "
                    f"quality={report.overall_score} ({report.recommendation})"
                )
                for warning, action in zip(report.warnings, report.actions):
                    logger.warning(f"{symbol}: {warning} - {action}")
            return 0 if len(prices) == len(symbols) else 1

        for symbol in symbols:
            await manager.start_tracking(symbol)

        while True:
            await asyncio.sleep(interval)
            health = manager.get_system_health()
            stats = manager.get_stats()
            logger.info(
                f"Health: {health['overall']} ({health['percent_healthy']:.0f}% healthy, "
                f"{health['active_feeds']} active) | requests={stats['total_requests']} "
                f"cache_hit_rate={stats['cache_hit_rate']:.1f}% "
                f"avg_latency={stats['average_latency_ms']:.0f}ms"
            )
            for issue in health["issues"]:
                logger.warning(issue)
    finally:
        await manager.close()


def main() -> None:
    """Main entry point for the price feed engine CLI."""
    available_sources = get_available_adapters()

    parser = argparse.ArgumentParser(
        description="Multi-source price feed engine with confidence scoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # Print SOL and ETH once using the default source chains
  python -m feed_engine.main --symbols SOL,ETH --once

  # Track prices with a custom chain (primary first)
  python -m feed_engine.main --symbols SOL,BTC --sources pyth,coinbase,coingecko

  # Per-symbol overrides from a JSON file
  python -m feed_engine.main --symbols SOL --config feeds.json

Environment variables (CLI args take precedence):
  SYMBOLS, SOURCES, FEED_CONFIG, FETCH_TIMEOUT, MAX_CONCURRENT_FETCHES,
  REPORT_INTERVAL, AGGREGATION_METHOD, API_KEYS, API_KEY_COINGECKO, etc.
""",
    )

    parser.add_argument(
        "--symbols",
        type=str,
        help="Comma-separated token symbols (e.g., SOL,ETH,BTC)",
        default=os.environ.get("SYMBOLS") or "SOL,ETH,BTC,USDC",
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=(
            "Comma-separated source chain, primary first; overrides the default "
            f"chains. Available: {', '.join(available_sources)}"
        ),
        default=os.environ.get("SOURCES"),
    )

    parser.add_argument(
        "--config",
        type=str,
        help="JSON file with per-symbol feed config overrides",
        default=os.environ.get("FEED_CONFIG"),
    )

    parser.add_argument(
        "--aggregation",
        type=str,
        choices=AGGREGATION_METHODS,
        help="Aggregation method when no single source is accepted (default: weighted_average)",
        default=os.environ.get("AGGREGATION_METHOD") or "weighted_average",
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual fetch requests in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    parser.add_argument(
        "--max-concurrent",
        dest="max_concurrent",
        type=int,
        help="Maximum concurrent outbound fetches (default: 8)",
        default=int(os.environ.get("MAX_CONCURRENT_FETCHES") or "8"),
    )

    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between health reports when tracking (default: 60)",
        default=float(os.environ.get("REPORT_INTERVAL") or "60"),
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Fetch every symbol once, print prices and quality, and exit",
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., coingecko=demo:CG-abc,switchboard=xyz)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if args.fetch_timeout <= 0:
        parser.error("--fetch-timeout must be positive")

    if args.max_concurrent < 1:
        parser.error("--max-concurrent must be at least 1")

    if args.interval <= 0:
        parser.error("--interval must be positive")

    symbols = [s.strip().upper() for s in args.symbols.split(",") if s.strip()]
    sources = [s.strip().lower() for s in (args.sources or "").split(",") if s.strip()]

    if not symbols:
        parser.error("At least one symbol must be specified")

    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    try:
        configs = build_configs(sources, args.config)
    except (OSError, ValueError, TypeError) as e:
        parser.error(f"Invalid feed configuration: {e}")

    # Parse API keys (CLI + environment)
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))

    # Log configuration
    logger.info("=" * 60)
    logger.info("Multi-Source Price Feed Engine")
    logger.info("=" * 60)
    logger.info(f"Symbols:           {', '.join(symbols)}")
    for symbol in symbols:
        config = configs.get(symbol) or configs["DEFAULT"]
        logger.info(
            f"  {symbol:<6} chain={', '.join(config.sources)} "
            f"refresh={config.refresh_interval}s max_staleness={config.max_staleness}s"
        )
    logger.info(f"Aggregation:       {args.aggregation}")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    logger.info(f"Max Concurrent:    {args.max_concurrent}")
    logger.info(f"Mode:              {'once' if args.once else f'track (report every {args.interval}s)'}")
    if api_keys:
        logger.info(f"API Keys:          {', '.join(api_keys.keys())}")
    logger.info("=" * 60)

    try:
        manager = FeedManager(
            configs=configs,
            api_keys=api_keys,
            fetch_timeout=args.fetch_timeout,
            max_concurrent=args.max_concurrent,
            aggregation_method=args.aggregation,
        )
        sys.exit(asyncio.run(run(manager, symbols, args.once, args.interval)))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
