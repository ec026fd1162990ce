"""Tests for FeedManager orchestration."""

import asyncio
import time
from unittest.mock import patch

import pytest

from feed_engine.src.adapters import AdapterConfigError, AdapterError
from feed_engine.src.errors import (
    AllSourcesFailed,
    CrossValidationDeviation,
    NotConfigured,
    StaleDataWarning,
)
from feed_engine.src.FeedConfig import DEFAULT_KEY, FeedConfig
from feed_engine.src.FeedManager import FeedManager
from feed_engine.src.SourceManager import SourceManager

from feed_engine.tests.helpers import FakeAdapter, make_configs


def sol_config(**overrides) -> FeedConfig:
    values = dict(
        symbol="SOL",
        primary_source="pyth",
        fallback_sources=("switchboard",),
        refresh_interval=5,
        max_staleness=30,
        retry_attempts=1,
        retry_delay=0,
    )
    values.update(overrides)
    return FeedConfig(**values)


def single_source_configs() -> dict[str, FeedConfig]:
    """SOL and ETH served by pyth alone, without retries."""
    return make_configs(
        SOL=sol_config(fallback_sources=()),
        ETH=sol_config(symbol="ETH", fallback_sources=()),
    )


@pytest.fixture
async def make_manager():
    """Factory building managers that are closed after the test."""
    managers: list[FeedManager] = []

    def factory(adapters, configs=None, **kwargs) -> FeedManager:
        manager = FeedManager(
            configs=configs or make_configs(SOL=sol_config()),
            adapters=adapters,
            **kwargs,
        )
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        await manager.close()


class TestInit:
    def test_requires_default_config(self) -> None:
        with pytest.raises(ValueError, match="DEFAULT"):
            FeedManager(configs={"SOL": sol_config()}, adapters={})

    def test_rejects_unknown_aggregation(self) -> None:
        with pytest.raises(ValueError, match="Unknown aggregation method"):
            FeedManager(configs=make_configs(), adapters={}, aggregation_method="mode")

    def test_creates_registered_adapters(self) -> None:
        """Without explicit adapters, configured sources are instantiated."""
        configs = make_configs(SOL=sol_config(fallback_sources=("coingecko", "nowhere")))
        manager = FeedManager(configs=configs, api_keys={"coingecko": "demo:CG-abc"})

        assert sorted(manager.adapters) == ["coingecko", "pyth"]
        assert manager.adapters["coingecko"].api_key == "CG-abc"


class TestPrimaryPath:
    """Test serving from the primary source."""

    async def test_fresh_primary_is_healthy(self, make_manager) -> None:
        """A tight, fresh primary price is served as is and healthy."""
        pyth = FakeAdapter("pyth", [100.0], staleness=2.0, confidence_percent=0.05)
        manager = make_manager({"pyth": pyth, "switchboard": FakeAdapter("switchboard", [99.0])})

        price = await manager.get_price("sol")

        assert price.price == 100.0
        assert price.source == "pyth"
        assert price.method == "primary"
        assert not price.aggregated
        assert price.confidence_score == 95.0
        assert price.quality_score == 98
        assert price.alerts == ()
        assert manager.get_feed_status("SOL").state == "healthy"
        assert manager.adapters["switchboard"].call_count == 0

    async def test_cache_hit_returns_same_object(self, make_manager) -> None:
        """A second call inside the refresh interval is served from cache."""
        pyth = FakeAdapter("pyth", [100.0, 200.0])
        manager = make_manager({"pyth": pyth})

        first = await manager.get_price("SOL")
        second = await manager.get_price("SOL")

        assert second is first
        assert pyth.call_count == 1
        stats = manager.get_stats()
        assert stats["total_requests"] == 2
        assert stats["cache_hits"] == 1
        assert stats["cache_hit_rate"] == 50.0

    async def test_force_refresh_skips_cache(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0, 101.0])
        manager = make_manager({"pyth": pyth})

        await manager.get_price("SOL")
        price = await manager.get_price("SOL", force_refresh=True)

        assert price.price == 101.0
        assert [p.price for p in manager.get_history("SOL")] == [100.0, 101.0]

    async def test_cache_expires_after_refresh_interval(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0, 101.0])
        manager = make_manager({"pyth": pyth}, configs=make_configs(SOL=sol_config(fallback_sources=())))

        with patch("time.time") as mock_time:
            mock_time.return_value = 1000.0
            first = await manager.get_price("SOL")

            mock_time.return_value = 1004.0
            assert await manager.get_price("SOL") is first

            mock_time.return_value = 1005.0
            price = await manager.get_price("SOL")

        assert price.price == 101.0
        assert pyth.call_count == 2

    async def test_cache_expires_when_too_stale(self, make_manager) -> None:
        """Time spent in the cache counts towards max_staleness."""
        pyth = FakeAdapter("pyth", [100.0, 101.0], staleness=25.0)
        manager = make_manager(
            {"pyth": pyth},
            configs=make_configs(SOL=sol_config(fallback_sources=(), refresh_interval=10, max_staleness=30)),
        )

        with patch("time.time") as mock_time:
            mock_time.return_value = 1000.0
            first = await manager.get_price("SOL")

            mock_time.return_value = 1004.0
            assert await manager.get_price("SOL") is first

            mock_time.return_value = 1005.0
            price = await manager.get_price("SOL")

            assert price.price == 101.0
            assert price.age(time.time()) < 30
        assert pyth.call_count == 2

    async def test_stale_primary_is_served_degraded(self, make_manager) -> None:
        """Data older than max_staleness is served with an alert but never cached."""
        pyth = FakeAdapter("pyth", [100.0], staleness=35.0)
        manager = make_manager({"pyth": pyth}, configs=make_configs(SOL=sol_config(fallback_sources=())))

        price = await manager.get_price("SOL")
        await manager.get_price("SOL")

        assert price.price == 100.0
        assert any(isinstance(a, StaleDataWarning) for a in price.alerts)
        assert manager.get_feed_status("SOL").state == "degraded"
        assert pyth.call_count == 2

    async def test_primary_retries(self, make_manager) -> None:
        """Only the primary gets retry_attempts."""
        pyth = FakeAdapter("pyth", [AdapterError("blip"), 100.0])
        manager = make_manager(
            {"pyth": pyth}, configs=make_configs(SOL=sol_config(retry_attempts=2, fallback_sources=()))
        )

        price = await manager.get_price("SOL")

        assert price.price == 100.0
        assert pyth.call_count == 2


class TestFallbackPath:
    """Test fallback on primary failure."""

    async def test_timeout_falls_back_degraded(self, make_manager) -> None:
        """A timed-out primary falls back to a stale secondary."""
        pyth = FakeAdapter("pyth", [100.0], delay=1.0)
        switchboard = FakeAdapter("switchboard", [102.0], staleness=40.0, confidence_percent=0.5)
        manager = make_manager(
            {"pyth": pyth, "switchboard": switchboard},
            configs=make_configs(SOL=sol_config(retry_attempts=3)),
            fetch_timeout=0.02,
        )

        price = await manager.get_price("SOL")

        assert price.price == 102.0
        assert price.source == "switchboard"
        assert price.method == "fallback"
        assert price.confidence_score == pytest.approx(63.0)
        assert price.quality_score == 75
        assert pyth.call_count == 3
        assert any(isinstance(a, StaleDataWarning) for a in price.alerts)
        assert manager.get_feed_status("SOL").state == "degraded"
        assert manager.get_source_status()["pyth"].consecutive_failures == 1

    async def test_config_error_falls_through(self, make_manager) -> None:
        """A source without a feed for the symbol is skipped without retries."""
        pyth = FakeAdapter("pyth", [AdapterConfigError("no feed")])
        manager = make_manager(
            {"pyth": pyth, "switchboard": FakeAdapter("switchboard", [101.0])},
            configs=make_configs(SOL=sol_config(retry_attempts=3)),
        )

        price = await manager.get_price("SOL")

        assert price.source == "switchboard"
        assert pyth.call_count == 1
        assert manager.get_source_status()["pyth"].total_failures == 0


class TestFailures:
    """Test NotConfigured and AllSourcesFailed."""

    async def test_not_configured(self, make_manager) -> None:
        manager = make_manager(
            {
                "pyth": FakeAdapter("pyth", [AdapterConfigError("no feed")]),
                "switchboard": FakeAdapter("switchboard", [AdapterConfigError("no feed")]),
            }
        )

        with pytest.raises(NotConfigured) as excinfo:
            await manager.get_price("SOL")

        assert excinfo.value.sources == ("pyth", "switchboard")
        assert manager.get_feed_status("SOL").state == "unknown"

    async def test_missing_adapter_is_not_configured(self, make_manager) -> None:
        manager = make_manager({})

        with pytest.raises(NotConfigured):
            await manager.get_price("SOL")

    async def test_all_sources_failed_keeps_last_known(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0, AdapterError("down")])
        switchboard = FakeAdapter("switchboard", [AdapterError("down")])
        manager = make_manager({"pyth": pyth, "switchboard": switchboard})

        first = await manager.get_price("SOL")
        with pytest.raises(AllSourcesFailed) as excinfo:
            await manager.get_price("SOL", force_refresh=True)

        error = excinfo.value
        assert error.last_known is first
        assert [source for source, _ in error.errors] == ["pyth", "switchboard"]
        assert manager.get_last_known("SOL") is first
        status = manager.get_feed_status("SOL")
        assert status.state == "failed"
        assert status.error_count == 1
        assert "All sources failed" in status.last_error

    async def test_failure_is_not_cached(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [AdapterError("down"), 100.0])
        manager = make_manager({"pyth": pyth}, configs=make_configs(SOL=sol_config(fallback_sources=())))

        with pytest.raises(AllSourcesFailed):
            await manager.get_price("SOL")

        # pyth is in backoff but is the only source, so it is tried again
        assert (await manager.get_price("SOL")).price == 100.0

    async def test_backoff_with_unconfigured_fallback_is_a_failure(self, make_manager) -> None:
        """A source skipped for backoff does not make the symbol unknown."""
        pyth = FakeAdapter("pyth", [AdapterError("down"), 100.0])
        coingecko = FakeAdapter("coingecko", [AdapterConfigError("no feed")])
        manager = make_manager(
            {"pyth": pyth, "coingecko": coingecko},
            configs=make_configs(SOL=sol_config(fallback_sources=("coingecko",))),
        )

        with pytest.raises(AllSourcesFailed):
            await manager.get_price("SOL")
        with pytest.raises(AllSourcesFailed) as excinfo:
            await manager.get_price("SOL", force_refresh=True)

        assert "pyth" in [source for source, _ in excinfo.value.errors]
        assert pyth.call_count == 1
        assert manager.get_feed_status("SOL").state == "failed"


class TestCrossValidation:
    """Test deviation checks between sources."""

    async def test_deviation_is_reported_not_fatal(self, make_manager) -> None:
        """105 vs 100 breaches a 2% threshold but the primary is still served."""
        config = sol_config(enable_cross_validation=True, price_deviation_threshold=2.0)
        manager = make_manager(
            {"pyth": FakeAdapter("pyth", [105.0]), "switchboard": FakeAdapter("switchboard", [100.0])},
            configs=make_configs(SOL=config),
        )

        price = await manager.get_price("SOL")

        assert price.price == 105.0
        assert price.source == "pyth"
        assert not price.cross_validated
        assert price.max_deviation == pytest.approx(4.7619, rel=1e-4)
        deviations = [a for a in price.alerts if isinstance(a, CrossValidationDeviation)]
        assert [a.other_source for a in deviations] == ["switchboard"]
        assert any("deviates" in w for w in price.warnings)

    async def test_consistent_sources(self, make_manager) -> None:
        config = sol_config(enable_cross_validation=True, price_deviation_threshold=2.0)
        manager = make_manager(
            {"pyth": FakeAdapter("pyth", [100.0]), "switchboard": FakeAdapter("switchboard", [101.0])},
            configs=make_configs(SOL=config),
        )

        price = await manager.get_price("SOL")

        assert price.cross_validated
        assert len(price.validation) == 1
        assert price.alerts == ()

    async def test_reject_on_deviation(self, make_manager) -> None:
        """With rejection enabled breaching samples are never served."""
        config = sol_config(
            fallback_sources=("switchboard", "coingecko"),
            enable_cross_validation=True,
            reject_on_deviation=True,
            price_deviation_threshold=2.0,
        )
        adapters = {
            "pyth": FakeAdapter("pyth", [120.0]),
            "switchboard": FakeAdapter("switchboard", [100.0]),
            "coingecko": FakeAdapter("coingecko", [AdapterError("down")]),
        }
        manager = make_manager(adapters, configs=make_configs(SOL=config))

        with pytest.raises(AllSourcesFailed) as excinfo:
            await manager.get_price("SOL")

        # switchboard is compared with pyth too and breaches in turn
        rejected = [s for s, e in excinfo.value.errors if isinstance(e, CrossValidationDeviation)]
        assert rejected == ["pyth", "switchboard"]
        assert all(a.call_count == 1 for a in adapters.values())


class TestAggregation:
    """Test aggregation when no single source is accepted."""

    def _config(self) -> FeedConfig:
        return sol_config(
            fallback_sources=("switchboard", "coingecko"),
            enable_cross_validation=True,
            reject_on_deviation=True,
            enable_aggregation=True,
            price_deviation_threshold=2.0,
        )

    def _adapters(self) -> dict:
        return {
            "pyth": FakeAdapter("pyth", [100.0]),
            "switchboard": FakeAdapter("switchboard", [110.0]),
            "coingecko": FakeAdapter("coingecko", [101.0]),
        }

    async def test_weighted_average(self, make_manager) -> None:
        adapters = self._adapters()
        manager = make_manager(adapters, configs=make_configs(SOL=self._config()))

        price = await manager.get_price("SOL")

        assert price.aggregated
        assert price.method == "weighted_average"
        assert 100.0 <= price.price <= 110.0
        assert sorted(price.sources) == ["coingecko", "pyth", "switchboard"]
        assert all(a.call_count == 1 for a in adapters.values())
        assert manager.get_history("SOL")[-1].source == "weighted_average"

    async def test_median_drops_outlier(self, make_manager) -> None:
        manager = make_manager(
            self._adapters(), configs=make_configs(SOL=self._config()), aggregation_method="median"
        )

        price = await manager.get_price("SOL")

        assert price.method == "median"
        assert price.price == 100.5
        assert "switchboard" not in price.sources


class TestConcurrency:
    """Test fetch coalescing and cancellation."""

    async def test_concurrent_calls_share_one_fetch(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0], delay=0.05)
        manager = make_manager({"pyth": pyth})

        results = await asyncio.gather(*(manager.get_price("SOL") for _ in range(5)))

        assert pyth.call_count == 1
        assert all(r is results[0] for r in results)
        assert manager.get_stats()["fetches"] == 1

    async def test_waiter_cancellation_does_not_cancel_fetch(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0], delay=0.05)
        manager = make_manager({"pyth": pyth})

        first = asyncio.create_task(manager.get_price("SOL"))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(manager.get_price("SOL"))
        await asyncio.sleep(0)
        first.cancel()

        price = await second
        assert price.price == 100.0
        assert pyth.call_count == 1
        with pytest.raises(asyncio.CancelledError):
            await first

    async def test_get_prices_omits_failures(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", {"SOL": [100.0], "ETH": [AdapterError("down")]})
        configs = single_source_configs()
        manager = make_manager({"pyth": pyth}, configs=configs)

        prices = await manager.get_prices(["sol", "eth", "SOL"])

        assert list(prices) == ["SOL"]
        assert manager.get_feed_status("ETH").state == "failed"


class TestTracking:
    """Test background refresh."""

    async def test_start_tracking_fetches_in_background(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0])
        manager = make_manager({"pyth": pyth})

        await manager.start_tracking("sol")
        await asyncio.sleep(0.05)

        assert manager.tracked_symbols == ["SOL"]
        status = manager.get_feed_status("SOL")
        assert status.tracked
        assert status.state == "healthy"
        assert manager._scheduler.is_scheduled("SOL")

    async def test_stop_tracking_cancels_in_flight(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0], delay=5.0)
        manager = make_manager({"pyth": pyth}, fetch_timeout=10.0)

        await manager.start_tracking("SOL")
        await asyncio.sleep(0.02)
        waiter = asyncio.create_task(manager.get_price("SOL"))
        await asyncio.sleep(0.01)

        await manager.stop_tracking("SOL")

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert manager.tracked_symbols == []
        assert not manager._scheduler.is_scheduled("SOL")
        assert manager.get_feed_status("SOL").state == "unknown"

    async def test_not_configured_stops_tracking(self, make_manager) -> None:
        manager = make_manager({"pyth": FakeAdapter("pyth", [AdapterConfigError("no feed")])})

        await manager.start_tracking("SOL")
        await asyncio.sleep(0.05)

        assert manager.tracked_symbols == []

    async def test_backoff_keeps_tracking(self, make_manager) -> None:
        """Tracking survives a primary in backoff and recovers once it expires."""
        pyth = FakeAdapter("pyth", [AdapterError("down"), 100.0])
        coingecko = FakeAdapter("coingecko", [AdapterConfigError("no feed")])
        manager = make_manager(
            {"pyth": pyth, "coingecko": coingecko},
            configs=make_configs(SOL=sol_config(fallback_sources=("coingecko",))),
            source_manager=SourceManager(base_backoff_seconds=0.05, max_backoff_seconds=0.05),
            scheduler_backoff=0.01,
            scheduler_max_backoff=0.02,
        )

        await manager.start_tracking("SOL")
        await asyncio.sleep(0.3)

        assert manager.tracked_symbols == ["SOL"]
        assert manager.get_feed_status("SOL").state == "healthy"
        assert pyth.call_count == 2


class TestMonitoring:
    """Test quality reports, config updates and health."""

    async def test_quality_report_is_cached(self, make_manager) -> None:
        manager = make_manager({"pyth": FakeAdapter("pyth", [100.0])})

        price = await manager.get_price("SOL")
        report = await manager.get_quality_report("SOL")

        assert report.overall_score == price.quality_score
        assert await manager.get_quality_report("SOL") is report

    async def test_quality_report_fetches_when_needed(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0])
        manager = make_manager({"pyth": pyth})

        report = await manager.get_quality_report("SOL")

        assert report.symbol == "SOL"
        assert pyth.call_count == 1

    async def test_set_feed_config_clears_cache(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0, 101.0])
        manager = make_manager({"pyth": pyth})

        await manager.get_price("SOL")
        config = manager.set_feed_config("sol", max_staleness=60)
        price = await manager.get_price("SOL")

        assert config.max_staleness == 60
        assert manager.get_feed_config("SOL") is config
        assert price.price == 101.0

    async def test_unknown_symbol_uses_default_config(self, make_manager) -> None:
        manager = make_manager({"pyth": FakeAdapter("pyth", [0.5])})

        price = await manager.get_price("bonk")

        assert price.symbol == "BONK"
        assert manager.get_feed_config("BONK").primary_source == manager.get_feed_config(DEFAULT_KEY).primary_source

    async def test_system_health(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", {"SOL": [100.0], "ETH": [AdapterError("down")]})
        manager = make_manager({"pyth": pyth}, configs=single_source_configs())

        assert manager.get_system_health()["overall"] == "healthy"
        await manager.get_prices(["SOL", "ETH"])

        health = manager.get_system_health()
        assert health["overall"] == "critical"
        assert health["percent_healthy"] == 50.0
        assert health["active_feeds"] == 1
        assert any(issue.startswith("ETH feed failed") for issue in health["issues"])
        assert manager.get_stats()["feeds"] == {"healthy": 1, "failed": 1}

    async def test_clear_cache(self, make_manager) -> None:
        pyth = FakeAdapter("pyth", [100.0, 101.0])
        manager = make_manager({"pyth": pyth})

        await manager.get_price("SOL")
        manager.clear_cache()

        assert (await manager.get_price("SOL")).price == 101.0
