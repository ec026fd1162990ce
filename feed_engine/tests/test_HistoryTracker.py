"""Unit tests for HistoryTracker."""

from unittest.mock import patch

import pytest

from feed_engine.src.HistoryTracker import HistoryConfig, HistoryPoint, HistoryTracker

from feed_engine.tests.helpers import make_sample

T0 = 1_700_000_000.0


def point(timestamp: float, price: float, staleness: float = 1.0) -> HistoryPoint:
    return HistoryPoint(timestamp=timestamp, price=price, confidence=0.1, source="pyth", staleness=staleness)


def filled(prices, symbol: str = "SOL", tracker: HistoryTracker | None = None) -> HistoryTracker:
    tracker = tracker or HistoryTracker()
    for i, price in enumerate(prices):
        tracker.add_point(symbol, point(T0 + i, float(price)), now=T0 + i)
    return tracker


class TestAddPoint:
    """Test appends and bounds."""

    def test_append(self) -> None:
        tracker = filled([100, 101, 102])
        assert tracker.get_prices("sol") == [100.0, 101.0, 102.0]
        assert tracker.symbols == ["SOL"]

    def test_skips_non_increasing_timestamps(self) -> None:
        """Duplicate or older timestamps should be skipped."""
        tracker = HistoryTracker()
        assert tracker.add_point("SOL", point(T0, 100.0), now=T0)
        assert not tracker.add_point("SOL", point(T0, 101.0), now=T0)
        assert not tracker.add_point("SOL", point(T0 - 1, 99.0), now=T0)

        assert tracker.get_prices("SOL") == [100.0]

    def test_capacity_fifo(self) -> None:
        """Beyond max_data_points the oldest points are dropped."""
        tracker = HistoryTracker(
            {"SOL": HistoryConfig(symbol="SOL", max_data_points=5, enable_compression=False)}
        )
        filled(range(10), tracker=tracker)

        assert tracker.get_prices("SOL") == [5.0, 6.0, 7.0, 8.0, 9.0]

    def test_retention(self) -> None:
        """Points older than the retention period are dropped on append."""
        tracker = HistoryTracker({"SOL": HistoryConfig(symbol="SOL", retention_period=100)})
        tracker.add_point("SOL", point(T0, 100.0), now=T0)
        tracker.add_point("SOL", point(T0 + 60, 101.0), now=T0 + 60)
        tracker.add_point("SOL", point(T0 + 150, 102.0), now=T0 + 150)

        assert tracker.get_prices("SOL") == [101.0, 102.0]

    def test_compression_keeps_latest(self) -> None:
        """Above the threshold every Nth point is kept plus the newest."""
        tracker = HistoryTracker(
            {"SOL": HistoryConfig(symbol="SOL", max_data_points=100, compression_threshold=10)}
        )
        filled(range(11), tracker=tracker)

        # ceil(11 / 8) = 2 -> indexes 0, 2, 4, 6, 8, 10
        assert tracker.get_prices("SOL") == [0.0, 2.0, 4.0, 6.0, 8.0, 10.0]

    def test_record_sample(self) -> None:
        tracker = HistoryTracker()
        sample = make_sample("sol", 25.5, source="coinbase")

        assert tracker.record_sample(sample)
        history = tracker.get_history("SOL")
        assert history[0].source == "coinbase"
        assert history[0].timestamp == sample.timestamp

    def test_unknown_symbol_uses_default_config(self) -> None:
        tracker = HistoryTracker()
        config = tracker.get_config("bonk")

        assert config.symbol == "BONK"
        assert config.max_data_points == 500

    def test_set_config(self) -> None:
        tracker = HistoryTracker()
        config = tracker.set_config("sol", max_data_points=3)
        filled(range(5), tracker=tracker)

        assert config.max_data_points == 3
        assert len(tracker.get_history("SOL")) == 3


class TestTrendAnalysis:
    """Test regression-based trend analysis."""

    def test_insufficient_points(self) -> None:
        assert filled([100, 101, 102, 103]).analyze_trend("SOL") is None

    def test_linear_uptrend(self) -> None:
        """Prices 100..119 rise by 1% of the first price per sample."""
        analysis = filled(range(100, 120)).analyze_trend("SOL")

        assert analysis.slope == pytest.approx(1.0)
        assert analysis.r_squared == pytest.approx(1.0)
        assert analysis.trend == "up"
        assert analysis.strength == "moderate"
        assert analysis.confidence == 0.9
        assert analysis.prediction.next_price == pytest.approx(120.0)
        assert analysis.prediction.time_horizon == 5
        assert analysis.rsi == 100.0
        assert (analysis.support, analysis.resistance) == (100.0, 119.0)

    def test_steep_uptrend(self) -> None:
        """A slope above 2% of the first price is very strong."""
        analysis = filled([100 + 3 * i for i in range(20)]).analyze_trend("SOL")

        assert analysis.trend == "up"
        assert analysis.strength == "very_strong"
        assert analysis.momentum_signal == "bullish"

    def test_downtrend(self) -> None:
        analysis = filled([120 - i for i in range(20)]).analyze_trend("SOL")

        assert analysis.trend == "down"
        assert analysis.rsi == 0.0

    def test_flat(self) -> None:
        analysis = filled([100] * 10).analyze_trend("SOL")

        assert analysis.trend == "stable"
        assert analysis.strength == "weak"
        assert analysis.volatility_level == "low"


class TestStatsAndComparison:
    def test_stats(self) -> None:
        stats = filled([100, 104, 102]).get_stats("SOL")

        assert stats.data_points == 3
        assert stats.time_span == 2.0
        assert stats.min_price == 100.0
        assert stats.max_price == 104.0
        assert stats.current_price == 102.0
        assert stats.average_price == pytest.approx(102.0)
        assert stats.trend == "stable"

    def test_stats_empty(self) -> None:
        assert HistoryTracker().get_stats("SOL") is None

    @patch("time.time")
    def test_compare_timeframe(self, mock_time) -> None:
        """Only points inside the window take part."""
        mock_time.return_value = T0 + 9
        tracker = filled([90, 90, 90, 90, 90, 100, 101, 102, 103, 110])

        comparison = tracker.compare_timeframe("SOL", 5, label="5s")

        assert comparison.timeframe == "5s"
        assert comparison.open == 100.0
        assert comparison.close == 110.0
        assert comparison.high == 110.0
        assert comparison.price_change == 10.0
        assert comparison.price_change_percent == pytest.approx(10.0)

    def test_compare_timeframe_too_few_points(self) -> None:
        assert HistoryTracker().compare_timeframe("SOL", 60) is None


class TestMaintenance:
    def test_prune_expired(self) -> None:
        tracker = HistoryTracker({"SOL": HistoryConfig(symbol="SOL", retention_period=5)})
        filled(range(5), tracker=tracker)

        assert tracker.prune_expired(now=T0 + 7) == 3
        assert tracker.get_prices("SOL") == [3.0, 4.0]

    def test_clear_and_system_stats(self) -> None:
        tracker = filled([1, 2, 3])
        filled([4, 5], symbol="ETH", tracker=tracker)

        assert tracker.get_system_stats() == {"tracked_symbols": 2, "total_data_points": 5}
        tracker.clear_history("sol")
        assert tracker.get_system_stats()["tracked_symbols"] == 1
        tracker.clear_history()
        assert tracker.get_system_stats()["total_data_points"] == 0
