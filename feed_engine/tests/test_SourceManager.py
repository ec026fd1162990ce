"""Unit tests for SourceManager."""

from unittest.mock import patch

from feed_engine.src.SourceManager import SourceManager, SourceStatus


class TestSourceManagerInit:
    """Test SourceManager initialization."""

    def test_init_with_sources(self) -> None:
        """Sources should be tracked from init."""
        manager = SourceManager(["pyth", "switchboard", "coingecko"])
        assert manager.sources == ["pyth", "switchboard", "coingecko"]
        assert len(manager.get_all_status()) == 3

    def test_init_from_mapping_keys(self) -> None:
        """Any iterable of names should work, including adapter dicts."""
        manager = SourceManager({"pyth": object(), "coinbase": object()})
        assert manager.sources == ["pyth", "coinbase"]

    def test_init_empty_sources(self) -> None:
        """Empty sources should work."""
        manager = SourceManager()
        assert manager.sources == []
        assert manager.get_active_sources() == []

    def test_initial_status(self) -> None:
        """Initial status should have zero failures."""
        status = SourceManager(["pyth"]).get_source_status("pyth")

        assert status is not None
        assert status.consecutive_failures == 0
        assert status.backoff_until == 0.0
        assert status.last_error is None
        assert status.last_success is None


class TestSourceManagerFailures:
    """Test failure recording and backoff."""

    def test_exponential_backoff(self) -> None:
        """Backoff should double with each consecutive failure."""
        manager = SourceManager(["pyth"], base_backoff_seconds=5.0)

        assert manager.record_failure("pyth") == 5.0
        assert manager.record_failure("pyth") == 10.0
        assert manager.record_failure("pyth") == 20.0
        assert manager.record_failure("pyth") == 40.0

    def test_max_backoff_cap(self) -> None:
        """Backoff should be capped at max_backoff_seconds."""
        manager = SourceManager(
            ["pyth"],
            base_backoff_seconds=100.0,
            max_backoff_seconds=150.0,
        )

        assert manager.record_failure("pyth") == 100.0
        # Would be 200, but capped at 150
        assert manager.record_failure("pyth") == 150.0
        assert manager.record_failure("pyth") == 150.0

    def test_failure_keeps_error(self) -> None:
        """The last error message should be kept for monitoring."""
        manager = SourceManager(["pyth"])
        manager.record_failure("pyth", "timeout")
        manager.record_failure("pyth", "HTTP 503: unavailable")

        status = manager.get_source_status("pyth")
        assert status.last_error == "HTTP 503: unavailable"
        assert status.total_failures == 2

    def test_failure_unknown_source(self) -> None:
        """Recording failure for unknown source should create it."""
        manager = SourceManager(["pyth"])
        manager.record_failure("coinbase")

        assert manager.get_source_status("coinbase").consecutive_failures == 1
        assert "coinbase" in manager.sources


class TestSourceManagerSuccess:
    """Test success recording."""

    @patch("time.time")
    def test_success_resets_consecutive_failures(self, mock_time) -> None:
        """Success should reset consecutive failures and backoff."""
        mock_time.return_value = 1000.0
        manager = SourceManager(["pyth"])

        manager.record_failure("pyth")
        manager.record_failure("pyth")
        manager.record_success("pyth")
        status = manager.get_source_status("pyth")

        assert status.consecutive_failures == 0
        assert status.backoff_until == 0.0
        assert status.last_success == 1000.0

    def test_success_preserves_total_failures(self) -> None:
        """Success should not reset total_failures."""
        manager = SourceManager(["pyth"])

        manager.record_failure("pyth")
        manager.record_failure("pyth")
        manager.record_success("pyth")
        manager.record_failure("pyth")

        status = manager.get_source_status("pyth")
        assert status.total_failures == 3
        assert status.total_successes == 1
        assert status.consecutive_failures == 1

    def test_success_rate(self) -> None:
        """success_rate should be the share of successful fetches."""
        manager = SourceManager(["pyth"])
        assert manager.get_source_status("pyth").success_rate == 100.0

        manager.record_success("pyth")
        manager.record_success("pyth")
        manager.record_success("pyth")
        manager.record_failure("pyth")

        assert manager.get_source_status("pyth").success_rate == 75.0


class TestSourceManagerActiveSources:
    """Test active source filtering."""

    def test_all_active_initially(self) -> None:
        """All sources should be active initially."""
        manager = SourceManager(["a", "b", "c"])
        assert manager.get_active_sources() == ["a", "b", "c"]

    def test_unknown_source_is_active(self) -> None:
        """A source that was never seen has no backoff."""
        assert SourceManager(["a"]).is_source_active("unknown") is True

    @patch("time.time")
    def test_source_active_after_backoff(self, mock_time) -> None:
        """Source should be active again once its backoff ends."""
        mock_time.return_value = 1000.0
        manager = SourceManager(["a"], base_backoff_seconds=10.0)

        manager.record_failure("a")
        # backoff_until = 1000 + 10 = 1010

        mock_time.return_value = 1005.0
        assert "a" not in manager.get_active_sources()

        mock_time.return_value = 1010.0  # Exactly at backoff_until
        assert "a" in manager.get_active_sources()

    @patch("time.time")
    def test_get_backoff_remaining(self, mock_time) -> None:
        """get_backoff_remaining should count down to zero."""
        mock_time.return_value = 1000.0
        manager = SourceManager(["a"], base_backoff_seconds=30.0)
        manager.record_failure("a")

        mock_time.return_value = 1010.0
        assert manager.get_backoff_remaining("a") == 20.0

        mock_time.return_value = 1050.0
        assert manager.get_backoff_remaining("a") == 0.0
        assert manager.get_backoff_remaining("unknown") == 0.0


class TestOrderSources:
    """Test chain filtering for the next attempt."""

    def test_healthy_chain_unchanged(self) -> None:
        """With no backoff the configured order should be kept."""
        manager = SourceManager(["pyth", "switchboard", "coingecko"])
        assert manager.order_sources(["pyth", "switchboard", "coingecko"]) == [
            "pyth",
            "switchboard",
            "coingecko",
        ]

    def test_skips_sources_in_backoff(self) -> None:
        """Sources in backoff should be skipped."""
        manager = SourceManager(["pyth", "switchboard", "coingecko"], base_backoff_seconds=60.0)
        manager.record_failure("pyth")

        assert manager.order_sources(["pyth", "switchboard", "coingecko"]) == [
            "switchboard",
            "coingecko",
        ]

    def test_all_in_backoff_returns_full_chain(self) -> None:
        """A chain entirely in backoff should be tried anyway."""
        manager = SourceManager(["pyth", "coingecko"], base_backoff_seconds=60.0)
        manager.record_failure("pyth")
        manager.record_failure("coingecko")

        assert manager.order_sources(["pyth", "coingecko"]) == ["pyth", "coingecko"]

    def test_unknown_sources_are_tried(self) -> None:
        """Sources never seen before should be part of the chain."""
        manager = SourceManager(["pyth"], base_backoff_seconds=60.0)
        manager.record_failure("pyth")

        assert manager.order_sources(["pyth", "coinbase"]) == ["coinbase"]


class TestSourceManagerMutation:
    """Test source list mutation methods."""

    def test_add_source_idempotent(self) -> None:
        """Adding existing source should not duplicate or reset it."""
        manager = SourceManager(["a"])
        manager.record_failure("a")

        manager.add_source("a")
        assert manager.sources.count("a") == 1
        assert manager.get_source_status("a").consecutive_failures == 1

    def test_get_all_status_is_copy(self) -> None:
        """get_all_status should return a copy."""
        manager = SourceManager(["a", "b"])
        manager.record_failure("a")

        all_status = manager.get_all_status()
        all_status["a"] = SourceStatus()
        assert manager.get_source_status("a").consecutive_failures == 1

    def test_reset_source(self) -> None:
        """reset_source should clear status."""
        manager = SourceManager(["a"])
        manager.record_failure("a")
        manager.record_success("a")

        manager.reset_source("a")
        status = manager.get_source_status("a")

        assert status.total_failures == 0
        assert status.total_successes == 0

    def test_reset_all(self) -> None:
        """reset_all should clear all sources."""
        manager = SourceManager(["a", "b"])
        manager.record_failure("a")
        manager.record_failure("b")

        manager.reset_all()

        assert manager.get_active_sources() == ["a", "b"]
        assert all(s.total_failures == 0 for s in manager.get_all_status().values())
