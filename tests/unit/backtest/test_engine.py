"""
Unit tests for the backtest engine.
"""

from datetime import timedelta

import pytest

from volume_backtest.backtest import (
    BacktestParams,
    FilterCache,
    VolumeBacktestEngine,
    bucket_timestamps,
)
from volume_backtest.backtest.engine import compute_market_stats
from volume_backtest.core.config import BacktestSettings, RetrySettings
from volume_backtest.core.exceptions import CancellationSignal, DataUnavailableError
from volume_backtest.core.tasks import CancellationToken
from volume_backtest.database import InMemoryFilterCacheRepository


@pytest.fixture
def engine(market_data):
    return VolumeBacktestEngine(
        market_data=market_data,
        filter_cache=FilterCache(InMemoryFilterCacheRepository()),
        backtest_settings=BacktestSettings(eligibility_batch_size=3),
        retry_settings=RetrySettings(max_attempts=2, delay=0),
    )


class TestBucketTimestamps:
    """Test bucket generation."""

    def test_buckets(self, backtest_params, bucket_times):
        assert bucket_timestamps(backtest_params) == bucket_times

    def test_partial_last_bucket(self, backtest_params):
        """Test a range that is not a multiple of the granularity."""
        params = backtest_params.model_copy(
            update={"end_time": backtest_params.start_time + timedelta(hours=20)}
        )
        assert len(bucket_timestamps(params)) == 3


class TestMarketStats:
    """Test market breadth figures."""

    def test_concentration(self, bucket_times, make_market_point):
        points = [make_market_point(f"S{i}USDT", bucket_times[0], 1.0, volume=float(i + 1)) for i in range(12)]

        stats = compute_market_stats(points)

        assert stats.active_pairs == 12
        assert stats.total_volume == 78.0
        assert stats.market_concentration == pytest.approx((78.0 - 3.0) / 78.0 * 100)

    def test_empty(self):
        stats = compute_market_stats([])
        assert stats.total_volume == 0.0
        assert stats.market_concentration == 0.0


class TestVolumeBacktestEngine:
    """Test full runs over the synthetic universe."""

    def test_run(self, engine, backtest_params, bucket_times):
        """Test snapshots, selection, and meta of a complete run."""
        progress = []

        result = engine.run(backtest_params, on_progress=lambda ts, done, total: progress.append((ts, done, total)))

        assert [snapshot.timestamp for snapshot in result.snapshots] == bucket_times
        assert progress == [(ts, i + 1, 3) for i, ts in enumerate(bucket_times)]

        first = result.snapshots[0]
        assert [position.symbol for position in first.short_positions] == ["SOLUSDT", "ETHUSDT", "XRPUSDT"]
        assert first.total_value == pytest.approx(backtest_params.short_amount + backtest_params.btc_amount)
        assert first.btc_position.quantity == pytest.approx(backtest_params.btc_amount / 40000.0)
        assert first.market_stats.active_pairs == 4

        notional = sum(position.quantity * position.current_price for position in first.short_positions)
        assert notional == pytest.approx(backtest_params.short_amount)

        assert result.meta.total_buckets == 3
        assert result.meta.eligible_symbols == 4
        assert result.meta.invalid_symbols == 3
        assert result.meta.total_discovered == 7
        assert result.meta.invalid_reason_stats["stablecoin pair"] == 1

        values = [snapshot.total_value for snapshot in result.snapshots]
        assert result.summary.total_return == pytest.approx((values[-1] - values[0]) / values[0])

    def test_run_uses_filter_cache(self, engine, backtest_params):
        """Test repeated runs reuse the cached eligible set."""
        engine.run(backtest_params)
        engine.run(backtest_params.model_copy(update={"limit": 2}))

        assert engine.filter_cache.computations == 1
        assert engine.filter_cache.get_stats().total_hit_count == 1

    def test_no_eligible_symbols(self, engine, backtest_params):
        """Test an empty universe fails the run."""
        params = backtest_params.model_copy(update={"min_volume_threshold": 1e15})

        with pytest.raises(DataUnavailableError):
            engine.run(params)

    def test_missing_btc_price(self, engine, market_data, backtest_params, bucket_times):
        """Test a bucket without a BTC price fails the run."""
        params = backtest_params.model_copy(
            update={"end_time": bucket_times[-1] + timedelta(hours=16)}
        )

        with pytest.raises(DataUnavailableError) as exc_info:
            engine.run(params)

        assert "BTCUSDT" in str(exc_info.value)

    def test_cancellation_between_buckets(self, engine, backtest_params):
        """Test the token stops the run at the next bucket boundary."""
        token = CancellationToken("task-1")

        def on_progress(ts, done, total):
            if done == 2:
                token.cancel()

        with pytest.raises(CancellationSignal) as exc_info:
            engine.run(backtest_params, token=token, on_progress=on_progress)

        assert exc_info.value.processed_buckets == 2

    def test_cancelled_before_start(self, engine, backtest_params):
        """Test an already cancelled token processes no bucket."""
        token = CancellationToken("task-1")
        token.cancel()

        with pytest.raises(CancellationSignal) as exc_info:
            engine.run(backtest_params, token=token)

        assert exc_info.value.processed_buckets == 0

    def test_funding_attached_to_positions(self, engine, backtest_params):
        """Test funding history is reported for shorts with settlements."""
        result = engine.run(backtest_params)

        positions = {position.symbol: position for position in result.snapshots[0].short_positions}
        assert len(positions["ETHUSDT"].funding_rate_history) == 1
        assert positions["SOLUSDT"].funding_rate_history[0].mark_price is None
        assert positions["XRPUSDT"].funding_rate_history == []

    def test_explicit_symbols(self, engine, backtest_params):
        """Test an explicit universe limits the shorts."""
        params = BacktestParams(**{**backtest_params.model_dump(), "symbols": ["XRPUSDT", "DOGEUSDT"]})

        result = engine.run(params)

        assert {p.symbol for p in result.snapshots[0].short_positions} == {"XRPUSDT", "DOGEUSDT"}
