"""
Unit tests for the position simulator.

Tests BTC leg sizing, short basket rebalancing, funding accrual, and the
zero market share guard.
"""

from datetime import datetime, timedelta, timezone

import pytest

from volume_backtest.backtest import (
    CandidateScore,
    FundingRateSample,
    MarketDataPoint,
    PositionSimulator,
    RankedCandidate,
    sample_funding_history,
)
from volume_backtest.core.exceptions import ArithmeticGuardError

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=8)
T2 = T0 + timedelta(hours=16)


def ranked(symbol: str, price: float, market_share: float, rank: int = 1, timestamp: datetime = T0) -> RankedCandidate:
    point = MarketDataPoint(
        symbol=symbol,
        timestamp=timestamp,
        price=price,
        volume_24h=1_000_000.0,
        market_share=market_share,
    )
    score = CandidateScore(
        symbol=symbol,
        price_score=0.0,
        volume_score=0.0,
        volatility_score=0.0,
        funding_rate_score=0.0,
        total_score=1.0 / rank,
    )
    return RankedCandidate(score=score, candidate=point, rank=rank)


def funding(at: datetime, rate: float, mark_price=None) -> FundingRateSample:
    return FundingRateSample(funding_time=at, funding_rate=rate, mark_price=mark_price)


class TestPositionSimulator:
    """Test portfolio bookkeeping across buckets."""

    def setup_method(self):
        self.simulator = PositionSimulator(short_amount=1000.0, btc_amount=1000.0)

    def test_first_bucket_opens_positions(self):
        """Test BTC sizing and market-share weighted shorts."""
        snapshot = self.simulator.step(
            T0, [ranked("AUSDT", 10.0, 60.0, 1), ranked("BUSDT", 20.0, 40.0, 2)], btc_price=100.0
        )

        assert snapshot.btc_position.quantity == pytest.approx(10.0)
        assert snapshot.btc_position.entry_price == 100.0
        assert snapshot.btc_position.pnl == 0.0
        assert snapshot.cash_balance == pytest.approx(1000.0)
        assert snapshot.total_value == pytest.approx(2000.0)

        quantities = {position.symbol: position.quantity for position in snapshot.short_positions}
        assert quantities == {"AUSDT": pytest.approx(60.0), "BUSDT": pytest.approx(20.0)}
        assert [position.rank for position in snapshot.short_positions] == [1, 2]
        assert snapshot.skipped_reason is None

    def test_rebalance_preserves_mark_to_market(self):
        """Test resizing realizes P&L without changing total value."""
        self.simulator.step(T0, [ranked("AUSDT", 10.0, 60.0, 1), ranked("BUSDT", 20.0, 40.0, 2)], btc_price=100.0)

        snapshot = self.simulator.step(
            T1, [ranked("AUSDT", 9.0, 60.0, 1, T1), ranked("BUSDT", 22.0, 40.0, 2, T1)], btc_price=110.0
        )

        positions = {position.symbol: position for position in snapshot.short_positions}
        # AUSDT grows: weighted entry; BUSDT shrinks: realized loss on the cut
        assert positions["AUSDT"].quantity == pytest.approx(600.0 / 9.0)
        assert positions["AUSDT"].entry_price == pytest.approx(9.9)
        assert positions["BUSDT"].quantity == pytest.approx(400.0 / 22.0)
        assert positions["BUSDT"].entry_price == pytest.approx(20.0)

        assert snapshot.cash_balance == pytest.approx(1000.0 - 40.0 / 11.0)
        assert snapshot.btc_position.pnl == pytest.approx(100.0)
        assert snapshot.total_value == pytest.approx(2000.0 + 100.0 + 60.0 - 40.0)

    def test_deselected_positions_are_closed(self):
        """Test shorts that drop out of the selection are closed at the current price."""
        self.simulator.step(T0, [ranked("AUSDT", 10.0, 60.0, 1), ranked("BUSDT", 20.0, 40.0, 2)], btc_price=100.0)

        snapshot = self.simulator.step(
            T1, [ranked("AUSDT", 10.0, 60.0, 1, T1)], btc_price=100.0, prices={"BUSDT": 25.0}
        )

        assert [position.symbol for position in snapshot.short_positions] == ["AUSDT"]
        assert snapshot.short_positions[0].quantity == pytest.approx(100.0)
        assert snapshot.cash_balance == pytest.approx(1000.0 - 20 * 5.0)
        assert snapshot.total_value == pytest.approx(2000.0 - 100.0)

        stats = self.simulator.get_statistics()
        assert stats["positions_opened"] == 2
        assert stats["positions_closed"] == 1
        assert stats["open_positions"] == 1
        assert stats["realized_pnl"] == pytest.approx(-100.0)

    def test_missing_price_falls_back_to_last_seen(self):
        """Test a deselected symbol with no current price closes at its last price."""
        self.simulator.step(T0, [ranked("AUSDT", 10.0, 50.0, 1), ranked("BUSDT", 20.0, 50.0, 2)], btc_price=100.0)

        snapshot = self.simulator.step(T1, [ranked("AUSDT", 10.0, 50.0, 1, T1)], btc_price=100.0)

        assert snapshot.cash_balance == pytest.approx(1000.0)
        assert self.simulator.open_symbols == ["AUSDT"]

    def test_funding_accrues_for_held_shorts(self):
        """Test settlements in (previous bucket, bucket] are paid to cash."""
        simulator = PositionSimulator(short_amount=1000.0, btc_amount=0.0)
        history = [
            funding(T0, 0.05, 10.0),
            funding(T0 + timedelta(hours=4), 0.001, 20.0),
            funding(T1, 0.001),
            funding(T2, 0.002, 10.0),
        ]

        first = simulator.step(T0, [ranked("AUSDT", 10.0, 1.0)], btc_price=100.0, funding={"AUSDT": history})
        second = simulator.step(T1, [ranked("AUSDT", 10.0, 1.0, 1, T1)], btc_price=100.0, funding={"AUSDT": history})

        # No shorts were held before T0, so its settlement is not paid
        assert first.cash_balance == pytest.approx(1000.0)
        # 100 * 20 * 0.001 + 100 * 10 (current price, no mark) * 0.001
        assert second.cash_balance == pytest.approx(1003.0)
        assert second.total_value == pytest.approx(1003.0)
        assert simulator.get_statistics()["funding_pnl"] == pytest.approx(3.0)

        # The reported history covers the next bucket
        assert [sample.funding_time for sample in second.short_positions[0].funding_rate_history] == [T2]

    def test_zero_market_share_skips_bucket(self):
        """Test a zero share total closes the basket instead of dividing by zero."""
        self.simulator.step(T0, [ranked("AUSDT", 10.0, 50.0)], btc_price=100.0)

        snapshot = self.simulator.step(T1, [ranked("AUSDT", 8.0, 0.0, 1, T1)], btc_price=100.0)

        assert snapshot.skipped_reason == "zero_total_market_share"
        assert snapshot.short_positions == []
        assert self.simulator.open_symbols == []
        assert snapshot.cash_balance == pytest.approx(1000.0 + 100.0 * 2.0)
        assert self.simulator.get_statistics()["skipped_buckets"] == 1

    def test_invalid_btc_price_on_first_bucket(self):
        """Test the long leg cannot be sized from a non-positive price."""
        with pytest.raises(ArithmeticGuardError):
            self.simulator.step(T0, [ranked("AUSDT", 10.0, 50.0)], btc_price=0.0)

    def test_close_all_positions(self):
        """Test closing the whole basket."""
        self.simulator.step(T0, [ranked("AUSDT", 10.0, 50.0), ranked("BUSDT", 20.0, 50.0, 2)], btc_price=100.0)

        self.simulator.close_all_positions({"AUSDT": 5.0, "BUSDT": 20.0})

        assert self.simulator.open_symbols == []
        assert self.simulator.cash == pytest.approx(1000.0 + 50.0 * 5.0)


class TestSampleFundingHistory:
    """Test funding history down-sampling."""

    def test_one_sample_per_interval(self):
        """Test the latest settlement of each sub-period is kept."""
        raw = [
            funding(T0 + timedelta(hours=9), 0.001),
            funding(T0 + timedelta(hours=10), 0.002),
            funding(T0 + timedelta(hours=20), 0.003),
        ]

        samples = sample_funding_history(raw, T0, T0 + timedelta(hours=24), funding_interval_hours=8)

        # The first 8h has no settlement yet and is skipped
        assert [sample.funding_rate for sample in samples] == [0.002, 0.003]

    def test_window_shorter_than_interval(self):
        """Test a single sub-period when the bucket is shorter than the interval."""
        raw = [funding(T0 + timedelta(hours=1), 0.001), funding(T0 + timedelta(hours=3), 0.002)]

        samples = sample_funding_history(raw, T0, T0 + timedelta(hours=4), funding_interval_hours=8)

        assert [sample.funding_rate for sample in samples] == [0.002]

    def test_empty_inputs(self):
        """Test empty history and empty windows."""
        assert sample_funding_history([], T0, T1, 8) == []
        assert sample_funding_history([funding(T0, 0.001)], T1, T0, 8) == []

    def test_nan_mark_price_becomes_none(self):
        """Test unusable mark prices are normalized on load."""
        assert funding(T0, 0.001, float("nan")).mark_price is None
