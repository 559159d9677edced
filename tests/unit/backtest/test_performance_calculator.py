"""
Unit tests for the performance calculator.
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from volume_backtest.backtest import BacktestResult, BtcPosition, PerformanceCalculator, Snapshot

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def snapshots_for(values):
    return [
        Snapshot(
            timestamp=T0 + timedelta(hours=8 * i),
            total_value=value,
            cash_balance=value,
            btc_position=BtcPosition(symbol="BTCUSDT", quantity=0.0, current_price=1.0, entry_price=1.0),
        )
        for i, value in enumerate(values)
    ]


class TestPerformanceCalculator:
    """Test summary metrics."""

    def test_metrics(self):
        """Test return, RMS volatility, and worst single-bucket loss."""
        summary = PerformanceCalculator(snapshots_for([10000.0, 10500.0, 9800.0])).calculate()

        loss = 700.0 / 10500.0
        assert summary.total_return == pytest.approx(-0.02)
        assert summary.volatility == pytest.approx(math.sqrt((0.05 ** 2 + loss ** 2) / 2))
        assert summary.max_drawdown == pytest.approx(loss)

    def test_period_returns(self):
        """Test per-bucket returns."""
        returns = PerformanceCalculator(snapshots_for([100.0, 110.0, 99.0])).period_returns()

        assert list(returns) == pytest.approx([0.1, -0.1])

    def test_drawdown_is_single_period(self):
        """Test consecutive losses are not compounded into one drawdown."""
        summary = PerformanceCalculator(snapshots_for([100.0, 90.0, 81.0])).calculate()

        assert summary.max_drawdown == pytest.approx(0.1)
        assert summary.total_return == pytest.approx(-0.19)

    def test_gains_only(self):
        """Test no drawdown when every bucket gains."""
        summary = PerformanceCalculator(snapshots_for([100.0, 101.0, 103.0])).calculate()

        assert summary.max_drawdown == 0.0
        assert summary.volatility > 0

    @pytest.mark.parametrize("values", [[], [10000.0]])
    def test_too_few_snapshots(self, values):
        """Test fewer than two snapshots gives zero metrics."""
        summary = PerformanceCalculator(snapshots_for(values)).calculate()

        assert summary.total_return == 0.0
        assert summary.volatility == 0.0
        assert summary.max_drawdown == 0.0

    def test_zero_previous_value(self):
        """Test a zero-valued snapshot yields a zero return instead of dividing by zero."""
        calculator = PerformanceCalculator(snapshots_for([0.0, 100.0, 50.0]))

        assert list(calculator.period_returns()) == pytest.approx([0.0, -0.5])

        summary = calculator.calculate()
        assert summary.total_return == 0.0
        assert summary.max_drawdown == pytest.approx(0.5)


class TestBacktestResultFrame:
    """Test the equity curve DataFrame."""

    def test_to_dataframe(self):
        """Test one row per snapshot indexed by UTC timestamp."""
        result = BacktestResult(snapshots=snapshots_for([100.0, 110.0]))

        df = result.to_dataframe()

        assert list(df.columns) == ["total_value", "cash_balance", "btc_pnl", "short_pnl", "short_count"]
        assert list(df["total_value"]) == [100.0, 110.0]
        assert str(df.index.tz) == "UTC"
        assert df.index[0].to_pydatetime() == T0

    def test_empty_dataframe(self):
        """Test an empty result gives an empty frame."""
        df = BacktestResult().to_dataframe()

        assert df.empty
        assert "total_value" in df.columns
