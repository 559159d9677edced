"""
Unit tests for symbol discovery, the eligibility predicate, and fingerprints.
"""

from datetime import timedelta

import pytest

from volume_backtest.backtest import BacktestParams, SymbolEligibilityFilter, extract_base_asset, fingerprint
from volume_backtest.backtest.eligibility import is_leveraged_token
from volume_backtest.core.config import BacktestSettings


class TestSymbolHelpers:
    """Test base asset and leveraged token detection."""

    @pytest.mark.parametrize(
        "symbol, expected",
        [
            ("ETHUSDT", "ETH"),
            ("USDCUSDT", "USDC"),
            ("ETHFDUSD", "ETH"),
            ("ETHBTC", "ETH"),
            ("USDT", "USDT"),
        ],
    )
    def test_extract_base_asset(self, symbol, expected):
        assert extract_base_asset(symbol) == expected

    def test_leveraged_tokens(self):
        """Test leveraged suffixes are detected but short bases are not."""
        assert is_leveraged_token("BTCUP")
        assert is_leveraged_token("ETHDOWN")
        assert is_leveraged_token("XRPBULL")
        assert not is_leveraged_token("JUP")
        assert not is_leveraged_token("ETH")


class TestFingerprint:
    """Test the filter cache key."""

    def test_stable_across_irrelevant_fields(self, backtest_params):
        """Test granularity, limit, and notionals do not change the key."""
        other = backtest_params.model_copy(update={"limit": 10, "granularity_hours": 4, "short_amount": 5.0})
        assert fingerprint(other) == fingerprint(backtest_params)

    def test_changes_with_eligibility_fields(self, backtest_params):
        """Test eligibility-relevant fields change the key."""
        base = fingerprint(backtest_params)

        assert fingerprint(backtest_params.model_copy(update={"min_history_days": 30})) != base
        assert fingerprint(backtest_params.model_copy(update={"require_futures": True})) != base
        assert fingerprint(
            backtest_params.model_copy(update={"end_time": backtest_params.end_time + timedelta(hours=8)})
        ) != base

    def test_symbol_order_does_not_matter(self, backtest_params):
        """Test explicit symbol lists are order independent."""
        first = BacktestParams(**{**backtest_params.model_dump(), "symbols": ["ethusdt", "SOLUSDT"]})
        second = BacktestParams(**{**backtest_params.model_dump(), "symbols": ["SOLUSDT", "ETHUSDT", "ETHUSDT"]})
        assert fingerprint(first) == fingerprint(second)


class TestSymbolEligibilityFilter:
    """Test discovery and the eligibility predicate."""

    @pytest.fixture
    def eligibility(self, market_data):
        return SymbolEligibilityFilter(market_data, BacktestSettings(eligibility_batch_size=3))

    def test_discover_symbols(self, eligibility, backtest_params):
        """Test leveraged tokens and the BTC leg are not candidates."""
        symbols = eligibility.discover_symbols(backtest_params)

        assert symbols == ["ETHUSDT", "SOLUSDT", "XRPUSDT", "DOGEUSDT", "USDCUSDT", "LOWUSDT", "NEWUSDT"]

    def test_discover_explicit_symbols(self, eligibility, backtest_params):
        """Test an explicit symbol list restricts the universe."""
        params = BacktestParams(**{**backtest_params.model_dump(), "symbols": ["SOLUSDT", "BTCUPUSDT", "ABCUSDT"]})

        assert eligibility.discover_symbols(params) == ["SOLUSDT"]

    def test_evaluate(self, eligibility, backtest_params):
        """Test each exclusion reason and the statistics."""
        symbols = eligibility.discover_symbols(backtest_params)

        result = eligibility.evaluate(symbols, backtest_params)

        assert result.valid == ["ETHUSDT", "SOLUSDT", "XRPUSDT", "DOGEUSDT"]
        assert result.invalid == ["USDCUSDT", "LOWUSDT", "NEWUSDT"]
        assert result.invalid_reasons["USDCUSDT"] == ["stablecoin pair"]
        assert result.invalid_reasons["LOWUSDT"] == ["24h volume below 10000"]
        assert result.invalid_reasons["NEWUSDT"] == ["insufficient history (< 365 days)"]

        stats = result.statistics
        assert stats["total_discovered"] == 7
        assert stats["valid_symbols"] == 4
        assert stats["invalid_symbols"] == 3
        assert stats["valid_rate"] == pytest.approx(57.14)
        assert stats["reason_stats"]["stablecoin pair"] == 1

    def test_evaluate_relaxed_criteria(self, eligibility, backtest_params):
        """Test disabling stablecoin exclusion and lowering thresholds."""
        params = backtest_params.model_copy(
            update={"exclude_stablecoins": False, "min_history_days": 0, "min_volume_threshold": 0.0}
        )

        result = eligibility.evaluate(eligibility.discover_symbols(params), params)

        assert result.invalid == []
        assert len(result.valid) == 7

    def test_evaluate_requires_data_at_start(self, eligibility, backtest_params):
        """Test symbols with no data at the start time are excluded."""
        params = backtest_params.model_copy(update={"start_time": backtest_params.start_time - timedelta(hours=8)})

        result = eligibility.evaluate(["ETHUSDT"], params)

        assert result.valid == []
        assert result.invalid_reasons["ETHUSDT"] == ["no market data at reference time"]

    def test_require_futures(self, market_data, backtest_params, market_points):
        """Test symbols without a perpetual contract are excluded when required."""
        point = next(p for p in market_points if p.symbol == "XRPUSDT" and p.timestamp == backtest_params.start_time)
        market_data.add_point(point.model_copy(update={"has_futures": False}))
        eligibility = SymbolEligibilityFilter(market_data)
        params = backtest_params.model_copy(update={"require_futures": True})

        result = eligibility.evaluate(["ETHUSDT", "XRPUSDT"], params)

        assert result.valid == ["ETHUSDT"]
        assert result.invalid_reasons["XRPUSDT"] == ["no perpetual futures contract"]
