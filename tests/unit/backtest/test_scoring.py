"""
Unit tests for candidate scoring and selection.
"""

from datetime import datetime, timezone

import pytest

from volume_backtest.backtest import CandidateScorer, MarketDataPoint

TS = datetime(2024, 1, 1, tzinfo=timezone.utc)


def candidate(symbol: str, **fields) -> MarketDataPoint:
    data = {"symbol": symbol, "timestamp": TS, "price": 1.0, "volume_24h": 1_000_000.0}
    data.update(fields)
    return MarketDataPoint(**data)


class TestCandidateScorer:
    """Test factor scores and ranking."""

    def setup_method(self):
        self.scorer = CandidateScorer()

    def test_factor_scores(self):
        """Test each factor on a typical candidate."""
        score = self.scorer.score(
            candidate(
                "ETHUSDT",
                price_change_24h=-0.04,
                volume_24h=25_000_000.0,
                volatility_24h=0.07,
                funding_rate=0.01,
            )
        )

        assert score.price_score == pytest.approx(0.2)
        assert score.volume_score == pytest.approx(0.5)
        assert score.volatility_score == pytest.approx(0.8)
        assert score.funding_rate_score == pytest.approx(0.75)
        assert score.total_score == pytest.approx(0.3 * 0.2 + 0.1 * 0.5 + 0.3 * 0.8 + 0.3 * 0.75)

    def test_price_score_ignores_gains(self):
        """Test rising prices score zero."""
        assert self.scorer.score(candidate("A", price_change_24h=0.1)).price_score == 0.0

    def test_volume_score_capped(self):
        """Test volume score saturates at 1."""
        assert self.scorer.score(candidate("A", volume_24h=500_000_000.0)).volume_score == 1.0

    def test_volatility_score_unclamped(self):
        """Test volatility far from target goes negative."""
        score = self.scorer.score(candidate("A", volatility_24h=0.5))
        assert score.volatility_score == pytest.approx(1 - 0.45 / 0.1)

    def test_funding_rate_score_clamped(self):
        """Test funding score stays within [0, 1]."""
        assert self.scorer.score(candidate("A", funding_rate=0.5)).funding_rate_score == 1.0
        assert self.scorer.score(candidate("A", funding_rate=-0.5)).funding_rate_score == 0.0

    def test_select_orders_by_total_score(self):
        """Test selection returns the best candidates with 1-based ranks."""
        candidates = [
            candidate("LOW", volatility_24h=0.3),
            candidate("HIGH", price_change_24h=-0.1, volatility_24h=0.05),
            candidate("MID", volatility_24h=0.05),
        ]

        selected = self.scorer.select(candidates, limit=2)

        assert [item.symbol for item in selected] == ["HIGH", "MID"]
        assert [item.rank for item in selected] == [1, 2]
        assert selected[0].candidate.symbol == "HIGH"

    def test_select_ties_keep_input_order(self):
        """Test equal scores keep eligible-set order."""
        candidates = [candidate(symbol) for symbol in ["C", "A", "B"]]

        selected = self.scorer.select(candidates, limit=3)

        assert [item.symbol for item in selected] == ["C", "A", "B"]

    def test_select_limit_bounds(self):
        """Test limit larger than the pool and non-positive limits."""
        candidates = [candidate("A"), candidate("B")]

        assert len(self.scorer.select(candidates, limit=10)) == 2
        assert self.scorer.select(candidates, limit=0) == []
        assert self.scorer.select([], limit=5) == []
