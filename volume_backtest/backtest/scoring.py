"""
Multi-factor scoring and selection of short candidates.

Each bucket's candidates are scored on price weakness, liquidity,
volatility close to a target, and funding rate; the top ``limit`` by
total score are selected.
"""

from __future__ import annotations

from typing import Iterable, List

from ..core.logging import get_logger
from ..core.utils import clamp
from .models import CandidateScore, MarketDataPoint, RankedCandidate

logger = get_logger(__name__)

VOLUME_NORMALIZER = 50_000_000
TARGET_VOLATILITY = 0.05
VOLATILITY_TOLERANCE = 0.1
FUNDING_RATE_OFFSET = 0.02
FUNDING_RATE_RANGE = 0.04

PRICE_WEIGHT = 0.3
VOLUME_WEIGHT = 0.1
VOLATILITY_WEIGHT = 0.3
FUNDING_RATE_WEIGHT = 0.3


class CandidateScorer:
    """Scores candidates and selects the highest ranked ones."""

    def score(self, candidate: MarketDataPoint) -> CandidateScore:
        """
        Score a single candidate.

        Volatility score is not clamped and goes negative far from target.

        Args:
            candidate: Market data for the candidate at the bucket

        Returns:
            CandidateScore with all factor scores and the weighted total
        """
        price_score = max(0.0, -candidate.price_change_24h * 5)
        volume_score = min(1.0, candidate.volume_24h / VOLUME_NORMALIZER)
        volatility_score = 1 - abs(candidate.volatility_24h - TARGET_VOLATILITY) / VOLATILITY_TOLERANCE
        funding_rate_score = clamp((candidate.funding_rate + FUNDING_RATE_OFFSET) / FUNDING_RATE_RANGE, 0.0, 1.0)

        total_score = (
            PRICE_WEIGHT * price_score
            + VOLUME_WEIGHT * volume_score
            + VOLATILITY_WEIGHT * volatility_score
            + FUNDING_RATE_WEIGHT * funding_rate_score
        )

        return CandidateScore(
            symbol=candidate.symbol,
            price_score=price_score,
            volume_score=volume_score,
            volatility_score=volatility_score,
            funding_rate_score=funding_rate_score,
            total_score=total_score,
        )

    def rank(self, candidates: Iterable[MarketDataPoint]) -> List[RankedCandidate]:
        """Score and order all candidates; ties keep input order."""
        scored = [(self.score(candidate), candidate) for candidate in candidates]
        ordered = sorted(scored, key=lambda pair: -pair[0].total_score)
        return [
            RankedCandidate(score=score, candidate=candidate, rank=position)
            for position, (score, candidate) in enumerate(ordered, start=1)
        ]

    def select(self, candidates: Iterable[MarketDataPoint], limit: int) -> List[RankedCandidate]:
        """
        Select the top ``limit`` candidates.

        Args:
            candidates: Candidates in eligible-set order
            limit: Maximum number to select

        Returns:
            Ranked candidates, best first
        """
        if limit <= 0:
            return []
        selected = self.rank(candidates)[:limit]
        if selected:
            logger.debug(
                f"Selected {len(selected)} candidates, top {selected[0].symbol} "
                f"({selected[0].score.total_score:.4f})"
            )
        return selected
