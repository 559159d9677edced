"""
Performance Calculator - Summary metrics over a snapshot series

Computes, from the total value of each snapshot:
- Total return over the run
- Volatility as the root mean square of per-bucket returns
- Maximum drawdown as the worst single-bucket loss
"""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from ..core.exceptions import ArithmeticGuardError
from ..core.logging import get_logger
from .models import PerformanceSummary, Snapshot

logger = get_logger(__name__)


class PerformanceCalculator:
    """
    Calculates summary metrics from backtest snapshots.

    Volatility is sqrt(mean(r^2)), not the standard deviation, and max
    drawdown is max(|min(0, r)|) over single buckets, not peak to trough.
    """

    def __init__(self, snapshots: Sequence[Snapshot]):
        """
        Initialize performance calculator.

        Args:
            snapshots: Snapshots in chronological order
        """
        self.snapshots = snapshots
        self.values = np.array([snapshot.total_value for snapshot in snapshots], dtype=float)

    def period_returns(self) -> np.ndarray:
        """
        Per-bucket returns; a zero previous value yields a zero return.

        Returns:
            Array of len(snapshots) - 1 returns
        """
        if len(self.values) < 2:
            return np.zeros(0)

        previous = self.values[:-1]
        current = self.values[1:]
        returns: List[float] = []
        for i, (prev, curr) in enumerate(zip(previous, current), start=1):
            try:
                if prev == 0:
                    raise ArithmeticGuardError(
                        f"Snapshot {i - 1} has zero total value",
                        quantity="total_value",
                    )
                returns.append((curr - prev) / prev)
            except ArithmeticGuardError as e:
                logger.warning(f"Return for period {i} set to 0: {e}")
                returns.append(0.0)
        return np.array(returns, dtype=float)

    def calculate(self) -> PerformanceSummary:
        """
        Calculate total return, volatility and max drawdown.

        Returns:
            PerformanceSummary (all zeros for fewer than 2 snapshots)
        """
        if len(self.values) < 2:
            return PerformanceSummary()

        returns = self.period_returns()

        first, last = self.values[0], self.values[-1]
        total_return = 0.0 if first == 0 else float((last - first) / first)
        volatility = float(np.sqrt(np.mean(returns ** 2)))
        max_drawdown = float(np.max(np.abs(np.minimum(returns, 0.0))))

        logger.debug(
            f"Performance over {len(self.values)} snapshots: return={total_return:.6f}, "
            f"volatility={volatility:.6f}, max_drawdown={max_drawdown:.6f}"
        )

        return PerformanceSummary(
            total_return=total_return,
            volatility=volatility,
            max_drawdown=max_drawdown,
        )
