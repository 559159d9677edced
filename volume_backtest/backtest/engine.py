"""
Volume Backtest Engine - Runs one backtest from parameters to result

This module coordinates the backtest components:
- Resolves the eligible universe through the filter cache
- Walks the time buckets in chronological order
- Scores and selects shorts with the candidate scorer
- Tracks positions and P&L with the position simulator
- Summarizes the run with the performance calculator
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from ..core.config import BacktestSettings, RetrySettings
from ..core.exceptions import TRANSIENT_ERRORS, DataUnavailableError
from ..core.logging import get_logger
from ..core.tasks import CancellationToken
from ..core.utils import retry_from_settings
from .eligibility import SymbolEligibilityFilter
from .filter_cache import FilterCache
from .models import (
    BacktestMeta,
    BacktestParams,
    BacktestResult,
    FundingRateSample,
    MarketDataPoint,
    MarketStats,
    Snapshot,
)
from .performance_calculator import PerformanceCalculator
from .position_simulator import PositionSimulator
from .scoring import CandidateScorer

if TYPE_CHECKING:
    from ..market_data import MarketDataSource

logger = get_logger(__name__)

ProgressCallback = Callable[[datetime, int, int], None]

CONCENTRATION_TOP_N = 10


def bucket_timestamps(params: BacktestParams) -> List[datetime]:
    """
    Bucket start times ``start + i * granularity`` before ``end_time``.

    Args:
        params: Backtest parameters

    Returns:
        Timestamps in chronological order
    """
    step = timedelta(hours=params.granularity_hours)
    count = math.ceil((params.end_time - params.start_time) / step)
    return [params.start_time + step * i for i in range(count)]


def compute_market_stats(points: Iterable[MarketDataPoint]) -> MarketStats:
    """Total volume, pair count, and top-10 volume share in percent."""
    volumes = sorted((point.volume_24h for point in points), reverse=True)
    total_volume = sum(volumes)
    concentration = 0.0
    if total_volume > 0:
        concentration = sum(volumes[:CONCENTRATION_TOP_N]) / total_volume * 100
    return MarketStats(
        total_volume=total_volume,
        active_pairs=len(volumes),
        market_concentration=concentration,
    )


class VolumeBacktestEngine:
    """
    Runs a long-BTC / short-altcoin basket backtest.

    The engine is stateless between runs; every run gets its own
    PositionSimulator, so one engine serves all worker threads.
    """

    def __init__(
        self,
        market_data: "MarketDataSource",
        filter_cache: FilterCache,
        eligibility: Optional[SymbolEligibilityFilter] = None,
        scorer: Optional[CandidateScorer] = None,
        backtest_settings: Optional[BacktestSettings] = None,
        retry_settings: Optional[RetrySettings] = None,
    ):
        """
        Initialize backtest engine.

        Args:
            market_data: Market data source
            filter_cache: Cache of eligible symbol sets
            eligibility: Eligibility filter (built from settings if omitted)
            scorer: Candidate scorer
            backtest_settings: Backtest defaults and symbols
            retry_settings: Retry policy for market data calls
        """
        self.market_data = market_data
        self.filter_cache = filter_cache
        self.settings = backtest_settings or BacktestSettings()
        retry_settings = retry_settings or RetrySettings()
        self.eligibility = eligibility or SymbolEligibilityFilter(market_data, self.settings, retry_settings)
        self.scorer = scorer or CandidateScorer()

        policy = retry_from_settings(retry_settings, exceptions=TRANSIENT_ERRORS)
        self._get_market_data = policy(market_data.get_market_data)
        self._get_price = policy(market_data.get_price)
        self._get_funding_history = policy(market_data.get_funding_history)

    def run(
        self,
        params: BacktestParams,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
        task_id: Optional[str] = None,
    ) -> BacktestResult:
        """
        Run a complete backtest.

        Args:
            params: Backtest parameters
            token: Cancellation token checked after every bucket
            on_progress: Called as (bucket_timestamp, processed, total) after every bucket
            task_id: Task id used to prefix log messages

        Returns:
            BacktestResult with snapshots, summary and meta

        Raises:
            DataUnavailableError: No eligible symbols, no BTC price, or no usable candidates
            CancellationSignal: The token was set
        """
        tag = f"[{task_id}] " if task_id else ""

        fingerprint = self.eligibility.fingerprint(params)
        entry = self.filter_cache.resolve_entry(
            fingerprint,
            lambda: self.eligibility.evaluate(self.eligibility.discover_symbols(params), params),
            criteria=self.eligibility.filter_criteria(params),
        )
        eligible = list(entry.symbols)
        if not eligible:
            raise DataUnavailableError(
                f"No eligible symbols for {params.quote_asset} at {params.start_time.isoformat()}",
                timestamp=params.start_time,
            )

        timestamps = bucket_timestamps(params)
        total = len(timestamps)
        logger.info(
            f"{tag}Running backtest over {total} buckets of {params.granularity_hours}h "
            f"with {len(eligible)} eligible symbols"
        )

        simulator = PositionSimulator(
            short_amount=params.short_amount,
            btc_amount=params.btc_amount,
            btc_symbol=self.settings.btc_symbol,
            funding_interval_hours=self.settings.funding_interval_hours,
            granularity_hours=params.granularity_hours,
        )

        if token is not None:
            token.raise_if_cancelled(0)

        snapshots: List[Snapshot] = []
        for index, timestamp in enumerate(timestamps):
            snapshots.append(self._process_bucket(timestamp, eligible, params, simulator))

            processed = index + 1
            if on_progress is not None:
                on_progress(timestamp, processed, total)
            if token is not None:
                token.raise_if_cancelled(processed)

        summary = PerformanceCalculator(snapshots).calculate()
        statistics = entry.statistics
        meta = BacktestMeta(
            fingerprint=fingerprint,
            total_discovered=statistics.get("total_discovered", len(eligible) + len(entry.invalid_symbols)),
            eligible_symbols=len(eligible),
            invalid_symbols=len(entry.invalid_symbols),
            invalid_reason_stats=statistics.get("reason_stats", {}),
            total_buckets=total,
        )

        logger.info(
            f"{tag}Backtest finished: return={summary.total_return:.4%}, "
            f"volatility={summary.volatility:.4%}, max_drawdown={summary.max_drawdown:.4%}"
        )
        logger.debug(f"{tag}Simulator statistics: {simulator.get_statistics()}")

        return BacktestResult(snapshots=snapshots, summary=summary, meta=meta)

    def _process_bucket(
        self,
        timestamp: datetime,
        eligible: List[str],
        params: BacktestParams,
        simulator: PositionSimulator,
    ) -> Snapshot:
        btc_symbol = self.settings.btc_symbol
        market = self._get_market_data(timestamp, [btc_symbol, *eligible])

        btc_point = market.get(btc_symbol)
        btc_price = btc_point.price if btc_point is not None else self._get_price(btc_symbol, timestamp)
        if btc_price is None or btc_price <= 0:
            raise DataUnavailableError(
                f"No {btc_symbol} price at {timestamp.isoformat()}",
                symbol=btc_symbol,
                timestamp=timestamp,
            )

        available = [market[symbol] for symbol in eligible if symbol in market]
        candidates = [
            point for point in available
            if point.price > 0 and point.volume_24h >= params.min_volume_threshold
        ]
        if not candidates:
            raise DataUnavailableError(
                f"No usable candidates at {timestamp.isoformat()} "
                f"({len(available)}/{len(eligible)} eligible symbols with data)",
                timestamp=timestamp,
            )

        selected = self.scorer.select(candidates, params.limit)

        granularity = timedelta(hours=params.granularity_hours)
        funding_symbols = list(dict.fromkeys([*simulator.open_symbols, *(item.symbol for item in selected)]))
        funding: Dict[str, List[FundingRateSample]] = {
            symbol: self._get_funding_history(symbol, timestamp - granularity, timestamp + granularity)
            for symbol in funding_symbols
        }

        prices = {point.symbol: point.price for point in available if point.price > 0}

        return simulator.step(
            timestamp,
            selected,
            btc_price,
            prices=prices,
            funding=funding,
            market_stats=compute_market_stats(available),
        )
