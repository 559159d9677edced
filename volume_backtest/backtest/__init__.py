"""
Volume backtest: eligibility, filter cache, scoring, simulation, and tasks.
"""

from .models import (
    AsyncBacktestTask,
    BacktestMeta,
    BacktestParams,
    BacktestResult,
    BtcPosition,
    CacheStats,
    CancelOutcome,
    CandidateScore,
    EligibilityResult,
    FilterCacheEntry,
    FundingRateSample,
    MarketDataPoint,
    MarketStats,
    PerformanceSummary,
    RankedCandidate,
    ShortPosition,
    Snapshot,
    TaskStatusReport,
)
from .eligibility import SymbolEligibilityFilter, extract_base_asset, fingerprint
from .filter_cache import FilterCache
from .scoring import CandidateScorer
from .position_simulator import PositionSimulator, sample_funding_history
from .performance_calculator import PerformanceCalculator
from .engine import VolumeBacktestEngine, bucket_timestamps
from .orchestrator import BacktestTaskManager

__all__ = [
    # Models
    "BacktestParams",
    "MarketDataPoint",
    "FundingRateSample",
    "CandidateScore",
    "RankedCandidate",
    "BtcPosition",
    "ShortPosition",
    "MarketStats",
    "Snapshot",
    "PerformanceSummary",
    "BacktestMeta",
    "BacktestResult",
    "EligibilityResult",
    "FilterCacheEntry",
    "CacheStats",
    "AsyncBacktestTask",
    "TaskStatusReport",
    "CancelOutcome",
    # Components
    "SymbolEligibilityFilter",
    "extract_base_asset",
    "fingerprint",
    "FilterCache",
    "CandidateScorer",
    "PositionSimulator",
    "sample_funding_history",
    "PerformanceCalculator",
    "VolumeBacktestEngine",
    "bucket_timestamps",
    "BacktestTaskManager",
]
