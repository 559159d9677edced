"""
Pydantic models for the volume backtest engine.

Covers request parameters, market data points, scoring output, simulated
positions and snapshots, results, filter cache entries, and task records.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from ..core.tasks import TaskStatus
from ..core.utils import ensure_utc, finite_or_none, is_finite_number, utc_now


def _require_finite(value: float, field_name: str) -> float:
    if not is_finite_number(value):
        raise ValueError(f"{field_name} must be a finite number, got {value!r}")
    return float(value)


class BacktestParams(BaseModel):
    """Parameters of one backtest run. Immutable once a task is created."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start_time: datetime = Field(..., description="First bucket timestamp (UTC)")
    end_time: datetime = Field(..., description="Exclusive end of the backtest range (UTC)")
    granularity_hours: int = Field(default=8, ge=1, le=24, description="Bucket length in hours")
    limit: int = Field(default=15, gt=0, description="Maximum shorts held per bucket")
    min_volume_threshold: float = Field(default=10000.0, ge=0, description="Minimum 24h quote volume")
    min_history_days: int = Field(default=365, ge=0, description="Minimum listing history in days")
    require_futures: bool = Field(default=False, description="Require a perpetual futures contract")
    exclude_stablecoins: bool = Field(default=True, description="Exclude stablecoin base assets")
    quote_asset: str = Field(default="USDT", min_length=1, description="Quote asset of the universe")
    symbols: Optional[List[str]] = Field(default=None, description="Explicit universe restriction")
    short_amount: float = Field(default=10000.0, gt=0, description="Short-side notional")
    btc_amount: float = Field(default=10000.0, ge=0, description="Long BTC notional")

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        """Treat naive datetimes as UTC."""
        return ensure_utc(v)

    @field_validator("quote_asset")
    @classmethod
    def normalize_quote_asset(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("symbols")
    @classmethod
    def normalize_symbols(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return None
        normalized: List[str] = []
        for symbol in v:
            symbol = symbol.strip().upper()
            if symbol and symbol not in normalized:
                normalized.append(symbol)
        return normalized

    @model_validator(mode="after")
    def validate_time_range(self) -> "BacktestParams":
        """Ensure start_time is before end_time."""
        if self.start_time >= self.end_time:
            raise ValueError(
                f"start_time ({self.start_time.isoformat()}) must be before "
                f"end_time ({self.end_time.isoformat()})"
            )
        return self


class MarketDataPoint(BaseModel):
    """Market observation for one symbol at one bucket timestamp."""

    symbol: str
    timestamp: datetime
    price: float
    price_change_24h: float = 0.0
    volume_24h: float = Field(default=0.0, ge=0)
    volatility_24h: float = 0.0
    funding_rate: float = 0.0
    market_share: float = Field(default=0.0, ge=0)
    history_length_days: int = Field(default=0, ge=0)
    has_futures: bool = False

    @field_validator(
        "price", "price_change_24h", "volume_24h", "volatility_24h", "funding_rate", "market_share",
        mode="before",
    )
    @classmethod
    def validate_finite(cls, v: Any, info: ValidationInfo) -> float:
        return _require_finite(v, info.field_name)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class FundingRateSample(BaseModel):
    """One funding settlement; mark_price is None when the feed value is unusable."""

    funding_time: datetime
    funding_rate: float
    mark_price: Optional[float] = None

    @field_validator("mark_price", mode="before")
    @classmethod
    def sanitize_mark_price(cls, v: Any) -> Optional[float]:
        return finite_or_none(v)

    @field_validator("funding_rate", mode="before")
    @classmethod
    def validate_rate(cls, v: Any) -> float:
        return _require_finite(v, "funding_rate")

    @field_validator("funding_time")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class CandidateScore(BaseModel):
    """Per-factor scores of one candidate."""

    symbol: str
    price_score: float
    volume_score: float
    volatility_score: float
    funding_rate_score: float
    total_score: float


class RankedCandidate(BaseModel):
    """Selected candidate with its score, raw data, and 1-based rank."""

    score: CandidateScore
    candidate: MarketDataPoint
    rank: int = Field(..., ge=1)

    @property
    def symbol(self) -> str:
        return self.candidate.symbol


class BtcPosition(BaseModel):
    """Long BTC leg."""

    symbol: str
    quantity: float
    current_price: float
    entry_price: float
    pnl: float = 0.0


class ShortPosition(BaseModel):
    """Short altcoin position as reported in a snapshot."""

    symbol: str
    quantity: float
    current_price: float
    entry_price: float
    pnl: float = 0.0
    market_share: float = 0.0
    total_score: float = 0.0
    rank: int = 0
    funding_rate_history: List[FundingRateSample] = Field(default_factory=list)


class MarketStats(BaseModel):
    """Market breadth figures for one bucket."""

    total_volume: float = 0.0
    active_pairs: int = 0
    market_concentration: float = Field(default=0.0, description="Top-10 share of volume, in percent")


class Snapshot(BaseModel):
    """Portfolio state at the end of one bucket."""

    timestamp: datetime
    total_value: float
    cash_balance: float
    btc_position: BtcPosition
    short_positions: List[ShortPosition] = Field(default_factory=list)
    skipped_reason: Optional[str] = None
    market_stats: MarketStats = Field(default_factory=MarketStats)

    @property
    def short_pnl(self) -> float:
        return sum(position.pnl for position in self.short_positions)


class PerformanceSummary(BaseModel):
    """Aggregate metrics over the snapshot series."""

    total_return: float = 0.0
    volatility: float = 0.0
    max_drawdown: float = 0.0


class BacktestMeta(BaseModel):
    """Eligibility and bucket bookkeeping for a run."""

    fingerprint: str
    total_discovered: int = 0
    eligible_symbols: int = 0
    invalid_symbols: int = 0
    invalid_reason_stats: Dict[str, int] = Field(default_factory=dict)
    total_buckets: int = 0


class BacktestResult(BaseModel):
    """Full output of a completed backtest."""

    snapshots: List[Snapshot] = Field(default_factory=list)
    summary: PerformanceSummary = Field(default_factory=PerformanceSummary)
    meta: Optional[BacktestMeta] = None

    def to_dataframe(self) -> pd.DataFrame:
        """
        Build the equity curve as a DataFrame indexed by timestamp.

        Returns:
            DataFrame with total_value, cash_balance, btc_pnl, short_pnl and
            short_count columns
        """
        columns = ["total_value", "cash_balance", "btc_pnl", "short_pnl", "short_count"]
        if not self.snapshots:
            return pd.DataFrame(columns=columns, index=pd.DatetimeIndex([], name="timestamp", tz="UTC"))

        df = pd.DataFrame(
            [
                {
                    "timestamp": snapshot.timestamp,
                    "total_value": snapshot.total_value,
                    "cash_balance": snapshot.cash_balance,
                    "btc_pnl": snapshot.btc_position.pnl,
                    "short_pnl": snapshot.short_pnl,
                    "short_count": len(snapshot.short_positions),
                }
                for snapshot in self.snapshots
            ]
        )
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        return df.set_index("timestamp")[columns]


class EligibilityResult(BaseModel):
    """Outcome of the eligibility predicate over a discovered universe."""

    valid: List[str] = Field(default_factory=list)
    invalid: List[str] = Field(default_factory=list)
    invalid_reasons: Dict[str, List[str]] = Field(default_factory=dict)
    statistics: Dict[str, Any] = Field(default_factory=dict)


class FilterCacheEntry(BaseModel):
    """Cached eligible-symbol set keyed by parameter fingerprint."""

    fingerprint: str = Field(..., min_length=1)
    symbols: List[str] = Field(default_factory=list)
    filter_criteria: Dict[str, Any] = Field(default_factory=dict)
    invalid_symbols: List[str] = Field(default_factory=list)
    invalid_reasons: Dict[str, List[str]] = Field(default_factory=dict)
    statistics: Dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: float = 0.0
    hit_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    last_hit_at: Optional[datetime] = None

    @field_validator("created_at", "last_hit_at")
    @classmethod
    def normalize_times(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def last_used_at(self) -> datetime:
        """Last hit, or creation time for an entry never hit."""
        return self.last_hit_at or self.created_at


class CacheStats(BaseModel):
    """Filter cache usage statistics."""

    total_caches: int = 0
    total_hit_count: int = 0
    avg_hit_count: float = 0.0
    oldest_cache: Optional[datetime] = None
    newest_cache: Optional[datetime] = None


class AsyncBacktestTask(BaseModel):
    """Persisted state of one background backtest."""

    model_config = ConfigDict(validate_assignment=True)

    task_id: str = Field(default_factory=lambda: uuid4().hex)
    status: TaskStatus = TaskStatus.PENDING
    params: BacktestParams
    current_time: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[BacktestResult] = None
    processing_time_ms: Optional[float] = None
    processed_buckets: int = Field(default=0, ge=0)
    total_buckets: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("current_time", "started_at", "completed_at", "created_at")
    @classmethod
    def normalize_times(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def progress_percent(self) -> float:
        if self.total_buckets <= 0:
            return 100.0 if self.status == TaskStatus.COMPLETED else 0.0
        return round(self.processed_buckets / self.total_buckets * 100, 2)


class TaskStatusReport(BaseModel):
    """Read-only status view returned to callers."""

    task_id: str
    status: TaskStatus
    current_time: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    processing_time_ms: Optional[float] = None
    processed_buckets: int = 0
    total_buckets: int = 0
    progress_percent: float = 0.0

    @classmethod
    def from_task(cls, task: AsyncBacktestTask) -> "TaskStatusReport":
        return cls(
            task_id=task.task_id,
            status=task.status,
            current_time=task.current_time,
            started_at=task.started_at,
            completed_at=task.completed_at,
            error_message=task.error_message,
            processing_time_ms=task.processing_time_ms,
            processed_buckets=task.processed_buckets,
            total_buckets=task.total_buckets,
            progress_percent=task.progress_percent,
        )


class CancelOutcome(str, Enum):
    """Result of a cancellation request."""

    OK = "ok"
    ALREADY_TERMINAL = "already-terminal"
