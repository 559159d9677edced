"""
pandas-backed market data source.

Loads a long-format market frame (one row per symbol and timestamp) and
an optional funding frame, cleans them once at construction, and serves
lookups from per-timestamp groups.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd

from ..backtest.models import FundingRateSample, MarketDataPoint
from ..core.exceptions import ValidationError
from ..core.logging import get_logger
from ..core.utils import ensure_utc
from .base import MarketDataSource

logger = get_logger(__name__)

REQUIRED_MARKET_COLUMNS = ["symbol", "timestamp", "price", "volume_24h"]
OPTIONAL_MARKET_COLUMNS = {
    "price_change_24h": 0.0,
    "volatility_24h": 0.0,
    "funding_rate": 0.0,
}
REQUIRED_FUNDING_COLUMNS = ["symbol", "funding_time", "funding_rate"]


class DataFrameMarketDataSource(MarketDataSource):
    """
    Market data source over pandas DataFrames.

    Market frame columns:
        symbol, timestamp, price, volume_24h (required);
        price_change_24h, volatility_24h, funding_rate, market_share,
        history_length_days, has_futures (optional).

    Missing optional columns are derived where possible:
        market_share: percentage of the timestamp's total volume
        history_length_days: days since the symbol's first row
        has_futures: whether the funding frame has rows for the symbol

    Funding frame columns: symbol, funding_time, funding_rate, mark_price
    (optional). Unusable mark prices become None.
    """

    name = "dataframe"

    def __init__(self, market_df: pd.DataFrame, funding_df: Optional[pd.DataFrame] = None) -> None:
        """
        Initialize the source.

        Args:
            market_df: Long-format market observations
            funding_df: Funding settlements

        Raises:
            ValidationError: If a required column is missing
        """
        self._funding = self._prepare_funding(funding_df)
        self._market = self._prepare_market(market_df, set(self._funding.keys()))

        self._by_time: Dict[pd.Timestamp, pd.DataFrame] = {
            ts: group.set_index("symbol") for ts, group in self._market.groupby("timestamp", sort=True)
        }
        self._symbols: List[str] = list(dict.fromkeys(self._market["symbol"]))

        logger.info(
            f"Loaded market frame: {len(self._market)} rows, {len(self._symbols)} symbols, "
            f"{len(self._by_time)} timestamps, funding for {len(self._funding)} symbols"
        )

    @staticmethod
    def _check_columns(df: pd.DataFrame, required: List[str], frame_name: str) -> None:
        missing = [column for column in required if column not in df.columns]
        if missing:
            raise ValidationError(
                f"{frame_name} frame is missing required columns: {', '.join(missing)}",
                field=frame_name,
                expected_type=f"DataFrame with columns {required}",
            )

    def _prepare_market(self, df: pd.DataFrame, funding_symbols: set) -> pd.DataFrame:
        self._check_columns(df, REQUIRED_MARKET_COLUMNS, "market")

        df = df.copy()
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        df["symbol"] = df["symbol"].astype(str).str.upper()

        before = len(df)
        df = df.dropna(subset=REQUIRED_MARKET_COLUMNS)
        if len(df) < before:
            logger.warning(f"Dropped {before - len(df)} market rows with missing required values")

        for column, default in OPTIONAL_MARKET_COLUMNS.items():
            if column not in df.columns:
                df[column] = default
            df[column] = df[column].fillna(default)

        if "market_share" not in df.columns:
            totals = df.groupby("timestamp")["volume_24h"].transform("sum")
            df["market_share"] = (df["volume_24h"] / totals.where(totals > 0)).fillna(0.0) * 100

        if "history_length_days" not in df.columns:
            first_seen = df.groupby("symbol")["timestamp"].transform("min")
            df["history_length_days"] = (df["timestamp"] - first_seen).dt.days

        if "has_futures" not in df.columns:
            df["has_futures"] = df["symbol"].isin(funding_symbols)

        return df.sort_values(["timestamp", "symbol"], kind="stable").drop_duplicates(
            subset=["symbol", "timestamp"], keep="last"
        )

    def _prepare_funding(self, df: Optional[pd.DataFrame]) -> Dict[str, List[FundingRateSample]]:
        if df is None or df.empty:
            return {}
        self._check_columns(df, REQUIRED_FUNDING_COLUMNS, "funding")

        df = df.copy()
        df["funding_time"] = pd.to_datetime(df["funding_time"], utc=True)
        df["symbol"] = df["symbol"].astype(str).str.upper()
        df = df.dropna(subset=REQUIRED_FUNDING_COLUMNS).sort_values("funding_time", kind="stable")
        has_mark = "mark_price" in df.columns

        funding: Dict[str, List[FundingRateSample]] = {}
        for row in df.itertuples(index=False):
            funding.setdefault(row.symbol, []).append(
                FundingRateSample(
                    funding_time=row.funding_time.to_pydatetime(),
                    funding_rate=float(row.funding_rate),
                    mark_price=row.mark_price if has_mark else None,
                )
            )
        return funding

    @staticmethod
    def _to_point(symbol: str, row: pd.Series) -> MarketDataPoint:
        return MarketDataPoint(
            symbol=symbol,
            timestamp=row["timestamp"].to_pydatetime(),
            price=float(row["price"]),
            price_change_24h=float(row["price_change_24h"]),
            volume_24h=float(row["volume_24h"]),
            volatility_24h=float(row["volatility_24h"]),
            funding_rate=float(row["funding_rate"]),
            market_share=float(row["market_share"]),
            history_length_days=int(row["history_length_days"]),
            has_futures=bool(row["has_futures"]),
        )

    def _frame_at(self, timestamp: datetime) -> Optional[pd.DataFrame]:
        return self._by_time.get(pd.Timestamp(ensure_utc(timestamp)))

    def list_symbols(self, quote_asset: str) -> List[str]:
        quote = quote_asset.upper()
        return [s for s in self._symbols if s.endswith(quote) and len(s) > len(quote)]

    def get_market_data(self, timestamp: datetime, symbols: Iterable[str]) -> Dict[str, MarketDataPoint]:
        frame = self._frame_at(timestamp)
        if frame is None:
            return {}

        result: Dict[str, MarketDataPoint] = {}
        for symbol in symbols:
            if symbol in frame.index:
                result[symbol] = self._to_point(symbol, frame.loc[symbol])
        return result

    def get_price(self, symbol: str, timestamp: datetime) -> Optional[float]:
        frame = self._frame_at(timestamp)
        if frame is None or symbol not in frame.index:
            return None
        return float(frame.at[symbol, "price"])

    def get_funding_history(self, symbol: str, start: datetime, end: datetime) -> List[FundingRateSample]:
        start, end = ensure_utc(start), ensure_utc(end)
        return [s for s in self._funding.get(symbol, []) if start <= s.funding_time <= end]
