"""
In-memory market data source.

Backed by plain dictionaries; used for tests, demos, and callers that
already hold their data in Python objects.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..backtest.models import FundingRateSample, MarketDataPoint
from ..core.utils import ensure_utc
from .base import MarketDataSource


class InMemoryMarketDataSource(MarketDataSource):
    """Market data source over in-memory points and funding samples."""

    name = "memory"

    def __init__(
        self,
        points: Optional[Iterable[MarketDataPoint]] = None,
        funding: Optional[Dict[str, Iterable[FundingRateSample]]] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._points: Dict[Tuple[str, datetime], MarketDataPoint] = {}
        self._symbols: List[str] = []
        self._funding: Dict[str, List[FundingRateSample]] = {}

        for point in points or []:
            self.add_point(point)
        for symbol, samples in (funding or {}).items():
            self.add_funding(symbol, samples)

    def add_point(self, point: MarketDataPoint) -> None:
        """Add or replace the observation for (symbol, timestamp)."""
        with self._lock:
            self._points[(point.symbol, point.timestamp)] = point
            if point.symbol not in self._symbols:
                self._symbols.append(point.symbol)

    def add_funding(self, symbol: str, samples: Iterable[FundingRateSample]) -> None:
        """Append funding settlements for a symbol."""
        with self._lock:
            history = self._funding.setdefault(symbol, [])
            history.extend(samples)
            history.sort(key=lambda sample: sample.funding_time)

    def list_symbols(self, quote_asset: str) -> List[str]:
        quote = quote_asset.upper()
        with self._lock:
            return [s for s in self._symbols if s.endswith(quote) and len(s) > len(quote)]

    def get_market_data(self, timestamp: datetime, symbols: Iterable[str]) -> Dict[str, MarketDataPoint]:
        ts = ensure_utc(timestamp)
        result: Dict[str, MarketDataPoint] = {}
        with self._lock:
            for symbol in symbols:
                point = self._points.get((symbol, ts))
                if point is not None:
                    result[symbol] = point
        return result

    def get_price(self, symbol: str, timestamp: datetime) -> Optional[float]:
        with self._lock:
            point = self._points.get((symbol, ensure_utc(timestamp)))
        return point.price if point is not None else None

    def get_funding_history(self, symbol: str, start: datetime, end: datetime) -> List[FundingRateSample]:
        start, end = ensure_utc(start), ensure_utc(end)
        with self._lock:
            history = list(self._funding.get(symbol, []))
        return [sample for sample in history if start <= sample.funding_time <= end]
