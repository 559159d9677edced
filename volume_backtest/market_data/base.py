"""
Market data source interface.

The backtest engine reads prices, volumes, and funding settlements only
through this port; concrete sources decide where the data lives.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..backtest.models import FundingRateSample, MarketDataPoint


class MarketDataSource(ABC):
    """Abstract provider of historical market data."""

    name: str = "market_data"

    @abstractmethod
    def list_symbols(self, quote_asset: str) -> List[str]:
        """
        List tradable symbols quoted in the given asset.

        Args:
            quote_asset: Quote asset such as "USDT"

        Returns:
            Symbols in a stable discovery order
        """

    @abstractmethod
    def get_market_data(self, timestamp: datetime, symbols: Iterable[str]) -> Dict[str, MarketDataPoint]:
        """
        Get market observations at a bucket timestamp.

        Symbols without data at that timestamp are absent from the result.
        """

    @abstractmethod
    def get_price(self, symbol: str, timestamp: datetime) -> Optional[float]:
        """Get the price of a symbol at a timestamp, or None when unknown."""

    @abstractmethod
    def get_funding_history(self, symbol: str, start: datetime, end: datetime) -> List[FundingRateSample]:
        """
        Get funding settlements with ``start <= funding_time <= end``.

        Returns:
            Samples in ascending funding_time order
        """
