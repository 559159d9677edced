"""
Market data sources for the volume backtest engine.
"""

from .base import MarketDataSource
from .dataframe import DataFrameMarketDataSource
from .memory import InMemoryMarketDataSource

__all__ = [
    "MarketDataSource",
    "InMemoryMarketDataSource",
    "DataFrameMarketDataSource",
]
