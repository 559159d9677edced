"""
Database models for the volume backtest engine.

Importing this package registers every table with ``Base.metadata``.
"""

from .backtest import AsyncBacktestTaskRecord, SymbolFilterCacheRecord
from .base import Base, TimestampMixin

__all__ = [
    "Base",
    "TimestampMixin",
    "AsyncBacktestTaskRecord",
    "SymbolFilterCacheRecord",
]
