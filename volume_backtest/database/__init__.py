"""
Database layer for the volume backtest engine.

SQLAlchemy 2.0 models, the connection manager, and the repositories used
by the filter cache and the task orchestrator.
"""

from .database import DatabaseManager
from .models import AsyncBacktestTaskRecord, Base, SymbolFilterCacheRecord
from .repositories import (
    FilterCacheRepository,
    InMemoryFilterCacheRepository,
    InMemoryTaskRepository,
    SqlFilterCacheRepository,
    SqlTaskRepository,
    TaskRepository,
)

__all__ = [
    "DatabaseManager",
    "Base",
    "AsyncBacktestTaskRecord",
    "SymbolFilterCacheRecord",
    "TaskRepository",
    "FilterCacheRepository",
    "InMemoryTaskRepository",
    "InMemoryFilterCacheRepository",
    "SqlTaskRepository",
    "SqlFilterCacheRepository",
]
