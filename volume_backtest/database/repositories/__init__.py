"""
Repositories for backtest tasks and the symbol filter cache.
"""

from .base import FilterCacheRepository, TaskRepository
from .memory import InMemoryFilterCacheRepository, InMemoryTaskRepository
from .sql import SqlFilterCacheRepository, SqlTaskRepository

__all__ = [
    # Interfaces
    "TaskRepository",
    "FilterCacheRepository",
    # In-memory
    "InMemoryTaskRepository",
    "InMemoryFilterCacheRepository",
    # SQLAlchemy
    "SqlTaskRepository",
    "SqlFilterCacheRepository",
]
