"""
Composition root for the volume backtest engine.

Wires settings, storage, the filter cache, the engine, and the task
manager together.
"""

from __future__ import annotations

from typing import Optional, Tuple

from .backtest import BacktestTaskManager, FilterCache, SymbolEligibilityFilter, VolumeBacktestEngine
from .core.config import Settings, StorageBackend, get_settings
from .core.logging import LoggerFactory, get_logger
from .database import (
    DatabaseManager,
    FilterCacheRepository,
    InMemoryFilterCacheRepository,
    InMemoryTaskRepository,
    SqlFilterCacheRepository,
    SqlTaskRepository,
    TaskRepository,
)
from .market_data import MarketDataSource

logger = get_logger(__name__)


def create_repositories(
    settings: Settings,
    database_manager: Optional[DatabaseManager] = None,
) -> Tuple[TaskRepository, FilterCacheRepository]:
    """
    Create the task and filter cache repositories for the configured backend.

    Args:
        settings: Application settings
        database_manager: Existing manager to reuse (database backend only)

    Returns:
        (task_repository, filter_cache_repository)
    """
    if database_manager is None and settings.database.backend == StorageBackend.MEMORY:
        logger.info("Using in-memory task and filter cache stores")
        return InMemoryTaskRepository(), InMemoryFilterCacheRepository()

    if database_manager is None:
        database_manager = DatabaseManager.from_settings(settings)
    if not database_manager.is_initialized:
        database_manager.initialize()
    database_manager.create_tables()

    return SqlTaskRepository(database_manager), SqlFilterCacheRepository(database_manager)


def create_task_manager(
    market_data: MarketDataSource,
    settings: Optional[Settings] = None,
    database_manager: Optional[DatabaseManager] = None,
) -> BacktestTaskManager:
    """
    Build a ready-to-start BacktestTaskManager.

    Args:
        market_data: Market data source used by every backtest
        settings: Application settings (process settings if omitted)
        database_manager: Database manager to use instead of one built from settings

    Returns:
        BacktestTaskManager; call ``start()`` to begin processing
    """
    settings = settings or get_settings()
    if not LoggerFactory.is_initialized():
        LoggerFactory.initialize(settings)

    task_repository, cache_repository = create_repositories(settings, database_manager)

    filter_cache = FilterCache(
        cache_repository,
        retry_settings=settings.retry,
        cleanup_older_than_days=settings.filter_cache.cleanup_older_than_days,
    )
    engine = VolumeBacktestEngine(
        market_data=market_data,
        filter_cache=filter_cache,
        eligibility=SymbolEligibilityFilter(market_data, settings.backtest, settings.retry),
        backtest_settings=settings.backtest,
        retry_settings=settings.retry,
    )

    logger.info(
        f"Created backtest task manager ({settings.database.backend.value} storage, "
        f"{settings.performance.worker_count} workers, market data: {market_data.name})"
    )
    return BacktestTaskManager(engine, task_repository, filter_cache, settings)
