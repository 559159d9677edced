"""
Pytest configuration and fixtures for the volume backtest engine.

This module provides shared fixtures for all tests, including test
settings, a synthetic market data source, the task and filter cache
stores, and a running task manager.
"""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator, List

import pytest

from volume_backtest.backtest import BacktestParams, FundingRateSample, MarketDataPoint
from volume_backtest.bootstrap import create_task_manager
from volume_backtest.core.config import Environment, Settings
from volume_backtest.core.logging import LoggerFactory
from volume_backtest.database import (
    DatabaseManager,
    InMemoryFilterCacheRepository,
    InMemoryTaskRepository,
)
from volume_backtest.market_data import InMemoryMarketDataSource

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
GRANULARITY_HOURS = 8


# Test Environment Setup

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    os.environ["ENVIRONMENT"] = "testing"


# Configuration Fixtures

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def test_config_dir(temp_dir: Path) -> Path:
    """Create temporary config directory."""
    config_dir = temp_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def test_logs_dir(temp_dir: Path) -> Path:
    """Create temporary logs directory."""
    logs_dir = temp_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


@pytest.fixture
def test_settings(test_logs_dir: Path) -> Settings:
    """Create test settings with in-memory storage and fast workers."""
    return Settings(
        environment=Environment.TESTING,
        debug=False,
        database={"backend": "memory", "url": "sqlite:///:memory:"},
        logging={"level": "DEBUG", "format": "simple", "file_path": test_logs_dir / "test.log"},
        performance={"worker_count": 2, "poll_interval": 0.05, "shutdown_timeout": 5.0},
        retry={"max_attempts": 2, "delay": 0.0},
        backtest={"min_history_days": 365, "eligibility_batch_size": 3},
    )


# Logging Fixtures

@pytest.fixture
def test_logger(test_settings: Settings):
    """Create test logger."""
    LoggerFactory.reset()
    LoggerFactory.initialize(test_settings)
    logger = LoggerFactory.get_logger("volume_backtest.tests")
    yield logger
    LoggerFactory.reset()


# Market Data Fixtures

def make_point(symbol: str, timestamp: datetime, price: float, volume: float = 1_000_000.0, **fields) -> MarketDataPoint:
    """Build a market data point with sensible defaults for tests."""
    data = {
        "symbol": symbol,
        "timestamp": timestamp,
        "price": price,
        "volume_24h": volume,
        "market_share": 10.0,
        "history_length_days": 400,
        "has_futures": True,
    }
    data.update(fields)
    return MarketDataPoint(**data)


@pytest.fixture
def make_market_point():
    """Factory for market data points."""
    return make_point


@pytest.fixture
def bucket_times() -> List[datetime]:
    """Three 8h bucket timestamps starting at START."""
    return [START + timedelta(hours=GRANULARITY_HOURS * i) for i in range(3)]


@pytest.fixture
def market_points(bucket_times: List[datetime]) -> List[MarketDataPoint]:
    """
    Synthetic universe over three buckets.

    Eligible: ETHUSDT, SOLUSDT, XRPUSDT, DOGEUSDT.
    Ineligible: USDCUSDT (stablecoin), LOWUSDT (volume), NEWUSDT (history),
    BTCUPUSDT (leveraged token, dropped at discovery).
    """
    btc_prices = [40000.0, 40400.0, 39800.0]
    alts = {
        "ETHUSDT": ([2000.0, 1980.0, 2020.0], 30.0, -0.02, 0.05, 0.0001),
        "SOLUSDT": ([100.0, 97.0, 99.0], 20.0, -0.05, 0.06, 0.0002),
        "XRPUSDT": ([0.5, 0.51, 0.49], 15.0, 0.01, 0.03, -0.0001),
        "DOGEUSDT": ([0.08, 0.079, 0.081], 10.0, 0.0, 0.10, 0.0),
    }

    points: List[MarketDataPoint] = []
    for i, ts in enumerate(bucket_times):
        points.append(make_point("BTCUSDT", ts, btc_prices[i], volume=5_000_000_000.0, market_share=40.0))
        for symbol, (prices, share, change, volatility, funding_rate) in alts.items():
            points.append(
                make_point(
                    symbol,
                    ts,
                    prices[i],
                    volume=share * 10_000_000,
                    market_share=share,
                    price_change_24h=change,
                    volatility_24h=volatility,
                    funding_rate=funding_rate,
                )
            )
        points.append(make_point("USDCUSDT", ts, 1.0, volume=900_000_000.0, market_share=5.0))
        points.append(make_point("LOWUSDT", ts, 3.0, volume=5_000.0, market_share=0.001))
        points.append(make_point("NEWUSDT", ts, 7.0, volume=2_000_000.0, history_length_days=30))
        points.append(make_point("BTCUPUSDT", ts, 12.0, volume=3_000_000.0))
    return points


@pytest.fixture
def funding_samples(bucket_times: List[datetime]):
    """Funding settlements every 8h for ETHUSDT and SOLUSDT."""
    times = bucket_times + [bucket_times[-1] + timedelta(hours=GRANULARITY_HOURS)]
    return {
        "ETHUSDT": [
            FundingRateSample(funding_time=ts, funding_rate=0.0001, mark_price=2000.0) for ts in times
        ],
        "SOLUSDT": [
            FundingRateSample(funding_time=ts, funding_rate=0.0002, mark_price=float("nan")) for ts in times
        ],
    }


@pytest.fixture
def market_data(market_points, funding_samples) -> InMemoryMarketDataSource:
    """In-memory market data source over the synthetic universe."""
    return InMemoryMarketDataSource(market_points, funding_samples)


@pytest.fixture
def backtest_params(bucket_times: List[datetime]) -> BacktestParams:
    """Parameters covering the three synthetic buckets."""
    return BacktestParams(
        start_time=bucket_times[0],
        end_time=bucket_times[-1] + timedelta(hours=GRANULARITY_HOURS),
        granularity_hours=GRANULARITY_HOURS,
        limit=3,
    )


# Storage Fixtures

@pytest.fixture
def task_repository() -> InMemoryTaskRepository:
    return InMemoryTaskRepository()


@pytest.fixture
def cache_repository() -> InMemoryFilterCacheRepository:
    return InMemoryFilterCacheRepository()


@pytest.fixture
def database_manager() -> Generator[DatabaseManager, None, None]:
    """Initialized in-memory SQLite database with all tables."""
    manager = DatabaseManager("sqlite:///:memory:")
    manager.initialize()
    manager.create_tables()
    yield manager
    manager.close()


# Task Manager Fixtures

@pytest.fixture
def task_manager(market_data, test_settings: Settings):
    """Started task manager over in-memory storage."""
    manager = create_task_manager(market_data, test_settings)
    manager.start()
    yield manager
    manager.stop(timeout=5.0)
    LoggerFactory.reset()
