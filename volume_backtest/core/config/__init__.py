"""
Core configuration module for the volume backtest engine.

This module provides configuration management using Pydantic Settings
with environment-specific YAML file support and validation.
"""

from .config_loader import ConfigLoader, load_settings
from .settings import (
    DEFAULT_STABLECOINS,
    BacktestSettings,
    DatabaseSettings,
    Environment,
    FilterCacheSettings,
    LogFormat,
    LoggingSettings,
    LogLevel,
    PerformanceSettings,
    RetrySettings,
    Settings,
    StorageBackend,
    get_settings,
)

__all__ = [
    # Settings classes
    "Settings",
    "Environment",
    "LogLevel",
    "LogFormat",
    "StorageBackend",
    "DatabaseSettings",
    "LoggingSettings",
    "PerformanceSettings",
    "RetrySettings",
    "BacktestSettings",
    "FilterCacheSettings",
    "DEFAULT_STABLECOINS",
    # Configuration loading
    "ConfigLoader",
    "load_settings",
    "get_settings",
]
