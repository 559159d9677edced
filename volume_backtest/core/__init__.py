"""
Core module for the volume backtest engine.

This module provides the foundational components including configuration,
logging, exception handling, utilities, and the background task system.
"""

from .config import (
    ConfigLoader,
    Environment,
    Settings,
    get_settings,
    load_settings,
)
from .exceptions import (
    VolumeBacktestError,
    ConfigurationError,
    DataUnavailableError,
    TaskNotFoundError,
    ValidationError,
)
from .logging import (
    LoggerFactory,
    get_logger,
    setup_logging,
)
from .utils import (
    measure_time,
    retry,
)

__version__ = "1.0.0"

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "Environment",
    "ConfigLoader",
    "load_settings",
    "get_settings",
    # Logging
    "LoggerFactory",
    "get_logger",
    "setup_logging",
    # Exceptions
    "VolumeBacktestError",
    "ConfigurationError",
    "ValidationError",
    "DataUnavailableError",
    "TaskNotFoundError",
    # Utilities
    "retry",
    "measure_time",
]
