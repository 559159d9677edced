"""
Volume Backtest Engine.

Background backtests of a long-BTC / short-altcoin basket strategy over
historical market data, with a cached symbol-eligibility stage.
"""

from .core import (
    __version__,
    VolumeBacktestError,
    Environment,
    Settings,
    ValidationError,
    get_logger,
    load_settings,
    setup_logging,
)

__title__ = "Volume Backtest Engine"
__description__ = "Asynchronous volume backtests for long-BTC / short-altcoin basket strategies"
__license__ = "MIT"

__all__ = [
    # Metadata
    "__version__",
    "__title__",
    "__description__",
    "__license__",
    # Core exports
    "Environment",
    "Settings",
    "load_settings",
    "get_logger",
    "setup_logging",
    "VolumeBacktestError",
    "ValidationError",
]
