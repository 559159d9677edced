"""
Core exception handling module for the volume backtest engine.

This module provides the exception hierarchy used by configuration,
persistence, the backtest pipeline, and the task orchestrator.
"""

# Base exceptions
from .base import (
    VolumeBacktestError,
    ConfigurationError,
    DatabaseError,
    NotFoundError,
    RetriesExhaustedError,
    TransientError,
    ValidationError,
)

# Backtest exceptions
from .backtest import (
    ArithmeticGuardError,
    BacktestError,
    CancellationSignal,
    DataUnavailableError,
    InvalidTransitionError,
    StoreUnavailableError,
    TaskFailedError,
    TaskNotFoundError,
    TaskNotReadyError,
    TRANSIENT_ERRORS,
)

__all__ = [
    # Base exceptions
    "VolumeBacktestError",
    "ConfigurationError",
    "DatabaseError",
    "NotFoundError",
    "RetriesExhaustedError",
    "TransientError",
    "ValidationError",
    # Backtest exceptions
    "BacktestError",
    "DataUnavailableError",
    "ArithmeticGuardError",
    "StoreUnavailableError",
    "InvalidTransitionError",
    "TaskNotFoundError",
    "TaskNotReadyError",
    "TaskFailedError",
    "CancellationSignal",
    "TRANSIENT_ERRORS",
]
