"""
Backtest-specific exception classes.

This module defines the errors raised while resolving eligible symbols,
simulating positions, persisting task state, and querying task results.
"""

from __future__ import annotations

from typing import Any, Optional

from .base import NotFoundError, TransientError, VolumeBacktestError


class BacktestError(VolumeBacktestError):
    """Base exception for all backtest-related errors."""

    error_code = "BACKTEST_ERROR"
    error_category = "backtest"
    severity = "error"


class DataUnavailableError(BacktestError):
    """Raised when required market data or eligible symbols are missing."""

    error_code = "DATA_UNAVAILABLE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        symbol: Optional[str] = None,
        timestamp: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize data unavailable error.

        Args:
            message: Error message
            symbol: Symbol whose data is missing
            timestamp: Bucket timestamp that was being processed
            **kwargs: Additional arguments for base class
        """
        super().__init__(message, **kwargs)

        if symbol:
            self.add_context("symbol", symbol)
        if timestamp is not None:
            self.add_context("timestamp", str(timestamp))


class ArithmeticGuardError(BacktestError):
    """
    Raised when a denominator is zero or negative.

    Callers handle it locally by skipping or zeroing the affected
    computation, so it never reaches the task record.
    """

    error_code = "ARITHMETIC_GUARD_ERROR"
    severity = "warning"

    def __init__(
        self,
        message: str,
        *,
        quantity: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)

        if quantity:
            self.add_context("quantity", quantity)


class StoreUnavailableError(TransientError):
    """Raised when the task or cache store cannot be reached."""

    error_code = "STORE_UNAVAILABLE_ERROR"
    error_category = "storage"


class InvalidTransitionError(BacktestError):
    """Raised when a task status change would break the state machine."""

    error_code = "INVALID_TRANSITION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        task_id: Optional[str] = None,
        current_status: Optional[str] = None,
        requested_status: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize invalid transition error.

        Args:
            message: Error message
            task_id: Task identifier
            current_status: Status the task currently has
            requested_status: Status that was requested
            **kwargs: Additional arguments for base class
        """
        super().__init__(message, **kwargs)

        if task_id:
            self.add_context("task_id", task_id)
        if current_status:
            self.add_context("current_status", current_status)
        if requested_status:
            self.add_context("requested_status", requested_status)


class TaskNotFoundError(NotFoundError):
    """Raised when a task id is unknown."""

    error_code = "TASK_NOT_FOUND_ERROR"

    def __init__(self, task_id: str, **kwargs: Any) -> None:
        super().__init__(
            f"Backtest task {task_id} not found",
            resource_type="async_backtest_task",
            resource_id=task_id,
            **kwargs,
        )
        self.task_id = task_id


class TaskNotReadyError(BacktestError):
    """Raised when a result is requested for a task that has not completed."""

    error_code = "TASK_NOT_READY_ERROR"
    severity = "info"

    def __init__(self, task_id: str, status: str, **kwargs: Any) -> None:
        super().__init__(
            f"Backtest task {task_id} has no result (status: {status})",
            **kwargs,
        )
        self.task_id = task_id
        self.status = status
        self.add_context("task_id", task_id)
        self.add_context("status", status)


class TaskFailedError(BacktestError):
    """Raised when a result is requested for a failed task."""

    error_code = "TASK_FAILED_ERROR"

    def __init__(self, task_id: str, error_message: Optional[str], **kwargs: Any) -> None:
        super().__init__(
            f"Backtest task {task_id} failed: {error_message or 'unknown error'}",
            **kwargs,
        )
        self.task_id = task_id
        self.error_message = error_message
        self.add_context("task_id", task_id)


class CancellationSignal(Exception):
    """
    Cooperative cancellation signal raised at a bucket boundary.

    Ends the task in the cancelled state, not the failed state.
    """

    def __init__(self, task_id: Optional[str] = None, processed_buckets: int = 0) -> None:
        super().__init__(f"Backtest task {task_id} cancelled after {processed_buckets} buckets")
        self.task_id = task_id
        self.processed_buckets = processed_buckets


# Failures worth retrying on store and market-data calls
TRANSIENT_ERRORS = (TransientError, TimeoutError, ConnectionError)
