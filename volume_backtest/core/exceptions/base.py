"""
Root exception classes for the volume backtest engine.

Every error raised by the package derives from VolumeBacktestError, which
carries an error code and a context dict that end up as structured
fields when the error is logged.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type, Union


class VolumeBacktestError(Exception):
    """
    Base exception for the volume backtest engine.

    Attributes:
        error_code: Stable code for programmatic handling
        context: Structured details (symbol, task id, field, ...)
        cause: Exception that triggered this one, if any
        suggestion: Hint for the caller on how to proceed
    """

    error_code: str = "VOLUME_BACKTEST_ERROR"
    error_category: str = "general"
    severity: str = "error"  # info, warning, error, critical

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        super().__init__(message)

        self.error_code = error_code or self.__class__.error_code
        self.context = dict(context or {})
        self.cause = cause
        self.suggestion = suggestion
        self.raised_at = datetime.now(timezone.utc)

        if cause is not None:
            self.__cause__ = cause

    @property
    def message(self) -> str:
        return super().__str__()

    def add_context(self, key: str, value: Any) -> None:
        self.context[key] = value

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation used as log fields."""
        data = {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "error_category": self.error_category,
            "message": self.message,
            "raised_at": self.raised_at.isoformat(),
        }
        if self.context:
            data["context"] = self.context
        if self.suggestion:
            data["suggestion"] = self.suggestion
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data

    def log_error(self, logger: Optional[Any] = None) -> None:
        """
        Log the error at the level matching its severity.

        Args:
            logger: structlog logger (the package logger if omitted)
        """
        if logger is None:
            from ..logging import get_logger
            logger = get_logger(__name__)

        fields = self.to_dict()
        fields.pop("message")
        log_func = getattr(logger, self.severity, logger.error)
        log_func(str(self), **fields)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, error_code={self.error_code!r}, context={self.context!r})"


class ConfigurationError(VolumeBacktestError):
    """Settings or YAML configuration could not be loaded or validated."""

    error_code = "CONFIG_ERROR"
    error_category = "configuration"
    severity = "critical"


class ValidationError(VolumeBacktestError):
    """Caller-supplied input was rejected."""

    error_code = "VALIDATION_ERROR"
    error_category = "validation"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        expected_type: Optional[Union[Type, str]] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Name of the rejected field
            value: Rejected value (truncated to 100 characters)
            expected_type: Expected type, or a description of the expected format
            **kwargs: Additional arguments for VolumeBacktestError
        """
        super().__init__(message, **kwargs)

        if field:
            self.add_context("field", field)
        if value is not None:
            self.add_context("value", str(value)[:100])
        if expected_type:
            self.add_context("expected_type", getattr(expected_type, "__name__", str(expected_type)))


class DatabaseError(VolumeBacktestError):
    """SQL storage failed in a way retrying will not fix."""

    error_code = "DATABASE_ERROR"
    error_category = "database"

    def __init__(self, message: str, *, operation: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)

        if operation:
            self.add_context("operation", operation)


class NotFoundError(VolumeBacktestError):
    """A requested record does not exist."""

    error_code = "NOT_FOUND_ERROR"
    error_category = "not_found"
    severity = "warning"

    def __init__(
        self,
        message: str,
        *,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)

        if resource_type:
            self.add_context("resource_type", resource_type)
        if resource_id:
            self.add_context("resource_id", resource_id)


class TransientError(VolumeBacktestError):
    """A failure that may succeed when the call is repeated."""

    error_code = "TRANSIENT_ERROR"
    error_category = "transient"
    severity = "warning"

    def __init__(self, message: str, *, operation: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)

        if operation:
            self.add_context("operation", operation)


class RetriesExhaustedError(VolumeBacktestError):
    """Every attempt of a retried call failed; ``cause`` holds the last failure."""

    error_code = "RETRIES_EXHAUSTED_ERROR"
    error_category = "transient"

    def __init__(self, message: str, *, attempts: int, operation: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)

        self.attempts = attempts
        self.add_context("attempts", attempts)
        if operation:
            self.add_context("operation", operation)
