"""
Unit tests for utility modules.

Tests the retry and timing decorators and the helper functions shared by
the backtest pipeline.
"""

import math
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from volume_backtest.core.config import RetrySettings
from volume_backtest.core.exceptions import TRANSIENT_ERRORS, RetriesExhaustedError, StoreUnavailableError
from volume_backtest.core.utils import (
    calculate_string_hash,
    canonical_json,
    chunk_list,
    clamp,
    ensure_utc,
    finite_or_none,
    format_datetime,
    is_finite_number,
    measure_time,
    remove_duplicates,
    retry,
    retry_from_settings,
    utc_now,
)


class TestDecorators:
    """Test utility decorators."""

    def test_retry_decorator_success(self):
        """Test retry decorator with successful function."""
        call_count = 0

        @retry(max_attempts=3, delay=0)
        def test_function():
            nonlocal call_count
            call_count += 1
            return "success"

        assert test_function() == "success"
        assert call_count == 1

    def test_retry_decorator_failure_then_success(self):
        """Test retry decorator with initial failures."""
        call_count = 0

        @retry(max_attempts=3, delay=0)
        def test_function():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ValueError("Test error")
            return "success"

        assert test_function() == "success"
        assert call_count == 3

    def test_retry_decorator_max_attempts_exceeded(self):
        """Test retry decorator when max attempts exceeded."""
        call_count = 0

        @retry(max_attempts=2, delay=0)
        def test_function():
            nonlocal call_count
            call_count += 1
            raise ValueError("Always fails")

        with pytest.raises(RetriesExhaustedError) as exc_info:
            test_function()

        assert call_count == 2
        assert isinstance(exc_info.value.cause, ValueError)

    def test_retry_ignores_other_exceptions(self):
        """Test exceptions outside the retry set propagate on first failure."""
        call_count = 0

        @retry(max_attempts=3, delay=0, exceptions=TRANSIENT_ERRORS)
        def test_function():
            nonlocal call_count
            call_count += 1
            raise KeyError("not transient")

        with pytest.raises(KeyError):
            test_function()
        assert call_count == 1

    def test_retry_on_retry_callback(self):
        """Test on_retry is called before every retry."""
        on_retry = MagicMock()

        @retry(max_attempts=3, delay=0, on_retry=on_retry)
        def test_function():
            raise ConnectionError("down")

        with pytest.raises(RetriesExhaustedError):
            test_function()

        assert on_retry.call_count == 2
        assert on_retry.call_args_list[0].args[0] == 1

    def test_retry_from_settings(self):
        """Test retry policy built from RetrySettings retries store outages."""
        calls = []

        @retry_from_settings(RetrySettings(max_attempts=3, delay=0), exceptions=TRANSIENT_ERRORS)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise StoreUnavailableError("store down")
            return "ok"

        assert flaky() == "ok"
        assert len(calls) == 3

    def test_measure_time_logs(self):
        """Test measure_time logs execution time and returns the value."""
        logger = MagicMock()

        @measure_time(logger=logger, level="DEBUG", message="done")
        def test_function(x):
            return x * 2

        assert test_function(4) == 8
        logger.debug.assert_called_once()
        args, kwargs = logger.debug.call_args
        assert args == ("done",)
        assert kwargs["function"] == "test_function"
        assert kwargs["execution_time"] >= 0


class TestHelpers:
    """Test helper functions."""

    def test_utc_now(self):
        """Test UTC now function."""
        now = utc_now()
        assert isinstance(now, datetime)
        assert now.tzinfo is not None

    def test_ensure_utc(self):
        """Test naive and offset datetimes normalize to UTC."""
        naive = datetime(2024, 1, 1, 12, 0)
        assert ensure_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

        offset = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        converted = ensure_utc(offset)
        assert converted.hour == 12
        assert converted.tzinfo == timezone.utc

        assert ensure_utc(None) is None

    def test_format_datetime(self):
        """Test ISO formatting in UTC."""
        assert format_datetime(datetime(2024, 1, 1)) == "2024-01-01T00:00:00+00:00"

    def test_clamp(self):
        """Test clamping."""
        assert clamp(5, 0, 1) == 1
        assert clamp(-5, 0, 1) == 0
        assert clamp(0.5, 0, 1) == 0.5

    def test_is_finite_number(self):
        """Test finite number detection."""
        assert is_finite_number(1)
        assert is_finite_number("2.5")
        assert not is_finite_number(float("nan"))
        assert not is_finite_number(float("inf"))
        assert not is_finite_number(True)
        assert not is_finite_number("abc")
        assert not is_finite_number(None)

    def test_finite_or_none(self):
        """Test feed values normalize to finite floats or None."""
        assert finite_or_none(1) == 1.0
        assert finite_or_none(float("nan")) is None
        assert finite_or_none(-math.inf) is None
        assert finite_or_none(None) is None

    def test_chunk_list(self):
        """Test list chunking."""
        assert list(chunk_list([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        assert list(chunk_list([], 3)) == []
        with pytest.raises(ValueError):
            list(chunk_list([1], 0))

    def test_remove_duplicates(self):
        """Test de-duplication keeps first-seen order."""
        assert remove_duplicates(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]

    def test_hashing(self):
        """Test canonical JSON hashing is key-order independent."""
        first = calculate_string_hash(canonical_json({"a": 1, "b": [1, 2]}))
        second = calculate_string_hash(canonical_json({"b": [1, 2], "a": 1}))

        assert first == second
        assert len(first) == 64
        assert canonical_json({"b": 1, "a": None}) == '{"a":null,"b":1}'
