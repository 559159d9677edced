"""
Utility module for the volume backtest engine.

Provides decorators and helper functions used across the package.
"""

from .decorators import measure_time, retry, retry_from_settings
from .helpers import (
    calculate_string_hash,
    canonical_json,
    chunk_list,
    clamp,
    ensure_utc,
    finite_or_none,
    format_datetime,
    is_finite_number,
    remove_duplicates,
    utc_now,
)

__all__ = [
    # Decorators
    "retry",
    "measure_time",
    "retry_from_settings",
    # Helpers
    "utc_now",
    "ensure_utc",
    "format_datetime",
    "clamp",
    "is_finite_number",
    "finite_or_none",
    "chunk_list",
    "remove_duplicates",
    "calculate_string_hash",
    "canonical_json",
]
