"""
Small helpers shared by the backtest pipeline and the stores.
"""

from __future__ import annotations

import hashlib
import json
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, List, Optional, TypeVar, Union

T = TypeVar("T")
Number = Union[int, float]


# Time

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Return ``dt`` as an aware UTC datetime.

    Naive values are taken to be UTC already; SQLite returns
    ``DateTime(timezone=True)`` columns that way.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_datetime(dt: datetime) -> str:
    """ISO-8601 string in UTC, the form used inside cache fingerprints."""
    return ensure_utc(dt).isoformat()


# Numbers

def clamp(value: Number, min_value: Number, max_value: Number) -> Number:
    return max(min_value, min(value, max_value))


def is_finite_number(value: Any) -> bool:
    """True for ints and floats that are neither NaN nor infinite (bools excluded)."""
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def finite_or_none(value: Any) -> Optional[float]:
    """Map a market feed value to a float, or None when it is missing, NaN or infinite."""
    if value is None or not is_finite_number(value):
        return None
    return float(value)


# Collections

def chunk_list(items: List[T], chunk_size: int) -> Iterator[List[T]]:
    """
    Yield consecutive slices of ``items`` of at most ``chunk_size`` elements.

    Raises:
        ValueError: If ``chunk_size`` is not positive
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    for start in range(0, len(items), chunk_size):
        yield items[start:start + chunk_size]


def remove_duplicates(items: Iterable[T]) -> List[T]:
    """Drop repeated items, keeping the first occurrence of each."""
    seen = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


# Hashing

def canonical_json(data: Any) -> str:
    """Serialize with sorted keys and no whitespace so equal data hashes equally."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def calculate_string_hash(text: str, algorithm: str = "sha256") -> str:
    """Hex digest of ``text`` encoded as UTF-8."""
    return hashlib.new(algorithm, text.encode("utf-8")).hexdigest()
