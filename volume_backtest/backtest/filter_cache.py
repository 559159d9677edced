"""
Filter cache for eligible symbol sets.

Eligibility evaluation walks the whole universe, so its result is stored
under the parameter fingerprint and reused by later runs. Concurrent
requests for the same fingerprint share a single computation.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Union

from ..core.config import RetrySettings
from ..core.exceptions import TRANSIENT_ERRORS, ValidationError
from ..core.logging import get_logger
from ..core.utils import remove_duplicates, retry_from_settings, utc_now
from .models import CacheStats, EligibilityResult, FilterCacheEntry

if TYPE_CHECKING:
    from ..database.repositories import FilterCacheRepository

logger = get_logger(__name__)

ComputeFn = Callable[[], Union[EligibilityResult, Iterable[str]]]


class FilterCache:
    """
    Fingerprint-keyed cache of eligible symbol sets.

    Entries never expire on their own; they go away through ``invalidate``
    or ``cleanup``. A hit increments the stored hit count through the
    repository, so the count is shared by every process using the store.

    The in-flight map holds one Future per fingerprint being computed.
    Its lock guards only the map; computation runs outside it.
    """

    def __init__(
        self,
        repository: "FilterCacheRepository",
        retry_settings: Optional[RetrySettings] = None,
        cleanup_older_than_days: int = 30,
    ) -> None:
        """
        Initialize the filter cache.

        Args:
            repository: Entry store
            retry_settings: Retry policy for store calls
            cleanup_older_than_days: Default age cutoff for ``cleanup``
        """
        self.repository = repository
        self.cleanup_older_than_days = cleanup_older_than_days

        self._lock = threading.Lock()
        self._in_flight: Dict[str, Future] = {}
        self._computations = 0

        policy = retry_from_settings(retry_settings or RetrySettings(), exceptions=TRANSIENT_ERRORS)
        self._find = policy(repository.find)
        self._upsert = policy(repository.upsert)
        self._record_hit = policy(repository.record_hit)
        self._delete = policy(repository.delete)
        self._delete_unused_since = policy(repository.delete_unused_since)
        self._stats = policy(repository.stats)

    @property
    def computations(self) -> int:
        """Number of computations run by this instance."""
        return self._computations

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def resolve(self, fingerprint: str, compute_fn: ComputeFn) -> List[str]:
        """
        Get the eligible symbols for a fingerprint, computing them on a miss.

        Args:
            fingerprint: Parameter fingerprint
            compute_fn: Eligibility computation, called at most once per miss

        Returns:
            Eligible symbols in their stored order
        """
        return list(self.resolve_entry(fingerprint, compute_fn).symbols)

    def resolve_entry(
        self,
        fingerprint: str,
        compute_fn: ComputeFn,
        criteria: Optional[Dict[str, Any]] = None,
    ) -> FilterCacheEntry:
        """
        Get the cache entry for a fingerprint, computing it on a miss.

        Args:
            fingerprint: Parameter fingerprint
            compute_fn: Eligibility computation
            criteria: Filter criteria stored with a new entry

        Returns:
            The entry; on a hit its hit_count already includes this call
        """
        entry = self._find(fingerprint)
        if entry is not None:
            return self._hit(entry)

        with self._lock:
            future = self._in_flight.get(fingerprint)
            is_owner = future is None
            if is_owner:
                future = Future()
                self._in_flight[fingerprint] = future

        if not is_owner:
            logger.debug(f"Waiting for in-flight eligibility computation {fingerprint[:12]}")
            return self._hit(future.result())

        try:
            # Another caller may have stored the entry between our miss and taking ownership
            entry = self._find(fingerprint)
            if entry is not None:
                entry = self._hit(entry)
            else:
                entry = self._compute(fingerprint, compute_fn, criteria)
            future.set_result(entry)
            return entry
        except Exception as e:
            future.set_exception(e)
            raise
        finally:
            if not future.done():
                future.cancel()
            with self._lock:
                self._in_flight.pop(fingerprint, None)

    def _hit(self, entry: FilterCacheEntry) -> FilterCacheEntry:
        updated = self._record_hit(entry.fingerprint)
        if updated is None:
            # Invalidated between read and hit; the read copy is still a valid answer
            return entry
        logger.debug(f"Filter cache hit {entry.fingerprint[:12]} (hits: {updated.hit_count})")
        return updated

    def _compute(
        self,
        fingerprint: str,
        compute_fn: ComputeFn,
        criteria: Optional[Dict[str, Any]],
    ) -> FilterCacheEntry:
        logger.info(f"Filter cache miss {fingerprint[:12]}, computing eligible symbols")

        start_time = time.perf_counter()
        outcome = compute_fn()
        processing_time_ms = (time.perf_counter() - start_time) * 1000
        with self._lock:
            self._computations += 1

        if isinstance(outcome, EligibilityResult):
            result = outcome
        else:
            symbols = list(outcome)
            result = EligibilityResult(valid=symbols, statistics={"valid_symbols": len(symbols)})

        entry = FilterCacheEntry(
            fingerprint=fingerprint,
            symbols=remove_duplicates(result.valid),
            filter_criteria=criteria or {},
            invalid_symbols=list(result.invalid),
            invalid_reasons=dict(result.invalid_reasons),
            statistics=dict(result.statistics),
            processing_time_ms=round(processing_time_ms, 3),
        )
        self._upsert(entry)

        logger.info(
            f"Stored filter cache {fingerprint[:12]}: {len(entry.symbols)} symbols "
            f"in {entry.processing_time_ms:.1f}ms"
        )
        return entry

    def get_stats(self) -> CacheStats:
        """Get aggregate cache statistics."""
        return self._stats()

    def invalidate(self, fingerprint: str) -> bool:
        """
        Delete the entry for a fingerprint so the next resolve recomputes it.

        Returns:
            True if an entry was deleted
        """
        deleted = self._delete(fingerprint)
        if deleted:
            logger.info(f"Invalidated filter cache {fingerprint[:12]}")
        return deleted

    def cleanup(self, older_than_days: Optional[int] = None) -> int:
        """
        Delete entries not used within ``older_than_days``.

        Args:
            older_than_days: Age cutoff in days (defaults to the configured value)

        Returns:
            Number of deleted entries
        """
        days = self.cleanup_older_than_days if older_than_days is None else older_than_days
        if days < 0:
            raise ValidationError(
                "older_than_days must not be negative",
                field="older_than_days",
                value=days,
                expected_type=int,
            )

        cutoff = utc_now() - timedelta(days=days)
        deleted = self._delete_unused_since(cutoff)
        logger.info(f"Filter cache cleanup removed {deleted} entries unused since {cutoff.isoformat()}")
        return deleted
