"""
Repository interfaces for task records and filter cache entries.

Both stores are shared across worker threads; implementations make every
method atomic on its own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ...backtest.models import AsyncBacktestTask, CacheStats, FilterCacheEntry
from ...core.exceptions import InvalidTransitionError
from ...core.tasks import TaskStatus, can_transition

# Keyword fields update_status accepts alongside the status change
TASK_UPDATE_FIELDS = frozenset({
    "current_time",
    "started_at",
    "completed_at",
    "error_message",
    "result",
    "processing_time_ms",
    "processed_buckets",
    "total_buckets",
})


def check_transition(task_id: str, status: TaskStatus, expected: Iterable[TaskStatus]) -> List[TaskStatus]:
    """
    Validate a compare-and-set request against the task state machine.

    Args:
        task_id: Task being updated
        status: Requested status
        expected: Statuses the task may currently have

    Returns:
        Expected statuses as a list

    Raises:
        InvalidTransitionError: If some expected status cannot move to ``status``
    """
    expected_list = [TaskStatus(s) for s in expected]
    for current in expected_list:
        if not can_transition(current, status):
            raise InvalidTransitionError(
                f"Transition {current.value} -> {TaskStatus(status).value} is not allowed",
                task_id=task_id,
                current_status=current.value,
                requested_status=TaskStatus(status).value,
            )
    return expected_list


def check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - TASK_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Unknown task fields: {', '.join(sorted(unknown))}")


class TaskRepository(ABC):
    """Store of AsyncBacktestTask records."""

    @abstractmethod
    def find(self, task_id: str) -> Optional[AsyncBacktestTask]:
        """Get a task by id, or None."""

    @abstractmethod
    def upsert(self, task: AsyncBacktestTask) -> AsyncBacktestTask:
        """Insert or fully replace a task."""

    @abstractmethod
    def delete(self, task_id: str) -> bool:
        """Remove a task. Returns False if it did not exist."""

    @abstractmethod
    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        expected: Iterable[TaskStatus],
        **fields: Any,
    ) -> bool:
        """
        Atomically move a task to ``status`` if its status is in ``expected``.

        Args:
            task_id: Task to update
            status: New status
            expected: Statuses the task must currently have
            **fields: Other task fields to write in the same step

        Returns:
            bool: True if the task was updated, False if its status did not match

        Raises:
            InvalidTransitionError: If the requested transition is never allowed
        """

    @abstractmethod
    def update_progress(self, task_id: str, current_time: datetime, processed_buckets: int) -> bool:
        """Record bucket progress for a running task. Returns False if not running."""

    @abstractmethod
    def list_tasks(self, status: Optional[TaskStatus] = None, limit: Optional[int] = None) -> List[AsyncBacktestTask]:
        """List tasks, newest first."""

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]:
        """Count tasks per status value."""


class FilterCacheRepository(ABC):
    """Store of FilterCacheEntry records keyed by fingerprint."""

    @abstractmethod
    def find(self, fingerprint: str) -> Optional[FilterCacheEntry]:
        """Get an entry by fingerprint, or None."""

    @abstractmethod
    def upsert(self, entry: FilterCacheEntry) -> FilterCacheEntry:
        """Insert or replace an entry."""

    @abstractmethod
    def record_hit(self, fingerprint: str, hit_at: Optional[datetime] = None) -> Optional[FilterCacheEntry]:
        """
        Atomically increment hit_count and set last_hit_at.

        Returns:
            The updated entry, or None if it does not exist
        """

    @abstractmethod
    def delete(self, fingerprint: str) -> bool:
        """Delete an entry. Returns True if it existed."""

    @abstractmethod
    def delete_unused_since(self, cutoff: datetime) -> int:
        """
        Delete entries whose last use is before ``cutoff``.

        Last use is last_hit_at, or created_at for entries never hit.

        Returns:
            Number of deleted entries
        """

    @abstractmethod
    def stats(self) -> CacheStats:
        """Aggregate usage statistics."""

    @abstractmethod
    def list_entries(self) -> List[FilterCacheEntry]:
        """List entries, newest first."""
