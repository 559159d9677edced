"""
Task models and data structures for the background task system.

This module defines the task status state machine, priorities, the
cooperative cancellation token, and worker statistics.
"""

from __future__ import annotations

import threading
from datetime import datetime
from enum import Enum, IntEnum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, Field

from ..exceptions import CancellationSignal
from ..utils import utc_now


class TaskStatus(str, Enum):
    """Task execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transition is possible."""
        return self in TERMINAL_STATUSES


class TaskPriority(IntEnum):
    """Task priority levels (higher number = higher priority)."""

    LOW = 1
    NORMAL = 5
    HIGH = 10


TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.CANCELLED,
})

# pending -> cancelled covers a cancel that lands before a worker claims the task
ALLOWED_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """
    Check whether a status change is allowed by the task state machine.

    Args:
        current: Status the task has now
        target: Requested status

    Returns:
        True if the transition is allowed
    """
    return TaskStatus(target) in ALLOWED_TRANSITIONS[TaskStatus(current)]


class CancellationToken:
    """
    Cooperative cancellation flag shared between a caller and a worker.

    The worker polls it at safe points; nothing is interrupted mid-step.
    """

    def __init__(self, task_id: Optional[str] = None) -> None:
        self.task_id = task_id
        self._event = threading.Event()
        self._requested_at: Optional[datetime] = None

    def cancel(self) -> None:
        """Request cancellation."""
        if not self._event.is_set():
            self._requested_at = utc_now()
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._event.is_set()

    @property
    def requested_at(self) -> Optional[datetime]:
        """When cancellation was requested, if it was."""
        return self._requested_at

    def raise_if_cancelled(self, processed_buckets: int = 0) -> None:
        """
        Raise CancellationSignal if cancellation was requested.

        Args:
            processed_buckets: Progress reached when the check ran
        """
        if self._event.is_set():
            raise CancellationSignal(self.task_id, processed_buckets)


class WorkerStats(BaseModel):
    """Execution counters for a single worker."""

    worker_id: str = Field(description="Worker identifier")
    tasks_executed: int = Field(default=0, ge=0)
    tasks_failed: int = Field(default=0, ge=0)
    current_task_id: Optional[str] = Field(default=None)
    started_at: datetime = Field(default_factory=utc_now)
    last_heartbeat: datetime = Field(default_factory=utc_now)

    @property
    def success_rate(self) -> float:
        """Share of executed tasks whose handler did not raise."""
        if self.tasks_executed == 0:
            return 0.0
        return (self.tasks_executed - self.tasks_failed) / self.tasks_executed
