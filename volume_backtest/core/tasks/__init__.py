"""
Background task system for the volume backtest engine.

Provides the task status state machine, cooperative cancellation,
a priority queue of task ids, and a thread-based worker pool.
"""

from .models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    CancellationToken,
    TaskPriority,
    TaskStatus,
    WorkerStats,
    can_transition,
)
from .queue import TaskQueue
from .worker import TaskWorker, TaskWorkerPool

__all__ = [
    # Models
    "TaskStatus",
    "TaskPriority",
    "TERMINAL_STATUSES",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "CancellationToken",
    "WorkerStats",

    # Queue management
    "TaskQueue",

    # Workers
    "TaskWorker",
    "TaskWorkerPool",
]
