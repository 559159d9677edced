"""
Priority-based task queue.

Thread-safe queue of task identifiers with priority ordering and FIFO
order within a priority, consumed by the worker pool.
"""

from __future__ import annotations

import heapq
import threading
import time
from typing import Any, Dict, List, Optional, Set, Tuple

from ..logging import get_logger
from .models import TaskPriority

logger = get_logger(__name__)


class TaskQueue:
    """
    Priority task queue holding task ids.

    Removal is lazy: ``remove`` marks an id and ``get`` skips it, so a
    cancelled pending task never reaches a worker.
    """

    def __init__(self, name: str = "backtests", max_size: int = 1000) -> None:
        """
        Initialize task queue.

        Args:
            name: Queue name used in logs
            max_size: Maximum number of queued tasks
        """
        self.name = name
        self.max_size = max_size

        self._heap: List[Tuple[int, int, str]] = []
        self._queued: Set[str] = set()
        self._sequence = 0
        self._condition = threading.Condition(threading.RLock())

        self._enqueued_count = 0
        self._dequeued_count = 0
        self._removed_count = 0
        self._rejected_count = 0

    def put(self, task_id: str, priority: TaskPriority = TaskPriority.NORMAL) -> bool:
        """
        Add task to queue with specified priority.

        Args:
            task_id: Task to enqueue
            priority: Task priority

        Returns:
            bool: True if task was added
        """
        with self._condition:
            if len(self._queued) >= self.max_size:
                logger.warning(f"Queue '{self.name}' is full, rejecting task {task_id}")
                self._rejected_count += 1
                return False

            if task_id in self._queued:
                logger.warning(f"Task {task_id} already in queue '{self.name}'")
                return False

            # Negate priority for the min-heap; sequence keeps FIFO within a priority
            heapq.heappush(self._heap, (-int(priority), self._sequence, task_id))
            self._queued.add(task_id)
            self._sequence += 1
            self._enqueued_count += 1

            logger.debug(f"Enqueued task {task_id} with priority {TaskPriority(priority).name}")
            self._condition.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Get highest priority task id from queue.

        Args:
            timeout: Maximum wait time in seconds (None waits forever)

        Returns:
            Task id, or None on timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._condition:
            while True:
                while self._heap:
                    _, _, task_id = heapq.heappop(self._heap)
                    if task_id in self._queued:
                        self._queued.discard(task_id)
                        self._dequeued_count += 1
                        logger.debug(f"Dequeued task {task_id}")
                        return task_id

                if deadline is None:
                    self._condition.wait()
                    continue

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._condition.wait(remaining)

    def remove(self, task_id: str) -> bool:
        """
        Remove a queued task.

        Args:
            task_id: Task to remove

        Returns:
            bool: True if the task was still queued
        """
        with self._condition:
            if task_id not in self._queued:
                return False
            self._queued.discard(task_id)
            self._removed_count += 1
            logger.debug(f"Removed task {task_id} from queue '{self.name}'")
            return True

    def contains(self, task_id: str) -> bool:
        """Check if a task is waiting in the queue."""
        with self._condition:
            return task_id in self._queued

    def size(self) -> int:
        """Number of tasks waiting in the queue."""
        with self._condition:
            return len(self._queued)

    def is_empty(self) -> bool:
        """Check if queue is empty."""
        return self.size() == 0

    def wake_all(self) -> None:
        """Wake every blocked consumer, used during shutdown."""
        with self._condition:
            self._condition.notify_all()

    def get_stats(self) -> Dict[str, Any]:
        """Get queue statistics."""
        with self._condition:
            return {
                "name": self.name,
                "size": len(self._queued),
                "max_size": self.max_size,
                "enqueued": self._enqueued_count,
                "dequeued": self._dequeued_count,
                "removed": self._removed_count,
                "rejected": self._rejected_count,
            }
