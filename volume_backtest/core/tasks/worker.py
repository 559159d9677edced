"""
Task worker system for executing background tasks.

Workers are daemon threads that pull task ids from a TaskQueue and hand
them to a handler callable. The handler owns all status bookkeeping; a
worker only counts executions and keeps the loop alive on errors.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Optional

from ..logging import get_logger
from ..utils import utc_now
from .models import WorkerStats
from .queue import TaskQueue

logger = get_logger(__name__)

TaskHandler = Callable[[str], None]


class TaskWorker:
    """
    Individual task worker for executing tasks from a queue.

    Runs one task at a time; shutdown waits for the current task to
    return rather than interrupting it.
    """

    def __init__(
        self,
        worker_id: str,
        queue: TaskQueue,
        handler: TaskHandler,
        poll_interval: float = 0.5,
    ) -> None:
        """
        Initialize task worker.

        Args:
            worker_id: Unique worker identifier
            queue: Queue to consume task ids from
            handler: Callable executed for each task id
            poll_interval: Queue wait timeout, bounds shutdown latency
        """
        self.worker_id = worker_id
        self.queue = queue
        self.handler = handler
        self.poll_interval = poll_interval

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

        self._stats = WorkerStats(worker_id=worker_id)

    def start(self) -> bool:
        """Start the task worker."""
        if self.is_running:
            logger.warning(f"Worker {self.worker_id} already running")
            return True

        self._stop_event.clear()
        self._stats.started_at = utc_now()
        self._thread = threading.Thread(
            target=self._worker_loop,
            name=f"TaskWorker-{self.worker_id}",
            daemon=True,
        )
        self._thread.start()

        logger.info(f"Started worker {self.worker_id}")
        return True

    def request_stop(self) -> None:
        """Ask the loop to exit after the current task."""
        self._stop_event.set()

    def stop(self, timeout: float = 30.0) -> None:
        """
        Stop the task worker gracefully.

        Args:
            timeout: Maximum wait time for the current task to finish
        """
        if self._thread is None:
            return

        logger.info(f"Stopping worker {self.worker_id}...")
        self.request_stop()
        self.queue.wake_all()
        self._thread.join(timeout=timeout)

        if self._thread.is_alive():
            logger.warning(
                f"Worker {self.worker_id} still busy with task {self._stats.current_task_id} after {timeout}s"
            )
        else:
            self._thread = None
            logger.info(f"Stopped worker {self.worker_id}")

    def _worker_loop(self) -> None:
        """Main worker loop for processing tasks."""
        logger.debug(f"Started worker loop for {self.worker_id}")

        while not self._stop_event.is_set():
            task_id = self.queue.get(timeout=self.poll_interval)
            self._stats.last_heartbeat = utc_now()
            if task_id is None:
                continue

            self._execute(task_id)

        logger.debug(f"Exited worker loop for {self.worker_id}")

    def _execute(self, task_id: str) -> None:
        with self._lock:
            self._stats.current_task_id = task_id

        start_time = time.perf_counter()
        try:
            self.handler(task_id)
        except Exception as e:
            with self._lock:
                self._stats.tasks_failed += 1
            logger.error(f"Worker {self.worker_id} handler error for task {task_id}: {e}", exc_info=True)
        finally:
            with self._lock:
                self._stats.tasks_executed += 1
                self._stats.current_task_id = None
            logger.debug(
                f"Worker {self.worker_id} finished task {task_id} in {time.perf_counter() - start_time:.3f}s"
            )

    @property
    def is_running(self) -> bool:
        """Check if worker thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_busy(self) -> bool:
        """Check if worker is executing a task."""
        return self._stats.current_task_id is not None

    def get_stats(self) -> Dict[str, Any]:
        """Get worker performance statistics."""
        with self._lock:
            stats = self._stats.model_dump()
            stats["success_rate"] = self._stats.success_rate
        stats["is_running"] = self.is_running
        return stats


class TaskWorkerPool:
    """
    Fixed-size pool of task workers sharing one queue.
    """

    def __init__(
        self,
        handler: TaskHandler,
        queue: TaskQueue,
        worker_count: int = 4,
        poll_interval: float = 0.5,
        pool_name: str = "backtest",
    ) -> None:
        """
        Initialize task worker pool.

        Args:
            handler: Callable executed for each task id
            queue: Queue shared by all workers
            worker_count: Number of workers to start
            poll_interval: Queue wait timeout for each worker
            pool_name: Pool name used in worker ids and logs
        """
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")

        self.handler = handler
        self.queue = queue
        self.worker_count = worker_count
        self.poll_interval = poll_interval
        self.pool_name = pool_name

        self._workers: List[TaskWorker] = []
        self._lock = threading.RLock()

        logger.info(f"Initialized worker pool '{pool_name}' with {worker_count} workers")

    def start(self) -> bool:
        """Start the worker pool."""
        with self._lock:
            if self._workers:
                logger.warning(f"Worker pool '{self.pool_name}' already started")
                return True

            for i in range(self.worker_count):
                worker = TaskWorker(
                    worker_id=f"{self.pool_name}-worker-{i + 1}",
                    queue=self.queue,
                    handler=self.handler,
                    poll_interval=self.poll_interval,
                )
                worker.start()
                self._workers.append(worker)

        logger.info(f"Started worker pool '{self.pool_name}' with {len(self._workers)} workers")
        return True

    def stop(self, timeout: float = 30.0) -> None:
        """
        Stop all workers in the pool.

        Args:
            timeout: Maximum wait time for each worker's current task
        """
        logger.info(f"Stopping worker pool '{self.pool_name}'...")

        with self._lock:
            workers = list(self._workers)
            self._workers.clear()

        # Signal everyone first so idle workers exit in parallel
        for worker in workers:
            worker.request_stop()
        self.queue.wake_all()

        for worker in workers:
            worker.stop(timeout=timeout)

        logger.info(f"Stopped worker pool '{self.pool_name}'")

    @property
    def is_running(self) -> bool:
        """Check if any worker is running."""
        with self._lock:
            return any(worker.is_running for worker in self._workers)

    def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics."""
        with self._lock:
            busy = sum(1 for worker in self._workers if worker.is_busy)
            workers = [worker.get_stats() for worker in self._workers]

        return {
            "pool_name": self.pool_name,
            "worker_count": len(workers),
            "busy_workers": busy,
            "tasks_executed": sum(w["tasks_executed"] for w in workers),
            "tasks_failed": sum(w["tasks_failed"] for w in workers),
            "workers": workers,
        }
