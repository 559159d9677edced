"""
Background task orchestration for volume backtests.

This module owns the task lifecycle: validating submissions, persisting
task records, running them on the worker pool, cooperative cancellation,
and the query operations callers use to follow a task.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from ..core.config import Settings, get_settings
from ..core.exceptions import (
    TRANSIENT_ERRORS,
    BacktestError,
    CancellationSignal,
    TaskFailedError,
    TaskNotFoundError,
    TaskNotReadyError,
    ValidationError,
    VolumeBacktestError,
)
from ..core.logging import bind_task_context, get_logger
from ..core.tasks import (
    CancellationToken,
    TaskPriority,
    TaskQueue,
    TaskStatus,
    TaskWorkerPool,
)
from ..core.utils import retry_from_settings, utc_now
from .engine import VolumeBacktestEngine, bucket_timestamps
from .filter_cache import FilterCache
from .models import (
    AsyncBacktestTask,
    BacktestParams,
    BacktestResult,
    CacheStats,
    CancelOutcome,
    TaskStatusReport,
)

if TYPE_CHECKING:
    from ..database.repositories import TaskRepository

logger = get_logger(__name__)

# BacktestParams fields filled from settings when a mapping omits them
_DEFAULTED_FIELDS = {
    "granularity_hours": "default_granularity_hours",
    "limit": "default_limit",
    "min_volume_threshold": "min_volume_threshold",
    "min_history_days": "min_history_days",
    "quote_asset": "quote_asset",
    "short_amount": "short_amount",
    "btc_amount": "btc_amount",
}


class BacktestTaskManager:
    """
    Runs backtests as background tasks.

    Status changes go through the repository's compare-and-set
    ``update_status``, so a cancel racing with a worker claim resolves to
    exactly one outcome. Cancellation of a running task is cooperative:
    the token is checked after every bucket.
    """

    def __init__(
        self,
        engine: VolumeBacktestEngine,
        task_repository: "TaskRepository",
        filter_cache: FilterCache,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the task manager.

        Args:
            engine: Backtest engine shared by all workers
            task_repository: Task record store
            filter_cache: Filter cache used by the engine
            settings: Application settings
        """
        self.engine = engine
        self.task_repository = task_repository
        self.filter_cache = filter_cache
        self.settings = settings or get_settings()

        performance = self.settings.performance
        self.queue = TaskQueue(name="backtests", max_size=performance.queue_max_size)
        self.pool = TaskWorkerPool(
            handler=self._run_task,
            queue=self.queue,
            worker_count=performance.worker_count,
            poll_interval=performance.poll_interval,
            pool_name="backtest",
        )

        self._tokens: Dict[str, CancellationToken] = {}
        self._running: Set[str] = set()
        self._lock = threading.RLock()
        self._task_finished = threading.Condition()
        self._is_running = False

        policy = retry_from_settings(self.settings.retry, exceptions=TRANSIENT_ERRORS)
        self._find = policy(task_repository.find)
        self._upsert = policy(task_repository.upsert)
        self._delete = policy(task_repository.delete)
        self._update_status = policy(task_repository.update_status)
        self._update_progress = policy(task_repository.update_progress)
        self._list_tasks = policy(task_repository.list_tasks)
        self._count_by_status = policy(task_repository.count_by_status)

    # Lifecycle

    def start(self) -> None:
        """Start the worker pool and pick up tasks left by a previous run."""
        if self._is_running:
            logger.warning("Backtest task manager already running")
            return

        self._recover_tasks()
        self.pool.start()
        self._is_running = True
        logger.info(f"Backtest task manager started with {self.pool.worker_count} workers")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the worker pool.

        Running tasks are asked to cancel and get ``timeout`` seconds to
        reach their next bucket boundary. Pending tasks stay pending and
        are picked up again by the next ``start``.
        """
        if not self._is_running:
            return

        timeout = self.settings.performance.shutdown_timeout if timeout is None else timeout
        with self._lock:
            tokens = [self._tokens[task_id] for task_id in self._running if task_id in self._tokens]
        for token in tokens:
            token.cancel()

        self.pool.stop(timeout=timeout)
        self._is_running = False
        logger.info("Backtest task manager stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    def __enter__(self) -> "BacktestTaskManager":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def _recover_tasks(self) -> None:
        interrupted = self._list_tasks(status=TaskStatus.RUNNING)
        for task in interrupted:
            if self._update_status(
                task.task_id,
                TaskStatus.FAILED,
                expected=[TaskStatus.RUNNING],
                error_message="Interrupted by shutdown before completion",
                completed_at=utc_now(),
            ):
                logger.warning(f"[{task.task_id}] Marked interrupted task as failed")

        pending = sorted(self._list_tasks(status=TaskStatus.PENDING), key=lambda task: task.created_at)
        for task in pending:
            if self._token_for(task.task_id).is_cancelled:
                self._renew_token(task.task_id)
            self.queue.put(task.task_id)
        if pending:
            logger.info(f"Re-queued {len(pending)} pending backtest tasks")

    # Submission

    def _coerce_params(self, params: Union[BacktestParams, Mapping[str, Any]]) -> BacktestParams:
        if isinstance(params, BacktestParams):
            return params
        if not isinstance(params, Mapping):
            raise ValidationError(
                f"Backtest parameters must be BacktestParams or a mapping, got {type(params).__name__}",
                field="params",
                expected_type=BacktestParams,
            )

        defaults = self.settings.backtest
        data = {field: getattr(defaults, setting) for field, setting in _DEFAULTED_FIELDS.items()}
        data.update(params)

        try:
            return BacktestParams.model_validate(data)
        except PydanticValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in error['loc']) or 'params'}: {error['msg']}"
                for error in e.errors()
            ]
            raise ValidationError(
                f"Invalid backtest parameters: {'; '.join(errors)}",
                field="params",
                cause=e,
                context={"errors": errors},
            ) from e

    def submit_backtest(
        self,
        params: Union[BacktestParams, Mapping[str, Any]],
        priority: TaskPriority = TaskPriority.NORMAL,
    ) -> str:
        """
        Validate parameters, store a pending task, and enqueue it.

        Args:
            params: Backtest parameters; mappings get defaults from settings
            priority: Queue priority

        Returns:
            The new task id

        Raises:
            ValidationError: Invalid parameters; no task is created
            BacktestError: The task queue is full
        """
        params = self._coerce_params(params)

        if self.queue.size() >= self.queue.max_size:
            raise BacktestError(
                f"Backtest queue is full ({self.queue.max_size} tasks)",
                suggestion="Retry after running tasks finish",
            )

        task = AsyncBacktestTask(params=params, total_buckets=len(bucket_timestamps(params)))
        self._upsert(task)
        self._token_for(task.task_id)

        if not self.queue.put(task.task_id, priority):
            # Lost the race for the last slot
            self._delete(task.task_id)
            self._drop_token(task.task_id)
            raise BacktestError(f"Backtest queue is full ({self.queue.max_size} tasks)")

        logger.info(
            f"[{task.task_id}] Submitted backtest {params.start_time.isoformat()} -> "
            f"{params.end_time.isoformat()} ({task.total_buckets} buckets)"
        )
        return task.task_id

    # Execution

    def _token_for(self, task_id: str) -> CancellationToken:
        with self._lock:
            token = self._tokens.get(task_id)
            if token is None:
                token = CancellationToken(task_id)
                self._tokens[task_id] = token
            return token

    def _renew_token(self, task_id: str) -> CancellationToken:
        with self._lock:
            token = CancellationToken(task_id)
            self._tokens[task_id] = token
            return token

    def _drop_token(self, task_id: str) -> None:
        with self._lock:
            self._tokens.pop(task_id, None)
            self._running.discard(task_id)

    def _notify_finished(self) -> None:
        with self._task_finished:
            self._task_finished.notify_all()

    def _run_task(self, task_id: str) -> None:
        """Worker handler; log lines emitted while it runs carry the task id."""
        with bind_task_context(task_id):
            self._execute_task(task_id)

    def _execute_task(self, task_id: str) -> None:
        """Claim, run, and record the outcome of one task."""
        task = self._find(task_id)
        if task is None:
            logger.warning("Task vanished before execution")
            return

        token = self._token_for(task_id)
        if token.is_cancelled:
            if self._update_status(
                task_id, TaskStatus.CANCELLED, expected=[TaskStatus.PENDING], completed_at=utc_now()
            ):
                logger.info("Backtest cancelled before it started")
            self._drop_token(task_id)
            self._notify_finished()
            return

        with self._lock:
            claimed = self._update_status(
                task_id, TaskStatus.RUNNING, expected=[TaskStatus.PENDING], started_at=utc_now()
            )
            if claimed:
                self._running.add(task_id)
        if not claimed:
            logger.info("Skipping task, no longer pending")
            self._drop_token(task_id)
            self._notify_finished()
            return

        logger.info("Backtest started")
        start_time = time.perf_counter()

        def elapsed_ms() -> float:
            return round((time.perf_counter() - start_time) * 1000, 3)

        def on_progress(bucket_time, processed: int, total: int) -> None:
            self._update_progress(task_id, bucket_time, processed)
            logger.debug(f"Processed bucket {processed}/{total} ({bucket_time.isoformat()})")

        try:
            result = self.engine.run(task.params, token=token, on_progress=on_progress, task_id=task_id)
        except CancellationSignal as e:
            self._finish(task_id, TaskStatus.CANCELLED, completed_at=utc_now(), processing_time_ms=elapsed_ms())
            logger.info(f"Backtest cancelled after {e.processed_buckets} buckets")
        except VolumeBacktestError as e:
            e.log_error(logger)
            self._finish(
                task_id,
                TaskStatus.FAILED,
                error_message=e.message,
                completed_at=utc_now(),
                processing_time_ms=elapsed_ms(),
            )
        except Exception as e:
            logger.error(f"Backtest failed: {e}", exc_info=True)
            self._finish(
                task_id,
                TaskStatus.FAILED,
                error_message=f"{type(e).__name__}: {e}",
                completed_at=utc_now(),
                processing_time_ms=elapsed_ms(),
            )
        else:
            self._finish(
                task_id,
                TaskStatus.COMPLETED,
                result=result,
                completed_at=utc_now(),
                processing_time_ms=elapsed_ms(),
            )
            logger.info(f"Backtest completed in {elapsed_ms():.0f}ms")
        finally:
            self._drop_token(task_id)
            self._notify_finished()

    def _finish(self, task_id: str, status: TaskStatus, **fields: Any) -> None:
        if not self._update_status(task_id, status, expected=[TaskStatus.RUNNING], **fields):
            logger.warning(f"Could not record final status {status.value}, task is no longer running")

    # Queries

    def _get_task(self, task_id: str) -> AsyncBacktestTask:
        task = self._find(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def get_task_status(self, task_id: str) -> TaskStatusReport:
        """
        Get the status of a task.

        Raises:
            TaskNotFoundError: Unknown task id
        """
        return TaskStatusReport.from_task(self._get_task(task_id))

    def get_task_result(self, task_id: str) -> BacktestResult:
        """
        Get the result of a completed task.

        Raises:
            TaskNotFoundError: Unknown task id
            TaskFailedError: The task failed
            TaskNotReadyError: The task is pending, running, or cancelled
        """
        task = self._get_task(task_id)
        if task.status == TaskStatus.FAILED:
            raise TaskFailedError(task_id, task.error_message)
        if task.status != TaskStatus.COMPLETED or task.result is None:
            raise TaskNotReadyError(task_id, task.status.value)
        return task.result

    def cancel_task(self, task_id: str) -> CancelOutcome:
        """
        Request cancellation of a task.

        A pending task is cancelled immediately. A running task stops at
        its next bucket boundary.

        Returns:
            CancelOutcome.OK, or CancelOutcome.ALREADY_TERMINAL if the task had already finished

        Raises:
            TaskNotFoundError: Unknown task id
        """
        task = self._get_task(task_id)
        if task.is_terminal:
            return CancelOutcome.ALREADY_TERMINAL

        if task.status == TaskStatus.PENDING:
            if self._update_status(
                task_id, TaskStatus.CANCELLED, expected=[TaskStatus.PENDING], completed_at=utc_now()
            ):
                self.queue.remove(task_id)
                self._drop_token(task_id)
                self._notify_finished()
                logger.info(f"[{task_id}] Cancelled pending backtest")
                return CancelOutcome.OK

        self._token_for(task_id).cancel()

        current = self._get_task(task_id)
        if current.is_terminal and current.status != TaskStatus.CANCELLED:
            self._drop_token(task_id)
            return CancelOutcome.ALREADY_TERMINAL

        logger.info(f"[{task_id}] Cancellation requested")
        return CancelOutcome.OK

    def wait_for_task(self, task_id: str, timeout: Optional[float] = None) -> Optional[AsyncBacktestTask]:
        """
        Block until a task reaches a terminal status.

        Args:
            task_id: Task to wait for
            timeout: Maximum wait in seconds (None waits forever)

        Returns:
            The terminal task, or None on timeout

        Raises:
            TaskNotFoundError: Unknown task id
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        poll_interval = self.settings.performance.poll_interval

        while True:
            task = self._get_task(task_id)
            if task.is_terminal:
                return task

            wait = poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                wait = min(wait, remaining)

            # Bounded wait also covers tasks finished by another process
            with self._task_finished:
                self._task_finished.wait(wait)

    def list_tasks(self, status: Optional[TaskStatus] = None, limit: Optional[int] = None) -> List[AsyncBacktestTask]:
        """List tasks, newest first."""
        return self._list_tasks(status=status, limit=limit)

    # Filter cache

    def get_cache_stats(self) -> CacheStats:
        return self.filter_cache.get_stats()

    def cleanup_filter_cache(self, older_than_days: Optional[int] = None) -> int:
        return self.filter_cache.cleanup(older_than_days)

    def invalidate_filter_cache(self, fingerprint: str) -> bool:
        return self.filter_cache.invalidate(fingerprint)

    def get_system_stats(self) -> Dict[str, Any]:
        """Get queue, worker, task, and cache statistics."""
        with self._lock:
            active_tokens = len(self._tokens)

        return {
            "is_running": self._is_running,
            "queue": self.queue.get_stats(),
            "workers": self.pool.get_stats(),
            "tasks": self._count_by_status(),
            "active_tasks": active_tokens,
            "filter_cache": self.get_cache_stats().model_dump(mode="json"),
        }
