"""
In-memory repositories guarded by re-entrant locks.

Records are stored and returned as deep copies so callers never share
mutable state with the store.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ...backtest.models import AsyncBacktestTask, CacheStats, FilterCacheEntry
from ...core.tasks import TaskStatus
from ...core.utils import ensure_utc, utc_now
from .base import FilterCacheRepository, TaskRepository, check_fields, check_transition


class InMemoryTaskRepository(TaskRepository):
    """Task store backed by a dictionary."""

    def __init__(self) -> None:
        self._tasks: Dict[str, AsyncBacktestTask] = {}
        self._lock = threading.RLock()

    def find(self, task_id: str) -> Optional[AsyncBacktestTask]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task is not None else None

    def upsert(self, task: AsyncBacktestTask) -> AsyncBacktestTask:
        with self._lock:
            self._tasks[task.task_id] = task.model_copy(deep=True)
        return task

    def delete(self, task_id: str) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        expected: Iterable[TaskStatus],
        **fields: Any,
    ) -> bool:
        expected_list = check_transition(task_id, status, expected)
        check_fields(fields)

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status not in expected_list:
                return False

            task.status = TaskStatus(status)
            for name, value in fields.items():
                setattr(task, name, value)
            return True

    def update_progress(self, task_id: str, current_time: datetime, processed_buckets: int) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.RUNNING:
                return False
            task.current_time = current_time
            task.processed_buckets = processed_buckets
            return True

    def list_tasks(self, status: Optional[TaskStatus] = None, limit: Optional[int] = None) -> List[AsyncBacktestTask]:
        with self._lock:
            tasks = [
                task.model_copy(deep=True)
                for task in self._tasks.values()
                if status is None or task.status == TaskStatus(status)
            ]
        tasks.sort(key=lambda task: task.created_at, reverse=True)
        return tasks[:limit] if limit is not None else tasks

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in TaskStatus}
        with self._lock:
            for task in self._tasks.values():
                counts[task.status.value] += 1
        return counts


class InMemoryFilterCacheRepository(FilterCacheRepository):
    """Filter cache store backed by a dictionary."""

    def __init__(self) -> None:
        self._entries: Dict[str, FilterCacheEntry] = {}
        self._lock = threading.RLock()

    def find(self, fingerprint: str) -> Optional[FilterCacheEntry]:
        with self._lock:
            entry = self._entries.get(fingerprint)
            return entry.model_copy(deep=True) if entry is not None else None

    def upsert(self, entry: FilterCacheEntry) -> FilterCacheEntry:
        with self._lock:
            self._entries[entry.fingerprint] = entry.model_copy(deep=True)
        return entry

    def record_hit(self, fingerprint: str, hit_at: Optional[datetime] = None) -> Optional[FilterCacheEntry]:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            entry.hit_count += 1
            entry.last_hit_at = ensure_utc(hit_at) or utc_now()
            return entry.model_copy(deep=True)

    def delete(self, fingerprint: str) -> bool:
        with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    def delete_unused_since(self, cutoff: datetime) -> int:
        cutoff = ensure_utc(cutoff)
        with self._lock:
            stale = [fp for fp, entry in self._entries.items() if entry.last_used_at < cutoff]
            for fingerprint in stale:
                del self._entries[fingerprint]
        return len(stale)

    def stats(self) -> CacheStats:
        with self._lock:
            entries = list(self._entries.values())

        if not entries:
            return CacheStats()

        total_hits = sum(entry.hit_count for entry in entries)
        created = [entry.created_at for entry in entries]
        return CacheStats(
            total_caches=len(entries),
            total_hit_count=total_hits,
            avg_hit_count=total_hits / len(entries),
            oldest_cache=min(created),
            newest_cache=max(created),
        )

    def list_entries(self) -> List[FilterCacheEntry]:
        with self._lock:
            entries = [entry.model_copy(deep=True) for entry in self._entries.values()]
        entries.sort(key=lambda entry: entry.created_at, reverse=True)
        return entries
