"""
SQLAlchemy repositories.

Status changes and hit counting are single ``UPDATE ... WHERE`` statements
so concurrent workers never overwrite each other's transitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update

from ...backtest.models import (
    AsyncBacktestTask,
    BacktestParams,
    BacktestResult,
    CacheStats,
    FilterCacheEntry,
)
from ...core.logging import get_logger
from ...core.tasks import TaskStatus
from ...core.utils import ensure_utc, utc_now
from ..database import DatabaseManager
from ..models import AsyncBacktestTaskRecord, SymbolFilterCacheRecord
from .base import FilterCacheRepository, TaskRepository, check_fields, check_transition

logger = get_logger(__name__)

_DATETIME_FIELDS = ("current_time", "started_at", "completed_at")


def _task_to_values(task: AsyncBacktestTask) -> Dict[str, Any]:
    return {
        "task_id": task.task_id,
        "status": task.status.value,
        "params": task.params.model_dump(mode="json"),
        "current_time": ensure_utc(task.current_time),
        "processed_buckets": task.processed_buckets,
        "total_buckets": task.total_buckets,
        "started_at": ensure_utc(task.started_at),
        "completed_at": ensure_utc(task.completed_at),
        "error_message": task.error_message,
        "result": task.result.model_dump(mode="json") if task.result is not None else None,
        "processing_time_ms": task.processing_time_ms,
        "created_at": ensure_utc(task.created_at),
    }


def _record_to_task(record: AsyncBacktestTaskRecord) -> AsyncBacktestTask:
    return AsyncBacktestTask(
        task_id=record.task_id,
        status=TaskStatus(record.status),
        params=BacktestParams.model_validate(record.params),
        current_time=ensure_utc(record.current_time),
        processed_buckets=record.processed_buckets,
        total_buckets=record.total_buckets,
        started_at=ensure_utc(record.started_at),
        completed_at=ensure_utc(record.completed_at),
        error_message=record.error_message,
        result=BacktestResult.model_validate(record.result) if record.result is not None else None,
        processing_time_ms=record.processing_time_ms,
        created_at=ensure_utc(record.created_at),
    )


def _entry_to_values(entry: FilterCacheEntry) -> Dict[str, Any]:
    return {
        "fingerprint": entry.fingerprint,
        "symbols": list(entry.symbols),
        "filter_criteria": entry.filter_criteria,
        "invalid_symbols": list(entry.invalid_symbols),
        "invalid_reasons": entry.invalid_reasons,
        "statistics": entry.statistics,
        "processing_time_ms": entry.processing_time_ms,
        "hit_count": entry.hit_count,
        "created_at": ensure_utc(entry.created_at),
        "last_hit_at": ensure_utc(entry.last_hit_at),
    }


def _record_to_entry(record: SymbolFilterCacheRecord) -> FilterCacheEntry:
    return FilterCacheEntry(
        fingerprint=record.fingerprint,
        symbols=list(record.symbols or []),
        filter_criteria=dict(record.filter_criteria or {}),
        invalid_symbols=list(record.invalid_symbols or []),
        invalid_reasons=dict(record.invalid_reasons or {}),
        statistics=dict(record.statistics or {}),
        processing_time_ms=record.processing_time_ms or 0.0,
        hit_count=record.hit_count,
        created_at=ensure_utc(record.created_at),
        last_hit_at=ensure_utc(record.last_hit_at),
    )


class SqlTaskRepository(TaskRepository):
    """Task store on the ``async_backtest_tasks`` table."""

    def __init__(self, database: DatabaseManager) -> None:
        self.database = database

    def find(self, task_id: str) -> Optional[AsyncBacktestTask]:
        with self.database.get_session() as session:
            record = session.scalar(
                select(AsyncBacktestTaskRecord).where(AsyncBacktestTaskRecord.task_id == task_id)
            )
            return _record_to_task(record) if record is not None else None

    def upsert(self, task: AsyncBacktestTask) -> AsyncBacktestTask:
        values = _task_to_values(task)
        with self.database.get_session() as session:
            record = session.scalar(
                select(AsyncBacktestTaskRecord).where(AsyncBacktestTaskRecord.task_id == task.task_id)
            )
            if record is None:
                session.add(AsyncBacktestTaskRecord(**values))
            else:
                for name, value in values.items():
                    setattr(record, name, value)
        return task

    def delete(self, task_id: str) -> bool:
        stmt = delete(AsyncBacktestTaskRecord).where(AsyncBacktestTaskRecord.task_id == task_id)
        with self.database.get_session() as session:
            return session.execute(stmt.execution_options(synchronize_session=False)).rowcount > 0

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        expected: Iterable[TaskStatus],
        **fields: Any,
    ) -> bool:
        expected_list = check_transition(task_id, status, expected)
        check_fields(fields)

        values: Dict[str, Any] = {"status": TaskStatus(status).value}
        for name, value in fields.items():
            if name in _DATETIME_FIELDS:
                value = ensure_utc(value)
            elif name == "result" and value is not None:
                value = value.model_dump(mode="json")
            values[name] = value

        stmt = (
            update(AsyncBacktestTaskRecord)
            .where(
                AsyncBacktestTaskRecord.task_id == task_id,
                AsyncBacktestTaskRecord.status.in_([s.value for s in expected_list]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self.database.get_session() as session:
            updated = session.execute(stmt).rowcount == 1

        if not updated:
            logger.debug(f"[{task_id}] status update to {TaskStatus(status).value} did not apply")
        return updated

    def update_progress(self, task_id: str, current_time: datetime, processed_buckets: int) -> bool:
        stmt = (
            update(AsyncBacktestTaskRecord)
            .where(
                AsyncBacktestTaskRecord.task_id == task_id,
                AsyncBacktestTaskRecord.status == TaskStatus.RUNNING.value,
            )
            .values(current_time=ensure_utc(current_time), processed_buckets=processed_buckets)
            .execution_options(synchronize_session=False)
        )
        with self.database.get_session() as session:
            return session.execute(stmt).rowcount == 1

    def list_tasks(self, status: Optional[TaskStatus] = None, limit: Optional[int] = None) -> List[AsyncBacktestTask]:
        stmt = select(AsyncBacktestTaskRecord).order_by(AsyncBacktestTaskRecord.created_at.desc())
        if status is not None:
            stmt = stmt.where(AsyncBacktestTaskRecord.status == TaskStatus(status).value)
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.database.get_session() as session:
            return [_record_to_task(record) for record in session.scalars(stmt)]

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in TaskStatus}
        stmt = select(AsyncBacktestTaskRecord.status, func.count()).group_by(AsyncBacktestTaskRecord.status)
        with self.database.get_session() as session:
            for status, count in session.execute(stmt):
                counts[status] = count
        return counts


class SqlFilterCacheRepository(FilterCacheRepository):
    """Filter cache store on the ``symbol_filter_caches`` table."""

    def __init__(self, database: DatabaseManager) -> None:
        self.database = database

    def _select(self, fingerprint: str):
        return select(SymbolFilterCacheRecord).where(SymbolFilterCacheRecord.fingerprint == fingerprint)

    def find(self, fingerprint: str) -> Optional[FilterCacheEntry]:
        with self.database.get_session() as session:
            record = session.scalar(self._select(fingerprint))
            return _record_to_entry(record) if record is not None else None

    def upsert(self, entry: FilterCacheEntry) -> FilterCacheEntry:
        values = _entry_to_values(entry)
        with self.database.get_session() as session:
            record = session.scalar(self._select(entry.fingerprint))
            if record is None:
                session.add(SymbolFilterCacheRecord(**values))
            else:
                for name, value in values.items():
                    setattr(record, name, value)
        return entry

    def record_hit(self, fingerprint: str, hit_at: Optional[datetime] = None) -> Optional[FilterCacheEntry]:
        stmt = (
            update(SymbolFilterCacheRecord)
            .where(SymbolFilterCacheRecord.fingerprint == fingerprint)
            .values(
                hit_count=SymbolFilterCacheRecord.hit_count + 1,
                last_hit_at=ensure_utc(hit_at) or utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        with self.database.get_session() as session:
            if session.execute(stmt).rowcount != 1:
                return None
            record = session.scalar(self._select(fingerprint))
            return _record_to_entry(record)

    def delete(self, fingerprint: str) -> bool:
        stmt = delete(SymbolFilterCacheRecord).where(SymbolFilterCacheRecord.fingerprint == fingerprint)
        with self.database.get_session() as session:
            return session.execute(stmt.execution_options(synchronize_session=False)).rowcount > 0

    def delete_unused_since(self, cutoff: datetime) -> int:
        last_used = func.coalesce(SymbolFilterCacheRecord.last_hit_at, SymbolFilterCacheRecord.created_at)
        stmt = (
            delete(SymbolFilterCacheRecord)
            .where(last_used < ensure_utc(cutoff))
            .execution_options(synchronize_session=False)
        )
        with self.database.get_session() as session:
            return session.execute(stmt).rowcount

    def stats(self) -> CacheStats:
        stmt = select(
            func.count(SymbolFilterCacheRecord.id),
            func.coalesce(func.sum(SymbolFilterCacheRecord.hit_count), 0),
            func.min(SymbolFilterCacheRecord.created_at),
            func.max(SymbolFilterCacheRecord.created_at),
        )
        with self.database.get_session() as session:
            total, total_hits, oldest, newest = session.execute(stmt).one()

        if not total:
            return CacheStats()

        return CacheStats(
            total_caches=total,
            total_hit_count=int(total_hits),
            avg_hit_count=int(total_hits) / total,
            oldest_cache=ensure_utc(oldest),
            newest_cache=ensure_utc(newest),
        )

    def list_entries(self) -> List[FilterCacheEntry]:
        stmt = select(SymbolFilterCacheRecord).order_by(SymbolFilterCacheRecord.created_at.desc())
        with self.database.get_session() as session:
            return [_record_to_entry(record) for record in session.scalars(stmt)]
