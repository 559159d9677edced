"""
Database models for background backtest tasks and the symbol filter cache.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class AsyncBacktestTaskRecord(Base, TimestampMixin):
    """Persisted backtest task with its params, progress, and result."""

    __tablename__ = "async_backtest_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    task_id: Mapped[str] = mapped_column(String(64), nullable=False, doc="Public task identifier")
    status: Mapped[str] = mapped_column(String(16), nullable=False, doc="pending/running/completed/failed/cancelled")
    params: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, doc="Backtest parameters")

    # CURRENT_TIME is reserved in SQL
    current_time: Mapped[Optional[datetime]] = mapped_column(
        "current_bucket_time",
        DateTime(timezone=True),
        nullable=True,
        doc="Timestamp of the last processed bucket",
    )
    processed_buckets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_buckets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    processing_time_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("task_id", name="uq_async_backtest_tasks_task_id"),
        Index("ix_async_backtest_tasks_status", "status"),
        Index("ix_async_backtest_tasks_created_at", "created_at"),
        Index("ix_async_backtest_tasks_status_created_at", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AsyncBacktestTaskRecord(task_id={self.task_id}, status={self.status})>"


class SymbolFilterCacheRecord(Base, TimestampMixin):
    """Cached eligible-symbol set keyed by parameter fingerprint."""

    __tablename__ = "symbol_filter_caches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, doc="SHA-256 of eligibility params")
    symbols: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    filter_criteria: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    invalid_symbols: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    invalid_reasons: Mapped[Dict[str, List[str]]] = mapped_column(JSON, nullable=False, default=dict)
    statistics: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    processing_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_hit_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("fingerprint", name="uq_symbol_filter_caches_fingerprint"),
        Index("ix_symbol_filter_caches_created_at", "created_at"),
        Index("ix_symbol_filter_caches_last_hit_at", "last_hit_at"),
    )

    def __repr__(self) -> str:
        return f"<SymbolFilterCacheRecord(fingerprint={self.fingerprint[:12]}, hits={self.hit_count})>"
