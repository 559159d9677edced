"""
Base model classes for the volume backtest database layer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, String, inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ...core.utils import utc_now


class Base(DeclarativeBase):
    """
    Base declarative class for all database models.

    Uses SQLAlchemy 2.0 typed mappings throughout.
    """

    type_annotation_map = {
        str: String(255),
    }

    def to_dict(self) -> Dict[str, Any]:
        """Convert mapped columns to a dictionary keyed by attribute name."""
        return {attr.key: getattr(self, attr.key) for attr in inspect(self).mapper.column_attrs}

    def __repr__(self) -> str:
        pk = inspect(self).identity
        return f"<{self.__class__.__name__}(pk={pk})>"


class TimestampMixin:
    """
    Mixin adding created_at and updated_at columns, stored in UTC.

    Indexes are declared by each table in ``__table_args__``.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        doc="Timestamp when the record was created (UTC)",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
        doc="Timestamp when the record was last updated (UTC)",
    )
