"""
stdlib formatters for the console handler.

Selected by name from the dictConfig in ``logger_factory`` according to
``LoggingSettings.format``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Correlation fields lifted to the top level of JSON output
PROMOTED_FIELDS = ("task_id", "symbol", "fingerprint", "bucket")


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, style: str = "%") -> None:
        super().__init__(fmt, datefmt, style)
        self.datefmt = datefmt or "%Y-%m-%dT%H:%M:%S%z"

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        extra = _extra_fields(record)
        for field in PROMOTED_FIELDS:
            if field in extra:
                data[field] = extra.pop(field)
        if extra:
            data["extra"] = extra

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(data, default=_to_json, ensure_ascii=False)


def _to_json(obj: Any) -> str:
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """
    ``time | LEVEL | logger | [task=<id> |] message`` on one line.

    Levels are colored when stderr is a terminal.
    """

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET_COLOR = "\033[0m"
    NAME_WIDTH = 32

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        style: str = "%",
        use_colors: bool = True,
    ) -> None:
        super().__init__(fmt, datefmt, style)
        self.datefmt = datefmt or "%Y-%m-%d %H:%M:%S"
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET_COLOR}"

        name = record.name
        if len(name) > self.NAME_WIDTH:
            name = "..." + name[-(self.NAME_WIDTH - 3):]

        parts = [
            datetime.fromtimestamp(record.created).strftime(self.datefmt),
            level,
            f"{name:{self.NAME_WIDTH}}",
        ]
        task_id = getattr(record, "task_id", None)
        if task_id:
            parts.append(f"task={task_id}")
        parts.append(record.getMessage())

        line = " | ".join(parts)
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        if record.stack_info:
            line += f"\n{record.stack_info}"
        return line
