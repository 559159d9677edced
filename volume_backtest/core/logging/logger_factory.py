"""
Logging setup for the volume backtest engine.

structlog renders the event, stdlib logging routes it: a console handler
(Rich in development), a rotating file with everything from DEBUG up,
and a separate rotating error file. Worker threads bind the task id with
``bind_task_context`` so every line a backtest emits carries it.
"""

from __future__ import annotations

import logging
import logging.config
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import structlog

from ..config import LogFormat, Settings

_PACKAGE_LOGGER = __name__.split(".")[0]
_FORMATTERS_MODULE = f"{_PACKAGE_LOGGER}.core.logging.formatters"

_SIZE_UNITS = {"K": 1024, "M": 1024 ** 2, "G": 1024 ** 3, "T": 1024 ** 4}


class LoggerFactory:
    """Process-wide logging configuration."""

    _initialized = False
    _settings: Optional[Settings] = None

    @classmethod
    def initialize(cls, settings: Settings) -> None:
        """
        Configure stdlib logging and structlog from ``settings.logging``.

        Safe to call again with different settings; the last call wins.
        """
        cls._settings = settings
        logging.config.dictConfig(cls._build_dict_config(settings))
        structlog.configure(
            processors=cls._build_processors(settings.logging.format),
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        cls._initialized = True

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized

    @classmethod
    def get_logger(cls, name: str) -> structlog.stdlib.BoundLogger:
        """
        Get a logger for ``name``.

        The returned proxy resolves its configuration on first use, so
        module-level loggers created before ``initialize`` still work.
        """
        return structlog.get_logger(name)

    @classmethod
    def reset(cls) -> None:
        """Forget the configuration (used between tests)."""
        cls._initialized = False
        cls._settings = None
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()

    @staticmethod
    def _build_processors(log_format: LogFormat) -> List[Any]:
        processors: List[Any] = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
        ]
        if log_format != LogFormat.SIMPLE:
            processors.append(structlog.stdlib.add_logger_name)
        processors.append(structlog.stdlib.PositionalArgumentsFormatter())

        if log_format == LogFormat.JSON:
            processors += [
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.processors.JSONRenderer(),
            ]
        elif log_format == LogFormat.STRUCTURED:
            processors += [
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.dev.ConsoleRenderer(colors=False),
            ]
        else:
            processors += [
                structlog.processors.format_exc_info,
                structlog.processors.KeyValueRenderer(key_order=["event", "task_id"], drop_missing=True),
            ]
        return processors

    @classmethod
    def _build_dict_config(cls, settings: Settings) -> Dict[str, Any]:
        log_settings = settings.logging
        level = log_settings.level.value
        log_file = Path(log_settings.file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        def rotating(filename: Path, handler_level: str) -> Dict[str, Any]:
            return {
                "class": "logging.handlers.RotatingFileHandler",
                "level": handler_level,
                "formatter": "detailed",
                "filename": str(filename),
                "maxBytes": cls._parse_size(log_settings.max_size),
                "backupCount": log_settings.backup_count,
                "encoding": "utf-8",
            }

        if settings.is_development():
            console: Dict[str, Any] = {
                "class": "rich.logging.RichHandler",
                "level": level,
                "show_path": True,
                "markup": False,
                "rich_tracebacks": True,
            }
        else:
            console = {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": {
                    LogFormat.JSON: "json",
                    LogFormat.STRUCTURED: "structured",
                    LogFormat.SIMPLE: "standard",
                }[log_settings.format],
                "stream": "ext://sys.stderr",
            }

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s [%(levelname)8s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "detailed": {
                    "format": "%(asctime)s [%(levelname)8s] %(threadName)s %(name)s:%(lineno)d: %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {"()": f"{_FORMATTERS_MODULE}.JsonFormatter"},
                "structured": {"()": f"{_FORMATTERS_MODULE}.StructuredFormatter"},
            },
            "handlers": {
                "console": console,
                "file": rotating(log_file, "DEBUG"),
                "error_file": rotating(log_file.with_name("error.log"), "ERROR"),
            },
            "loggers": {
                _PACKAGE_LOGGER: {
                    "level": "DEBUG",
                    "handlers": ["console", "file", "error_file"],
                    "propagate": False,
                },
                # Engine echo goes to the file only
                "sqlalchemy": {"level": "WARNING", "handlers": ["file"], "propagate": False},
            },
            "root": {"level": level, "handlers": ["console", "file"]},
        }

    @staticmethod
    def _parse_size(size_str: str) -> int:
        """Convert "10MB", "1.5KB" or "512" to bytes."""
        value = size_str.upper().strip().rstrip("B")
        multiplier = _SIZE_UNITS.get(value[-1:], 1)
        if multiplier != 1:
            value = value[:-1]
        return int(float(value) * multiplier)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Shortcut for ``LoggerFactory.get_logger``."""
    return LoggerFactory.get_logger(name)


def setup_logging(settings: Settings) -> None:
    LoggerFactory.initialize(settings)


@contextmanager
def bind_task_context(task_id: str, **fields: Any) -> Iterator[None]:
    """
    Attach ``task_id`` (and any extra fields) to every log line emitted
    by the current thread inside the block.
    """
    with structlog.contextvars.bound_contextvars(task_id=task_id, **fields):
        yield
