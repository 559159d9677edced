"""
Core logging module for the volume backtest engine.

Structured logging on top of the standard library, configured once at
startup through ``setup_logging``.
"""

from .formatters import JsonFormatter, StructuredFormatter
from .logger_factory import LoggerFactory, bind_task_context, get_logger, setup_logging

__all__ = [
    # Logger factory
    "LoggerFactory",
    "get_logger",
    "setup_logging",
    "bind_task_context",
    # Formatters
    "JsonFormatter",
    "StructuredFormatter",
]
