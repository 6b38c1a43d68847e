"""Observability and logging facades."""

from .logging import (
    ContextualFormatter,
    JsonFormatter,
    StructuredLogger,
    build_log_handler,
    build_logger,
    debug_enabled,
    get_logger,
    is_terminal,
    log_context,
    log_exception,
    resolve_level,
)
from .metrics import (
    MetricRegistry,
    Timer,
    format_prometheus,
    get_registry,
    increment_counter,
    observe_histogram,
    set_app_info,
    set_gauge,
)

__all__ = [
    # Logging
    "ContextualFormatter",
    "JsonFormatter",
    "StructuredLogger",
    "build_log_handler",
    "build_logger",
    "debug_enabled",
    "get_logger",
    "is_terminal",
    "log_context",
    "log_exception",
    "resolve_level",
    # Metrics
    "MetricRegistry",
    "Timer",
    "format_prometheus",
    "get_registry",
    "increment_counter",
    "observe_histogram",
    "set_app_info",
    "set_gauge",
]
