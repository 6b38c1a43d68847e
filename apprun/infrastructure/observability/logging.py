"""Logging utilities for apprun.

This module builds the single field-tagged logger a run uses and provides
helpers for structured, contextual logging. Records carry their fields in
``record.fields``; the formatters below render them either as ``key=value``
pairs for a terminal or as JSON lines for log aggregation.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping, MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import IO, Any, Iterator

from rich.console import Console
from rich.logging import RichHandler

# ---------------------------------------------------------------------------
# Context variables for structured logging
# ---------------------------------------------------------------------------

_log_context: ContextVar[dict[str, Any]] = ContextVar(
    "log_context", default={})

DEBUG_ENV = "APP_DEBUG"
_TRUTHY = ("true", "1")


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Temporarily add context fields to all log records.

    Usage::

        with log_context(request_id="abc"):
            logger.info("handling request")  # record carries request_id

    Fields are merged with any existing context and restored on exit.
    """
    current = _log_context.get()
    merged = {**current, **fields}
    token = _log_context.set(merged)
    try:
        yield
    finally:
        _log_context.reset(token)


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Collect context, bound and per-call fields of a record, in that order."""
    fields: dict[str, Any] = dict(_log_context.get())
    fields.update(getattr(record, "fields", None) or {})
    if record.exc_info and record.exc_info[1] is not None:
        fields.setdefault("error", str(record.exc_info[1]))
    return fields


class ContextualFormatter(logging.Formatter):
    """Formatter that appends ``key=value`` fields to log messages.

    Exceptions are reported through the ``error`` field only, so every
    record stays on a single line.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        if self.usesTime():
            record.asctime = self.formatTime(record, self.datefmt)
        return self.formatMessage(record)

    def formatMessage(self, record: logging.LogRecord) -> str:
        message = super().formatMessage(record)
        fields = record_fields(record)
        if not fields:
            return message
        ctx_str = " ".join(f"{k}={v}" for k, v in fields.items())
        return f"{message} {ctx_str}"


class JsonFormatter(logging.Formatter):
    """Formatter producing one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
        }
        payload.update(record_fields(record))
        payload["message"] = record.getMessage()
        return json.dumps(payload, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """Logger adapter carrying a fixed set of fields.

    ``logger.bind(path="config.yaml")`` returns a new adapter with the extra
    field; ``logger.info("msg", extra={"fields": {...}})`` attaches fields to
    a single record.
    """

    def __init__(
        self, logger: logging.Logger, fields: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(logger, dict(fields or {}))

    @property
    def fields(self) -> dict[str, Any]:
        return dict(self.extra)

    def bind(self, **fields: Any) -> "StructuredLogger":
        return StructuredLogger(self.logger, {**self.extra, **fields})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        call_fields = extra.get("fields") or {}
        extra["fields"] = {**self.extra, **call_fields}
        kwargs["extra"] = extra
        return msg, kwargs


# ---------------------------------------------------------------------------
# Sink construction
# ---------------------------------------------------------------------------


def debug_enabled(environ: Mapping[str, str] | None = None) -> bool:
    """Return True when ``APP_DEBUG`` is set to ``true`` or ``1``."""
    env = os.environ if environ is None else environ
    return env.get(DEBUG_ENV, "") in _TRUTHY


def resolve_level(environ: Mapping[str, str] | None = None) -> int:
    return logging.DEBUG if debug_enabled(environ) else logging.INFO


def is_terminal(stream: IO[Any] | None = None) -> bool:
    """Return True if ``stream`` (stdout by default) is attached to a TTY."""
    target = sys.stdout if stream is None else stream
    try:
        return target.isatty()
    except (AttributeError, ValueError):
        # Closed or detached streams are not terminals
        return False


def build_log_handler(
    stream: IO[Any] | None = None, *, terminal: bool | None = None
) -> logging.Handler:
    """Build the log destination for a run.

    Args:
        stream: Stream to write to (stderr by default).
        terminal: Force the terminal decision; probed on stdout when None.

    Returns:
        A rich console handler for terminals, a JSON lines stream handler
        otherwise.
    """
    target = sys.stderr if stream is None else stream
    if terminal is None:
        terminal = is_terminal()

    handler: logging.Handler
    if terminal:
        handler = RichHandler(
            console=Console(file=target),
            show_path=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(ContextualFormatter("%(message)s"))
    else:
        handler = logging.StreamHandler(target)
        handler.setFormatter(JsonFormatter())
    return handler


def build_logger(
    app_name: str,
    app_version: str,
    *,
    level: int = logging.INFO,
    handlers: list[logging.Handler] | None = None,
) -> StructuredLogger:
    """Build the logger bound to the application identity.

    The underlying logger does not propagate to the root logger, so a run
    never depends on (or alters) process-wide logging configuration beyond
    its own named logger.
    """
    logger = logging.getLogger(f"apprun.app.{app_name or 'app'}")
    logger.setLevel(level)
    logger.propagate = False

    # Remove any existing handlers to avoid duplicates across runs
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    for handler in handlers or [build_log_handler()]:
        logger.addHandler(handler)

    return StructuredLogger(logger, {"app": app_name, "app_v": app_version})


def get_logger(name: str) -> StructuredLogger:
    """Return a field-less structured logger for the given module name."""
    return StructuredLogger(logging.getLogger(name))


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def log_exception(
    logger: logging.LoggerAdapter | logging.Logger,
    message: str,
    exc: BaseException,
    **context: Any,
) -> None:
    """Log an error record for ``exc`` with context fields.

    The exception is attached as ``exc_info`` so formatters render it as the
    ``error`` field.
    """
    logger.error(
        message,
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"fields": context},
    )
