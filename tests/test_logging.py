"""Tests for the log sink construction and structured fields."""

import io
import json
import logging

from rich.logging import RichHandler

from apprun.infrastructure.observability.logging import (
    JsonFormatter,
    build_log_handler,
    build_logger,
    debug_enabled,
    is_terminal,
    log_context,
    log_exception,
    resolve_level,
)


def _logger(stream: io.StringIO, level: int = logging.INFO):
    handler = build_log_handler(stream, terminal=False)
    return build_logger("svc", "1.2.3", level=level, handlers=[handler])


def _records(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestLevelSelection:
    def test_debug_flag_values(self):
        assert debug_enabled({"APP_DEBUG": "1"}) is True
        assert debug_enabled({"APP_DEBUG": "true"}) is True
        assert debug_enabled({"APP_DEBUG": "yes"}) is False
        assert debug_enabled({"APP_DEBUG": "0"}) is False
        assert debug_enabled({}) is False

    def test_resolve_level(self):
        assert resolve_level({"APP_DEBUG": "1"}) == logging.DEBUG
        assert resolve_level({}) == logging.INFO


class TestDestination:
    def test_non_terminal_writes_json_lines(self):
        handler = build_log_handler(io.StringIO(), terminal=False)

        assert isinstance(handler.formatter, JsonFormatter)
        assert not isinstance(handler, RichHandler)

    def test_terminal_uses_rich(self):
        handler = build_log_handler(io.StringIO(), terminal=True)

        assert isinstance(handler, RichHandler)

    def test_string_buffer_is_not_a_terminal(self):
        assert is_terminal(io.StringIO()) is False

    def test_terminal_output_includes_fields(self):
        stream = io.StringIO()
        handler = build_log_handler(stream, terminal=True)
        logger = build_logger("svc", "1.2.3", handlers=[handler])

        logger.info("config file loaded", extra={"fields": {"path": "config.yaml"}})

        output = stream.getvalue()
        assert "config file loaded" in output
        assert "path=config.yaml" in output
        assert "app=svc" in output


def test_records_carry_application_identity():
    stream = io.StringIO()
    logger = _logger(stream)

    logger.info("started")

    (record,) = _records(stream)
    assert record["app"] == "svc"
    assert record["app_v"] == "1.2.3"
    assert record["level"] == "info"
    assert record["message"] == "started"


def test_level_filters_debug_records():
    stream = io.StringIO()
    logger = _logger(stream, level=logging.INFO)

    logger.debug("hidden")
    logger.info("shown")

    assert [r["message"] for r in _records(stream)] == ["shown"]


def test_bind_and_call_fields():
    stream = io.StringIO()
    logger = _logger(stream).bind(component="resolver")

    logger.info("loaded", extra={"fields": {"path": "a.yaml"}})

    (record,) = _records(stream)
    assert record["component"] == "resolver"
    assert record["path"] == "a.yaml"
    assert record["app"] == "svc"


def test_log_context_fields_are_merged():
    stream = io.StringIO()
    logger = _logger(stream)

    with log_context(request_id="r-1"):
        logger.info("inside")
    logger.info("outside")

    inside, outside = _records(stream)
    assert inside["request_id"] == "r-1"
    assert "request_id" not in outside


def test_log_exception_adds_error_field():
    stream = io.StringIO()
    logger = _logger(stream)

    log_exception(logger, "app run failed", RuntimeError("boom"), phase="run")

    (record,) = _records(stream)
    assert record["level"] == "error"
    assert record["error"] == "boom"
    assert record["phase"] == "run"
    assert record["message"] == "app run failed"


def test_rebuilding_logger_replaces_handlers():
    first, second = io.StringIO(), io.StringIO()
    _logger(first)
    logger = _logger(second)

    logger.info("only once")

    assert first.getvalue() == ""
    assert len(_records(second)) == 1
