"""Tests for the in-process metric registry and its Prometheus export."""

import pytest

from apprun.infrastructure.observability.metrics import (
    MetricRegistry,
    Timer,
    format_prometheus,
    increment_counter,
    observe_histogram,
    set_app_info,
    set_gauge,
)


def test_counter_accumulates_per_label_set(metric_registry):
    increment_counter("jobs_total", labels={"status": "ok"}, help_text="Jobs")
    increment_counter("jobs_total", 2, labels={"status": "ok"})
    increment_counter("jobs_total", labels={"status": "failed"})

    counter = metric_registry.counter("jobs_total")
    assert counter.get({"status": "ok"}) == 3
    assert counter.get({"status": "failed"}) == 1
    assert counter.get({"status": "unknown"}) == 0


def test_counter_rejects_negative_increments():
    registry = MetricRegistry()

    with pytest.raises(ValueError):
        registry.counter("jobs_total").inc(-1)


def test_gauge_keeps_last_value(metric_registry):
    set_gauge("queue_depth", 5)
    set_gauge("queue_depth", 2)

    assert metric_registry.gauge("queue_depth").get() == 2


def test_histogram_stats_and_buckets():
    registry = MetricRegistry()
    histogram = registry.histogram("latency_seconds", buckets=(0.1, 1.0))
    for value in (0.05, 0.5, 2.0):
        histogram.observe(value)

    assert histogram.get_stats()["count"] == 3
    assert histogram.bucket_counts() == [(0.1, 1), (1.0, 2), (float("inf"), 3)]


def test_timer_records_duration(metric_registry):
    with Timer("step_seconds"):
        pass

    assert metric_registry.histogram("step_seconds").get_stats()["count"] == 1


def test_format_prometheus(metric_registry):
    increment_counter("jobs_total", labels={"status": "ok"}, help_text="Jobs run")
    set_app_info("svc", "1.2.3")
    observe_histogram("latency_seconds", 0.2)

    text = format_prometheus()

    assert "# HELP jobs_total Jobs run" in text
    assert "# TYPE jobs_total counter" in text
    assert 'jobs_total{status="ok"} 1.0' in text
    assert "# TYPE app_info gauge" in text
    assert 'app_info{app="svc",version="1.2.3"} 1.0' in text
    assert 'latency_seconds_bucket{le="+Inf"} 1' in text
    assert "latency_seconds_count 1" in text
    assert text.endswith("\n")


def test_format_prometheus_escapes_label_values():
    registry = MetricRegistry()
    registry.counter("errors_total").inc(labels={"reason": 'bad "quote"'})

    assert 'errors_total{reason="bad \\"quote\\""} 1.0' in format_prometheus(registry)


def test_empty_registry_formats_to_empty_string():
    assert format_prometheus(MetricRegistry()) == ""


def test_name_is_bound_to_one_metric_kind():
    registry = MetricRegistry()
    registry.counter("jobs_total")

    with pytest.raises(ValueError):
        registry.gauge("jobs_total")


def test_timer_exposes_elapsed_time(metric_registry):
    with Timer("step_seconds", labels={"step": "load"}) as timer:
        pass

    assert timer.elapsed is not None
    assert timer.elapsed >= 0
    stats = metric_registry.histogram("step_seconds").get_stats({"step": "load"})
    assert stats["sum"] == timer.elapsed
