"""In-process metrics collection for applications started by apprun.

Applications record counters, gauges and histograms here; when the runner is
configured with a metrics handler the auxiliary HTTP server exposes them at
``/metrics`` in the Prometheus text exposition format.
"""

from __future__ import annotations

import threading
import time
from typing import ClassVar, Mapping, TypeVar

Labels = Mapping[str, str | None]
LabelKey = tuple[tuple[str, str | None], ...]

DEFAULT_BUCKETS: tuple[float, ...] = (
    0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)


def _key(labels: Labels | None) -> LabelKey:
    return tuple(sorted(labels.items())) if labels else ()


def _escape(value: object) -> str:
    text = "" if value is None else str(value)
    return text.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _render_labels(key: LabelKey, **extra: str) -> str:
    pairs = [*key, *extra.items()]
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{_escape(v)}"' for k, v in pairs) + "}"


class _Metric:
    """Named metric holding one sample per label set."""

    kind: ClassVar[str] = "untyped"

    def __init__(self, name: str, help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self._lock = threading.Lock()
        self._values: dict[LabelKey, float] = {}

    def get(self, labels: Labels | None = None) -> float:
        with self._lock:
            return self._values.get(_key(labels), 0.0)

    def samples(self) -> dict[LabelKey, float]:
        with self._lock:
            return dict(self._values)

    def expose(self) -> list[str]:
        """Render HELP/TYPE headers followed by the sample lines."""
        lines = [f"# HELP {self.name} {self.help_text}"] if self.help_text else []
        lines.append(f"# TYPE {self.name} {self.kind}")
        lines.extend(self._sample_lines())
        return lines

    def _sample_lines(self) -> list[str]:
        return [
            f"{self.name}{_render_labels(key)} {value}"
            for key, value in self.samples().items()
        ]


class Counter(_Metric):
    """A monotonically increasing counter."""

    kind = "counter"

    def inc(self, value: float = 1.0, labels: Labels | None = None) -> None:
        if value < 0:
            raise ValueError("counters can only increase")
        key = _key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value


class Gauge(_Metric):
    """A value that can go up and down."""

    kind = "gauge"

    def set(self, value: float, labels: Labels | None = None) -> None:
        with self._lock:
            self._values[_key(labels)] = value


class _Distribution:
    __slots__ = ("counts", "total", "observed")

    def __init__(self, size: int) -> None:
        self.counts = [0] * size
        self.total = 0.0
        self.observed = 0


class Histogram(_Metric):
    """Cumulative-bucket histogram with a running sum and count per label set."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        help_text: str = "",
        buckets: tuple[float, ...] = DEFAULT_BUCKETS,
    ) -> None:
        super().__init__(name, help_text)
        self.bounds = (*sorted(buckets), float("inf"))
        self._dists: dict[LabelKey, _Distribution] = {}

    def observe(self, value: float, labels: Labels | None = None) -> None:
        key = _key(labels)
        with self._lock:
            dist = self._dists.get(key)
            if dist is None:
                dist = self._dists[key] = _Distribution(len(self.bounds))
            for index, bound in enumerate(self.bounds):
                if value <= bound:
                    dist.counts[index] += 1
            dist.total += value
            dist.observed += 1

    def get_stats(self, labels: Labels | None = None) -> dict[str, float]:
        with self._lock:
            dist = self._dists.get(_key(labels))
            count, total = (dist.observed, dist.total) if dist else (0, 0.0)
        return {"count": count, "sum": total, "avg": total / count if count else 0.0}

    def bucket_counts(self, labels: Labels | None = None) -> list[tuple[float, int]]:
        """Return cumulative ``(upper_bound, count)`` pairs including +Inf."""
        with self._lock:
            dist = self._dists.get(_key(labels))
            counts = list(dist.counts) if dist else [0] * len(self.bounds)
        return list(zip(self.bounds, counts))

    def _sample_lines(self) -> list[str]:
        with self._lock:
            keys = list(self._dists)
        lines: list[str] = []
        for key in keys:
            labels = dict(key)
            for bound, count in self.bucket_counts(labels):
                le = "+Inf" if bound == float("inf") else str(bound)
                lines.append(f"{self.name}_bucket{_render_labels(key, le=le)} {count}")
            stats = self.get_stats(labels)
            lines.append(f"{self.name}_count{_render_labels(key)} {stats['count']}")
            lines.append(f"{self.name}_sum{_render_labels(key)} {stats['sum']}")
        return lines


M = TypeVar("M", bound=_Metric)


class MetricRegistry:
    """Registry for all metrics of the process, keyed by name."""

    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, cls: type[M], name: str, **kwargs: object) -> M:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = cls(name, **kwargs)  # type: ignore[arg-type]
            elif not isinstance(metric, cls):
                raise ValueError(f"metric {name!r} is already a {metric.kind}")
            return metric

    def counter(self, name: str, help_text: str = "") -> Counter:
        return self._get_or_create(Counter, name, help_text=help_text)

    def gauge(self, name: str, help_text: str = "") -> Gauge:
        return self._get_or_create(Gauge, name, help_text=help_text)

    def histogram(
        self,
        name: str,
        help_text: str = "",
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        return self._get_or_create(
            Histogram, name, help_text=help_text, buckets=buckets or DEFAULT_BUCKETS
        )

    def metrics(self) -> list[_Metric]:
        with self._lock:
            return list(self._metrics.values())

    def clear(self) -> None:
        with self._lock:
            self._metrics.clear()


# Default process-wide registry
_registry = MetricRegistry()


def get_registry() -> MetricRegistry:
    return _registry


def increment_counter(
    name: str, value: float = 1.0, labels: Labels | None = None, help_text: str = ""
) -> None:
    _registry.counter(name, help_text).inc(value, labels)


def set_gauge(
    name: str, value: float, labels: Labels | None = None, help_text: str = ""
) -> None:
    _registry.gauge(name, help_text).set(value, labels)


def observe_histogram(
    name: str, value: float, labels: Labels | None = None, help_text: str = ""
) -> None:
    _registry.histogram(name, help_text).observe(value, labels)


class Timer:
    """Context manager recording the elapsed wall time into a histogram."""

    def __init__(
        self, histogram_name: str, labels: Labels | None = None, help_text: str = ""
    ) -> None:
        self.histogram_name = histogram_name
        self.labels = labels
        self.help_text = help_text
        self.elapsed: float | None = None
        self._start = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.elapsed = time.perf_counter() - self._start
        observe_histogram(self.histogram_name, self.elapsed, self.labels, self.help_text)


def set_app_info(app_name: str, app_version: str) -> None:
    """Publish the application identity and start time."""
    set_gauge(
        "app_info",
        1.0,
        labels={"app": app_name, "version": app_version},
        help_text="Application name and version",
    )
    set_gauge(
        "app_start_time_seconds",
        time.time(),
        labels={"app": app_name},
        help_text="Unix time the application was started",
    )


def format_prometheus(registry: MetricRegistry | None = None) -> str:
    """Format metrics in the Prometheus text exposition format."""
    reg = _registry if registry is None else registry
    lines = [line for metric in reg.metrics() for line in metric.expose()]
    return "\n".join(lines) + "\n" if lines else ""
