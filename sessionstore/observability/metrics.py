"""
Metrics: In-Process Counters and Latency Histograms

Prometheus-compatible text export for scraping. Session metrics are
labelled by operation, outcome and collection; never by session id,
which would give every session its own series.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

LabelKey = tuple[str, ...]

INF = float("inf")


class _Series:
    """One named metric: values keyed by the label values, in label-name order."""

    kind = "untyped"

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()

    def _key(self, labels: dict[str, str]) -> LabelKey:
        return tuple(str(labels.get(n, "")) for n in self.label_names)

    def _render_labels(self, key: LabelKey, **more: str) -> str:
        pairs = sorted({**dict(zip(self.label_names, key)), **more}.items())
        if not pairs:
            return ""
        return "{" + ",".join(f'{k}="{v}"' for k, v in pairs) + "}"

    def render(self) -> list[str]:
        header = [f"# HELP {self.name} {self.help_text}"] if self.help_text else []
        return header + [f"# TYPE {self.name} {self.kind}"] + self._samples()

    def _samples(self) -> list[str]:
        raise NotImplementedError


class Counter(_Series):
    """
    Usage:
        created = Counter("sessions_created_total", ["collection"])
        created.inc(collection="sessions")
    """

    kind = "counter"

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[LabelKey, float] = {}

    def inc(self, value: float = 1.0, **labels: str) -> None:
        if value < 0:
            raise ValueError(f"{self.name}: counters only go up")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def get(self, **labels: str) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def _samples(self) -> list[str]:
        with self._lock:
            values = dict(self._values)
        return [f"{self.name}{self._render_labels(k)} {v}" for k, v in values.items()]


class Gauge(Counter):
    """Last value set, e.g. the identity index size after a reload."""

    kind = "gauge"

    def set(self, value: float, **labels: str) -> None:
        with self._lock:
            self._values[self._key(labels)] = value


class Histogram(_Series):
    """Cumulative-bucket histogram of durations in seconds."""

    kind = "histogram"

    DEFAULT_BUCKETS = (0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(name, label_names, help_text)
        self._bounds = tuple(sorted(set(buckets or self.DEFAULT_BUCKETS) | {INF}))
        # key -> (per-bound counts, sum)
        self._series: dict[LabelKey, tuple[list[int], float]] = {}

    def observe(self, seconds: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            counts, total = self._series.get(key, ([0] * len(self._bounds), 0.0))
            for i, bound in enumerate(self._bounds):
                if seconds <= bound:
                    counts[i] += 1
            self._series[key] = (counts, total + seconds)

    @contextmanager
    def time(self, **labels: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - started, **labels)

    def count(self, **labels: str) -> int:
        with self._lock:
            series = self._series.get(self._key(labels))
        return series[0][-1] if series else 0

    def _samples(self) -> list[str]:
        with self._lock:
            snapshot = {k: (list(c), s) for k, (c, s) in self._series.items()}
        lines = []
        for key, (counts, total) in snapshot.items():
            for bound, n in zip(self._bounds, counts):
                le = "+Inf" if bound == INF else str(bound)
                lines.append(f"{self.name}_bucket{self._render_labels(key, le=le)} {n}")
            lines.append(f"{self.name}_sum{self._render_labels(key)} {total}")
            lines.append(f"{self.name}_count{self._render_labels(key)} {counts[-1]}")
        return lines


class MetricsCollector:
    """
    Registry of named metrics. Asking twice for a name returns the same
    metric, so independent components can share series.

    Usage:
        collector = MetricsCollector.get_instance()
        expired = collector.counter("sessions_expired_total")
        text = collector.export_prometheus()
    """

    _instance: Optional[MetricsCollector] = None

    def __init__(self) -> None:
        self._metrics: dict[str, _Series] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> MetricsCollector:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _register(self, cls: type, name: str, *args) -> _Series:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = cls(name, *args)
            elif type(metric) is not cls:
                raise ValueError(f"{name} already registered as a {metric.kind}")
            return metric

    def counter(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Counter:
        return self._register(Counter, name, label_names, help_text)

    def gauge(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Gauge:
        return self._register(Gauge, name, label_names, help_text)

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        return self._register(Histogram, name, label_names, help_text, buckets)

    def export_prometheus(self) -> str:
        with self._lock:
            metrics = list(self._metrics.values())
        return "\n".join(line for metric in metrics for line in metric.render())


class SessionMetrics:
    """
    The session store's metric set, registered on one collector.

    Outcome labels: "ok", "not_found", "expired", "error".
    """

    __slots__ = ("operations", "latency", "created", "expired", "index_failures", "index_entries")

    def __init__(self, collector: Optional[MetricsCollector] = None) -> None:
        c = collector or MetricsCollector.get_instance()
        self.operations = c.counter(
            "sessionstore_operations_total",
            ["operation", "outcome"],
            "Session operations by outcome",
        )
        self.latency = c.histogram(
            "sessionstore_operation_seconds",
            ["operation"],
            "Session operation latency",
        )
        self.created = c.counter(
            "sessionstore_sessions_created_total",
            ["collection"],
            "Sessions created",
        )
        self.expired = c.counter(
            "sessionstore_sessions_expired_total",
            ["collection"],
            "Fetches rejected by TTL enforcement",
        )
        self.index_failures = c.counter(
            "sessionstore_index_failures_total",
            ["operation"],
            "Identity index calls that failed or were short-circuited",
        )
        self.index_entries = c.gauge(
            "sessionstore_index_entries",
            (),
            "Entries written by the last index reload",
        )
