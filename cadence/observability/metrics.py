"""
Metrics: In-Process, Prometheus-Compatible Instruments

Counters, gauges and histograms with label dimensions, grouped in a
MetricsCollector registry that renders the Prometheus text format.
EngineMetrics binds the instruments the session engine records.

Collectors are plain objects passed to the engine; tests build their
own and read values back with get().
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence


@dataclass(frozen=True)
class MetricLabels:
    """Immutable, order-independent label set."""
    labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str]) -> MetricLabels:
        return cls(labels=tuple(sorted(d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.labels)


class _Instrument:
    """Shared naming and label handling."""

    __slots__ = ("_name", "_help", "_label_names", "_lock")

    kind = "untyped"

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> None:
        self._name = name
        self._help = help_text
        self._label_names = tuple(label_names)
        self._lock = threading.Lock()

    def _make_key(self, labels: dict[str, str]) -> MetricLabels:
        unknown = set(labels) - set(self._label_names)
        if unknown:
            raise ValueError(f"Unknown labels for {self._name}: {sorted(unknown)}")
        return MetricLabels.from_dict(
            {k: str(labels.get(k, "")) for k in self._label_names}
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def help_text(self) -> str:
        return self._help


class Counter(_Instrument):
    """
    Monotonically increasing counter.

    Usage:
        attempts = Counter("cadence_attempts_total", ["outcome"])
        attempts.inc(outcome="success")
    """

    __slots__ = ("_values",)

    kind = "counter"

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[MetricLabels, float] = defaultdict(float)

    def inc(self, value: float = 1.0, **labels: str) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        key = self._make_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield key.to_dict(), value


class Gauge(_Instrument):
    """
    Value that can go up and down.

    Usage:
        active = Gauge("cadence_sessions_active")
        active.inc()
        active.dec()
    """

    __slots__ = ("_values",)

    kind = "gauge"

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[MetricLabels, float] = {}

    def set(self, value: float, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            self._values[key] = value

    def inc(self, value: float = 1.0, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def dec(self, value: float = 1.0, **labels: str) -> None:
        self.inc(-value, **labels)

    def get(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield key.to_dict(), value


class Histogram(_Instrument):
    """
    Cumulative-bucket histogram with sum and count.

    Usage:
        latency = Histogram("cadence_attempt_latency_seconds")
        with latency.time():
            await executor.attempt(prepared)
    """

    __slots__ = ("_buckets", "_bucket_counts", "_sums", "_counts")

    kind = "histogram"

    DEFAULT_BUCKETS = (
        0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5,
        1.0, 2.5, 5.0, 10.0, 15.0, 30.0, float("inf"),
    )

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(name, label_names, help_text)
        bounds = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        if bounds[-1] != float("inf"):
            bounds = bounds + (float("inf"),)
        self._buckets = bounds
        self._bucket_counts: dict[MetricLabels, list[int]] = {}
        self._sums: dict[MetricLabels, float] = defaultdict(float)
        self._counts: dict[MetricLabels, int] = defaultdict(int)

    def observe(self, value: float, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            counts = self._bucket_counts.setdefault(key, [0] * len(self._buckets))
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    counts[i] += 1
            self._sums[key] += value
            self._counts[key] += 1

    def time(self, **labels: str) -> HistogramTimer:
        return HistogramTimer(self, labels)

    def count(self, **labels: str) -> int:
        key = self._make_key(labels)
        with self._lock:
            return self._counts.get(key, 0)

    def total(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._sums.get(key, 0.0)

    def collect(self) -> Iterator[dict[str, Any]]:
        with self._lock:
            snapshot = [
                (key, list(counts), self._sums[key], self._counts[key])
                for key, counts in self._bucket_counts.items()
            ]
        for key, counts, total, count in snapshot:
            yield {
                "labels": key.to_dict(),
                "buckets": list(zip(self._buckets, counts)),
                "sum": total,
                "count": count,
            }


class HistogramTimer:
    """Context manager observing elapsed wall time."""

    __slots__ = ("_histogram", "_labels", "_start")

    def __init__(self, histogram: Histogram, labels: dict[str, str]) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start = 0.0

    def __enter__(self) -> HistogramTimer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self._histogram.observe(time.perf_counter() - self._start, **self._labels)


# =============================================================================
# REGISTRY
# =============================================================================
class MetricsCollector:
    """
    Registry of named instruments.

    Usage:
        collector = MetricsCollector()
        started = collector.counter("cadence_sessions_started_total")
        print(collector.export_prometheus())
    """

    __slots__ = ("_counters", "_gauges", "_histograms", "_lock")

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Counter:
        """Get or create a counter."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name, label_names, help_text)
            return self._counters[name]

    def gauge(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Gauge:
        """Get or create a gauge."""
        with self._lock:
            if name not in self._gauges:
                self._gauges[name] = Gauge(name, label_names, help_text)
            return self._gauges[name]

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        """Get or create a histogram."""
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name, label_names, help_text, buckets)
            return self._histograms[name]

    def export_prometheus(self) -> str:
        """Render every instrument in the Prometheus text exposition format."""
        lines: list[str] = []

        for instrument in (*self._counters.values(), *self._gauges.values()):
            self._header(lines, instrument)
            for labels, value in instrument.collect():
                lines.append(f"{instrument.name}{self._format_labels(labels)} {value}")

        for histogram in self._histograms.values():
            self._header(lines, histogram)
            name = histogram.name
            for data in histogram.collect():
                labels = data["labels"]
                for bound, count in data["buckets"]:
                    le = "+Inf" if bound == float("inf") else repr(bound)
                    bucket_labels = self._format_labels({**labels, "le": le})
                    lines.append(f"{name}_bucket{bucket_labels} {count}")
                label_str = self._format_labels(labels)
                lines.append(f"{name}_sum{label_str} {data['sum']}")
                lines.append(f"{name}_count{label_str} {data['count']}")

        return "\n".join(lines)

    @staticmethod
    def _header(lines: list[str], instrument: _Instrument) -> None:
        if instrument.help_text:
            lines.append(f"# HELP {instrument.name} {instrument.help_text}")
        lines.append(f"# TYPE {instrument.name} {instrument.kind}")

    @staticmethod
    def _format_labels(labels: dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"


# =============================================================================
# ENGINE INSTRUMENTS
# =============================================================================
class EngineMetrics:
    """
    The instruments recorded by the session engine.

    Usage:
        metrics = EngineMetrics(MetricsCollector())
        metrics.sessions_started.inc()
        metrics.attempts.inc(outcome="success")
    """

    __slots__ = (
        "collector",
        "sessions_started",
        "transitions",
        "attempts",
        "ticks_skipped",
        "sessions_active",
        "sessions_removed",
        "attempt_latency",
    )

    def __init__(self, collector: Optional[MetricsCollector] = None) -> None:
        self.collector = collector or MetricsCollector()
        c = self.collector
        self.sessions_started = c.counter(
            "cadence_sessions_started_total",
            help_text="Sessions registered after successful setup",
        )
        self.transitions = c.counter(
            "cadence_session_transitions_total", ["to"],
            help_text="Lifecycle transitions by target state",
        )
        self.attempts = c.counter(
            "cadence_attempts_total", ["outcome"],
            help_text="Action attempts by outcome",
        )
        self.ticks_skipped = c.counter(
            "cadence_ticks_skipped_total",
            help_text="Ticks skipped because an attempt was still in flight",
        )
        self.sessions_active = c.gauge(
            "cadence_sessions_active",
            help_text="Sessions currently in the active state",
        )
        self.sessions_removed = c.counter(
            "cadence_sessions_removed_total",
            help_text="Sessions removed by deferred cleanup",
        )
        self.attempt_latency = c.histogram(
            "cadence_attempt_latency_seconds",
            help_text="Wall time of action attempts",
        )
