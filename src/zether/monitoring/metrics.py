"""
Metrics collection for the Zether account engine.

Thread-safe counters, gauges and latency histograms for:
- balance decodes (latency, giant steps taken, failures)
- witnesses built and proofs compiled per circuit
- ledger submissions and rejections per kind

to_prometheus() renders everything in the Prometheus text format.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field

Labels = tuple[tuple[str, str], ...]

# Upper bounds in milliseconds; the last bucket is +Inf
LATENCY_BOUNDS_MS = (1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)


@dataclass
class Histogram:
    """Cumulative latency histogram."""

    bounds: tuple[float, ...] = LATENCY_BOUNDS_MS
    bucket_counts: list[int] = field(default_factory=lambda: [0] * (len(LATENCY_BOUNDS_MS) + 1))
    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for i, bound in enumerate(self.bounds):
            if value <= bound:
                self.bucket_counts[i] += 1
        self.bucket_counts[-1] += 1


def _labels(labels: dict[str, str] | None) -> Labels:
    return tuple(sorted((labels or {}).items()))


def _render_labels(labels: Labels, extra: str = "") -> str:
    parts = [f'{k}="{v}"' for k, v in labels]
    if extra:
        parts.append(extra)
    return "{" + ",".join(parts) + "}" if parts else ""


class MetricsCollector:
    """Process-wide metric store keyed by (name, labels)."""

    def __init__(self, prefix: str = "zether"):
        self.prefix = prefix
        self._lock = threading.RLock()
        self._counters: dict[tuple[str, Labels], int] = {}
        self._gauges: dict[tuple[str, Labels], float] = {}
        self._histograms: dict[tuple[str, Labels], Histogram] = {}

    def increment(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        key = (name, _labels(labels))
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters.get((name, _labels(labels)), 0)

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._gauges[(name, _labels(labels))] = value

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges.get((name, _labels(labels)), 0.0)

    def timing(self, name: str, value_ms: float, labels: dict[str, str] | None = None) -> None:
        """Record a latency observation in milliseconds."""
        key = (name, _labels(labels))
        with self._lock:
            self._histograms.setdefault(key, Histogram()).observe(value_ms)

    def get_histogram(self, name: str, labels: dict[str, str] | None = None) -> Histogram | None:
        with self._lock:
            return self._histograms.get((name, _labels(labels)))

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None):
        """Time the enclosed block into the `name` histogram."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - started) * 1000, labels)

    def to_prometheus(self) -> str:
        """Render all metrics in the Prometheus text exposition format."""
        lines: list[str] = []
        with self._lock:
            for kind, store in (("counter", self._counters), ("gauge", self._gauges)):
                for name in sorted({n for n, _ in store}):
                    metric = f"{self.prefix}_{name}"
                    lines.append(f"# TYPE {metric} {kind}")
                    for (n, labels), value in store.items():
                        if n == name:
                            lines.append(f"{metric}{_render_labels(labels)} {value}")

            for name in sorted({n for n, _ in self._histograms}):
                metric = f"{self.prefix}_{name}"
                lines.append(f"# TYPE {metric} histogram")
                for (n, labels), hist in self._histograms.items():
                    if n != name:
                        continue
                    bounds = [str(b) for b in hist.bounds] + ["+Inf"]
                    for bound, count in zip(bounds, hist.bucket_counts):
                        le = 'le="' + bound + '"'
                        lines.append(f"{metric}_bucket{_render_labels(labels, le)} {count}")
                    lines.append(f"{metric}_sum{_render_labels(labels)} {hist.sum:.2f}")
                    lines.append(f"{metric}_count{_render_labels(labels)} {hist.count}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Drop every recorded value (used between tests)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


# Global metrics instance
metrics = MetricsCollector()
