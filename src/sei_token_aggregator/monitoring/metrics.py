"""Thread-safe in-process metrics registry with Prometheus text export."""

from __future__ import annotations

import re
import threading
from collections import defaultdict, deque
from statistics import mean, median
from typing import Deque, Dict, Iterable, MutableMapping

_METRIC_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_:]")


def _sanitize_metric_name(name: str) -> str:
    """Return a Prometheus-safe metric name."""

    sanitized = _METRIC_SANITIZE_RE.sub("_", name)
    if not sanitized:
        return "_"
    if sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


class MetricsRegistry:
    """Counters, gauges and bounded histograms for the aggregation pipeline."""

    def __init__(self, *, max_hist_samples: int = 1024) -> None:
        self._lock = threading.RLock()
        self._max_hist_samples = max_hist_samples
        self._counters: MutableMapping[str, float] = defaultdict(float)
        self._gauges: MutableMapping[str, float] = {}
        self._histograms: MutableMapping[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=max_hist_samples)
        )

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def get_gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._histograms[name].append(float(value))

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            histograms = {key: self._histogram_stats(values) for key, values in self._histograms.items()}
        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": histograms,
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()

    @staticmethod
    def _histogram_stats(values: Iterable[float]) -> Dict[str, float]:
        samples = sorted(values)
        if not samples:
            return {}

        def _quantile(q: float) -> float:
            index = min(len(samples) - 1, max(0, int(round(q * (len(samples) - 1)))))
            return samples[index]

        return {
            "count": float(len(samples)),
            "avg": mean(samples),
            "p50": median(samples),
            "p90": _quantile(0.9),
            "p99": _quantile(0.99),
            "max": samples[-1],
        }

    def export_prometheus(self) -> str:
        snap = self.snapshot()
        lines = []
        for name, value in snap["counters"].items():
            sanitized = _sanitize_metric_name(name)
            lines.append(f"# TYPE {sanitized} counter")
            lines.append(f"{sanitized} {value}")
        for name, value in snap["gauges"].items():
            sanitized = _sanitize_metric_name(name)
            lines.append(f"# TYPE {sanitized} gauge")
            lines.append(f"{sanitized} {value}")
        for name, stats in snap["histograms"].items():
            if not stats:
                continue
            base = _sanitize_metric_name(name)
            lines.append(f"# TYPE {base} summary")
            for quantile in ("p50", "p90", "p99"):
                if quantile in stats:
                    lines.append(f"{base}{{quantile=\"{quantile}\"}} {stats[quantile]}")
            lines.append(f"{base}_count {stats.get('count', 0)}")
            if "avg" in stats:
                lines.append(f"{base}_avg {stats['avg']}")
        return "\n".join(lines) + "\n"


METRICS = MetricsRegistry()

__all__ = ["METRICS", "MetricsRegistry"]
