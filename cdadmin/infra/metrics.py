# cdadmin/infra/metrics.py
"""
In-process dispatch metrics, served as JSON at ``/metrics``.

Counters track dispatches, cancellations and Function Compute retries;
histograms keep the most recent ``HISTOGRAM_WINDOW`` latency samples per
series so a long-running admin process does not grow without bound.
Series keys look like ``fc_request_seconds{method=POST}``.
"""
from __future__ import annotations

import time
from collections import Counter, deque
from threading import Lock
from typing import Deque, Dict

from cdadmin.infra.logging_config import get_logger

logger = get_logger(__name__)

HISTOGRAM_WINDOW = 1000


def series_key(name: str, labels: dict | None = None) -> str:
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={labels[k]}" for k in sorted(labels)) + "}"


def summarize(samples) -> dict:
    ordered = sorted(samples)
    if not ordered:
        return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}
    n = len(ordered)
    return {
        "count": n,
        "min": ordered[0],
        "max": ordered[-1],
        "avg": sum(ordered) / n,
        "p95": ordered[min(int(n * 0.95), n - 1)],
    }


class MetricsCollector:
    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self._window = window
        self._counters: Counter[str] = Counter()
        self._histograms: Dict[str, Deque[float]] = {}
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        with self._lock:
            self._counters[series_key(name, labels)] += amount

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = series_key(name, labels)
        with self._lock:
            if key not in self._histograms:
                self._histograms[key] = deque(maxlen=self._window)
            self._histograms[key].append(value)

    def get_counter(self, name: str, **labels) -> int:
        with self._lock:
            return self._counters.get(series_key(name, labels), 0)

    def get_metrics(self) -> dict:
        """Snapshot: raw counters plus count/min/max/avg/p95 per histogram."""
        with self._lock:
            counters = dict(self._counters)
            windows = {k: list(v) for k, v in self._histograms.items()}
        return {
            "counters": counters,
            "histograms": {k: summarize(v) for k, v in windows.items()},
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Records the wall time of a ``with`` block into a histogram, errors included."""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            observe_histogram(self.metric_name, time.perf_counter() - self.start_time, **self.labels)
