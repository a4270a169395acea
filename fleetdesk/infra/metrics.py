# fleetdesk/infra/metrics.py
"""
In-process metrics served on ``/metrics``.

Counters and histograms are keyed by name plus a sorted label tuple, so
the fan-out summary can group notification writes by recipient kind
without parsing rendered keys.
"""
from __future__ import annotations
import time
from collections import defaultdict
from threading import Lock
from typing import Dict, Tuple
from dataclasses import dataclass, field

MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]

NOTIFICATIONS_WRITTEN = "notifications_written_total"
NOTIFICATIONS_FAILED = "notifications_failed_total"


@dataclass
class Counter:
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Histogram:
    """Durations of fan-outs and HTTP requests, in seconds."""
    values: list[float] = field(default_factory=list)

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        ordered = sorted(self.values)
        count = len(ordered)
        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p95": ordered[min(int(count * 0.95), count - 1)],
        }


def _key(name: str, labels: dict | None) -> MetricKey:
    return name, tuple(sorted((k, str(v)) for k, v in (labels or {}).items()))


def _render(key: MetricKey) -> str:
    name, labels = key
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"


class MetricsCollector:
    """Thread-safe counters and histograms for one process."""

    def __init__(self):
        self._counters: Dict[MetricKey, Counter] = defaultdict(Counter)
        self._histograms: Dict[MetricKey, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        with self._lock:
            self._counters[_key(name, labels)].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        with self._lock:
            self._histograms[_key(name, labels)].observe(value)

    def get_counter(self, name: str, **labels) -> int:
        with self._lock:
            counter = self._counters.get(_key(name, labels))
            return counter.value if counter else 0

    def fanout_summary(self) -> dict:
        """Notification writes per recipient kind, with the share that failed."""
        by_kind: dict[str, dict[str, int]] = defaultdict(lambda: {"written": 0, "failed": 0})
        with self._lock:
            for (name, labels), counter in self._counters.items():
                if name not in (NOTIFICATIONS_WRITTEN, NOTIFICATIONS_FAILED):
                    continue
                kind = dict(labels).get("recipient_kind", "unknown")
                slot = "written" if name == NOTIFICATIONS_WRITTEN else "failed"
                by_kind[kind][slot] += counter.value

        written = sum(v["written"] for v in by_kind.values())
        failed = sum(v["failed"] for v in by_kind.values())
        attempted = written + failed
        return {
            "written": written,
            "failed": failed,
            "failureRate": round(failed / attempted, 4) if attempted else 0.0,
            "byRecipientKind": dict(by_kind),
        }

    def get_metrics(self) -> dict:
        with self._lock:
            counters = {_render(k): v.value for k, v in self._counters.items()}
            histograms = {_render(k): v.get_stats() for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "histograms": histograms,
            "fanout": self.fanout_summary(),
        }


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager that records elapsed seconds into a histogram"""

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


class FleetMetrics:
    """Named counters for the events the dispatch backend tracks."""

    @staticmethod
    def notification_written(recipient_kind: str) -> None:
        inc_counter(NOTIFICATIONS_WRITTEN, recipient_kind=recipient_kind)

    @staticmethod
    def notification_failed(recipient_kind: str) -> None:
        inc_counter(NOTIFICATIONS_FAILED, recipient_kind=recipient_kind)

    @staticmethod
    def sign_in(succeeded: bool) -> None:
        inc_counter("admin_sign_in_success" if succeeded else "admin_sign_in_failed")

    @staticmethod
    def blob_delete_failed() -> None:
        inc_counter("blob_deletes_failed")
