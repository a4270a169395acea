# tests/test_metrics.py
"""Tests for the in-process metrics collector and the fan-out summary."""
from __future__ import annotations

from fleetdesk.infra.metrics import MetricsCollector, Timer, get_metrics_collector


class TestMetricsCollector:
    def test_counter_increment(self):
        collector = MetricsCollector()
        collector.inc_counter("blob_uploads_success", 1)
        collector.inc_counter("blob_uploads_success", 2)

        assert collector.get_metrics()["counters"]["blob_uploads_success"] == 3
        assert collector.get_counter("blob_uploads_success") == 3
        assert collector.get_counter("never_seen") == 0

    def test_labels_render_sorted(self):
        collector = MetricsCollector()
        collector.inc_counter("store_errors_total", 1, {"operation": "query", "backend": "pg"})

        counters = collector.get_metrics()["counters"]
        assert counters == {"store_errors_total{backend=pg,operation=query}": 1}
        assert collector.get_counter("store_errors_total", operation="query", backend="pg") == 1

    def test_histogram_stats(self):
        collector = MetricsCollector()
        for value in (0.1, 0.2, 0.5):
            collector.observe_histogram("notification_fanout_seconds", value, {"event_kind": "new_request"})

        stats = collector.get_metrics()["histograms"]["notification_fanout_seconds{event_kind=new_request}"]
        assert stats["count"] == 3
        assert stats["min"] == 0.1
        assert stats["max"] == 0.5


class TestFanoutSummary:
    def test_groups_by_recipient_kind(self):
        collector = MetricsCollector()
        collector.inc_counter("notifications_written_total", 3, {"recipient_kind": "admin"})
        collector.inc_counter("notifications_written_total", 1, {"recipient_kind": "driver"})
        collector.inc_counter("notifications_failed_total", 1, {"recipient_kind": "driver"})
        collector.inc_counter("admin_sign_in_failed", 5)

        summary = collector.fanout_summary()

        assert summary["written"] == 4
        assert summary["failed"] == 1
        assert summary["failureRate"] == 0.2
        assert summary["byRecipientKind"] == {
            "admin": {"written": 3, "failed": 0},
            "driver": {"written": 1, "failed": 1},
        }

    def test_empty_collector(self):
        summary = MetricsCollector().get_metrics()["fanout"]
        assert summary == {"written": 0, "failed": 0, "failureRate": 0.0, "byRecipientKind": {}}


class TestTimer:
    def test_records_into_global_collector(self):
        before = get_metrics_collector().get_metrics()["histograms"].get("timer_check_seconds", {"count": 0})
        with Timer("timer_check_seconds"):
            pass
        after = get_metrics_collector().get_metrics()["histograms"]["timer_check_seconds"]
        assert after["count"] == before["count"] + 1
