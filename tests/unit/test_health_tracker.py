"""Tests for imgscout.utils.health and the /health snapshot builder."""

from __future__ import annotations

from unittest.mock import MagicMock

from imgscout.health import check_worker_health
from imgscout.utils.health import ScanLatencyTracker


class TestScanLatencyTracker:
    def test_empty(self) -> None:
        tracker = ScanLatencyTracker()
        assert tracker.avg_ms == 0.0
        assert tracker.p99_ms == 0.0
        assert tracker.count == 0
        assert tracker.stale_discards == 0

    def test_average(self) -> None:
        tracker = ScanLatencyTracker()
        for value in (10.0, 20.0, 30.0):
            tracker.record(value)
        assert tracker.avg_ms == 20.0

    def test_p99_needs_ten_samples(self) -> None:
        tracker = ScanLatencyTracker()
        for value in range(9):
            tracker.record(float(value))
        assert tracker.p99_ms == 0.0
        tracker.record(100.0)
        assert tracker.p99_ms > 0.0

    def test_window_evicts_oldest(self) -> None:
        tracker = ScanLatencyTracker(window=3)
        for value in (1000.0, 1.0, 2.0, 3.0):
            tracker.record(value)
        assert tracker.count == 3
        assert tracker.avg_ms == 2.0

    def test_stale_discards(self) -> None:
        tracker = ScanLatencyTracker()
        tracker.record_stale()
        tracker.record_stale()
        assert tracker.stale_discards == 2


class TestCheckWorkerHealth:
    def test_no_registry(self) -> None:
        snapshot = check_worker_health(None)
        assert snapshot.active_sessions == 0
        assert snapshot.stale_discards == 0

    def test_from_registry(self) -> None:
        tracker = ScanLatencyTracker()
        tracker.record(12.5)
        tracker.record_stale()
        registry = MagicMock()
        registry.latency_tracker = tracker
        registry.__len__.return_value = 3
        registry.scanning_count = 1

        snapshot = check_worker_health(registry)

        assert snapshot.active_sessions == 3
        assert snapshot.scanning == 1
        assert snapshot.avg_latency_ms == 12.5
        assert snapshot.stale_discards == 1
