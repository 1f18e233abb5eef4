"""Health utility classes for imgscout.

Provides:
  - ScanLatencyTracker — rolling window of the last 100 scan durations (avg, p99)
  - WorkerHealth       — snapshot of the scan worker reported by ``/health``
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

# ─── Data Types ───────────────────────────────────────────────────────────────


@dataclass
class WorkerHealth:
    """Snapshot of the scan worker.

    Attributes:
        active_sessions: Number of open viewer sessions.
        scanning:        Sessions currently waiting on a scan result.
        avg_latency_ms:  Rolling average of the last 100 scan durations.
        p99_latency_ms:  p99 of the last 100 scan durations.
        stale_discards:  Results dropped because a newer scan superseded them.
    """

    active_sessions: int
    scanning: int
    avg_latency_ms: float
    p99_latency_ms: float
    stale_discards: int


# ─── ScanLatencyTracker ───────────────────────────────────────────────────────


class ScanLatencyTracker:
    """Rolling window of scan latency measurements (last *window* samples).

    Thread-safety:
        Safe for single-threaded asyncio use (all access from the event loop).
        Sessions record durations after awaiting the worker, never from it.

    Args:
        window: Maximum number of samples to retain (default 100).

    Usage::

        tracker = ScanLatencyTracker()
        tracker.record(12.3)
        avg = tracker.avg_ms
        p99 = tracker.p99_ms     # 0.0 until 10+ samples
    """

    def __init__(self, window: int = 100) -> None:
        self._times: deque[float] = deque(maxlen=window)
        self.stale_discards: int = 0

    def record(self, duration_ms: float) -> None:
        """Append a latency sample; the oldest sample is evicted when full."""
        self._times.append(duration_ms)

    def record_stale(self) -> None:
        """Count one result discarded by the staleness check."""
        self.stale_discards += 1

    @property
    def avg_ms(self) -> float:
        """Rolling mean of the window, 0.0 when empty."""
        if not self._times:
            return 0.0
        return sum(self._times) / len(self._times)

    @property
    def p99_ms(self) -> float:
        """99th percentile of the window.

        Returns 0.0 when fewer than 10 samples are available.
        """
        if len(self._times) < 10:
            return 0.0
        sorted_times = sorted(self._times)
        idx = max(0, int(len(sorted_times) * 0.99) - 1)
        return sorted_times[idx]

    @property
    def count(self) -> int:
        """Number of samples currently in the window."""
        return len(self._times)
