"""Tests for imgscout.utils.logger and imgscout.utils.ulid."""

from __future__ import annotations

from imgscout.utils.logger import (
    PerformanceLogger,
    add_session_id,
    clear_session_id,
    set_session_id,
)
from imgscout.utils.ulid import generate_ulid


class TestSessionIdProcessor:
    def test_adds_bound_session_id(self) -> None:
        set_session_id("01HZZZZZZZZZZZZZZZZZZZZZZZ")
        try:
            event = add_session_id(None, "info", {"event": "scan"})
        finally:
            clear_session_id()
        assert event["session_id"] == "01HZZZZZZZZZZZZZZZZZZZZZZZ"

    def test_absent_when_cleared(self) -> None:
        clear_session_id()
        assert "session_id" not in add_session_id(None, "info", {"event": "scan"})


class TestPerformanceLogger:
    def test_measures_duration(self) -> None:
        with PerformanceLogger("unit operation") as perf:
            sum(range(1000))
        assert perf.duration_ms >= 0.0
        assert perf.end_time >= perf.start_time


class TestGenerateUlid:
    def test_format(self) -> None:
        value = generate_ulid()
        assert len(value) == 26
        assert value.isalnum()

    def test_unique(self) -> None:
        values = [generate_ulid() for _ in range(50)]
        assert len(set(values)) == 50
