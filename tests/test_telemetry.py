"""Tests for resolution telemetry counters."""

import pytest

from module.track_quiz.utils.telemetry import ResolutionTelemetry


def test_average_uses_running_totals():
    telemetry = ResolutionTelemetry()
    for elapsed in (100, 200, 300):
        telemetry.record_success("preview", elapsed)
    telemetry.record_success("secondary", 5000)
    telemetry.record_failure("search")
    telemetry.record_exhausted()

    snapshot = telemetry.snapshot()

    assert snapshot["success"] == {"preview": 3, "secondary": 1}
    assert snapshot["failure"] == {"search": 1}
    assert snapshot["exhausted"] == 1
    assert snapshot["avg_ms"] == {"preview": pytest.approx(200.0), "secondary": pytest.approx(5000.0)}


def test_unknown_tier_average_is_zero():
    assert ResolutionTelemetry().average_ms("cache") == 0.0


def test_timing_state_does_not_grow_with_samples():
    telemetry = ResolutionTelemetry()
    for _ in range(1000):
        telemetry.record_success("cache", 1)

    assert telemetry._elapsed_total == {"cache": 1000}
    assert telemetry.average_ms("cache") == pytest.approx(1.0)
