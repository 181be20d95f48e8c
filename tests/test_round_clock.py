"""Tests for round timing."""

from module.track_quiz.core.state import RoundClock


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_elapsed_is_zero_before_start():
    clock = RoundClock(now=FakeClock())
    assert clock.elapsed_ms == 0


def test_elapsed_freezes_on_stop_and_is_capped():
    fake = FakeClock()
    clock = RoundClock(now=fake)

    assert clock.start(time_limit_ms=10_000) == 100.0
    fake.now = 103.5
    assert clock.elapsed_ms == 3500

    clock.stop()
    fake.now = 200.0
    assert clock.elapsed_ms == 3500

    clock.start(time_limit_ms=1_000)
    fake.now = 250.0
    assert clock.elapsed_ms == 1_000


def test_reset_clears_elapsed():
    fake = FakeClock()
    clock = RoundClock(now=fake)
    clock.start(time_limit_ms=10_000)
    fake.now = 102.0

    clock.reset()

    assert not clock.is_running
    assert clock.elapsed_ms == 0
