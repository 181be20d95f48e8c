"""Tests for the shared retry policy."""

import pytest

from module.track_quiz.utils.errors import InvalidInput, ProviderUnavailable, RateLimited
from module.track_quiz.utils.retry import RetryPolicy


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_delay_grows_exponentially_and_is_capped():
    policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=5.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_rate_limit_retry_after_overrides_backoff():
    policy = RetryPolicy(base_delay=1.0)
    error = RateLimited("slow down", retry_after=7, provider="spotify")
    assert policy.delay_for(1, error) == 7.0
    assert policy.delay_for(1, RateLimited("slow down")) == 1.0


@pytest.mark.asyncio
async def test_run_retries_until_success():
    sleep = RecordingSleep()
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ProviderUnavailable("HTTP 503")
        return "ok"

    policy = RetryPolicy(max_attempts=3, base_delay=0.5, multiplier=2.0)
    assert await policy.run(flaky, name="flaky", sleep=sleep) == "ok"
    assert len(calls) == 3
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_run_raises_last_error_when_exhausted():
    sleep = RecordingSleep()

    async def always_fails():
        raise ProviderUnavailable("down")

    policy = RetryPolicy(max_attempts=2, base_delay=0)
    with pytest.raises(ProviderUnavailable):
        await policy.run(always_fails, sleep=sleep)
    assert len(sleep.delays) == 1


@pytest.mark.asyncio
async def test_give_up_on_is_not_retried():
    sleep = RecordingSleep()
    calls = []

    async def bad_input():
        calls.append(1)
        raise InvalidInput("bad id")

    with pytest.raises(InvalidInput):
        await RetryPolicy(max_attempts=5).run(bad_input, sleep=sleep)
    assert len(calls) == 1
    assert sleep.delays == []
