"""Tests for the access token manager."""

import asyncio

import pytest

from module.track_quiz.spotify.token import TokenManager
from module.track_quiz.utils.errors import ConfigurationError, ProviderUnavailable
from module.track_quiz.utils.retry import RetryPolicy


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TokenServer:
    """授權伺服器替身，可設定前幾次失敗與回應延遲"""

    def __init__(self, fail_times: int = 0, delay: float = 0.0, expires_in: float = 3600):
        self.fail_times = fail_times
        self.delay = delay
        self.expires_in = expires_in
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.calls <= self.fail_times:
            raise ProviderUnavailable("HTTP 503", provider="spotify")
        return f"token-{self.calls}", self.expires_in


async def no_sleep(delay: float) -> None:
    return None


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    server = TokenServer(delay=0.05)
    tokens = TokenManager(fetch=server.fetch)

    results = await asyncio.gather(*(tokens.ensure_valid_token() for _ in range(10)))

    assert set(results) == {"token-1"}
    assert server.calls == 1
    assert tokens.refresh_count == 1
    await tokens.close()


@pytest.mark.asyncio
async def test_valid_token_is_reused_until_safety_margin():
    clock = FakeClock()
    server = TokenServer(expires_in=3600)
    tokens = TokenManager(fetch=server.fetch, clock=clock, safety_margin=60)

    assert await tokens.ensure_valid_token() == "token-1"
    clock.now = 3500
    assert await tokens.ensure_valid_token() == "token-1"
    assert server.calls == 1

    # 進入安全邊際內即視為無效
    clock.now = 3541
    assert not tokens.is_valid
    assert await tokens.ensure_valid_token() == "token-2"
    assert server.calls == 2
    await tokens.close()


@pytest.mark.asyncio
async def test_invalidate_forces_refresh():
    server = TokenServer()
    tokens = TokenManager(fetch=server.fetch)

    await tokens.ensure_valid_token()
    tokens.invalidate()
    assert await tokens.ensure_valid_token() == "token-2"
    await tokens.close()


@pytest.mark.asyncio
async def test_refresh_retries_with_backoff():
    server = TokenServer(fail_times=2)
    tokens = TokenManager(
        fetch=server.fetch,
        policy=RetryPolicy(max_attempts=5, base_delay=0, give_up_on=()),
        sleep=no_sleep,
    )

    assert await tokens.ensure_valid_token() == "token-3"
    assert server.calls == 3
    await tokens.close()


@pytest.mark.asyncio
async def test_refresh_gives_up_with_configuration_error():
    server = TokenServer(fail_times=100)
    tokens = TokenManager(
        fetch=server.fetch,
        policy=RetryPolicy(max_attempts=3, base_delay=0, give_up_on=()),
        sleep=no_sleep,
    )

    with pytest.raises(ConfigurationError):
        await tokens.ensure_valid_token()
    assert server.calls == 3
    assert tokens.token is None
    assert not tokens.is_refreshing
    await tokens.close()


@pytest.mark.asyncio
async def test_proactive_refresh_before_expiry():
    server = TokenServer(expires_in=0.2)
    tokens = TokenManager(fetch=server.fetch, safety_margin=0, refresh_ahead=0.15)

    await tokens.ensure_valid_token()
    await asyncio.sleep(0.15)

    assert server.calls >= 2
    assert tokens.token != "token-1"
    await tokens.close()


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_refresh():
    server = TokenServer(delay=0.05)
    tokens = TokenManager(fetch=server.fetch)

    first = asyncio.create_task(tokens.ensure_valid_token())
    second = asyncio.create_task(tokens.ensure_valid_token())
    await asyncio.sleep(0.01)
    first.cancel()

    assert await second == "token-1"
    assert server.calls == 1
    await tokens.close()
