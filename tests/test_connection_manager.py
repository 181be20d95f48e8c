"""Tests for the persistent voice connection manager."""

import asyncio
from types import SimpleNamespace

import pytest

from conftest import FakeTransport, wait_until
from module.track_quiz.audio.connection import ConnectionState, StreamingConnectionManager, VoiceHandle
from module.track_quiz.utils.errors import ConnectionTimeout, StaleConnection
from module.track_quiz.utils.retry import RetryPolicy

FAST_POLICY = RetryPolicy(max_attempts=2, base_delay=0, give_up_on=())


def make_manager(transport, grace_window: float = 0.2, ready_timeout: float = 0.1):
    return StreamingConnectionManager(
        transport,
        ready_timeout=ready_timeout,
        grace_window=grace_window,
        policy=FAST_POLICY,
    )


@pytest.mark.asyncio
async def test_connection_is_reused_across_rounds(transport, voice_channel):
    manager = make_manager(transport)

    first = await manager.ensure_connection(voice_channel)
    second = await manager.ensure_connection(voice_channel)
    third = await manager.ensure_connection(voice_channel)

    assert first is second is third
    assert transport.joins == 1
    assert manager.state == ConnectionState.READY
    await manager.destroy()


@pytest.mark.asyncio
async def test_switching_channel_rejoins(transport, voice_channel):
    manager = make_manager(transport)

    first = await manager.ensure_connection(voice_channel)
    second = await manager.ensure_connection(SimpleNamespace(id=99))

    assert second is not first
    assert second.channel_id == 99
    assert first.destroyed
    assert transport.joins == 2
    await manager.destroy()


@pytest.mark.asyncio
async def test_disconnect_recovered_within_grace_keeps_handle(transport, voice_channel):
    manager = make_manager(transport, grace_window=0.3)
    handle = await manager.ensure_connection(voice_channel)

    handle.set_state(ConnectionState.DISCONNECTED)
    assert manager.is_recovering
    await asyncio.sleep(0.05)
    handle.set_state(ConnectionState.SIGNALLING)
    handle.set_state(ConnectionState.READY)
    await wait_until(lambda: not manager.is_recovering)

    assert manager.handle is handle
    assert not handle.destroyed
    assert await manager.ensure_connection(voice_channel) is handle
    assert transport.joins == 1
    await manager.destroy()


@pytest.mark.asyncio
async def test_disconnect_beyond_grace_clears_and_rebuilds(transport, voice_channel):
    manager = make_manager(transport, grace_window=0.05)
    handle = await manager.ensure_connection(voice_channel)

    handle.set_state(ConnectionState.DISCONNECTED)
    await wait_until(lambda: manager.handle is None)
    assert handle.destroyed

    rebuilt = await manager.ensure_connection(voice_channel)
    assert rebuilt is not handle
    assert rebuilt.state == ConnectionState.READY
    assert transport.joins == 2
    await manager.destroy()


@pytest.mark.asyncio
async def test_transport_error_nulls_handle(transport, voice_channel):
    manager = make_manager(transport)
    handle = await manager.ensure_connection(voice_channel)

    handle.set_state(ConnectionState.DESTROYED)

    assert manager.handle is None
    assert manager.state == ConnectionState.IDLE


@pytest.mark.asyncio
async def test_ready_timeout_raises_connection_timeout(voice_channel):
    transport = FakeTransport(hang=True)
    manager = make_manager(transport, ready_timeout=0.05)

    with pytest.raises(ConnectionTimeout):
        await manager.ensure_connection(voice_channel)

    assert manager.handle is None
    assert transport.joins == FAST_POLICY.max_attempts
    assert all(h.destroyed for h in transport.handles)


@pytest.mark.asyncio
async def test_play_requires_ready_connection(transport, voice_channel):
    manager = make_manager(transport)
    with pytest.raises(StaleConnection):
        manager.play(object())

    handle = await manager.ensure_connection(voice_channel)
    manager.play("first")
    manager.play("second")

    assert handle.played == ["first", "second"]
    # 新的播放會先停掉舊的
    assert handle.stop_calls == 1

    manager.stop_playback()
    assert not handle.is_playing
    assert handle.state == ConnectionState.READY
    await manager.destroy()


@pytest.mark.asyncio
async def test_destroy_does_not_trigger_recovery(transport, voice_channel):
    manager = make_manager(transport)
    handle = await manager.ensure_connection(voice_channel)

    await manager.destroy()

    assert handle.destroyed
    assert handle.state == ConnectionState.DESTROYED
    assert manager.handle is None
    assert not manager.is_recovering


def test_voice_handle_requires_playback_methods():
    with pytest.raises(TypeError):
        VoiceHandle(1)

    class SilentHandle(VoiceHandle):
        def play(self, audio, after=None):
            pass

        def stop_playback(self):
            pass

    handle = SilentHandle(1)
    assert handle.state == ConnectionState.IDLE
    assert not handle.is_playing
