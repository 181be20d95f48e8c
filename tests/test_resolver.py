"""Tests for tiered audio source resolution."""

import pytest

from conftest import FakeMetadata, FakeStreamFactory
from module.track_quiz.audio.resolver import AudioSourceResolver, is_search_match, search_queries
from module.track_quiz.audio.ytdlp_stream import build_search_query
from module.track_quiz.core.cache import AudioCache
from module.track_quiz.core.models import SourceTier, Track
from module.track_quiz.utils.errors import AllProvidersFailed
from module.track_quiz.utils.retry import RetryPolicy
from module.track_quiz.utils.telemetry import ResolutionTelemetry

FAST_POLICY = RetryPolicy(max_attempts=2, base_delay=0, give_up_on=())


def make_resolver(metadata, factory=None, cache=None):
    return AudioSourceResolver(
        metadata=metadata,
        cache=cache or AudioCache(),
        telemetry=ResolutionTelemetry(),
        stream_factory=factory or FakeStreamFactory(),
        secondary_policy=FAST_POLICY,
    )


@pytest.mark.asyncio
async def test_preview_tier_wins_when_available():
    track = Track("Yellow", "Coldplay", preview_url="https://p/yellow")
    metadata = FakeMetadata(previews={"https://p/yellow": b"mp3"})
    resolver = make_resolver(metadata)

    audio = await resolver.resolve(track)

    assert audio.tier == SourceTier.PREVIEW
    assert audio.payload == b"mp3"
    assert not audio.from_cache
    assert metadata.queries == []
    assert resolver.cache.get(track.key).tier == SourceTier.PREVIEW


@pytest.mark.asyncio
async def test_search_tier_used_when_preview_fails():
    track = Track("Yellow", "Coldplay", preview_url="https://p/broken")
    match = Track("Yellow - Remastered", "Coldplay", preview_url="https://p/found")
    metadata = FakeMetadata(
        previews={"https://p/found": b"found"},
        results={'"Yellow" "Coldplay"': [Track("Other", "Someone", preview_url="https://p/x"), match]},
    )
    resolver = make_resolver(metadata)

    audio = await resolver.resolve(track)

    assert audio.tier == SourceTier.SEARCH
    assert audio.payload == b"found"
    # 由嚴格到寬鬆，第二個查詢才命中
    assert metadata.queries == search_queries(track)[:2]
    assert resolver.telemetry.snapshot()["failure"] == {"preview": 1}


@pytest.mark.asyncio
async def test_secondary_tier_after_preview_and_search_fail():
    track = Track("Yellow", "Coldplay", preview_url="https://p/broken")
    factory = FakeStreamFactory(fail_times=1)
    resolver = make_resolver(FakeMetadata(), factory=factory)

    audio = await resolver.resolve(track)

    assert audio.tier == SourceTier.SECONDARY
    assert audio.stream is factory.streams[-1]
    assert len(factory.streams) == 2
    assert factory.streams[0].closed
    assert audio.descriptor.locator == build_search_query(track)

    await audio.close()
    assert audio.stream.closed

    snapshot = resolver.telemetry.snapshot()
    assert snapshot["success"] == {"secondary": 1}
    assert snapshot["failure"] == {"preview": 1, "search": 1}


@pytest.mark.asyncio
async def test_all_tiers_fail_with_reasons():
    track = Track("Yellow", "Coldplay")
    factory = FakeStreamFactory(fail_times=10)
    resolver = make_resolver(FakeMetadata(), factory=factory)

    with pytest.raises(AllProvidersFailed) as exc_info:
        await resolver.resolve(track)

    reasons = exc_info.value.reasons
    assert set(reasons) == {"cache", "preview", "search", "secondary"}
    assert reasons["cache"] == "miss"
    assert reasons["preview"] == "no preview url"
    assert "yt-dlp" in reasons["secondary"]
    assert exc_info.value.track_key == track.key
    assert resolver.telemetry.total_failures == 1
    assert all(stream.closed for stream in factory.streams)


@pytest.mark.asyncio
async def test_cache_hit_replays_descriptor():
    track = Track("Yellow", "Coldplay", preview_url="https://p/yellow")
    metadata = FakeMetadata(previews={"https://p/yellow": b"mp3"})
    resolver = make_resolver(metadata)

    await resolver.resolve(track)
    again = await resolver.resolve(track)

    assert again.from_cache
    assert again.tier == SourceTier.PREVIEW
    assert resolver.telemetry.snapshot()["success"] == {"preview": 1, "cache": 1}


@pytest.mark.asyncio
async def test_failed_cache_replay_is_invalidated_and_falls_through():
    track = Track("Yellow", "Coldplay", preview_url="https://p/yellow")
    metadata = FakeMetadata(previews={"https://p/yellow": b"mp3"})
    resolver = make_resolver(metadata)
    await resolver.resolve(track)

    # 試聽網址失效後，快取重播與試聽都會失敗，改走次要來源
    metadata.previews.clear()
    audio = await resolver.resolve(track)

    assert not audio.from_cache
    assert audio.tier == SourceTier.SECONDARY
    assert resolver.cache.get(track.key).tier == SourceTier.SECONDARY
    await audio.close()


@pytest.mark.asyncio
async def test_secondary_cache_replay_starts_new_stream():
    track = Track("Yellow", "Coldplay")
    factory = FakeStreamFactory()
    resolver = make_resolver(FakeMetadata(), factory=factory)

    first = await resolver.resolve(track)
    await first.close()
    second = await resolver.resolve(track)

    assert second.from_cache
    assert second.stream is not first.stream
    assert second.stream.started
    await second.close()


def test_search_match_rules():
    target = Track("Yellow", "Coldplay, Guest")
    assert is_search_match(Track("Yellow (Live)", "Someone", preview_url="u"), target)
    assert is_search_match(Track("Different", "Coldplay", preview_url="u"), target)
    assert not is_search_match(Track("Yellow", "Coldplay"), target)
    assert not is_search_match(Track("Different", "Someone", preview_url="u"), target)


def test_build_search_query_strips_decorations():
    track = Track("Blinding Lights (Remix)", "The Weeknd, Rosalía")
    assert build_search_query(track) == "Blinding Lights The Weeknd"
    assert build_search_query(Track("Stay [Live]", "Justin Bieber feat. Kid Laroi")) == "Stay Justin Bieber"
