"""Tests for playlist parsing and loading in the Spotify client."""

import pytest

from module.track_quiz.spotify.client import (
    PlaylistInfo,
    SpotifyClient,
    is_quiz_candidate,
    parse_playlist_id,
    track_from_item,
)
from module.track_quiz.core.models import Track
from module.track_quiz.utils.errors import ConfigurationError, InvalidInput

PLAYLIST_ID = "37i9dQZF1DXcBWIGoYBM5M"


def make_item(name, artists, duration_ms=180_000, popularity=50, preview_url=None, **extra):
    item = {
        "name": name,
        "artists": [{"name": a} for a in artists],
        "duration_ms": duration_ms,
        "popularity": popularity,
        "preview_url": preview_url,
        "album": {"name": "Album", "images": [{"url": "https://img/1"}]},
    }
    item.update(extra)
    return item


@pytest.mark.parametrize("text", [
    f"https://open.spotify.com/playlist/{PLAYLIST_ID}?si=abc123",
    f"https://open.spotify.com/intl-ja/playlist/{PLAYLIST_ID}",
    f"spotify:playlist:{PLAYLIST_ID}",
    f"  {PLAYLIST_ID}  ",
])
def test_parse_playlist_id_accepts_common_forms(text):
    assert parse_playlist_id(text) == PLAYLIST_ID


@pytest.mark.parametrize("text", ["", "not a playlist", "https://open.spotify.com/playlist/short", None])
def test_parse_playlist_id_rejects_malformed(text):
    with pytest.raises(InvalidInput) as exc_info:
        parse_playlist_id(text)
    assert exc_info.value.user_message == "播放清單網址或 ID 格式不正確"


def test_track_from_item_maps_fields():
    track = track_from_item(make_item(" Stay ", ["The Kid LAROI", "Justin Bieber"], preview_url="https://p/stay"))

    assert track.title == "Stay"
    assert track.artist == "The Kid LAROI, Justin Bieber"
    assert track.preview_url == "https://p/stay"
    assert track.album == "Album"
    assert track.image_url == "https://img/1"


def test_track_from_item_skips_local_and_missing():
    assert track_from_item(None) is None
    assert track_from_item(make_item("Demo", ["Me"], is_local=True)) is None
    assert track_from_item(make_item("Song", ["A"], preview_url="")).preview_url is None


def test_quiz_candidate_filter():
    assert is_quiz_candidate(Track("Yellow", "Coldplay", duration_ms=266_000))
    assert not is_quiz_candidate(Track("Intro", "Coldplay", duration_ms=20_000))
    assert not is_quiz_candidate(Track("Yellow (Instrumental)", "Coldplay", duration_ms=266_000))
    assert not is_quiz_candidate(Track("Yellow", "", duration_ms=266_000))


def test_playlist_info_playable():
    assert PlaylistInfo(PLAYLIST_ID, "Hits", public=True, track_count=10).is_playable
    assert not PlaylistInfo(PLAYLIST_ID, "Hits", public=False, track_count=10).is_playable
    assert not PlaylistInfo(PLAYLIST_ID, "Empty", public=True, track_count=0).is_playable


@pytest.mark.asyncio
async def test_client_requires_credentials():
    with pytest.raises(ConfigurationError):
        SpotifyClient("", "secret")


class PagedResponses:
    """依 offset 回傳預先準備的分頁"""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    async def __call__(self, path, params=None):
        self.calls.append((path, dict(params or {})))
        if path.endswith("/tracks"):
            return self.pages[params["offset"] // 50]
        return {"name": "Hits", "public": True, "tracks": {"total": 3}, "owner": {"display_name": "dj"}}


@pytest.mark.asyncio
async def test_playlist_tracks_are_filtered_deduped_and_sorted():
    pages = [
        {
            "items": [
                {"track": make_item("Low", ["A"], popularity=10)},
                {"track": make_item("Short", ["A"], duration_ms=10_000)},
                {"track": None},
            ],
            "next": "page-2",
        },
        {
            "items": [
                {"track": make_item("High", ["B"], popularity=90)},
                {"track": make_item("low", ["a"], popularity=99)},
            ],
            "next": None,
        },
    ]
    client = SpotifyClient("id", "secret")
    client._get_with_retry = PagedResponses(pages)

    tracks = await client.get_playlist_tracks(f"spotify:playlist:{PLAYLIST_ID}")

    assert [t.title for t in tracks] == ["High", "Low"]
    assert [params["offset"] for _, params in client._get_with_retry.calls] == [0, 50]
    await client.close()


@pytest.mark.asyncio
async def test_validate_playlist_builds_info():
    client = SpotifyClient("id", "secret")
    client._get_with_retry = PagedResponses([])

    info = await client.validate_playlist(PLAYLIST_ID)

    assert info == PlaylistInfo(PLAYLIST_ID, "Hits", public=True, track_count=3, owner="dj")
    assert info.is_playable
    await client.close()
