"""Pytest configuration and fixtures."""

import asyncio
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from module.track_quiz.audio.connection import ConnectionState, VoiceHandle, channel_id_of
from module.track_quiz.core.events import GameEventSink
from module.track_quiz.core.models import Track
from module.track_quiz.utils.errors import ProviderUnavailable


# === 語音替身 ===

class FakeVoiceHandle(VoiceHandle):
    """記錄播放 / 停止 / 銷毀的語音連線"""

    def __init__(self, channel_id: int):
        super().__init__(channel_id)
        self.played: List = []
        self.stop_calls = 0
        self.destroyed = False
        self._playing = False

    @property
    def is_playing(self) -> bool:
        return self._playing

    def play(self, audio, after=None) -> None:
        self.played.append(audio)
        self._playing = True

    def stop_playback(self) -> None:
        self.stop_calls += 1
        self._playing = False

    async def destroy(self) -> None:
        self.destroyed = True
        self._playing = False
        await super().destroy()


class FakeTransport:
    """
    加入頻道後立即 Ready；hang=True 時停在 Connecting
    """

    def __init__(self, hang: bool = False):
        self.hang = hang
        self.joins = 0
        self.handles: List[FakeVoiceHandle] = []

    async def join(self, channel) -> FakeVoiceHandle:
        self.joins += 1
        handle = FakeVoiceHandle(channel_id_of(channel))
        handle.set_state(ConnectionState.CONNECTING)
        if not self.hang:
            handle.set_state(ConnectionState.READY)
        self.handles.append(handle)
        return handle


# === 音源替身 ===

class FakeMetadata:
    """
    metadata 服務替身

    previews: 可下載的試聽網址 → 內容；不在表中的網址一律失敗
    results: 搜尋字串 → 結果
    """

    def __init__(self, previews: Optional[Dict[str, bytes]] = None, results: Optional[Dict[str, List[Track]]] = None):
        self.previews = previews or {}
        self.results = results or {}
        self.queries: List[str] = []
        self.fetched: List[str] = []

    async def search_tracks(self, query: str, limit: int = 5) -> List[Track]:
        self.queries.append(query)
        return list(self.results.get(query, []))[:limit]

    async def fetch_preview(self, url: str, timeout: float = 15) -> bytes:
        self.fetched.append(url)
        if url not in self.previews:
            raise ProviderUnavailable(f"HTTP 404 {url}", provider="preview")
        return self.previews[url]


class FakeStream:
    def __init__(self, query: str, fail: bool = False, delay: float = 0):
        self.query = query
        self.fail = fail
        self.delay = delay
        self.starting = False
        self.started = False
        self.closed = False

    async def start(self) -> "FakeStream":
        self.starting = True
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            self.closed = True
            raise ProviderUnavailable(f"yt-dlp exited with 1: {self.query}", provider="secondary")
        self.started = True
        return self

    async def close(self) -> None:
        self.closed = True


class FakeStreamFactory:
    """前 fail_times 次建立的串流會啟動失敗；delay 模擬緩衝時間"""

    def __init__(self, fail_times: int = 0, delay: float = 0):
        self.fail_times = fail_times
        self.delay = delay
        self.streams: List[FakeStream] = []

    def __call__(self, query: str) -> FakeStream:
        stream = FakeStream(query, fail=len(self.streams) < self.fail_times, delay=self.delay)
        self.streams.append(stream)
        return stream


# === 顯示層替身 ===

class RecordingSink(GameEventSink):
    """記錄所有遊戲事件"""

    def __init__(self):
        self.round_starts = []
        self.playing = []
        self.results = []
        self.feedback = []
        self.hints = []
        self.skip_votes = []
        self.rejections = []
        self.summary = None

    async def on_round_start(self, session, round_state):
        self.round_starts.append(round_state)

    async def on_round_playing(self, session, round_state):
        self.playing.append(round_state.index)

    async def on_round_result(self, session, result):
        self.results.append(result)

    async def on_feedback(self, session, event, verdict):
        self.feedback.append((event.user_id, verdict))

    async def on_hint(self, session, event, hint, remaining):
        self.hints.append((hint, remaining))

    async def on_skip_vote(self, session, event, votes, required):
        self.skip_votes.append((event.user_id, votes, required))

    async def on_answer_rejected(self, session, event, reason):
        self.rejections.append((event.user_id, reason))

    async def on_game_over(self, session, summary):
        self.summary = summary


async def wait_until(predicate, timeout: float = 3.0) -> None:
    """輪詢直到條件成立"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


# === Fixtures ===

@pytest.fixture
def tracks():
    """五首有試聽網址的歌曲"""
    return [
        Track("Blinding Lights", "The Weeknd", preview_url="https://p/1", duration_ms=200_000, popularity=90),
        Track("Levitating", "Dua Lipa", preview_url="https://p/2", duration_ms=203_000, popularity=85),
        Track("Bad Guy", "Billie Eilish", preview_url="https://p/3", duration_ms=194_000, popularity=80),
        Track("Shape of You", "Ed Sheeran", preview_url="https://p/4", duration_ms=233_000, popularity=95),
        Track("Yellow", "Coldplay", preview_url="https://p/5", duration_ms=266_000, popularity=70),
    ]


@pytest.fixture
def metadata(tracks):
    return FakeMetadata(previews={t.preview_url: b"preview-bytes" for t in tracks})


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def voice_channel():
    return SimpleNamespace(id=42, name="語音頻道")


@pytest.fixture
def sink():
    return RecordingSink()
