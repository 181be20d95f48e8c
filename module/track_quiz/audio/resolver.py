"""
音源解析器

依序嘗試四個層級，第一個成功者勝出：
1. 快取：已解析過的描述直接重播（失敗則移除並繼續）
2. 試聽：歌曲本身的 preview_url
3. 搜尋：以多種寬鬆程度的查詢在 metadata 服務中找有試聽的同名歌曲
4. 次要來源：yt-dlp 搜尋並串流

單一層級失敗只記錄不拋出；四層全部失敗才拋出 AllProvidersFailed。
asyncio.CancelledError 一律向上傳遞，回合結束時可隨時取消。
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol
from loguru import logger

from .ytdlp_stream import YTDLPStream, build_search_query
from ..constants import (
    PREVIEW_FETCH_TIMEOUT,
    SEARCH_RESULT_LIMIT,
    SECONDARY_MAX_ATTEMPTS,
    SECONDARY_RETRY_DELAY,
)
from ..core.cache import AudioCache
from ..core.models import SourceTier, StreamDescriptor, Track
from ..utils.errors import AllProvidersFailed, ProviderUnavailable
from ..utils.retry import RetryPolicy
from ..utils.telemetry import ResolutionTelemetry


class MetadataProvider(Protocol):
    async def search_tracks(self, query: str, limit: int = SEARCH_RESULT_LIMIT) -> List[Track]: ...

    async def fetch_preview(self, url: str, timeout: float = PREVIEW_FETCH_TIMEOUT) -> bytes: ...


type StreamFactory = Callable[[str], YTDLPStream]


@dataclass
class ResolvedAudio:
    """
    解析完成的音源

    payload 為試聽片段的完整內容；stream 為仍在執行的 yt-dlp 串流，用完需 close()。
    """

    track: Track
    descriptor: StreamDescriptor
    from_cache: bool = False
    payload: Optional[bytes] = None
    stream: Optional[YTDLPStream] = None

    @property
    def tier(self) -> SourceTier:
        return self.descriptor.tier

    async def close(self) -> None:
        if self.stream is not None:
            await self.stream.close()


def search_queries(track: Track) -> List[str]:
    """由嚴格到寬鬆的搜尋查詢"""
    title, artist = track.title, primary_artist(track.artist)
    return [
        f'track:"{title}" artist:"{artist}"',
        f'"{title}" "{artist}"',
        f"{title} {artist}",
        title,
    ]


def primary_artist(artist: str) -> str:
    return artist.split(",")[0].strip()


def is_search_match(candidate: Track, target: Track) -> bool:
    """候選結果需有試聽，且歌名包含目標歌名或任一歌手包含目標歌手（不分大小寫）"""
    if not candidate.preview_url:
        return False
    title = target.title.lower()
    artist = primary_artist(target.artist).lower()
    if title and title in candidate.title.lower():
        return True
    candidate_artists = [a.strip().lower() for a in candidate.artist.split(",")]
    return bool(artist) and any(artist in a for a in candidate_artists)


class AudioSourceResolver:
    """
    音源解析器

    使用方式：
        resolver = AudioSourceResolver(metadata=spotify_client, cache=session.cache)
        audio = await resolver.resolve(track)
        try:
            ...
        finally:
            await audio.close()
    """

    def __init__(
        self,
        metadata: MetadataProvider,
        cache: AudioCache,
        telemetry: Optional[ResolutionTelemetry] = None,
        stream_factory: StreamFactory = YTDLPStream,
        preview_timeout: float = PREVIEW_FETCH_TIMEOUT,
        secondary_policy: Optional[RetryPolicy] = None,
    ):
        """
        Args:
            metadata: 提供搜尋與試聽下載的服務
            cache: 本場遊戲的音源快取
            telemetry: 統計（可由多個解析器共用）
            stream_factory: 由搜尋字串建立 yt-dlp 串流
            preview_timeout: 試聽下載逾時（秒）
            secondary_policy: 次要來源的重試策略
        """
        self.metadata = metadata
        self.cache = cache
        self.telemetry = telemetry or ResolutionTelemetry()
        self._stream_factory = stream_factory
        self.preview_timeout = preview_timeout
        self.secondary_policy = secondary_policy or RetryPolicy(
            max_attempts=SECONDARY_MAX_ATTEMPTS,
            base_delay=SECONDARY_RETRY_DELAY,
            multiplier=2.0,
            give_up_on=(),
        )

    async def resolve(self, track: Track) -> ResolvedAudio:
        """
        解析歌曲音源

        Raises:
            AllProvidersFailed: 四個層級全部失敗
        """
        reasons: Dict[str, str] = {}
        started = time.monotonic()

        audio = await self._from_cache(track, reasons)
        if audio is None:
            audio = await self._from_preview(track, reasons)
        if audio is None:
            audio = await self._from_search(track, reasons)
        if audio is None:
            audio = await self._from_secondary(track, reasons)

        if audio is None:
            self.telemetry.record_exhausted()
            logger.error(f"[Resolver] 找不到音源: {track.display_name} {reasons}")
            raise AllProvidersFailed(track.key, reasons)

        elapsed_ms = (time.monotonic() - started) * 1000
        self.telemetry.record_success("cache" if audio.from_cache else audio.tier.value, elapsed_ms)
        logger.info(
            f"[Resolver] {track.display_name} → {audio.tier.value}"
            f"{' (快取)' if audio.from_cache else ''} {elapsed_ms:.0f}ms"
        )
        return audio

    # === 各層級 ===

    async def _from_cache(self, track: Track, reasons: Dict[str, str]) -> Optional[ResolvedAudio]:
        entry = self.cache.get(track.key)
        if entry is None:
            reasons["cache"] = "miss"
            return None
        try:
            return await self._replay(track, entry.descriptor)
        except Exception as e:
            self.cache.invalidate(track.key)
            self.telemetry.record_failure("cache")
            reasons["cache"] = f"replay failed: {e}"
            logger.warning(f"[Resolver] 快取重播失敗，已移除: {track.display_name}: {e}")
            return None

    async def _replay(self, track: Track, descriptor: StreamDescriptor) -> ResolvedAudio:
        if descriptor.kind == "url":
            payload = await self.metadata.fetch_preview(descriptor.locator, self.preview_timeout)
            return ResolvedAudio(track, descriptor, from_cache=True, payload=payload)
        stream = self._stream_factory(descriptor.locator)
        await stream.start()
        return ResolvedAudio(track, descriptor, from_cache=True, stream=stream)

    async def _from_preview(self, track: Track, reasons: Dict[str, str]) -> Optional[ResolvedAudio]:
        if not track.preview_url:
            reasons["preview"] = "no preview url"
            return None
        try:
            payload = await self.metadata.fetch_preview(track.preview_url, self.preview_timeout)
        except Exception as e:
            self.telemetry.record_failure(SourceTier.PREVIEW.value)
            reasons["preview"] = str(e)
            logger.warning(f"[Resolver] 試聽下載失敗: {track.display_name}: {e}")
            return None
        descriptor = StreamDescriptor.url(SourceTier.PREVIEW, track.preview_url)
        self.cache.put(track.key, descriptor)
        return ResolvedAudio(track, descriptor, payload=payload)

    async def _from_search(self, track: Track, reasons: Dict[str, str]) -> Optional[ResolvedAudio]:
        last_reason = "no matching preview"
        for query in search_queries(track):
            try:
                results = await self.metadata.search_tracks(query, SEARCH_RESULT_LIMIT)
            except Exception as e:
                last_reason = f"search error: {e}"
                logger.debug(f"[Resolver] 搜尋失敗 {query!r}: {e}")
                continue

            for candidate in results:
                if not is_search_match(candidate, track):
                    continue
                try:
                    payload = await self.metadata.fetch_preview(candidate.preview_url, self.preview_timeout)
                except Exception as e:
                    last_reason = f"preview of match failed: {e}"
                    continue
                descriptor = StreamDescriptor.url(SourceTier.SEARCH, candidate.preview_url)
                self.cache.put(track.key, descriptor)
                logger.debug(f"[Resolver] 搜尋命中 {query!r}: {candidate.display_name}")
                return ResolvedAudio(track, descriptor, payload=payload)

        self.telemetry.record_failure(SourceTier.SEARCH.value)
        reasons["search"] = last_reason
        logger.warning(f"[Resolver] 搜尋無結果: {track.display_name}: {last_reason}")
        return None

    async def _from_secondary(self, track: Track, reasons: Dict[str, str]) -> Optional[ResolvedAudio]:
        query = build_search_query(track)
        if not query:
            reasons["secondary"] = "empty query"
            return None

        async def attempt() -> YTDLPStream:
            stream = self._stream_factory(query)
            try:
                await stream.start()
            except BaseException:
                # 回合結束取消解析時也必須終止子進程
                await stream.close()
                raise
            return stream

        try:
            stream = await self.secondary_policy.run(attempt, name=f"yt-dlp {query}")
        except Exception as e:
            self.telemetry.record_failure(SourceTier.SECONDARY.value)
            reasons["secondary"] = str(e) if isinstance(e, ProviderUnavailable) else f"{type(e).__name__}: {e}"
            logger.warning(f"[Resolver] 次要來源失敗: {track.display_name}: {e}")
            return None

        descriptor = StreamDescriptor.subprocess(query)
        self.cache.put(track.key, descriptor)
        return ResolvedAudio(track, descriptor, stream=stream)
