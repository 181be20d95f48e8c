"""
Spotify Web API 客戶端

使用 aiohttp 實作：
- Client Credentials 授權（交給 TokenManager 管理）
- 歌曲搜尋
- 試聽片段下載
- 播放清單驗證與載入（分頁、過濾、去重、依熱門度排序）
"""

import asyncio
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple
import aiohttp
from loguru import logger

from .token import TokenManager
from ..constants import (
    SPOTIFY_TOKEN_URL,
    SPOTIFY_API_BASE,
    SEARCH_RESULT_LIMIT,
    SEARCH_MAX_ATTEMPTS,
    SEARCH_BASE_DELAY,
    PREVIEW_FETCH_TIMEOUT,
    PLAYLIST_PAGE_SIZE,
    PLAYLIST_MAX_TRACKS,
    MIN_TRACK_DURATION_MS,
)
from ..core.models import Track, dedupe_tracks
from ..utils.decorators import handle_errors, log_operation
from ..utils.errors import (
    ConfigurationError,
    InvalidInput,
    ProviderUnavailable,
    RateLimited,
)
from ..utils.retry import RetryPolicy

_PLAYLIST_ID = re.compile(r"^[A-Za-z0-9]{22}$")
_PLAYLIST_URL = re.compile(r"(?:open\.spotify\.com/(?:[\w-]+/)?playlist/|spotify:playlist:)([A-Za-z0-9]+)")


def parse_playlist_id(text: str) -> str:
    """
    從網址、URI 或純 ID 取出播放清單 ID

    支援：
        https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M?si=...
        spotify:playlist:37i9dQZF1DXcBWIGoYBM5M
        37i9dQZF1DXcBWIGoYBM5M

    Raises:
        InvalidInput: 格式不正確
    """
    text = (text or "").strip()
    match = _PLAYLIST_URL.search(text)
    candidate = match.group(1) if match else text
    if not _PLAYLIST_ID.match(candidate):
        raise InvalidInput(
            f"Malformed playlist identifier: {text!r}",
            user_message="播放清單網址或 ID 格式不正確",
        )
    return candidate


@dataclass(frozen=True)
class PlaylistInfo:
    """播放清單驗證結果"""

    playlist_id: str
    name: str
    public: bool
    track_count: int
    owner: str = ""

    @property
    def is_playable(self) -> bool:
        return self.public and self.track_count > 0


def track_from_item(item: dict) -> Optional[Track]:
    """將 API 回傳的 track 物件轉為 Track，缺少必要欄位時返回 None"""
    if not item or item.get("is_local"):
        return None
    artists = [a.get("name", "") for a in item.get("artists") or [] if a.get("name")]
    album = item.get("album") or {}
    images = album.get("images") or []
    return Track(
        title=(item.get("name") or "").strip(),
        artist=", ".join(artists),
        preview_url=item.get("preview_url") or None,
        duration_ms=int(item.get("duration_ms") or 0),
        popularity=int(item.get("popularity") or 0),
        album=album.get("name", ""),
        image_url=images[0].get("url", "") if images else "",
    )


def is_quiz_candidate(track: Track) -> bool:
    """過濾過短、缺少資訊或純演奏版本的歌曲"""
    return (
        track.duration_ms > MIN_TRACK_DURATION_MS
        and bool(track.title)
        and bool(track.artist)
        and "instrumental" not in track.title.lower()
    )


class SpotifyClient:
    """
    Spotify Web API 客戶端

    使用方式：
        client = SpotifyClient(client_id, client_secret)
        await client.start()

        info = await client.validate_playlist(playlist_id)
        tracks = await client.get_playlist_tracks(playlist_id)

        await client.close()
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        session: Optional[aiohttp.ClientSession] = None,
        search_policy: Optional[RetryPolicy] = None,
    ):
        """
        Args:
            client_id: Spotify 應用程式 ID
            client_secret: Spotify 應用程式密鑰
            session: 可選的外部 aiohttp session
            search_policy: API 呼叫的重試策略
        """
        if not client_id or not client_secret:
            raise ConfigurationError("SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET is not set")

        self._client_id = client_id
        self._client_secret = client_secret
        self._session = session
        self._owns_session = session is None
        self.policy = search_policy or RetryPolicy(
            max_attempts=SEARCH_MAX_ATTEMPTS,
            base_delay=SEARCH_BASE_DELAY,
            multiplier=2.0,
            give_up_on=(InvalidInput, ConfigurationError),
        )
        self.tokens = TokenManager(fetch=self.request_token)

    # === 連線管理 ===

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

    async def close(self) -> None:
        await self.tokens.close()
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            raise ProviderUnavailable("SpotifyClient session is not started", provider="spotify")
        return self._session

    # === 授權 ===

    async def request_token(self) -> Tuple[str, float]:
        """
        以 Client Credentials 取得權杖

        Returns:
            (access_token, expires_in)
        """
        try:
            async with self.session.post(
                SPOTIFY_TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=aiohttp.BasicAuth(self._client_id, self._client_secret),
                timeout=aiohttp.ClientTimeout(total=15),
            ) as resp:
                if resp.status == 429:
                    raise RateLimited("Token endpoint rate limited", self._retry_after(resp), provider="spotify")
                if resp.status != 200:
                    body = await resp.text()
                    raise ProviderUnavailable(f"Token request failed: HTTP {resp.status} {body[:200]}", provider="spotify")
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailable(f"Token request error: {type(e).__name__}: {e}", provider="spotify") from e

        return data["access_token"], float(data.get("expires_in", 3600))

    # === API ===

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        """單次 GET，依狀態碼轉換為對應錯誤"""
        token = await self.tokens.ensure_valid_token()
        url = path if path.startswith("http") else f"{SPOTIFY_API_BASE}{path}"
        try:
            async with self.session.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=aiohttp.ClientTimeout(total=15),
            ) as resp:
                match resp.status:
                    case 200:
                        return await resp.json()
                    case 401:
                        self.tokens.invalidate()
                        raise ProviderUnavailable("Access token rejected", provider="spotify")
                    case 404:
                        raise InvalidInput(f"Not found: {path}", user_message="找不到指定的播放清單")
                    case 429:
                        raise RateLimited(f"Rate limited: {path}", self._retry_after(resp), provider="spotify")
                    case status:
                        raise ProviderUnavailable(f"HTTP {status}: {path}", provider="spotify")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailable(f"Request error {path}: {type(e).__name__}: {e}", provider="spotify") from e

    async def _get_with_retry(self, path: str, params: Optional[dict] = None) -> dict:
        return await self.policy.run(lambda: self._get(path, params), name=f"GET {path}")

    @staticmethod
    def _retry_after(resp: aiohttp.ClientResponse) -> Optional[float]:
        value = resp.headers.get("Retry-After")
        try:
            return float(value) if value is not None else None
        except ValueError:
            return None

    async def search_tracks(self, query: str, limit: int = SEARCH_RESULT_LIMIT) -> List[Track]:
        """搜尋歌曲"""
        data = await self._get_with_retry("/search", {"q": query, "type": "track", "limit": limit})
        items = (data.get("tracks") or {}).get("items") or []
        tracks = [t for t in (track_from_item(item) for item in items) if t is not None]
        logger.debug(f"[Spotify] 搜尋 {query!r}: {len(tracks)} 筆")
        return tracks

    async def fetch_preview(self, url: str, timeout: float = PREVIEW_FETCH_TIMEOUT) -> bytes:
        """
        下載試聽片段

        Raises:
            ProviderUnavailable: 非 200、逾時或連線錯誤
        """
        try:
            async with self.session.get(
                url,
                allow_redirects=True,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status != 200:
                    raise ProviderUnavailable(f"Preview HTTP {resp.status}", provider="preview")
                data = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailable(f"Preview fetch error: {type(e).__name__}: {e}", provider="preview") from e

        if not data:
            raise ProviderUnavailable("Preview is empty", provider="preview")
        return data

    @handle_errors
    async def validate_playlist(self, playlist_id: str) -> PlaylistInfo:
        """
        驗證播放清單是否存在、公開且有歌曲

        Raises:
            InvalidInput: ID 格式錯誤或找不到
        """
        playlist_id = parse_playlist_id(playlist_id)
        data = await self._get_with_retry(
            f"/playlists/{playlist_id}",
            {"fields": "name,public,owner(display_name),tracks(total)"},
        )
        return PlaylistInfo(
            playlist_id=playlist_id,
            name=data.get("name", ""),
            public=bool(data.get("public", True)),
            track_count=int((data.get("tracks") or {}).get("total", 0)),
            owner=(data.get("owner") or {}).get("display_name", ""),
        )

    @handle_errors
    @log_operation("載入播放清單")
    async def get_playlist_tracks(self, playlist_id: str, max_tracks: int = PLAYLIST_MAX_TRACKS) -> List[Track]:
        """
        載入播放清單中的歌曲

        分頁抓取後過濾、依識別鍵去重，並依熱門度由高到低排序。
        """
        playlist_id = parse_playlist_id(playlist_id)
        collected: List[Track] = []
        offset = 0

        while offset < max_tracks:
            data = await self._get_with_retry(
                f"/playlists/{playlist_id}/tracks",
                {"offset": offset, "limit": PLAYLIST_PAGE_SIZE},
            )
            items = data.get("items") or []
            for item in items:
                track = track_from_item(item.get("track"))
                if track is not None and is_quiz_candidate(track):
                    collected.append(track)

            if not items or not data.get("next"):
                break
            offset += PLAYLIST_PAGE_SIZE

        tracks = dedupe_tracks(collected)
        tracks.sort(key=lambda t: t.popularity, reverse=True)
        tracks = tracks[:max_tracks]
        logger.info(f"[Spotify] 播放清單 {playlist_id} 載入 {len(tracks)} 首（過濾前 {len(collected)}）")
        return tracks
