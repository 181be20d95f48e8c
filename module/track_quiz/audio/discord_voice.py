"""
discord.py 語音傳輸層

把 discord.VoiceClient 包成 VoiceHandle：
- join(): channel.connect()，成功即進入 Ready
- Bot 語音狀態變化（由 Cog 的 on_voice_state_update 轉送）對應到 Disconnected / Signalling / Ready
- 播放使用 discord.FFmpegOpusAudio，試聽片段與 yt-dlp 串流都以 pipe 餵給 FFmpeg
"""

import asyncio
import io
from typing import Optional, TYPE_CHECKING
import discord
from loguru import logger

from .connection import ConnectionState, PlaybackDone, VoiceHandle
from ..constants import PLAYBACK_VOLUME, VOICE_READY_TIMEOUT
from ..utils.errors import ConnectionTimeout

if TYPE_CHECKING:
    from discord import VoiceClient
    from .resolver import ResolvedAudio


def build_audio_source(
    audio: "ResolvedAudio",
    ffmpeg_path: str = "ffmpeg",
    volume: float = PLAYBACK_VOLUME,
) -> discord.FFmpegOpusAudio:
    """
    建立 FFmpeg 音訊源

    Args:
        audio: 解析完成的音源（payload 或 stream 擇一）
        ffmpeg_path: FFmpeg 執行檔路徑
        volume: 音量倍率
    """
    options = f"-vn -filter:a volume={volume}"
    if audio.payload is not None:
        source = io.BytesIO(audio.payload)
    elif audio.stream is not None:
        source = audio.stream.buffer
    else:
        raise ValueError(f"ResolvedAudio has no playable content: {audio.track.display_name}")

    return discord.FFmpegOpusAudio(
        source,
        pipe=True,
        executable=ffmpeg_path,
        options=options,
    )


class DiscordVoiceHandle(VoiceHandle):
    """discord.VoiceClient 的 VoiceHandle 實作"""

    def __init__(self, channel_id: int, ffmpeg_path: str = "ffmpeg", ready_timeout: float = VOICE_READY_TIMEOUT):
        super().__init__(channel_id)
        self.ffmpeg_path = ffmpeg_path
        self.ready_timeout = ready_timeout
        self._voice_client: Optional["VoiceClient"] = None
        self._ready_task: Optional[asyncio.Task] = None

    @property
    def voice_client(self) -> Optional["VoiceClient"]:
        return self._voice_client

    def attach(self, voice_client: "VoiceClient") -> None:
        self._voice_client = voice_client
        self.set_state(ConnectionState.READY)

    # === 狀態轉送 ===

    def notify_voice_state(self, channel: Optional[discord.abc.Connectable]) -> None:
        """
        Bot 自己的語音狀態變化

        Args:
            channel: 變化後所在頻道，None 表示離開
        """
        if self.state == ConnectionState.DESTROYED:
            return
        if channel is None:
            self.set_state(ConnectionState.DISCONNECTED)
            return
        if self.state == ConnectionState.DISCONNECTED:
            self.set_state(ConnectionState.SIGNALLING)
            if self._ready_task is None or self._ready_task.done():
                self._ready_task = asyncio.create_task(self._await_reconnected())

    async def _await_reconnected(self) -> None:
        """discord.py 自行重連後，等 is_connected() 成立再回到 Ready"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.ready_timeout
        while loop.time() < deadline:
            if self.state != ConnectionState.SIGNALLING:
                return
            if self._voice_client and self._voice_client.is_connected():
                self.set_state(ConnectionState.READY)
                return
            await asyncio.sleep(0.25)
        logger.warning(f"[語音] 頻道 {self.channel_id} 重連後未就緒")
        self.set_state(ConnectionState.DISCONNECTED)

    # === 播放 ===

    @property
    def is_playing(self) -> bool:
        return bool(self._voice_client and self._voice_client.is_playing())

    def play(self, audio: "ResolvedAudio", after: Optional[PlaybackDone] = None) -> None:
        source = build_audio_source(audio, self.ffmpeg_path)
        self._voice_client.play(source, after=after)
        logger.debug(f"[語音] 開始播放: {audio.track.display_name} ({audio.tier.value})")

    def stop_playback(self) -> None:
        if self._voice_client and (self._voice_client.is_playing() or self._voice_client.is_paused()):
            self._voice_client.stop()

    async def destroy(self) -> None:
        if self._ready_task and not self._ready_task.done():
            self._ready_task.cancel()
        voice_client, self._voice_client = self._voice_client, None
        self.set_state(ConnectionState.DESTROYED)
        if voice_client:
            try:
                await voice_client.disconnect(force=True)
            except Exception as e:
                logger.warning(f"[語音] 中斷語音連線失敗: {e}")


class DiscordVoiceTransport:
    """
    discord.py 語音傳輸層

    使用方式：
        transport = DiscordVoiceTransport(ffmpeg_path)
        connections = StreamingConnectionManager(transport)
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", ready_timeout: float = VOICE_READY_TIMEOUT):
        self.ffmpeg_path = ffmpeg_path
        self.ready_timeout = ready_timeout

    async def join(self, channel: discord.VoiceChannel) -> DiscordVoiceHandle:
        handle = DiscordVoiceHandle(channel.id, self.ffmpeg_path, self.ready_timeout)
        handle.set_state(ConnectionState.CONNECTING)

        # 殘留的舊連線（例如上一場遊戲異常結束）
        existing = channel.guild.voice_client
        if existing is not None:
            await existing.disconnect(force=True)

        try:
            voice_client = await channel.connect(timeout=self.ready_timeout, reconnect=True, self_deaf=True)
        except (asyncio.TimeoutError, discord.ClientException, discord.opus.OpusNotLoaded) as e:
            handle.set_state(ConnectionState.DESTROYED)
            raise ConnectionTimeout(f"Failed to join {channel.name}: {type(e).__name__}: {e}", self.ready_timeout) from e

        handle.attach(voice_client)
        return handle
