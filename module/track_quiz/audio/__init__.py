"""
音訊層

音源解析、yt-dlp 串流、持久語音連線
"""

from .connection import ConnectionState, VoiceHandle, StreamingConnectionManager
from .resolver import AudioSourceResolver, ResolvedAudio
from .ytdlp_stream import YTDLPStream, PipeBuffer, build_search_query
from .discord_voice import DiscordVoiceTransport, DiscordVoiceHandle

__all__ = [
    "ConnectionState",
    "VoiceHandle",
    "StreamingConnectionManager",
    "AudioSourceResolver",
    "ResolvedAudio",
    "YTDLPStream",
    "PipeBuffer",
    "build_search_query",
    "DiscordVoiceTransport",
    "DiscordVoiceHandle",
]
