"""
猜歌遊戲模組

使用純 asyncio 架構，提供:
- 多層級音源解析（快取 → 官方試聽 → 搜尋試聽 → yt-dlp 串流）
- 以事件佇列驅動的回合狀態機
- 跨回合重用的語音連線
- Spotify 權杖自動更新
"""

# Core
from .core.models import (
    Track,
    Difficulty,
    GameMode,
    GameConfig,
    AnswerOption,
    RoundState,
    RoundOutcome,
    RoundResult,
    GameSummary,
    SourceTier,
    StreamDescriptor,
)
from .core.cache import AudioCache
from .core.evaluator import AnswerEvaluator, Feedback, Verdict
from .core.events import (
    GameEventSink,
    GuessEvent,
    SelectionEvent,
    SkipVoteEvent,
    HintRequest,
    StopRequested,
)
from .core.session import GameSession, SessionRegistry
from .core.orchestrator import RoundOrchestrator, Phase

# Audio
from .audio.connection import ConnectionState, StreamingConnectionManager
from .audio.resolver import AudioSourceResolver, ResolvedAudio
from .audio.ytdlp_stream import YTDLPStream
from .audio.discord_voice import DiscordVoiceTransport, DiscordVoiceHandle

# Spotify
from .spotify.client import SpotifyClient, PlaylistInfo, parse_playlist_id
from .spotify.token import TokenManager

# Tools
from .tools.locator import ToolLocator

# UI
from .ui.embeds import EmbedBuilder
from .ui.views import AnswerView

# Utils
from .utils.errors import (
    QuizError,
    ProviderUnavailable,
    RateLimited,
    NoPlayableSource,
    AllProvidersFailed,
    ConnectionTimeout,
    StaleConnection,
    InvalidInput,
    ConfigurationError,
)
from .utils.retry import RetryPolicy
from .utils.telemetry import ResolutionTelemetry

# Constants
from .constants import (
    # 遊戲
    DEFAULT_TOTAL_ROUNDS,
    MAX_TOTAL_ROUNDS,
    OPTION_COUNT,
    LEADERBOARD_SIZE,
    # 快取
    AUDIO_CACHE_CAPACITY,
    AUDIO_CACHE_TTL,
)

__all__ = [
    # Core
    "Track",
    "Difficulty",
    "GameMode",
    "GameConfig",
    "AnswerOption",
    "RoundState",
    "RoundOutcome",
    "RoundResult",
    "GameSummary",
    "SourceTier",
    "StreamDescriptor",
    "AudioCache",
    "AnswerEvaluator",
    "Feedback",
    "Verdict",
    "GameEventSink",
    "GuessEvent",
    "SelectionEvent",
    "SkipVoteEvent",
    "HintRequest",
    "StopRequested",
    "GameSession",
    "SessionRegistry",
    "RoundOrchestrator",
    "Phase",
    # Audio
    "ConnectionState",
    "StreamingConnectionManager",
    "AudioSourceResolver",
    "ResolvedAudio",
    "YTDLPStream",
    "DiscordVoiceTransport",
    "DiscordVoiceHandle",
    # Spotify
    "SpotifyClient",
    "PlaylistInfo",
    "parse_playlist_id",
    "TokenManager",
    # Tools
    "ToolLocator",
    # UI
    "EmbedBuilder",
    "AnswerView",
    # Utils
    "QuizError",
    "ProviderUnavailable",
    "RateLimited",
    "NoPlayableSource",
    "AllProvidersFailed",
    "ConnectionTimeout",
    "StaleConnection",
    "InvalidInput",
    "ConfigurationError",
    "RetryPolicy",
    "ResolutionTelemetry",
    # Constants
    "DEFAULT_TOTAL_ROUNDS",
    "MAX_TOTAL_ROUNDS",
    "OPTION_COUNT",
    "LEADERBOARD_SIZE",
    "AUDIO_CACHE_CAPACITY",
    "AUDIO_CACHE_TTL",
]
