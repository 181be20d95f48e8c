"""
遊戲場次

每個伺服器（guild）同時最多一場遊戲。GameSession 擁有自己的快取與語音連線管理器，
場次之間不共用可變狀態。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING
from loguru import logger

from .cache import AudioCache
from .models import GameConfig, RoundState, Track

if TYPE_CHECKING:
    from .orchestrator import RoundOrchestrator
    from ..audio.connection import StreamingConnectionManager
    from ..audio.resolver import ResolvedAudio


@dataclass
class GameSession:
    """
    單場遊戲狀態

    只有 RoundOrchestrator 會修改 scores / used_track_indices / current_round / audio。
    """

    session_id: int
    config: GameConfig
    tracks: List[Track]
    connections: "StreamingConnectionManager"
    cache: AudioCache = field(default_factory=AudioCache)
    text_channel: Any = None
    voice_channel: Any = None
    host_id: Optional[int] = None

    scores: Dict[int, int] = field(default_factory=dict)
    used_track_indices: Set[int] = field(default_factory=set)
    current_round: Optional[RoundState] = None
    rounds_played: int = 0
    is_playing: bool = False
    audio: Optional["ResolvedAudio"] = None

    @property
    def round_index(self) -> int:
        return self.current_round.index if self.current_round else 0

    def ranking(self, limit: int) -> List[tuple]:
        """依分數由高到低排序，同分依先得分者（插入順序）"""
        ordered = sorted(self.scores.items(), key=lambda item: item[1], reverse=True)
        return ordered[:limit]


class SessionRegistry:
    """
    場次登記表（以 guild id 為 key）

    使用方式：
        registry = SessionRegistry()
        registry.register(orchestrator)
        orchestrator = registry.get(guild_id)
    """

    def __init__(self):
        self._orchestrators: Dict[int, "RoundOrchestrator"] = {}

    def get(self, session_id: int) -> Optional["RoundOrchestrator"]:
        orchestrator = self._orchestrators.get(session_id)
        if orchestrator is not None and orchestrator.is_finished:
            del self._orchestrators[session_id]
            return None
        return orchestrator

    def is_active(self, session_id: int) -> bool:
        return self.get(session_id) is not None

    def register(self, orchestrator: "RoundOrchestrator") -> None:
        session_id = orchestrator.session.session_id
        if self.is_active(session_id):
            raise ValueError(f"Session {session_id} already has a running game")
        self._orchestrators[session_id] = orchestrator

    def discard(self, session_id: int) -> None:
        self._orchestrators.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._orchestrators)

    async def shutdown(self) -> None:
        """停止所有場次（Cog 卸載時）"""
        for session_id, orchestrator in list(self._orchestrators.items()):
            try:
                await orchestrator.stop(reason="shutdown")
            except Exception as e:
                logger.error(f"[場次] 停止 {session_id} 失敗: {e}")
        self._orchestrators.clear()
