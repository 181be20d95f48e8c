"""
遊戲事件

所有輸入（玩家操作、音源結果、計時器）都以事件送進同一個佇列，
由 RoundOrchestrator 的控制迴圈依序處理。

context 欄位由顯示層自行放入（例如 discord.Interaction），原樣傳回 GameEventSink。
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .evaluator import Verdict
    from .models import GameSummary, RoundResult, RoundState
    from .session import GameSession
    from ..audio.resolver import ResolvedAudio


# === 玩家事件 ===

@dataclass(frozen=True)
class GuessEvent:
    user_id: int
    text: str
    context: Any = None
    received_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class SelectionEvent:
    user_id: int
    value: str
    context: Any = None


@dataclass(frozen=True)
class SkipVoteEvent:
    user_id: int
    eligible_voters: int
    context: Any = None


@dataclass(frozen=True)
class HintRequest:
    user_id: int
    context: Any = None


@dataclass(frozen=True)
class StopRequested:
    user_id: Optional[int] = None
    reason: str = "stopped"
    context: Any = None


# === 內部事件（帶回合編號，過期的會被忽略） ===

@dataclass(frozen=True)
class AudioReady:
    round_index: int
    audio: "ResolvedAudio"


@dataclass(frozen=True)
class AudioFailed:
    round_index: int
    error: BaseException


@dataclass(frozen=True)
class TimerExpired:
    round_index: int


@dataclass(frozen=True)
class NextRoundDue:
    after_round: int


type PlayerEvent = GuessEvent | SelectionEvent | SkipVoteEvent | HintRequest | StopRequested


# === 拒絕原因 ===

REJECT_NOT_STARTED = "not_started"
REJECT_ALREADY_RESOLVED = "already_resolved"
REJECT_WRONG_MODE = "wrong_mode"
REJECT_INVALID_OPTION = "invalid_option"
REJECT_GAME_ENDED = "game_ended"


class GameEventSink:
    """
    遊戲事件接收端（顯示層實作）

    預設全部為空操作，子類別只需覆寫需要的方法。
    例外會被 RoundOrchestrator 記錄後忽略，不影響遊戲進行。
    """

    async def on_round_start(self, session: "GameSession", round_state: "RoundState") -> None:
        pass

    async def on_round_playing(self, session: "GameSession", round_state: "RoundState") -> None:
        pass

    async def on_round_result(self, session: "GameSession", result: "RoundResult") -> None:
        pass

    async def on_feedback(self, session: "GameSession", event: Any, verdict: "Verdict") -> None:
        pass

    async def on_hint(self, session: "GameSession", event: HintRequest, hint: Optional[str], remaining: int) -> None:
        pass

    async def on_skip_vote(self, session: "GameSession", event: SkipVoteEvent, votes: int, required: int) -> None:
        pass

    async def on_answer_rejected(self, session: "GameSession", event: Any, reason: str) -> None:
        pass

    async def on_game_over(self, session: "GameSession", summary: "GameSummary") -> None:
        pass
