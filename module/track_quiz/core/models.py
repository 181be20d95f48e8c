"""
猜歌遊戲資料模型

- Track: 歌曲（載入後不可變）
- GameConfig: 遊戲設定
- AnswerOption / RoundState / RoundResult: 回合資料
- GameSummary: 遊戲結算
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..constants import (
    DEFAULT_TOTAL_ROUNDS,
    MAX_HINTS,
    MAX_PLAYBACK_DELAY,
    MAX_TOTAL_ROUNDS,
    TIME_LIMIT_MS,
)
from ..utils.errors import InvalidInput


def identity_key(title: str, artist: str) -> str:
    """歌曲識別鍵：小寫 "title|artist" """
    return f"{title.strip().lower()}|{artist.strip().lower()}"


@dataclass(frozen=True)
class Track:
    """
    歌曲資訊

    Attributes:
        title: 歌名
        artist: 歌手（多位歌手以 ", " 串接）
        preview_url: 官方試聽片段網址，可能為 None
        duration_ms: 長度（毫秒）
        popularity: 熱門度 0-100
    """

    title: str
    artist: str
    preview_url: Optional[str] = None
    duration_ms: int = 0
    popularity: int = 0
    album: str = ""
    image_url: str = ""

    @property
    def key(self) -> str:
        return identity_key(self.title, self.artist)

    @property
    def display_name(self) -> str:
        return f"{self.title} - {self.artist}"


def dedupe_tracks(tracks: Iterable[Track]) -> List[Track]:
    """依識別鍵去重，保留第一次出現的順序"""
    seen: Set[str] = set()
    result: List[Track] = []
    for track in tracks:
        if track.key in seen:
            continue
        seen.add(track.key)
        result.append(track)
    return result


class SourceTier(str, Enum):
    PREVIEW = "preview"
    SEARCH = "search"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class StreamDescriptor:
    """
    可重播的音源描述

    kind 為 "url" 時 locator 是試聽網址；為 "subprocess" 時 locator 是 yt-dlp 搜尋字串。
    """

    tier: SourceTier
    kind: str
    locator: str

    @classmethod
    def url(cls, tier: SourceTier, url: str) -> "StreamDescriptor":
        return cls(tier=tier, kind="url", locator=url)

    @classmethod
    def subprocess(cls, query: str) -> "StreamDescriptor":
        return cls(tier=SourceTier.SECONDARY, kind="subprocess", locator=query)


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @property
    def time_limit_ms(self) -> int:
        return TIME_LIMIT_MS[self.value]


class GameMode(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    OPEN_ANSWER = "open_answer"


@dataclass
class GameConfig:
    """
    遊戲設定

    建立時即驗證，非法值拋出 InvalidInput。
    """

    difficulty: Difficulty = Difficulty.MEDIUM
    mode: GameMode = GameMode.MULTIPLE_CHOICE
    total_rounds: int = DEFAULT_TOTAL_ROUNDS
    playback_delay_sec: float = 0
    custom_time_limit_ms: Optional[int] = None
    max_hints: int = MAX_HINTS

    def __post_init__(self):
        try:
            self.difficulty = Difficulty(self.difficulty)
            self.mode = GameMode(self.mode)
        except ValueError as e:
            raise InvalidInput(str(e), user_message="難度或模式設定錯誤") from e

        if not 1 <= self.total_rounds <= MAX_TOTAL_ROUNDS:
            raise InvalidInput(
                f"total_rounds out of range: {self.total_rounds}",
                user_message=f"回合數必須介於 1 到 {MAX_TOTAL_ROUNDS} 之間",
            )
        if not 0 <= self.playback_delay_sec <= MAX_PLAYBACK_DELAY:
            raise InvalidInput(
                f"playback_delay_sec out of range: {self.playback_delay_sec}",
                user_message=f"播放延遲必須介於 0 到 {MAX_PLAYBACK_DELAY} 秒之間",
            )
        if self.custom_time_limit_ms is not None and self.custom_time_limit_ms <= 0:
            raise InvalidInput(f"custom_time_limit_ms must be positive: {self.custom_time_limit_ms}")
        if self.max_hints < 0:
            raise InvalidInput(f"max_hints must not be negative: {self.max_hints}")

    @property
    def time_limit_ms(self) -> int:
        if self.custom_time_limit_ms is not None:
            return self.custom_time_limit_ms
        return self.difficulty.time_limit_ms


@dataclass(frozen=True)
class AnswerOption:
    """選擇題選項"""

    label: str
    value: str
    track: Track
    is_correct: bool = False


class RoundOutcome(str, Enum):
    CORRECT = "correct"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class RoundState:
    """
    單一回合狀態

    resolved 只能透過 try_resolve() 設定一次。
    """

    index: int
    track: Track
    time_limit_ms: int
    mode: GameMode
    options: List[AnswerOption] = field(default_factory=list)
    started_at: Optional[float] = None
    hints_used: int = 0
    skip_votes: Set[int] = field(default_factory=set)
    tier: Optional[str] = None
    outcome: Optional[RoundOutcome] = None
    _resolved: bool = field(default=False, repr=False)

    @property
    def resolved(self) -> bool:
        return self._resolved

    def try_resolve(self, outcome: RoundOutcome) -> bool:
        """
        嘗試結束回合

        Returns:
            是否由這次呼叫結束（已結束則返回 False）
        """
        if self._resolved:
            return False
        self._resolved = True
        self.outcome = outcome
        return True

    @property
    def correct_option(self) -> Optional[AnswerOption]:
        for option in self.options:
            if option.is_correct:
                return option
        return None

    def find_option(self, value: str) -> Optional[AnswerOption]:
        for option in self.options:
            if option.value == value:
                return option
        return None


@dataclass(frozen=True)
class RoundResult:
    """回合結果（給顯示層）"""

    round_index: int
    total_rounds: int
    track: Track
    outcome: RoundOutcome
    winner_id: Optional[int] = None
    points: int = 0
    elapsed_ms: int = 0
    tier: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class GameSummary:
    """
    遊戲結算

    winner 只在有人得分時存在。
    """

    rounds_played: int
    total_rounds: int
    scores: Dict[int, int]
    ranking: List[Tuple[int, int]]
    winner: Optional[Tuple[int, int]] = None
    forced: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "rounds_played": self.rounds_played,
            "total_rounds": self.total_rounds,
            "scores": dict(self.scores),
            "ranking": [list(entry) for entry in self.ranking],
            "forced": self.forced,
            "error": self.error,
        }
        if self.winner is not None:
            data["winner"] = {"user_id": self.winner[0], "points": self.winner[1]}
        return data
