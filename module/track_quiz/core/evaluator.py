"""
答案判定

無狀態，供 RoundOrchestrator 呼叫：
- 選擇題：比對選項的識別鍵
- 自由作答：正規化後計算相似度（完全相同 1.0、互相包含 0.8、其餘以 Levenshtein 距離換算）
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import AnswerOption, RoundState, Track
from ..constants import (
    ACCEPT_THRESHOLD,
    CONTAINMENT_SIMILARITY,
    HOT_THRESHOLD,
    WARM_THRESHOLD,
)

_NON_WORD = re.compile(r"[^\w\s]")


class Feedback(str, Enum):
    CORRECT = "correct"
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


@dataclass(frozen=True)
class Verdict:
    """判定結果"""

    correct: bool
    similarity: float
    feedback: Feedback
    matched_field: Optional[str] = None


def normalize(text: str) -> str:
    """轉小寫、移除標點符號、去除前後空白"""
    return _NON_WORD.sub("", text.lower()).strip()


def levenshtein(a: str, b: str) -> int:
    """編輯距離（兩列滾動陣列）"""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def similarity(guess: str, target: str) -> float:
    """
    計算相似度

    Returns:
        0.0 - 1.0；正規化後為空字串的猜測一律為 0.0
    """
    a = normalize(guess)
    b = normalize(target)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return CONTAINMENT_SIMILARITY
    distance = levenshtein(a, b)
    return max(0.0, 1 - distance / max(len(a), len(b)))


class AnswerEvaluator:
    """
    答案判定器

    使用方式：
        evaluator = AnswerEvaluator()
        verdict = evaluator.evaluate_guess("blinding light", track)
        if verdict.correct:
            ...
    """

    def __init__(
        self,
        threshold: float = ACCEPT_THRESHOLD,
        hot_threshold: float = HOT_THRESHOLD,
        warm_threshold: float = WARM_THRESHOLD,
    ):
        self.threshold = threshold
        self.hot_threshold = hot_threshold
        self.warm_threshold = warm_threshold

    def evaluate_guess(self, guess: str, track: Track) -> Verdict:
        """
        判定自由作答

        歌名或歌手任一相似度超過門檻即為正確。
        """
        title_score = similarity(guess, track.title)
        artist_score = similarity(guess, track.artist)

        if title_score >= artist_score:
            best, matched = title_score, "title"
        else:
            best, matched = artist_score, "artist"

        if best > self.threshold:
            return Verdict(correct=True, similarity=best, feedback=Feedback.CORRECT, matched_field=matched)
        return Verdict(correct=False, similarity=best, feedback=self._band(best))

    def evaluate_selection(self, option: Optional[AnswerOption], round_state: RoundState) -> bool:
        """判定選擇題：所選選項的歌曲是否與正確選項相同"""
        correct = round_state.correct_option
        if option is None or correct is None:
            return False
        return option.track.key == correct.track.key

    def _band(self, score: float) -> Feedback:
        if score > self.hot_threshold:
            return Feedback.HOT
        if score > self.warm_threshold:
            return Feedback.WARM
        return Feedback.COLD

    # === 提示 ===

    @staticmethod
    def hint(track: Track, number: int) -> Optional[str]:
        """
        取得第 number 個提示（從 1 開始）

        1. 歌名首字
        2. 歌名字數
        3. 歌手首字
        """
        title = track.title.strip()
        artist = track.artist.strip()
        match number:
            case 1:
                return f"歌名的第一個字是「{title[:1]}」" if title else None
            case 2:
                return f"歌名共有 {len(title.split())} 個單字"
            case 3:
                return f"歌手名稱的第一個字是「{artist[:1]}」" if artist else None
            case _:
                return None
