"""
回合流程控制

狀態：Idle → Starting → AwaitingAudio → InProgress → Resolving → {下一回合 | Ended}

所有輸入都經由單一 asyncio.Queue 進入控制迴圈，只有控制迴圈會修改場次與回合狀態：
- 玩家：GuessEvent / SelectionEvent / SkipVoteEvent / HintRequest / StopRequested
- 內部：AudioReady / AudioFailed / TimerExpired / NextRoundDue（帶回合編號，過期即忽略）

回合的第一個結果（答對、跳過、逾時、音源失敗、停止）透過 RoundState.try_resolve() 生效，
之後同回合的答案一律以 already_resolved 拒絕。
"""

import asyncio
import random
import time
from enum import Enum
from typing import Any, Callable, List, Optional, Set, Tuple
from loguru import logger

from .evaluator import AnswerEvaluator, Feedback, Verdict
from .events import (
    AudioFailed,
    AudioReady,
    GameEventSink,
    GuessEvent,
    HintRequest,
    NextRoundDue,
    SelectionEvent,
    SkipVoteEvent,
    StopRequested,
    TimerExpired,
    REJECT_ALREADY_RESOLVED,
    REJECT_GAME_ENDED,
    REJECT_INVALID_OPTION,
    REJECT_NOT_STARTED,
    REJECT_WRONG_MODE,
)
from .models import (
    AnswerOption,
    GameMode,
    GameSummary,
    RoundOutcome,
    RoundResult,
    RoundState,
    Track,
    dedupe_tracks,
)
from .session import GameSession
from .state import RoundClock
from ..constants import (
    BETWEEN_ROUNDS_DELAY,
    GAME_START_DELAY,
    LEADERBOARD_SIZE,
    OPTION_COUNT,
    OPTION_LETTERS,
)
from ..utils.errors import ConnectionTimeout, QuizError


class Phase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    AWAITING_AUDIO = "awaiting_audio"
    IN_PROGRESS = "in_progress"
    RESOLVING = "resolving"
    ENDED = "ended"


ACTIVE_PHASES = frozenset({Phase.AWAITING_AUDIO, Phase.IN_PROGRESS})


# === 純函式 ===

def pick_track_index(track_count: int, used: Set[int], rng: random.Random) -> int:
    """
    從未使用的索引中均勻挑選一個

    全部用過時先清空 used（不會超過歌曲數）。
    """
    if track_count <= 0:
        raise ValueError("track list is empty")
    if len(used) >= track_count:
        used.clear()
    available = [i for i in range(track_count) if i not in used]
    return rng.choice(available)


def build_options(correct: Track, tracks: List[Track], rng: random.Random) -> List[AnswerOption]:
    """
    建立 4 個選項（1 正確 + 3 干擾）

    干擾項從識別鍵不同的歌曲中均勻抽樣；不足時以佔位歌曲補齊。
    """
    pool = dedupe_tracks(t for t in tracks if t.key != correct.key)
    distractors = rng.sample(pool, min(OPTION_COUNT - 1, len(pool)))
    filler = 1
    while len(distractors) < OPTION_COUNT - 1:
        distractors.append(Track(title=f"未知歌曲 {filler}", artist="未知歌手"))
        filler += 1

    choices = [correct] + distractors
    rng.shuffle(choices)

    options = []
    for i, (letter, track) in enumerate(zip(OPTION_LETTERS, choices)):
        options.append(AnswerOption(
            label=f"{letter}. {track.title} - {track.artist}"[:100],
            value=f"option_{i}",
            track=track,
            is_correct=track is correct,
        ))
    return options


def compute_points(time_limit_ms: int, elapsed_ms: int) -> int:
    """越快答對分數越高，最少 1 分"""
    time_bonus = max(1, (time_limit_ms - elapsed_ms) // 1000)
    return max(1, time_bonus // 3 + 1)


def required_skip_votes(eligible_voters: int) -> int:
    """過半數"""
    return max(1, eligible_voters) // 2 + 1


class RoundOrchestrator:
    """
    單場遊戲的回合控制器

    使用方式：
        orchestrator = RoundOrchestrator(session, resolver, sink)
        await orchestrator.start()

        orchestrator.submit(GuessEvent(user_id, "blinding lights"))
        ...
        summary = await orchestrator.wait_closed()
    """

    def __init__(
        self,
        session: GameSession,
        resolver,
        sink: Optional[GameEventSink] = None,
        evaluator: Optional[AnswerEvaluator] = None,
        rng: Optional[random.Random] = None,
        start_delay: float = GAME_START_DELAY,
        between_rounds_delay: float = BETWEEN_ROUNDS_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            session: 場次狀態
            resolver: AudioSourceResolver（或相同介面的物件）
            sink: 顯示層
            evaluator: 答案判定器
            rng: 亂數來源（測試可固定種子）
            start_delay: 遊戲開始前的等待秒數
            between_rounds_delay: 回合之間的等待秒數
            clock: 時間來源
        """
        self.session = session
        self.resolver = resolver
        self.sink = sink or GameEventSink()
        self.evaluator = evaluator or AnswerEvaluator()
        self.rng = rng or random.Random()
        self.start_delay = start_delay
        self.between_rounds_delay = between_rounds_delay
        self.clock = RoundClock(now=clock)

        self.phase = Phase.IDLE
        self.summary: Optional[GameSummary] = None

        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._audio_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._next_task: Optional[asyncio.Task] = None

    # === 公開介面 ===

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def is_finished(self) -> bool:
        return self.phase == Phase.ENDED or (self._loop_task is not None and self._loop_task.done())

    async def start(self) -> None:
        """啟動控制迴圈"""
        if self._loop_task is not None:
            raise RuntimeError("orchestrator already started")
        if not self.session.tracks:
            raise QuizError("Cannot start a game without tracks", user_message="播放清單沒有可用的歌曲")

        self.session.is_playing = True
        self.session.cache.start()
        self.phase = Phase.STARTING
        self._loop_task = asyncio.create_task(self._run(), name=f"quiz-{self.session.session_id}")
        self._next_task = self._schedule(NextRoundDue(0), self.start_delay)
        logger.info(
            f"[遊戲] {self.session.session_id} 開始：{self.session.config.total_rounds} 回合, "
            f"{self.session.config.mode.value}, {self.session.config.difficulty.value}"
        )

    def submit(self, event: Any) -> bool:
        """
        送出事件

        Returns:
            遊戲已結束時返回 False
        """
        if self.is_finished:
            return False
        self._queue.put_nowait(event)
        return True

    async def stop(self, reason: str = "stopped", user_id: Optional[int] = None) -> Optional[GameSummary]:
        """要求停止並等待結算完成"""
        self.submit(StopRequested(user_id=user_id, reason=reason))
        return await self.wait_closed()

    async def wait_closed(self) -> Optional[GameSummary]:
        if self._loop_task is not None:
            await asyncio.wait({self._loop_task})
        return self.summary

    # === 控制迴圈 ===

    async def _run(self) -> None:
        try:
            while self.phase != Phase.ENDED:
                event = await self._queue.get()
                try:
                    await self._dispatch(event)
                except Exception as e:
                    logger.exception(f"[遊戲] 處理事件失敗 {type(event).__name__}: {e}")
                    await self._end(forced=True, error=str(e))
        finally:
            if self.phase != Phase.ENDED:
                # 控制迴圈被取消：只做資源清理
                self.phase = Phase.ENDED
                await self._release_resources()
            await self._reject_pending()

    async def _dispatch(self, event: Any) -> None:
        match event:
            case NextRoundDue():
                if event.after_round == self.session.round_index and self.phase in (Phase.STARTING, Phase.RESOLVING):
                    await self._start_next_round()
            case AudioReady():
                await self._on_audio_ready(event)
            case AudioFailed():
                await self._on_audio_failed(event)
            case TimerExpired():
                round_state = self.session.current_round
                if self._is_current(event.round_index) and self.phase == Phase.IN_PROGRESS:
                    logger.debug(f"[遊戲] 第 {round_state.index} 回合時間到")
                    await self._resolve_round(RoundOutcome.TIMEOUT)
            case GuessEvent():
                await self._on_guess(event)
            case SelectionEvent():
                await self._on_selection(event)
            case SkipVoteEvent():
                await self._on_skip_vote(event)
            case HintRequest():
                await self._on_hint(event)
            case StopRequested():
                logger.info(f"[遊戲] {self.session.session_id} 停止：{event.reason}")
                await self._end(forced=True)
            case _:
                logger.warning(f"[遊戲] 未知事件: {event!r}")

    # === 回合開始 ===

    async def _start_next_round(self) -> None:
        session = self.session
        if session.round_index >= session.config.total_rounds:
            await self._end()
            return

        self.phase = Phase.STARTING
        index = pick_track_index(len(session.tracks), session.used_track_indices, self.rng)
        session.used_track_indices.add(index)
        track = session.tracks[index]

        round_state = RoundState(
            index=session.round_index + 1,
            track=track,
            time_limit_ms=session.config.time_limit_ms,
            mode=session.config.mode,
        )
        if round_state.mode == GameMode.MULTIPLE_CHOICE:
            round_state.options = build_options(track, session.tracks, self.rng)
        session.current_round = round_state
        self.clock.reset()

        logger.info(f"[遊戲] 第 {round_state.index}/{session.config.total_rounds} 回合: {track.display_name}")
        await self._emit("on_round_start", session, round_state)

        self.phase = Phase.AWAITING_AUDIO
        self._audio_task = asyncio.create_task(self._acquire_audio(round_state.index, track))

    async def _acquire_audio(self, round_index: int, track: Track) -> None:
        """背景任務：連線 → 解析音源，結果送回佇列"""
        try:
            if self.session.config.playback_delay_sec:
                await asyncio.sleep(self.session.config.playback_delay_sec)
            await self.session.connections.ensure_connection(self.session.voice_channel)
            audio = await self.resolver.resolve(track)
        except Exception as e:
            self._queue.put_nowait(AudioFailed(round_index, e))
            return
        self._queue.put_nowait(AudioReady(round_index, audio))

    async def _on_audio_ready(self, event: AudioReady) -> None:
        round_state = self.session.current_round
        if not self._is_current(event.round_index) or self.phase != Phase.AWAITING_AUDIO:
            # 回合已結束才拿到音源
            await event.audio.close()
            return

        self.session.audio = event.audio
        round_state.tier = event.audio.tier.value
        try:
            self.session.connections.play(event.audio)
        except Exception as e:
            logger.error(f"[遊戲] 播放失敗: {e}")
            await self._resolve_round(RoundOutcome.FAILED, error=getattr(e, "user_message", str(e)))
            return

        round_state.started_at = self.clock.start(round_state.time_limit_ms)
        self.phase = Phase.IN_PROGRESS
        self._timer_task = self._schedule(TimerExpired(round_state.index), round_state.time_limit_ms / 1000)
        await self._emit("on_round_playing", self.session, round_state)

    async def _on_audio_failed(self, event: AudioFailed) -> None:
        if not self._is_current(event.round_index) or self.phase not in ACTIVE_PHASES:
            return

        error = event.error
        message = getattr(error, "user_message", None) or str(error)
        if isinstance(error, ConnectionTimeout):
            logger.error(f"[遊戲] 語音連線失敗，結束遊戲: {error}")
            await self._resolve_round(RoundOutcome.FAILED, error=message, schedule_next=False)
            await self._end(forced=True, error=message)
            return

        logger.warning(f"[遊戲] 第 {event.round_index} 回合無法取得音源，跳過: {error}")
        await self._resolve_round(RoundOutcome.FAILED, error=message)

    # === 玩家事件 ===

    def _active_round(self) -> Tuple[Optional[RoundState], Optional[str]]:
        """回傳 (可作答的回合, None) 或 (None, 拒絕原因)"""
        round_state = self.session.current_round
        if round_state is None:
            return None, REJECT_NOT_STARTED
        if round_state.resolved or self.phase not in ACTIVE_PHASES:
            return None, REJECT_ALREADY_RESOLVED
        return round_state, None

    def _answerable_round(self) -> Tuple[Optional[RoundState], Optional[str]]:
        """作答只在音樂開始播放後接受，音源準備中一律視為尚未開始"""
        round_state, reason = self._active_round()
        if round_state is not None and self.phase != Phase.IN_PROGRESS:
            return None, REJECT_NOT_STARTED
        return round_state, reason

    async def _on_guess(self, event: GuessEvent) -> None:
        round_state, reason = self._answerable_round()
        if round_state is None:
            await self._emit("on_answer_rejected", self.session, event, reason)
            return
        if round_state.mode != GameMode.OPEN_ANSWER:
            await self._emit("on_answer_rejected", self.session, event, REJECT_WRONG_MODE)
            return

        verdict = self.evaluator.evaluate_guess(event.text, round_state.track)
        if verdict.correct:
            await self._resolve_round(RoundOutcome.CORRECT, winner_id=event.user_id)
        else:
            await self._emit("on_feedback", self.session, event, verdict)

    async def _on_selection(self, event: SelectionEvent) -> None:
        round_state, reason = self._answerable_round()
        if round_state is None:
            await self._emit("on_answer_rejected", self.session, event, reason)
            return
        if round_state.mode != GameMode.MULTIPLE_CHOICE:
            await self._emit("on_answer_rejected", self.session, event, REJECT_WRONG_MODE)
            return

        option = round_state.find_option(event.value)
        if option is None:
            await self._emit("on_answer_rejected", self.session, event, REJECT_INVALID_OPTION)
            return

        if self.evaluator.evaluate_selection(option, round_state):
            await self._resolve_round(RoundOutcome.CORRECT, winner_id=event.user_id)
        else:
            await self._emit("on_feedback", self.session, event, Verdict(False, 0.0, Feedback.COLD))

    async def _on_skip_vote(self, event: SkipVoteEvent) -> None:
        round_state, reason = self._active_round()
        if round_state is None:
            await self._emit("on_answer_rejected", self.session, event, reason)
            return

        round_state.skip_votes.add(event.user_id)
        votes = len(round_state.skip_votes)
        required = required_skip_votes(event.eligible_voters)
        await self._emit("on_skip_vote", self.session, event, votes, required)
        if votes >= required:
            await self._resolve_round(RoundOutcome.SKIPPED)

    async def _on_hint(self, event: HintRequest) -> None:
        round_state, reason = self._active_round()
        if round_state is None:
            await self._emit("on_answer_rejected", self.session, event, reason)
            return

        max_hints = self.session.config.max_hints
        if round_state.hints_used >= max_hints:
            await self._emit("on_hint", self.session, event, None, 0)
            return
        round_state.hints_used += 1
        hint = self.evaluator.hint(round_state.track, round_state.hints_used)
        await self._emit("on_hint", self.session, event, hint, max_hints - round_state.hints_used)

    # === 回合結束 ===

    async def _resolve_round(
        self,
        outcome: RoundOutcome,
        winner_id: Optional[int] = None,
        error: Optional[str] = None,
        schedule_next: bool = True,
    ) -> bool:
        session = self.session
        round_state = session.current_round
        if round_state is None or not round_state.try_resolve(outcome):
            return False

        self.phase = Phase.RESOLVING
        self._cancel(self._timer_task)
        self._timer_task = None
        await self._cancel_audio_task()

        session.connections.stop_playback()
        self.clock.stop()
        elapsed_ms = self.clock.elapsed_ms if round_state.started_at is not None else 0

        points = 0
        if outcome == RoundOutcome.CORRECT and winner_id is not None:
            points = compute_points(round_state.time_limit_ms, elapsed_ms)
            session.scores[winner_id] = session.scores.get(winner_id, 0) + points

        await self._close_audio()
        session.rounds_played += 1

        result = RoundResult(
            round_index=round_state.index,
            total_rounds=session.config.total_rounds,
            track=round_state.track,
            outcome=outcome,
            winner_id=winner_id if outcome == RoundOutcome.CORRECT else None,
            points=points,
            elapsed_ms=elapsed_ms,
            tier=round_state.tier,
            error=error,
        )
        logger.info(
            f"[遊戲] 第 {round_state.index} 回合結束: {outcome.value}"
            f"{f' 由 {winner_id} 獲得 {points} 分' if points else ''}"
        )
        await self._emit("on_round_result", session, result)

        if schedule_next:
            self._next_task = self._schedule(NextRoundDue(round_state.index), self.between_rounds_delay)
        return True

    async def _end(self, forced: bool = False, error: Optional[str] = None) -> None:
        if self.phase == Phase.ENDED:
            return

        round_state = self.session.current_round
        if round_state is not None and not round_state.resolved:
            outcome = RoundOutcome.FAILED if error else RoundOutcome.STOPPED
            await self._resolve_round(outcome, error=error, schedule_next=False)

        self.phase = Phase.ENDED
        await self._release_resources()

        session = self.session
        ranking = session.ranking(LEADERBOARD_SIZE)
        self.summary = GameSummary(
            rounds_played=session.rounds_played,
            total_rounds=session.config.total_rounds,
            scores=dict(session.scores),
            ranking=ranking,
            winner=ranking[0] if ranking else None,
            forced=forced,
            error=error,
        )
        logger.info(f"[遊戲] {session.session_id} 結束: {self.summary.to_dict()}")
        await self._emit("on_game_over", session, self.summary)

    async def _release_resources(self) -> None:
        """停止所有計時器、音源與連線"""
        for task in (self._timer_task, self._next_task):
            self._cancel(task)
        self._timer_task = None
        self._next_task = None
        await self._cancel_audio_task()

        session = self.session
        session.is_playing = False
        try:
            session.connections.stop_playback()
            await self._close_audio()
            await session.connections.destroy()
        except Exception as e:
            logger.error(f"[遊戲] 釋放連線失敗: {e}")
        await session.cache.stop()

    async def _reject_pending(self) -> None:
        """遊戲結束後佇列中剩餘的事件直接丟棄，音源則關閉"""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if isinstance(event, AudioReady):
                await event.audio.close()
            else:
                logger.debug(f"[遊戲] 遊戲已結束，忽略事件: {type(event).__name__} ({REJECT_GAME_ENDED})")

    # === 工具方法 ===

    def _is_current(self, round_index: int) -> bool:
        round_state = self.session.current_round
        return round_state is not None and round_state.index == round_index and not round_state.resolved

    def _schedule(self, event: Any, delay: float) -> asyncio.Task:
        async def fire():
            await asyncio.sleep(delay)
            self._queue.put_nowait(event)
        return asyncio.create_task(fire())

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done():
            task.cancel()

    async def _cancel_audio_task(self) -> None:
        task, self._audio_task = self._audio_task, None
        if task is not None and not task.done():
            task.cancel()
            # 等待取消完成，確保 yt-dlp 子進程已終止
            await asyncio.wait({task})

    async def _close_audio(self) -> None:
        audio, self.session.audio = self.session.audio, None
        if audio is not None:
            await audio.close()

    async def _emit(self, name: str, *args) -> None:
        """呼叫顯示層，例外只記錄"""
        try:
            await getattr(self.sink, name)(*args)
        except Exception as e:
            logger.error(f"[遊戲] 顯示層 {name} 執行失敗: {e}")
