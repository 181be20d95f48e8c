"""
持久語音連線管理

每場遊戲只維持一條語音連線，跨回合重複使用：
- Connecting / Signalling / Ready：沿用
- Disconnected / Destroyed / 不存在 / 換頻道：拆掉舊的，重新加入並等待 Ready
- 意外斷線：在寬限期內等待自行恢復，逾時則清空連線，下次使用時重建
- 只在遊戲結束、無法恢復的錯誤或手動停止時 destroy()
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Protocol, Set, Tuple, TYPE_CHECKING
from loguru import logger

from ..constants import (
    VOICE_READY_TIMEOUT,
    VOICE_GRACE_WINDOW,
    VOICE_CONNECT_ATTEMPTS,
    VOICE_CONNECT_RETRY_DELAY,
)
from ..utils.errors import ConnectionTimeout, StaleConnection
from ..utils.retry import RetryPolicy

if TYPE_CHECKING:
    from .resolver import ResolvedAudio


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SIGNALLING = "signalling"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


REUSABLE_STATES = frozenset({ConnectionState.CONNECTING, ConnectionState.SIGNALLING, ConnectionState.READY})

type StateListener = Callable[["VoiceHandle", ConnectionState, ConnectionState], None]
type PlaybackDone = Callable[[Optional[Exception]], Any]


class VoiceHandle(ABC):
    """
    語音連線控制代碼

    狀態只由傳輸層實作（或測試替身）透過 set_state() 推進；其他元件只讀取。
    """

    def __init__(self, channel_id: int):
        self.channel_id = channel_id
        self._state = ConnectionState.IDLE
        self._waiters: List[Tuple[Set[ConnectionState], asyncio.Future]] = []
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    def set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if old_state == new_state or old_state == ConnectionState.DESTROYED:
            return
        self._state = new_state
        logger.debug(f"[連線] 頻道 {self.channel_id}: {old_state.value} → {new_state.value}")

        remaining = []
        for states, future in self._waiters:
            if future.done():
                continue
            if new_state in states:
                future.set_result(True)
            else:
                remaining.append((states, future))
        self._waiters = remaining

        for listener in list(self._listeners):
            try:
                listener(self, old_state, new_state)
            except Exception as e:
                logger.error(f"[連線] 狀態監聽器執行失敗: {e}")

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    async def wait_for(self, states: Iterable[ConnectionState], timeout: float) -> bool:
        """
        等待進入指定狀態之一

        Returns:
            是否在時限內進入
        """
        targets = set(states)
        if self._state in targets:
            return True
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((targets, future))
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            return False
        finally:
            if not future.done():
                future.cancel()

    # === 傳輸層實作 ===

    @property
    def is_playing(self) -> bool:
        return False

    @abstractmethod
    def play(self, audio: "ResolvedAudio", after: Optional[PlaybackDone] = None) -> None:
        ...

    @abstractmethod
    def stop_playback(self) -> None:
        ...

    async def destroy(self) -> None:
        self.set_state(ConnectionState.DESTROYED)


class VoiceTransport(Protocol):
    async def join(self, channel: Any) -> VoiceHandle: ...


def channel_id_of(channel: Any) -> int:
    return getattr(channel, "id", channel)


class StreamingConnectionManager:
    """
    單場遊戲的語音連線管理器

    使用方式：
        connections = StreamingConnectionManager(DiscordVoiceTransport(ffmpeg_path))
        handle = await connections.ensure_connection(voice_channel)
        connections.play(audio)
        ...
        connections.stop_playback()   # 回合結束：只停音訊
        await connections.destroy()   # 遊戲結束
    """

    def __init__(
        self,
        transport: VoiceTransport,
        ready_timeout: float = VOICE_READY_TIMEOUT,
        grace_window: float = VOICE_GRACE_WINDOW,
        policy: Optional[RetryPolicy] = None,
    ):
        """
        Args:
            transport: 語音傳輸層
            ready_timeout: 等待 Ready 的秒數
            grace_window: 意外斷線後等待自行恢復的秒數
            policy: 加入頻道的重試策略
        """
        self._transport = transport
        self.ready_timeout = ready_timeout
        self.grace_window = grace_window
        self.policy = policy or RetryPolicy(
            max_attempts=VOICE_CONNECT_ATTEMPTS,
            base_delay=VOICE_CONNECT_RETRY_DELAY,
            multiplier=1.0,
            give_up_on=(),
        )

        self._handle: Optional[VoiceHandle] = None
        self._lock = asyncio.Lock()
        self._recovery_task: Optional[asyncio.Task] = None
        self._destroying = False
        self.join_count = 0

    # === 屬性 ===

    @property
    def handle(self) -> Optional[VoiceHandle]:
        return self._handle

    @property
    def state(self) -> ConnectionState:
        return self._handle.state if self._handle else ConnectionState.IDLE

    @property
    def is_recovering(self) -> bool:
        return self._recovery_task is not None and not self._recovery_task.done()

    # === 連線 ===

    async def ensure_connection(self, channel: Any) -> VoiceHandle:
        """
        取得 Ready 的連線

        Raises:
            ConnectionTimeout: 重試用盡仍無法進入 Ready
        """
        async with self._lock:
            self._destroying = False
            handle = self._handle
            target_id = channel_id_of(channel)

            if handle is not None and handle.state in REUSABLE_STATES and handle.channel_id == target_id:
                if await handle.wait_for({ConnectionState.READY}, self.ready_timeout):
                    return handle
                logger.warning("[連線] 沿用的連線未能進入 Ready，重新建立")

            await self._teardown()
            handle = await self._join(channel)
            self._handle = handle
            return handle

    async def _join(self, channel: Any) -> VoiceHandle:
        async def attempt() -> VoiceHandle:
            handle = await self._transport.join(channel)
            handle.add_listener(self._on_state_change)
            if not await handle.wait_for({ConnectionState.READY}, self.ready_timeout):
                await self._safe_destroy(handle)
                raise ConnectionTimeout(
                    f"Voice connection not ready within {self.ready_timeout}s",
                    timeout=self.ready_timeout,
                )
            return handle

        try:
            handle = await self.policy.run(attempt, name="加入語音頻道")
        except ConnectionTimeout:
            raise
        except Exception as e:
            raise ConnectionTimeout(f"Voice join failed: {type(e).__name__}: {e}") from e

        self.join_count += 1
        logger.info(f"[連線] 已連接語音頻道 {handle.channel_id}（第 {self.join_count} 次加入）")
        return handle

    # === 斷線處理 ===

    def _on_state_change(self, handle: VoiceHandle, old: ConnectionState, new: ConnectionState) -> None:
        if handle is not self._handle or self._destroying:
            return

        if new == ConnectionState.DISCONNECTED and not self.is_recovering:
            logger.warning(f"[連線] 意外斷線，等待 {self.grace_window}s 內恢復")
            self._recovery_task = asyncio.create_task(self._recover(handle))
        elif new == ConnectionState.DESTROYED:
            logger.error("[連線] 傳輸層錯誤，連線已失效")
            self._cancel_recovery()
            self._handle = None

    async def _recover(self, handle: VoiceHandle) -> None:
        recovered = await handle.wait_for(REUSABLE_STATES, self.grace_window)
        if handle is not self._handle:
            return
        if recovered:
            logger.info("[連線] 已在寬限期內恢復")
            return

        logger.warning("[連線] 寬限期已過，清空連線待下次重建")
        self._handle = None
        await self._safe_destroy(handle)

    def _cancel_recovery(self) -> None:
        task, self._recovery_task = self._recovery_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # === 播放 ===

    def play(self, audio: "ResolvedAudio", after: Optional[PlaybackDone] = None) -> None:
        """
        在目前連線上播放

        Raises:
            StaleConnection: 沒有可用連線
        """
        handle = self._handle
        if handle is None or handle.state != ConnectionState.READY:
            raise StaleConnection(f"No ready voice connection (state={self.state.value})")
        if handle.is_playing:
            handle.stop_playback()
        handle.play(audio, after=after or self._log_playback_done)

    def stop_playback(self) -> None:
        """只停止音訊，不中斷連線"""
        handle = self._handle
        if handle is not None and handle.state != ConnectionState.DESTROYED:
            handle.stop_playback()

    @staticmethod
    def _log_playback_done(error: Optional[Exception]) -> None:
        if error:
            logger.error(f"[連線] 播放錯誤: {error}")

    # === 清理 ===

    async def destroy(self) -> None:
        """停止播放並銷毀連線（遊戲結束 / 無法恢復 / 手動停止）"""
        self._destroying = True
        self._cancel_recovery()
        await self._teardown()

    async def _teardown(self) -> None:
        self._cancel_recovery()
        handle, self._handle = self._handle, None
        if handle is not None:
            await self._safe_destroy(handle)

    @staticmethod
    async def _safe_destroy(handle: VoiceHandle) -> None:
        try:
            if handle.state != ConnectionState.DESTROYED:
                handle.stop_playback()
        except Exception as e:
            logger.warning(f"[連線] 停止播放失敗: {e}")
        try:
            await handle.destroy()
        except Exception as e:
            logger.warning(f"[連線] 銷毀連線失敗: {e}")
