"""
Spotify 存取權杖管理

- 權杖有效（扣除安全邊際）時直接回傳
- 同一時間最多只有一個更新請求，其他呼叫者等待同一個結果
- 到期前主動更新
- 更新失敗依 RetryPolicy 退避重試，用盡後拋出 ConfigurationError
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Tuple
from loguru import logger

from ..constants import (
    TOKEN_SAFETY_MARGIN,
    TOKEN_REFRESH_AHEAD,
    TOKEN_MAX_ATTEMPTS,
    TOKEN_MAX_BACKOFF,
)
from ..utils.errors import ConfigurationError, QuizError
from ..utils.retry import RetryPolicy

# 回傳 (access_token, expires_in 秒)
type TokenFetcher = Callable[[], Awaitable[Tuple[str, float]]]

DEFAULT_TOKEN_POLICY = RetryPolicy(
    max_attempts=TOKEN_MAX_ATTEMPTS,
    base_delay=1.0,
    multiplier=2.0,
    max_delay=TOKEN_MAX_BACKOFF,
    give_up_on=(),
)


class TokenManager:
    """
    存取權杖管理器

    使用方式：
        tokens = TokenManager(fetch=client.request_token)
        token = await tokens.ensure_valid_token()
        ...
        await tokens.close()
    """

    def __init__(
        self,
        fetch: TokenFetcher,
        policy: RetryPolicy = DEFAULT_TOKEN_POLICY,
        safety_margin: float = TOKEN_SAFETY_MARGIN,
        refresh_ahead: float = TOKEN_REFRESH_AHEAD,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            fetch: 實際向授權伺服器取得權杖的協程
            policy: 更新失敗的重試策略
            safety_margin: 距離到期少於此秒數即視為無效
            refresh_ahead: 到期前多少秒主動更新
            clock: 時間來源（測試可替換）
            sleep: 重試退避的等待函式（測試可替換）
        """
        self._fetch = fetch
        self._policy = policy
        self.safety_margin = safety_margin
        self.refresh_ahead = refresh_ahead
        self._clock = clock
        self._sleep = sleep

        self._token: Optional[str] = None
        self._expires_at: float = 0
        self._refresh_task: Optional[asyncio.Task] = None
        self._proactive_task: Optional[asyncio.Task] = None
        self.refresh_count = 0

    # === 屬性 ===

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at - self.safety_margin

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    # === 公開方法 ===

    async def ensure_valid_token(self) -> str:
        """
        取得有效權杖，必要時更新

        Raises:
            ConfigurationError: 重試用盡仍無法取得
        """
        if self.is_valid:
            return self._token
        return await self._join_refresh()

    def invalidate(self) -> None:
        """強制下次呼叫時重新取得（例如收到 HTTP 401）"""
        self._expires_at = 0

    async def close(self) -> None:
        """取消所有計時器與進行中的更新"""
        for task in (self._proactive_task, self._refresh_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except QuizError:
                    pass
        self._proactive_task = None
        self._refresh_task = None

    # === 內部方法 ===

    async def _join_refresh(self) -> str:
        if not self.is_refreshing:
            self._refresh_task = asyncio.create_task(self._refresh())
        # shield: 單一呼叫者被取消時不影響其他等待者
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> str:
        logger.debug("[Token] 更新存取權杖")
        try:
            token, expires_in = await self._policy.run(self._fetch, name="取得權杖", sleep=self._sleep)
        except Exception as e:
            logger.error(f"[Token] 權杖更新失敗，已放棄: {e}")
            raise ConfigurationError(f"Token refresh failed after {self._policy.max_attempts} attempts: {e}") from e

        self._token = token
        self._expires_at = self._clock() + expires_in
        self.refresh_count += 1
        logger.info(f"[Token] 權杖已更新，有效 {int(expires_in)} 秒")

        self._schedule_proactive(expires_in)
        return token

    def _schedule_proactive(self, expires_in: float) -> None:
        if self._proactive_task and not self._proactive_task.done():
            self._proactive_task.cancel()
        delay = max(0.0, expires_in - self.refresh_ahead)
        self._proactive_task = asyncio.create_task(self._proactive_refresh(delay))

    async def _proactive_refresh(self, delay: float) -> None:
        await asyncio.sleep(delay)
        logger.debug("[Token] 即將到期，主動更新")
        # 從自身任務啟動的更新會重新排程，先解除參照避免被 cancel
        self._proactive_task = None
        try:
            await self._join_refresh()
        except ConfigurationError as e:
            logger.error(f"[Token] 主動更新失敗: {e.message}")
