"""
重試策略

metadata 查詢、token 更新、語音連線、yt-dlp 子進程共用同一套退避邏輯：
    delay(n) = min(base_delay * multiplier ** (n - 1), max_delay)

RateLimited 若帶有 retry_after，改用服務端指定的秒數。
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar
from loguru import logger

from .errors import InvalidInput, RateLimited

T = TypeVar('T')

type Operation[T] = Callable[[], Awaitable[T]]
type Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    指數退避重試策略

    使用方式：
        policy = RetryPolicy(max_attempts=3, base_delay=2.0)
        result = await policy.run(lambda: client.search_tracks(query), name="搜尋")
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 300.0
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    give_up_on: Tuple[Type[BaseException], ...] = field(default=(InvalidInput,))

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """
        第 attempt 次失敗後應等待的秒數

        Args:
            attempt: 已失敗次數（從 1 開始）
            error: 本次的例外，RateLimited 時優先採用 retry_after
        """
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return max(0.0, float(error.retry_after))
        delay = self.base_delay * (self.multiplier ** max(0, attempt - 1))
        return min(delay, self.max_delay)

    async def run(
        self,
        operation: Operation[T],
        name: str = "operation",
        sleep: Sleeper = asyncio.sleep,
    ) -> T:
        """
        執行操作，失敗時依策略重試

        asyncio.CancelledError 不是 Exception 子類別，會直接向上傳遞。

        Raises:
            最後一次失敗的例外
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except self.give_up_on:
                raise
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.warning(f"[重試] {name} 失敗 {attempt} 次，放棄: {e}")
                    raise
                delay = self.delay_for(attempt, e)
                logger.debug(f"[重試] {name} 第 {attempt}/{self.max_attempts} 次失敗，{delay:.1f}s 後重試: {e}")
                await sleep(delay)
