"""
猜歌遊戲裝飾器

- handle_errors: 統一錯誤記錄
- log_operation: 記錄操作開始 / 結束 / 耗時
"""

import time
from functools import wraps
from typing import Callable, Optional, TypeVar, ParamSpec
from loguru import logger

from .errors import QuizError

P = ParamSpec('P')
T = TypeVar('T')


def handle_errors(func: Callable[P, T]) -> Callable[P, T]:
    """
    裝飾器：統一處理錯誤並記錄

    QuizError 記錄為 error，其他例外連同 traceback 記錄，兩者都會重新拋出。

    使用方式：
        @handle_errors
        async def load_playlist(self, playlist_id):
            ...
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except QuizError as e:
            logger.error(f"[{func.__name__}] 遊戲錯誤: {e.message}")
            raise
        except Exception as e:
            logger.exception(f"[{func.__name__}] 未預期錯誤: {e}")
            raise

    return wrapper


def log_operation(operation_name: Optional[str] = None):
    """
    裝飾器：記錄操作的開始、結束與耗時

    使用方式：
        @log_operation("載入播放清單")
        async def get_playlist_tracks(self, playlist_id):
            ...
    """
    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger.debug(f"開始: {name}")
            started = time.monotonic()
            try:
                result = await func(*args, **kwargs)
                logger.debug(f"完成: {name} ({(time.monotonic() - started) * 1000:.0f}ms)")
                return result
            except Exception as e:
                logger.error(f"失敗: {name} - {e}")
                raise

        return wrapper
    return decorator
