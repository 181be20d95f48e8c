"""
猜歌遊戲統一錯誤系統

所有錯誤都繼承自 QuizError，包含：
- message: 技術性錯誤訊息（給開發者 / log）
- user_message: 使用者友善的訊息（給 Discord 顯示）
"""

from typing import Dict, Optional


class QuizError(Exception):
    """猜歌遊戲錯誤基類"""

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.message = message
        self.user_message = user_message or message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class ProviderUnavailable(QuizError):
    """外部服務（metadata / 試聽 / 次要來源）無法使用"""

    def __init__(self, message: str, provider: str = "unknown"):
        self.provider = provider
        super().__init__(
            message=message,
            user_message="音樂服務暫時無法使用，請稍後再試"
        )


class RateLimited(ProviderUnavailable):
    """
    HTTP 429

    retry_after 為服務端提供的等待秒數，沒有則為 None（改用預設退避）
    """

    def __init__(self, message: str, retry_after: Optional[float] = None, provider: str = "unknown"):
        self.retry_after = retry_after
        super().__init__(message, provider=provider)
        self.user_message = "請求過於頻繁，請稍後再試"


class NoPlayableSource(QuizError):
    """找不到可播放的音源"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            user_message="找不到這首歌的可播放音源，已跳過本回合"
        )


class AllProvidersFailed(NoPlayableSource):
    """
    四個來源層級全部失敗

    reasons 記錄每一層的失敗原因，例如：
        {"cache": "miss", "preview": "HTTP 403", "search": "no match", "secondary": "timeout"}
    """

    def __init__(self, track_key: str, reasons: Dict[str, str]):
        self.track_key = track_key
        self.reasons = dict(reasons)
        detail = ", ".join(f"{tier}={reason}" for tier, reason in self.reasons.items())
        super().__init__(f"All providers failed for {track_key}: {detail}")


class ConnectionTimeout(QuizError):
    """語音連線在時限內未進入 Ready"""

    def __init__(self, message: str, timeout: Optional[float] = None):
        self.timeout = timeout
        super().__init__(
            message=message,
            user_message="無法連接到語音頻道，遊戲已結束"
        )


class StaleConnection(QuizError):
    """語音連線已失效，需要重建"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            user_message="語音連線中斷，正在嘗試恢復"
        )


class InvalidInput(QuizError):
    """輸入格式錯誤（播放清單 ID、遊戲設定等），不重試"""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(
            message=message,
            user_message=user_message or "輸入格式錯誤，請確認後再試"
        )


class ConfigurationError(QuizError):
    """憑證或設定錯誤，重試已耗盡"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            user_message="機器人設定錯誤，請聯絡管理員"
        )
