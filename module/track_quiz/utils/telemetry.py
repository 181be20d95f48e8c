"""
音源解析統計

記錄每一層的成功 / 失敗次數與耗時，供 /猜歌-狀態 顯示。
整個 Bot 共用一份，耗時只保留累計值。
"""

from collections import Counter
from dataclasses import dataclass, field


@dataclass
class ResolutionTelemetry:
    """音源解析統計"""

    tier_success: Counter = field(default_factory=Counter)
    tier_failure: Counter = field(default_factory=Counter)
    total_failures: int = 0
    _elapsed_total: Counter = field(default_factory=Counter, repr=False)

    def record_success(self, tier: str, elapsed_ms: float) -> None:
        self.tier_success[tier] += 1
        self._elapsed_total[tier] += elapsed_ms

    def record_failure(self, tier: str) -> None:
        self.tier_failure[tier] += 1

    def record_exhausted(self) -> None:
        """四層全部失敗"""
        self.total_failures += 1

    def average_ms(self, tier: str) -> float:
        count = self.tier_success.get(tier, 0)
        if not count:
            return 0.0
        return self._elapsed_total[tier] / count

    def snapshot(self) -> dict:
        """
        取得目前統計

        Returns:
            {"success": {...}, "failure": {...}, "exhausted": n, "avg_ms": {...}}
        """
        return {
            "success": dict(self.tier_success),
            "failure": dict(self.tier_failure),
            "exhausted": self.total_failures,
            "avg_ms": {tier: round(self.average_ms(tier), 1) for tier in self.tier_success},
        }
