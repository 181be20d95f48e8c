"""
回合計時

使用時間戳計算而非累加，停止後經過時間固定不變，判分時讀取。
"""

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class RoundClock:
    """
    回合計時

    使用方式：
        clock = RoundClock()
        clock.start(time_limit_ms=30000)
        ...
        clock.stop()
        clock.elapsed_ms     # 例如：12000
    """

    now: Callable[[], float] = field(default=time.monotonic, repr=False)

    is_running: bool = False
    _started: bool = field(default=False, repr=False)
    _start_time: float = field(default=0, repr=False)
    _stop_time: float = field(default=0, repr=False)
    _time_limit_ms: int = field(default=0, repr=False)

    def start(self, time_limit_ms: int) -> float:
        """
        開始計時

        Returns:
            開始時間戳
        """
        self.is_running = True
        self._started = True
        self._start_time = self.now()
        self._stop_time = 0
        self._time_limit_ms = time_limit_ms
        return self._start_time

    def stop(self) -> None:
        """停止計時，保留經過時間"""
        if self.is_running:
            self._stop_time = self.now()
            self.is_running = False

    def reset(self) -> None:
        self.is_running = False
        self._started = False
        self._start_time = 0
        self._stop_time = 0
        self._time_limit_ms = 0

    @property
    def elapsed_ms(self) -> int:
        """經過毫秒數，範圍 [0, time_limit_ms]；尚未開始為 0"""
        if not self._started:
            return 0
        end = self.now() if self.is_running else self._stop_time
        elapsed = int((end - self._start_time) * 1000)
        return max(0, min(elapsed, self._time_limit_ms))
