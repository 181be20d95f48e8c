"""
音源描述快取

策略：
- 以歌曲識別鍵為 key，保存已解析成功的 StreamDescriptor
- 容量上限 N，超過時淘汰最早插入的一筆（FIFO）
- 每筆另有 TTL，與淘汰無關；背景任務定期清除過期項目

範例（capacity=3）：
    插入：A, B, C      → [A, B, C]
    插入：D            → [B, C, D]（淘汰 A）
    重新插入：B        → [C, D, B]
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional
from loguru import logger

from .models import SourceTier, StreamDescriptor
from ..constants import (
    AUDIO_CACHE_CAPACITY,
    AUDIO_CACHE_TTL,
    AUDIO_CACHE_SWEEP_INTERVAL,
)


@dataclass(frozen=True)
class AudioCacheEntry:
    key: str
    tier: SourceTier
    descriptor: StreamDescriptor
    inserted_at: float


class AudioCache:
    """
    有容量上限的 FIFO + TTL 快取

    使用方式：
        cache = AudioCache(capacity=50, ttl=1800)
        cache.start()  # 啟動背景清理

        cache.put(track.key, descriptor)
        entry = cache.get(track.key)

        await cache.stop()
    """

    def __init__(
        self,
        capacity: int = AUDIO_CACHE_CAPACITY,
        ttl: float = AUDIO_CACHE_TTL,
        sweep_interval: float = AUDIO_CACHE_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        初始化快取

        Args:
            capacity: 最多保存幾筆
            ttl: 每筆存活秒數
            sweep_interval: 背景清理間隔（秒）
            clock: 時間來源（測試可替換）
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")

        self.capacity = capacity
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock

        self._entries: "OrderedDict[str, AudioCacheEntry]" = OrderedDict()
        self._sweep_task: Optional[asyncio.Task] = None

        self.hits = 0
        self.misses = 0
        self.evictions = 0

        logger.debug(f"AudioCache 初始化: capacity={capacity}, ttl={ttl}s")

    # === 讀寫 ===

    def get(self, key: str) -> Optional[AudioCacheEntry]:
        """
        取得未過期的快取

        過期項目會在此順便移除。
        """
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if self._is_expired(entry):
            del self._entries[key]
            self.misses += 1
            logger.debug(f"[快取] 已過期: {key}")
            return None

        self.hits += 1
        return entry

    def put(self, key: str, descriptor: StreamDescriptor) -> AudioCacheEntry:
        """
        寫入快取

        已存在的 key 會移到最新位置；容量已滿時淘汰最早插入的一筆。
        """
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.capacity:
            evicted_key, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"[快取] 容量已滿，淘汰: {evicted_key}")

        entry = AudioCacheEntry(
            key=key,
            tier=descriptor.tier,
            descriptor=descriptor,
            inserted_at=self._clock(),
        )
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> bool:
        """移除指定 key（例如重播失敗）"""
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def sweep(self) -> int:
        """
        清除所有過期項目

        Returns:
            清除的數量
        """
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"[快取] 清除 {len(expired)} 筆過期項目")
        return len(expired)

    # === 背景清理 ===

    def start(self) -> None:
        """啟動背景清理任務（需在事件循環中呼叫）"""
        if self._sweep_task and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """停止背景清理任務"""
        task, self._sweep_task = self._sweep_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    # === 狀態 ===

    def _is_expired(self, entry: AudioCacheEntry) -> bool:
        return self._clock() - entry.inserted_at >= self.ttl

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_ratio": round(self.hit_ratio, 3),
        }

    def keys(self) -> list:
        """依插入順序列出 key（最舊在前）"""
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._is_expired(entry)
