"""Tests for the FIFO + TTL audio descriptor cache."""

import pytest

from module.track_quiz.core.cache import AudioCache
from module.track_quiz.core.models import SourceTier, StreamDescriptor


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def descriptor(name: str) -> StreamDescriptor:
    return StreamDescriptor.url(SourceTier.PREVIEW, f"https://p/{name}")


def test_put_and_get():
    cache = AudioCache(capacity=3)
    cache.put("a", descriptor("a"))

    entry = cache.get("a")
    assert entry is not None
    assert entry.tier == SourceTier.PREVIEW
    assert entry.descriptor.locator == "https://p/a"
    assert cache.get("missing") is None
    assert cache.hits == 1
    assert cache.misses == 1


def test_evicts_oldest_insertion_when_full():
    cache = AudioCache(capacity=3)
    for key in "abc":
        cache.put(key, descriptor(key))

    cache.put("d", descriptor("d"))

    assert cache.keys() == ["b", "c", "d"]
    assert "a" not in cache
    assert cache.evictions == 1


def test_reinsert_moves_key_to_newest_without_eviction():
    cache = AudioCache(capacity=3)
    for key in "abc":
        cache.put(key, descriptor(key))

    cache.put("a", descriptor("a2"))
    assert cache.keys() == ["b", "c", "a"]
    assert cache.evictions == 0

    # 下一次淘汰的是 b，而不是剛重新插入的 a
    cache.put("d", descriptor("d"))
    assert cache.keys() == ["c", "a", "d"]
    assert cache.get("a").descriptor.locator == "https://p/a2"


def test_get_does_not_change_eviction_order():
    cache = AudioCache(capacity=2)
    cache.put("a", descriptor("a"))
    cache.put("b", descriptor("b"))

    cache.get("a")
    cache.put("c", descriptor("c"))

    assert cache.keys() == ["b", "c"]


def test_size_never_exceeds_capacity():
    cache = AudioCache(capacity=5)
    for i in range(50):
        cache.put(f"k{i}", descriptor(str(i)))
        assert len(cache) <= 5
    assert cache.evictions == 45


def test_expired_entry_is_a_miss_and_removed():
    clock = FakeClock()
    cache = AudioCache(capacity=3, ttl=60, clock=clock)
    cache.put("a", descriptor("a"))

    clock.now += 59
    assert cache.get("a") is not None

    clock.now += 1
    assert cache.get("a") is None
    assert len(cache) == 0


def test_sweep_removes_only_expired():
    clock = FakeClock()
    cache = AudioCache(capacity=5, ttl=60, clock=clock)
    cache.put("old", descriptor("old"))
    clock.now += 30
    cache.put("new", descriptor("new"))
    clock.now += 40

    assert cache.sweep() == 1
    assert cache.keys() == ["new"]


def test_invalidate_and_clear():
    cache = AudioCache(capacity=3)
    cache.put("a", descriptor("a"))
    cache.put("b", descriptor("b"))

    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    assert cache.clear() == 1
    assert len(cache) == 0


def test_stats_and_hit_ratio():
    cache = AudioCache(capacity=2)
    cache.put("a", descriptor("a"))
    cache.get("a")
    cache.get("a")
    cache.get("b")

    stats = cache.stats()
    assert stats["size"] == 1
    assert stats["capacity"] == 2
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["hit_ratio"] == pytest.approx(0.667, abs=0.001)


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        AudioCache(capacity=0)


@pytest.mark.asyncio
async def test_background_sweep_start_and_stop():
    clock = FakeClock()
    cache = AudioCache(capacity=3, ttl=1, sweep_interval=0.01, clock=clock)
    cache.put("a", descriptor("a"))
    clock.now += 5

    cache.start()
    for _ in range(50):
        if len(cache) == 0:
            break
        import asyncio
        await asyncio.sleep(0.01)
    await cache.stop()

    assert len(cache) == 0
