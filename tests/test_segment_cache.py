from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from camrelay.archive_index import SegmentDescriptor
from camrelay.segment_cache import SegmentCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _ts(second: int) -> datetime:
    return datetime(2021, 9, 24, 14, 30, second, tzinfo=timezone.utc)


def _descriptor(second: int, duration: int = 1000) -> SegmentDescriptor:
    return SegmentDescriptor(
        relative_path=f"hk/2021/09/24/1430{second:02d}.flv",
        size_bytes=128,
        captured_at=_ts(second),
        duration=duration,
    )


def test_put_then_get_returns_descriptor():
    cache = SegmentCache(clock=FakeClock())
    cache.put(_ts(1), _descriptor(1))
    assert cache.get(_ts(1)) == _descriptor(1)
    assert cache.get(_ts(2)) is None


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = SegmentCache(ttl=timedelta(hours=12), clock=clock)
    cache.put(_ts(1), _descriptor(1))

    clock.now = 12 * 3600 - 1
    assert cache.get(_ts(1)) is not None

    clock.now = 12 * 3600
    assert cache.get(_ts(1)) is None
    assert len(cache) == 0
    assert cache.stats()["expirations"] == 1


def test_reads_do_not_extend_expiry():
    clock = FakeClock()
    cache = SegmentCache(ttl=10, clock=clock)
    cache.put(_ts(1), _descriptor(1))
    for now in (2.0, 5.0, 9.0):
        clock.now = now
        assert cache.get(_ts(1)) is not None
    clock.now = 10.5
    assert cache.get(_ts(1)) is None


def test_put_resets_expiry_and_last_write_wins():
    clock = FakeClock()
    cache = SegmentCache(ttl=10, clock=clock)
    cache.put(_ts(1), _descriptor(1, duration=1))
    clock.now = 8.0
    cache.put(_ts(1), _descriptor(1, duration=2))
    clock.now = 15.0
    cached = cache.get(_ts(1))
    assert cached is not None
    assert cached.duration == 2


def test_per_entry_ttl_override():
    clock = FakeClock()
    cache = SegmentCache(ttl=100, clock=clock)
    cache.put(_ts(1), _descriptor(1), ttl=timedelta(seconds=5))
    clock.now = 6.0
    assert cache.get(_ts(1)) is None


def test_least_recently_used_entry_is_evicted():
    cache = SegmentCache(capacity=2, clock=FakeClock())
    cache.put(_ts(1), _descriptor(1))
    cache.put(_ts(2), _descriptor(2))
    assert cache.get(_ts(1)) is not None  # 2 is now least recently used
    cache.put(_ts(3), _descriptor(3))

    assert cache.get(_ts(2)) is None
    assert cache.get(_ts(1)) is not None
    assert cache.get(_ts(3)) is not None
    assert cache.stats()["evictions"] == 1


def test_insertion_order_evicts_oldest_without_reads():
    cache = SegmentCache(capacity=3, clock=FakeClock())
    for second in range(5):
        cache.put(_ts(second), _descriptor(second))
    assert len(cache) == 3
    assert cache.get(_ts(0)) is None
    assert cache.get(_ts(1)) is None
    assert all(cache.get(_ts(second)) is not None for second in (2, 3, 4))


def test_invalid_capacity_rejected():
    with pytest.raises(ValueError):
        SegmentCache(capacity=0)


def test_stats_and_clear():
    cache = SegmentCache(capacity=4, clock=FakeClock())
    cache.put(_ts(1), _descriptor(1))
    cache.get(_ts(1))
    cache.get(_ts(9))
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["size"] == 1
    assert stats["capacity"] == 4
    cache.clear()
    assert len(cache) == 0


def test_concurrent_access_respects_capacity():
    cache = SegmentCache(capacity=16)
    errors: list[BaseException] = []

    def worker(offset: int) -> None:
        try:
            for i in range(200):
                second = (offset + i) % 60
                cache.put(_ts(second), _descriptor(second))
                cache.get(_ts((second + 7) % 60))
        except BaseException as exc:  # noqa: BLE001 - surfaced via assertion
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n * 5,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(cache) <= 16
