"""Tests for services.road_cache module."""

import pytest

from services.road_cache import RoadQueryCache, request_signature


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestRequestSignature:
    """Tests for request_signature function."""

    def test_whitespace_normalized(self):
        a = request_signature('area(3600000001)', include_federal=True, include_regional=False)
        b = request_signature('  area(3600000001) ', include_federal=True, include_regional=False)
        assert a == b

    def test_flags_distinguish(self):
        a = request_signature('area(1)', include_federal=True, include_regional=False)
        b = request_signature('area(1)', include_federal=True, include_regional=True)
        assert a != b
        assert a.endswith('|fed=1|reg=0')


class TestRoadQueryCache:
    """Tests for RoadQueryCache (LRU + TTL)."""

    def test_put_and_get(self):
        cache = RoadQueryCache(max_entries=2, ttl_s=60, clock=FakeClock())
        cache.put('a', [1])
        assert cache.get('a') == [1]
        assert cache.stats['hits'] == 1

    def test_miss(self):
        cache = RoadQueryCache(clock=FakeClock())
        assert cache.get('missing') is None
        assert cache.stats['misses'] == 1

    def test_lru_eviction(self):
        """Least recently used entry should be evicted first."""
        cache = RoadQueryCache(max_entries=2, ttl_s=0, clock=FakeClock())
        cache.put('a', 1)
        cache.put('b', 2)
        cache.get('a')  # 'a' становится самым свежим
        cache.put('c', 3)
        assert 'b' not in cache
        assert cache.keys() == ['a', 'c']
        assert cache.stats['evictions'] == 1

    def test_ttl_expiry(self):
        """Entry older than ttl should be dropped on read."""
        clock = FakeClock()
        cache = RoadQueryCache(max_entries=4, ttl_s=30, clock=clock)
        cache.put('a', 1)
        clock.now += 29.9
        assert cache.get('a') == 1
        clock.now += 0.1
        assert cache.get('a') is None
        assert 'a' not in cache
        assert cache.stats['expirations'] == 1

    def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        cache = RoadQueryCache(ttl_s=0, clock=clock)
        cache.put('a', 1)
        clock.now += 10**6
        assert cache.get('a') == 1

    def test_put_refreshes_timestamp(self):
        clock = FakeClock()
        cache = RoadQueryCache(ttl_s=10, clock=clock)
        cache.put('a', 1)
        clock.now += 8
        cache.put('a', 2)
        clock.now += 8
        assert cache.get('a') == 2

    def test_invalidate_and_clear(self):
        cache = RoadQueryCache(clock=FakeClock())
        cache.put('a', 1)
        cache.put('b', 2)
        assert cache.invalidate('a')
        assert not cache.invalidate('a')
        cache.clear()
        assert len(cache) == 0

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            RoadQueryCache(max_entries=0)
