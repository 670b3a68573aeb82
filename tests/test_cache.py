import threading

import pytest
import redis

from finance_tracker.cache import Cache, MemoryCache, RedisCache, build_cache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeRedisClient:
    """Just enough of redis.Redis for RedisCache; can be switched to fail."""

    def __init__(self):
        self.store = {}
        self.down = False
        self.calls = 0

    def _check(self):
        self.calls += 1
        if self.down:
            raise redis.ConnectionError("connection refused")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value.encode("utf-8")

    def scan_iter(self, match):
        self._check()
        prefix = match.rstrip("*")
        return iter([k for k in list(self.store) if k.startswith(prefix)])

    def delete(self, *keys):
        self._check()
        removed = 0
        for k in keys:
            removed += int(self.store.pop(k, None) is not None)
        return removed

    def close(self):
        pass


def test_memory_cache_expires_after_ttl():
    clock = FakeClock()
    cache = MemoryCache(clock=clock)
    cache.set("overview:u1", "payload", ttl_seconds=900)

    clock.advance(899)
    assert cache.get("overview:u1") == "payload"
    clock.advance(1)
    assert cache.get("overview:u1") is None
    assert len(cache) == 0


def test_memory_cache_invalidates_by_prefix():
    cache = MemoryCache()
    cache.set("analytics:u1:3months", "a", 900)
    cache.set("analytics:u1:2years", "b", 900)
    cache.set("analytics:u2:3months", "c", 900)
    cache.set("overview:u1", "d", 900)

    assert cache.invalidate("analytics:u1:") == 2
    assert cache.get("analytics:u1:3months") is None
    assert cache.get("analytics:u2:3months") == "c"
    assert cache.get("overview:u1") == "d"


def test_memory_cache_is_safe_under_parallel_writers():
    cache = MemoryCache()

    def worker(n):
        for i in range(200):
            cache.set(f"k:{n}:{i}", str(i), 900)
            cache.get(f"k:{n}:{i}")
        cache.invalidate(f"k:{n}:")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(cache) == 0


def test_facade_round_trips_json_and_reports_backend():
    cache = Cache()
    assert cache.backend_name == "memory"
    raw = cache.set("overview:u1", {"balance": 1.5, "monthlyTrend": []})
    assert raw == '{"balance":1.5,"monthlyTrend":[]}'
    assert cache.get("overview:u1") == {"balance": 1.5, "monthlyTrend": []}
    assert cache.get_raw("overview:u1") == raw


def test_facade_uses_redis_when_available():
    client = FakeRedisClient()
    cache = Cache(primary=RedisCache(client))
    cache.set("overview:u1", {"x": 1})

    assert "overview:u1" in client.store
    assert len(cache.fallback) == 0
    assert cache.get("overview:u1") == {"x": 1}
    assert cache.backend_name == "redis"

    cache.invalidate("overview:u1")
    assert client.store == {}


def test_facade_falls_back_to_memory_when_redis_fails():
    clock = FakeClock()
    client = FakeRedisClient()
    cache = Cache(primary=RedisCache(client), retry_after=30, clock=clock)
    client.down = True

    # a failed get is a miss, never an exception
    assert cache.get("overview:u1") is None
    assert cache.backend_name == "memory"

    cache.set("overview:u1", {"x": 1})
    assert cache.get("overview:u1") == {"x": 1}
    cache.invalidate("overview:u1")
    assert cache.get("overview:u1") is None

    # redis is skipped during the cooldown
    calls = client.calls
    cache.set("overview:u2", {"y": 2})
    assert client.calls == calls

    # and retried once it is over
    client.down = False
    clock.advance(31)
    assert cache.backend_name == "redis"
    cache.set("overview:u3", {"z": 3})
    assert "overview:u3" in client.store


def test_invalidate_clears_both_stores():
    client = FakeRedisClient()
    cache = Cache(primary=RedisCache(client))
    cache.fallback.set("analytics:u1:3months", '"stale"', 900)
    client.store["analytics:u1:2years"] = b'"fresh"'

    cache.invalidate("analytics:u1:")

    assert cache.fallback.get("analytics:u1:3months") is None
    assert client.store == {}


def test_unexpected_backend_error_is_a_miss():
    class Broken(MemoryCache):
        def get(self, key):
            raise RuntimeError("boom")

    cache = Cache(fallback=Broken())
    assert cache.get("anything") is None
    assert cache.get_raw("anything") is None


def test_unserialisable_value_is_not_cached():
    cache = Cache()
    assert cache.set("bad", {"when": object()}) is None
    assert cache.get("bad") is None


def test_build_cache_without_url_is_memory():
    assert build_cache("").backend_name == "memory"


def test_build_cache_with_unreachable_redis_degrades(monkeypatch):
    client = FakeRedisClient()
    client.down = True
    monkeypatch.setattr(RedisCache, "from_url", classmethod(lambda cls, url, timeout=0.5: cls(client)))

    cache = build_cache("redis://localhost:6390/0")
    assert cache.backend_name == "memory"
    cache.set("overview:u1", {"ok": True})
    assert cache.get("overview:u1") == {"ok": True}


@pytest.mark.parametrize("ttl", [1, 900])
def test_facade_respects_explicit_ttl(ttl):
    clock = FakeClock()
    cache = Cache(fallback=MemoryCache(clock=clock), ttl_seconds=900)
    cache.set("k", 1, ttl_seconds=ttl)
    clock.advance(ttl)
    assert cache.get("k") is None


def test_invalidate_during_cooldown_still_reaches_redis():
    clock = FakeClock()
    client = FakeRedisClient()
    cache = Cache(primary=RedisCache(client), retry_after=30, clock=clock)
    cache.set("overview:u1", {"totalExpenses": 5.0})

    # one transient failure starts the cooldown
    client.down = True
    assert cache.get("overview:u1") is None
    client.down = False

    cache.invalidate("overview:")
    assert "overview:u1" not in client.store

    clock.advance(31)
    assert cache.get("overview:u1") is None


def test_invalidate_while_redis_down_is_replayed_before_reads():
    clock = FakeClock()
    client = FakeRedisClient()
    cache = Cache(primary=RedisCache(client), retry_after=30, clock=clock)
    cache.set("overview:u1", {"totalExpenses": 5.0})
    cache.set("analytics:u1:3months", {"monthlyTrends": []})

    client.down = True
    cache.invalidate("overview:u1")
    cache.invalidate("analytics:u1:")
    # redis still holds the old reports while it is unreachable
    assert "overview:u1" in client.store

    client.down = False
    clock.advance(31)
    assert cache.get("overview:u1") is None
    assert cache.get("analytics:u1:3months") is None
    assert client.store == {}


def test_pending_invalidation_survives_a_failed_replay():
    clock = FakeClock()
    client = FakeRedisClient()
    cache = Cache(primary=RedisCache(client), retry_after=30, clock=clock)
    cache.set("overview:u1", {"x": 1})

    client.down = True
    cache.invalidate("overview:u1")
    clock.advance(31)
    # redis is still down when the cooldown ends; reads fall back to memory
    assert cache.get("overview:u1") is None
    assert cache.backend_name == "memory"

    client.down = False
    clock.advance(31)
    assert cache.get("overview:u1") is None
    assert "overview:u1" not in client.store
