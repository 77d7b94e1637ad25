from datetime import datetime, timezone

import redis
from conftest import make_profile

from app.entities import CompatibilityResult, SearchPreference
from app.services.cache import (
    InMemoryCacheBackend,
    RedisCacheBackend,
    ScoreCache,
    build_cache,
    compatibility_key,
)


class TickingClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def _result(score=72):
    return CompatibilityResult(
        score=score,
        reasons=("Gender compatible",),
        breakdown={"gender": 20},
        insights={"gender": ["Gender preferences align perfectly"]},
        computed_at=datetime(2026, 3, 2, tzinfo=timezone.utc),
    )


def test_compatibility_key_is_unordered():
    assert compatibility_key("b", "a") == compatibility_key("a", "b") == "comp:a:b"


def test_round_trip_before_ttl_and_miss_after():
    clock = TickingClock()
    cache = ScoreCache(InMemoryCacheBackend(clock=clock), ttls={"compatibility": 60})

    cache.set_compatibility("u1", "u2", _result())
    clock.now += 59
    hit = cache.get_compatibility("u2", "u1")
    clock.now += 2
    miss = cache.get_compatibility("u1", "u2")

    assert hit == _result()
    assert miss is None
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5
    assert stats["type"] == "memory"


def test_invalidate_drops_every_entry_for_a_user(cache):
    cache.set_compatibility("u1", "u2", _result())
    cache.set_compatibility("u3", "u1", _result())
    cache.set_compatibility("u2", "u3", _result())
    cache.set_profile(make_profile("u1"))
    cache.set_preferences("u1", SearchPreference.defaults())
    cache.set_interests("u1", ["Hiking"])

    removed = cache.invalidate("u1")

    assert removed == 2
    assert cache.get_compatibility("u1", "u2") is None
    assert cache.get_compatibility("u1", "u3") is None
    assert cache.get_compatibility("u2", "u3") is not None
    assert cache.get_profile("u1") is None
    assert cache.get_preferences("u1") is None
    assert cache.get_interests("u1") is None


def test_typed_helpers_round_trip(cache):
    profile = make_profile("u1", interests={"Hiking", "Art"}, latitude=1.5, longitude=2.5)
    prefs = SearchPreference(min_age=25, max_age=40, genders=frozenset({"Female"}), preferred_cities=frozenset({"Miami"}))

    cache.set_profile(profile)
    cache.set_preferences("u1", prefs)
    cache.set_interests("u1", ["b", "a"])
    cache.set_metrics_snapshot({"cache_hit_rate": 0.9})

    assert cache.get_profile("u1") == profile
    assert cache.get_preferences("u1") == prefs
    assert cache.get_interests("u1") == ["a", "b"]
    assert cache.get_metrics_snapshot() == {"cache_hit_rate": 0.9}


def test_sweep_and_bounded_size():
    clock = TickingClock()
    backend = InMemoryCacheBackend(max_entries=3, clock=clock)
    backend.set("short", 1, ttl_seconds=10)
    backend.set("long", 2, ttl_seconds=1000)
    clock.now += 20

    assert backend.sweep_expired() == 1
    assert backend.key_count() == 1

    for i in range(5):
        backend.set(f"k{i}", i, ttl_seconds=100 + i)
    assert backend.key_count() == 3
    assert backend.get("long") == 2
    assert backend.get("k4") == 4
    assert backend.get("k0") is None


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def setex(self, key, ttl, value):
        self.ops.append(("setex", key, ttl, value))

    def set(self, key, value):
        self.ops.append(("set", key, None, value))

    def sadd(self, key, member):
        self.ops.append(("sadd", key, None, member))

    def expire(self, key, ttl):
        self.ops.append(("expire", key, ttl, None))

    def execute(self):
        for op, key, ttl, value in self.ops:
            if op in ("setex", "set"):
                self.client.data[key] = value.encode("utf-8")
                if ttl:
                    self.client.ttls[key] = ttl
            elif op == "sadd":
                self.client.sets.setdefault(key, set()).add(value.encode("utf-8"))
            elif op == "expire":
                self.client.ttls[key] = ttl
        self.ops = []


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.sets = {}
        self.ttls = {}
        self.down = False

    def _check(self):
        if self.down:
            raise redis.ConnectionError("connection refused")

    def pipeline(self):
        self._check()
        return FakePipeline(self)

    def get(self, key):
        self._check()
        return self.data.get(key)

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.sets.pop(key, None)
        return removed

    def exists(self, key):
        return int(key in self.data)

    def srem(self, key, *members):
        for member in members:
            self.sets.get(key, set()).discard(member)

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def scan_iter(self, match=None):
        prefix = match.rstrip("*") if match else ""
        return iter([k for k in list(self.data) + list(self.sets) if k.startswith(prefix)])


def test_redis_backend_namespaces_keys_and_tags():
    client = FakeRedis()
    cache = ScoreCache(RedisCacheBackend(client, namespace="t"))

    cache.set_compatibility("u1", "u2", _result())

    assert "t:comp:u1:u2" in client.data
    assert client.ttls["t:comp:u1:u2"] == 3600
    assert client.sets["t:tag:u1"] == {b"comp:u1:u2"}
    assert cache.get_compatibility("u2", "u1") == _result()

    assert cache.invalidate("u2") == 1
    assert cache.get_compatibility("u1", "u2") is None
    assert cache.stats()["type"] == "redis"


def test_redis_outage_is_a_miss_not_an_error():
    client = FakeRedis()
    cache = ScoreCache(RedisCacheBackend(client))
    client.down = True

    cache.set_compatibility("u1", "u2", _result())
    assert cache.get_compatibility("u1", "u2") is None
    assert cache.stats()["misses"] == 1


def test_build_cache_defaults_to_memory():
    assert build_cache("").stats()["type"] == "memory"


def test_zero_ttl_expires_immediately():
    clock = TickingClock()
    backend = InMemoryCacheBackend(clock=clock)
    backend.set("gone", 1, ttl_seconds=0)
    backend.set("kept", 2)

    assert backend.get("gone") is None
    assert backend.get("kept") == 2

    client = FakeRedis()
    RedisCacheBackend(client, namespace="t").set("gone", 1, ttl_seconds=0)
    assert "t:gone" not in client.data


def test_redis_sweep_prunes_tag_members_of_expired_entries():
    client = FakeRedis()
    cache = ScoreCache(RedisCacheBackend(client, namespace="t"))
    cache.set_compatibility("u1", "u2", _result())
    cache.set_compatibility("u1", "u3", _result())
    # Redis expired this entry on its own; the tag sets still list it.
    del client.data["t:comp:u1:u2"]

    assert cache.sweep_expired() == 2
    assert client.sets["t:tag:u1"] == {b"comp:u1:u3"}
    assert client.sets["t:tag:u2"] == set()
    assert cache.invalidate("u1") == 1
