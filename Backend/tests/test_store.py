import pytest
import redis

import store as store_module
from store import FallbackStore, MemoryStore, build_store


class _Failing:
    """Stands in for a RedisStore whose every command raises ``error``."""

    backend = "redis"

    def __init__(self, error: Exception):
        self.error = error

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise self.error
        return fail


class _Unreachable(_Failing):
    """A RedisStore whose server has gone away."""

    def __init__(self):
        super().__init__(redis.ConnectionError("Connection refused"))


class TestMemoryStore:

    def test_set_nx_only_writes_missing_keys(self, store):
        assert store.set("k", "first", nx=True) is True
        assert store.set("k", "second", nx=True) is False
        assert store.get("k") == "first"

    def test_keys_expire_lazily(self, store, clock):
        store.set("k", "v", ttl=10)
        clock.advance(9)
        assert store.get("k") == "v"
        assert store.ttl("k") == 1
        clock.advance(1)
        assert store.get("k") is None
        assert store.ttl("k") == -2

    def test_expire_on_missing_key_is_false(self, store):
        assert store.expire("missing", 10) is False

    def test_counters(self, store):
        assert store.incr("c") == 1
        assert store.incr("c", 4) == 5
        assert store.incrbyfloat("f", 1.5) == 1.5
        assert store.incrbyfloat("f", 2.25) == 3.75
        assert store.get("f") == "3.75"

    def test_hash_values_come_back_as_strings(self, store):
        store.hset("h", {"score": 82.5, "mode": "roast", "n": 3})
        assert store.hgetall("h") == {"score": "82.5", "mode": "roast", "n": "3"}
        assert store.hincrby("h", "n", 2) == 5
        assert store.hincrbyfloat("h", "score", 0.5) == 83.0

    def test_hset_rejects_none(self, store):
        with pytest.raises(TypeError):
            store.hset("h", {"thumbnail": None})

    def test_wrong_type_raises(self, store):
        store.set("k", "v")
        with pytest.raises(TypeError):
            store.hgetall("k")

    def test_empty_hash_disappears(self, store):
        store.hset("h", {"a": 1})
        store.hdel("h", "a")
        assert store.hgetall("h") == {}
        assert store.ttl("h") == -2

    def test_sorted_set_orders_by_score_then_member(self, store):
        store.zadd("z", {"b": 1, "a": 1, "c": 0.5})
        assert store.zrange("z", 0, -1) == ["c", "a", "b"]
        assert store.zrevrange("z", 0, 1) == ["b", "a"]
        assert store.zrank("z", "a") == 1
        assert store.zrevrank("z", "c") == 2
        assert store.zrank("z", "missing") is None

    def test_sorted_set_ranges(self, store):
        store.zadd("z", {"old": 10, "mid": 20, "new": 30})
        assert store.zrangebyscore("z", 15, "+inf") == ["mid", "new"]
        assert store.zrangebyscore("z", "-inf", 20, withscores=True) == [("old", 10.0), ("mid", 20.0)]
        assert store.zcount("z", 20, 30) == 2
        assert store.zcard("z") == 3

    def test_zincrby_creates_members(self, store):
        assert store.zincrby("z", 10, "u1") == 10.0
        assert store.zincrby("z", 5, "u1") == 15.0
        assert store.zscore("z", "u1") == 15.0

    def test_zrem_and_delete(self, store):
        store.zadd("z", {"a": 1, "b": 2})
        assert store.zrem("z", "a", "missing") == 1
        store.set("s", "x")
        assert store.delete("s", "z", "never") == 2
        assert store.zcard("z") == 0


class TestFallbackStore:

    def test_serves_from_memory_when_redis_fails(self, clock):
        fallback = FallbackStore(_Unreachable(), MemoryStore(clock=clock))

        assert fallback.set("k", "v") is True
        assert fallback.get("k") == "v"
        assert fallback.degraded is True
        assert fallback.ping() is False

    def test_recovers_when_primary_answers(self, clock):
        primary = MemoryStore(clock=clock)
        fallback = FallbackStore(primary, MemoryStore(clock=clock))
        fallback.degraded = True

        fallback.set("k", "v")
        assert fallback.degraded is False
        assert primary.get("k") == "v"

    def test_timeout_also_falls_back(self, clock):
        fallback = FallbackStore(_Failing(redis.TimeoutError("Timeout reading from socket")),
                                 MemoryStore(clock=clock))

        assert fallback.incr("k") == 1
        assert fallback.degraded is True

    @pytest.mark.parametrize("error", [
        redis.ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value"),
        redis.DataError("Invalid input of type: 'dict'"),
    ])
    def test_command_errors_propagate(self, clock, error):
        local = MemoryStore(clock=clock)
        fallback = FallbackStore(_Failing(error), local)

        with pytest.raises(type(error)):
            fallback.incrbyfloat("k", 5)
        assert fallback.degraded is False
        assert local.get("k") is None


class TestBuildStore:

    def test_no_url_uses_memory(self):
        assert build_store(None).backend == "memory"

    def test_unreachable_redis_uses_memory(self, monkeypatch):
        monkeypatch.setattr(store_module.RedisStore, "from_url", classmethod(lambda cls, url: _Unreachable()))
        assert build_store("redis://localhost:6379/0").backend == "memory"

    def test_reachable_redis_is_wrapped(self, monkeypatch, clock):
        monkeypatch.setattr(store_module.RedisStore, "from_url",
                            classmethod(lambda cls, url: MemoryStore(clock=clock)))
        built = build_store("redis://localhost:6379/0")
        assert isinstance(built, FallbackStore)
        assert built.backend == "redis+memory"
