"""
Key-value storage shared by every arena component.

One contract (strings, counters, hashes, sorted sets, TTL) with three
implementations:

  - RedisStore    — thin wrapper over a ``redis.Redis`` client
  - MemoryStore   — in-process dicts with lazy expiry, for dev and tests
  - FallbackStore — Redis first, in-memory when Redis raises

Return types follow redis-py with ``decode_responses=True``: hash fields and
string values come back as ``str``, sorted-set scores as ``float``.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Storage contract used by the matchmaking, ghost, leaderboard and war services."""

    backend = "abstract"

    @abstractmethod
    def ping(self) -> bool: ...

    # ── Strings / counters ───────────────────────────────────────

    @abstractmethod
    def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    def set(self, key: str, value, ttl: Optional[int] = None, nx: bool = False) -> bool: ...

    @abstractmethod
    def delete(self, *keys: str) -> int: ...

    @abstractmethod
    def incr(self, key: str, amount: int = 1) -> int: ...

    @abstractmethod
    def incrbyfloat(self, key: str, amount: float) -> float: ...

    @abstractmethod
    def expire(self, key: str, ttl: int) -> bool: ...

    @abstractmethod
    def ttl(self, key: str) -> int: ...

    # ── Hashes ───────────────────────────────────────────────────

    @abstractmethod
    def hget(self, key: str, field: str) -> Optional[str]: ...

    @abstractmethod
    def hset(self, key: str, mapping: dict) -> int: ...

    @abstractmethod
    def hgetall(self, key: str) -> dict: ...

    @abstractmethod
    def hincrby(self, key: str, field: str, amount: int = 1) -> int: ...

    @abstractmethod
    def hincrbyfloat(self, key: str, field: str, amount: float) -> float: ...

    @abstractmethod
    def hdel(self, key: str, *fields: str) -> int: ...

    # ── Sorted sets ──────────────────────────────────────────────

    @abstractmethod
    def zadd(self, key: str, mapping: dict) -> int: ...

    @abstractmethod
    def zincrby(self, key: str, amount: float, member: str) -> float: ...

    @abstractmethod
    def zrem(self, key: str, *members: str) -> int: ...

    @abstractmethod
    def zrange(self, key: str, start: int, end: int, withscores: bool = False) -> list: ...

    @abstractmethod
    def zrevrange(self, key: str, start: int, end: int, withscores: bool = False) -> list: ...

    @abstractmethod
    def zrangebyscore(self, key: str, min_score, max_score, withscores: bool = False) -> list: ...

    @abstractmethod
    def zcount(self, key: str, min_score, max_score) -> int: ...

    @abstractmethod
    def zrank(self, key: str, member: str) -> Optional[int]: ...

    @abstractmethod
    def zrevrank(self, key: str, member: str) -> Optional[int]: ...

    @abstractmethod
    def zscore(self, key: str, member: str) -> Optional[float]: ...

    @abstractmethod
    def zcard(self, key: str) -> int: ...


# ── Redis ────────────────────────────────────────────────────────


class RedisStore(KeyValueStore):
    """KeyValueStore backed by a live Redis connection."""

    backend = "redis"

    def __init__(self, client: redis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            health_check_interval=30,
        )
        return cls(client)

    def ping(self):
        return bool(self._redis.ping())

    def get(self, key):
        return self._redis.get(key)

    def set(self, key, value, ttl=None, nx=False):
        return bool(self._redis.set(key, value, ex=ttl, nx=nx))

    def delete(self, *keys):
        return self._redis.delete(*keys) if keys else 0

    def incr(self, key, amount=1):
        return int(self._redis.incrby(key, amount))

    def incrbyfloat(self, key, amount):
        return float(self._redis.incrbyfloat(key, amount))

    def expire(self, key, ttl):
        return bool(self._redis.expire(key, ttl))

    def ttl(self, key):
        return int(self._redis.ttl(key))

    def hget(self, key, field):
        return self._redis.hget(key, field)

    def hset(self, key, mapping):
        return int(self._redis.hset(key, mapping=mapping))

    def hgetall(self, key):
        return self._redis.hgetall(key) or {}

    def hincrby(self, key, field, amount=1):
        return int(self._redis.hincrby(key, field, amount))

    def hincrbyfloat(self, key, field, amount):
        return float(self._redis.hincrbyfloat(key, field, amount))

    def hdel(self, key, *fields):
        return self._redis.hdel(key, *fields) if fields else 0

    def zadd(self, key, mapping):
        return int(self._redis.zadd(key, mapping))

    def zincrby(self, key, amount, member):
        return float(self._redis.zincrby(key, amount, member))

    def zrem(self, key, *members):
        return self._redis.zrem(key, *members) if members else 0

    def zrange(self, key, start, end, withscores=False):
        return self._redis.zrange(key, start, end, withscores=withscores)

    def zrevrange(self, key, start, end, withscores=False):
        return self._redis.zrevrange(key, start, end, withscores=withscores)

    def zrangebyscore(self, key, min_score, max_score, withscores=False):
        return self._redis.zrangebyscore(key, min_score, max_score, withscores=withscores)

    def zcount(self, key, min_score, max_score):
        return int(self._redis.zcount(key, min_score, max_score))

    def zrank(self, key, member):
        return self._redis.zrank(key, member)

    def zrevrank(self, key, member):
        return self._redis.zrevrank(key, member)

    def zscore(self, key, member):
        return self._redis.zscore(key, member)

    def zcard(self, key):
        return int(self._redis.zcard(key))


# ── In-memory ────────────────────────────────────────────────────


class _Hash(dict):
    pass


class _SortedSet(dict):
    def ordered(self):
        return sorted(self.items(), key=lambda item: (item[1], item[0]))


def _encode(value) -> str:
    if isinstance(value, bool) or value is None:
        raise TypeError(f"Invalid input of type: '{type(value).__name__}'")
    if isinstance(value, float):
        return repr(value)
    return str(value)


def _slice(items: list, start: int, end: int) -> list:
    """Inclusive, negative-aware range like Redis ZRANGE."""
    size = len(items)
    if start < 0:
        start += size
    if end < 0:
        end += size
    start = max(start, 0)
    end = min(end, size - 1)
    if start > end:
        return []
    return items[start:end + 1]


class MemoryStore(KeyValueStore):
    """
    Process-local KeyValueStore.

    Every operation holds one lock, so single-key operations are atomic across
    FastAPI's worker threads. Expiry is lazy: a key is dropped the first time it
    is touched after its deadline.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict = {}
        self._expires: dict = {}
        self._lock = threading.RLock()

    # internal helpers (callers hold the lock)

    def _live(self, key):
        deadline = self._expires.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return self._data.get(key)

    def _typed(self, key, kind):
        value = self._live(key)
        if value is None:
            value = kind()
            self._data[key] = value
        elif not isinstance(value, kind):
            raise TypeError(f"WRONGTYPE Operation against key '{key}' holding the wrong kind of value")
        return value

    def _existing(self, key, kind):
        value = self._live(key)
        if value is not None and not isinstance(value, kind):
            raise TypeError(f"WRONGTYPE Operation against key '{key}' holding the wrong kind of value")
        return value

    def _drop_if_empty(self, key):
        value = self._data.get(key)
        if isinstance(value, dict) and not value:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    def ping(self):
        return True

    def flush(self):
        with self._lock:
            self._data.clear()
            self._expires.clear()

    def get(self, key):
        with self._lock:
            value = self._existing(key, str)
            return value

    def set(self, key, value, ttl=None, nx=False):
        with self._lock:
            if nx and self._live(key) is not None:
                return False
            self._data[key] = _encode(value)
            if ttl is not None:
                self._expires[key] = self._clock() + ttl
            else:
                self._expires.pop(key, None)
            return True

    def delete(self, *keys):
        with self._lock:
            removed = 0
            for key in keys:
                if self._live(key) is not None:
                    removed += 1
                self._data.pop(key, None)
                self._expires.pop(key, None)
            return removed

    def incr(self, key, amount=1):
        with self._lock:
            current = self._existing(key, str)
            value = int(current or 0) + int(amount)
            self._data[key] = str(value)
            return value

    def incrbyfloat(self, key, amount):
        with self._lock:
            current = self._existing(key, str)
            value = float(current or 0) + float(amount)
            self._data[key] = repr(value)
            return value

    def expire(self, key, ttl):
        with self._lock:
            if self._live(key) is None:
                return False
            self._expires[key] = self._clock() + ttl
            return True

    def ttl(self, key):
        with self._lock:
            if self._live(key) is None:
                return -2
            deadline = self._expires.get(key)
            if deadline is None:
                return -1
            return int(math.ceil(deadline - self._clock()))

    def hget(self, key, field):
        with self._lock:
            value = self._existing(key, _Hash)
            return value.get(field) if value else None

    def hset(self, key, mapping):
        with self._lock:
            bucket = self._typed(key, _Hash)
            added = sum(1 for field in mapping if field not in bucket)
            for field, value in mapping.items():
                bucket[field] = _encode(value)
            return added

    def hgetall(self, key):
        with self._lock:
            value = self._existing(key, _Hash)
            return dict(value) if value else {}

    def hincrby(self, key, field, amount=1):
        with self._lock:
            bucket = self._typed(key, _Hash)
            value = int(bucket.get(field, 0)) + int(amount)
            bucket[field] = str(value)
            return value

    def hincrbyfloat(self, key, field, amount):
        with self._lock:
            bucket = self._typed(key, _Hash)
            value = float(bucket.get(field, 0)) + float(amount)
            bucket[field] = repr(value)
            return value

    def hdel(self, key, *fields):
        with self._lock:
            bucket = self._existing(key, _Hash)
            if not bucket:
                return 0
            removed = sum(1 for field in fields if bucket.pop(field, None) is not None)
            self._drop_if_empty(key)
            return removed

    def zadd(self, key, mapping):
        with self._lock:
            zset = self._typed(key, _SortedSet)
            added = sum(1 for member in mapping if member not in zset)
            for member, score in mapping.items():
                zset[str(member)] = float(score)
            return added

    def zincrby(self, key, amount, member):
        with self._lock:
            zset = self._typed(key, _SortedSet)
            zset[member] = zset.get(member, 0.0) + float(amount)
            return zset[member]

    def zrem(self, key, *members):
        with self._lock:
            zset = self._existing(key, _SortedSet)
            if not zset:
                return 0
            removed = sum(1 for member in members if zset.pop(member, None) is not None)
            self._drop_if_empty(key)
            return removed

    def _ranged(self, key, start, end, withscores, reverse):
        with self._lock:
            zset = self._existing(key, _SortedSet)
            if not zset:
                return []
            items = zset.ordered()
            if reverse:
                items.reverse()
            items = _slice(items, start, end)
            return items if withscores else [member for member, _ in items]

    def zrange(self, key, start, end, withscores=False):
        return self._ranged(key, start, end, withscores, reverse=False)

    def zrevrange(self, key, start, end, withscores=False):
        return self._ranged(key, start, end, withscores, reverse=True)

    def zrangebyscore(self, key, min_score, max_score, withscores=False):
        low, high = float(min_score), float(max_score)
        with self._lock:
            zset = self._existing(key, _SortedSet)
            if not zset:
                return []
            items = [(m, s) for m, s in zset.ordered() if low <= s <= high]
            return items if withscores else [member for member, _ in items]

    def zcount(self, key, min_score, max_score):
        return len(self.zrangebyscore(key, min_score, max_score))

    def _rank(self, key, member, reverse):
        with self._lock:
            zset = self._existing(key, _SortedSet)
            if not zset or member not in zset:
                return None
            members = [m for m, _ in zset.ordered()]
            if reverse:
                members.reverse()
            return members.index(member)

    def zrank(self, key, member):
        return self._rank(key, member, reverse=False)

    def zrevrank(self, key, member):
        return self._rank(key, member, reverse=True)

    def zscore(self, key, member):
        with self._lock:
            zset = self._existing(key, _SortedSet)
            return zset.get(member) if zset else None

    def zcard(self, key):
        with self._lock:
            zset = self._existing(key, _SortedSet)
            return len(zset) if zset else 0


# ── Redis with in-memory fallback ────────────────────────────────

# Redis unreachable, as opposed to a command the server rejected
UNAVAILABLE_ERRORS = (redis.ConnectionError, redis.TimeoutError)


class FallbackStore(KeyValueStore):
    """
    Forward to ``primary``; when Redis cannot be reached (connection or
    timeout errors) serve the call from ``fallback`` instead. Command errors
    such as WRONGTYPE still propagate.

    Writes made while degraded live only in this process, so a multi-instance
    deployment loses global consistency for as long as Redis is down.
    """

    backend = "redis+memory"

    def __init__(self, primary: KeyValueStore, fallback: KeyValueStore):
        self.primary = primary
        self.fallback = fallback
        self.degraded = False

    def _call(self, op: str, *args, **kwargs):
        try:
            result = getattr(self.primary, op)(*args, **kwargs)
        except UNAVAILABLE_ERRORS as exc:
            if not self.degraded:
                logger.warning("⚠ Redis error during %s (%s) — serving from in-memory fallback", op, exc)
            self.degraded = True
            return getattr(self.fallback, op)(*args, **kwargs)
        if self.degraded:
            logger.info("✓ Redis reachable again")
            self.degraded = False
        return result

    def ping(self):
        try:
            return self.primary.ping()
        except UNAVAILABLE_ERRORS:
            return False

    def get(self, key):
        return self._call("get", key)

    def set(self, key, value, ttl=None, nx=False):
        return self._call("set", key, value, ttl=ttl, nx=nx)

    def delete(self, *keys):
        return self._call("delete", *keys)

    def incr(self, key, amount=1):
        return self._call("incr", key, amount)

    def incrbyfloat(self, key, amount):
        return self._call("incrbyfloat", key, amount)

    def expire(self, key, ttl):
        return self._call("expire", key, ttl)

    def ttl(self, key):
        return self._call("ttl", key)

    def hget(self, key, field):
        return self._call("hget", key, field)

    def hset(self, key, mapping):
        return self._call("hset", key, mapping)

    def hgetall(self, key):
        return self._call("hgetall", key)

    def hincrby(self, key, field, amount=1):
        return self._call("hincrby", key, field, amount)

    def hincrbyfloat(self, key, field, amount):
        return self._call("hincrbyfloat", key, field, amount)

    def hdel(self, key, *fields):
        return self._call("hdel", key, *fields)

    def zadd(self, key, mapping):
        return self._call("zadd", key, mapping)

    def zincrby(self, key, amount, member):
        return self._call("zincrby", key, amount, member)

    def zrem(self, key, *members):
        return self._call("zrem", key, *members)

    def zrange(self, key, start, end, withscores=False):
        return self._call("zrange", key, start, end, withscores=withscores)

    def zrevrange(self, key, start, end, withscores=False):
        return self._call("zrevrange", key, start, end, withscores=withscores)

    def zrangebyscore(self, key, min_score, max_score, withscores=False):
        return self._call("zrangebyscore", key, min_score, max_score, withscores=withscores)

    def zcount(self, key, min_score, max_score):
        return self._call("zcount", key, min_score, max_score)

    def zrank(self, key, member):
        return self._call("zrank", key, member)

    def zrevrank(self, key, member):
        return self._call("zrevrank", key, member)

    def zscore(self, key, member):
        return self._call("zscore", key, member)

    def zcard(self, key):
        return self._call("zcard", key)


def build_store(redis_url: Optional[str], clock: Callable[[], float] = time.time) -> KeyValueStore:
    """Connect to Redis when configured, otherwise (or on failure) use memory."""
    if not redis_url:
        logger.warning("⚠ REDIS_URL not set — using in-memory store (single instance only)")
        return MemoryStore(clock=clock)

    try:
        primary = RedisStore.from_url(redis_url)
        primary.ping()
    except redis.RedisError as exc:
        logger.warning("⚠ Redis unavailable (%s) — using in-memory store", exc)
        return MemoryStore(clock=clock)

    logger.info("✓ Redis connected — arena state is shared")
    return FallbackStore(primary, MemoryStore(clock=clock))
