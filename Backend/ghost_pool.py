"""
Ghost pool: recent outfits replayed as stand-in arena opponents.

When nobody else is queued, the arena matches a player against a "ghost": a
snapshot of a real outfit submitted in the last 24 hours, picked at random
with a bias towards similar scores and the same mode. With an empty pool a
synthetic ghost is generated, so a caller always gets an opponent.

Store layout:
  ghost:pool          sorted set, member = ghost hash, score = added_at
  ghost:data:{hash}   hash with the outfit snapshot (24h TTL)
"""

import hashlib
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional

from store import KeyValueStore

logger = logging.getLogger(__name__)

GHOST_POOL_KEY = "ghost:pool"
GHOST_DATA_PREFIX = "ghost:data:"
MAX_POOL_SIZE = 200
GHOST_TTL_SECONDS = 24 * 60 * 60

SYNTHETIC_SPREAD = 15
SYNTHETIC_MIN_SCORE = 10
SYNTHETIC_MAX_SCORE = 100

_ADJECTIVES = [
    "Stylish", "Trendy", "Fierce", "Bold", "Chic",
    "Slick", "Fresh", "Dapper", "Glam", "Sharp",
    "Sassy", "Classy", "Iconic", "Vibey", "Drip",
]
_NOUNS = [
    "Diva", "Star", "Icon", "Legend", "Fashionista",
    "Trendsetter", "Vibe", "Look", "Fit", "King",
    "Queen", "Boss", "Drip", "Style", "Mood",
]


@dataclass
class GhostEntry:
    score: float
    thumbnail: Optional[str]
    mode: str
    display_name: str
    hash: Optional[str] = None
    added_at: Optional[float] = None
    is_synthetic: bool = False
    is_ghost: bool = True

    @property
    def opponent_id(self) -> str:
        return f"ghost:{self.hash or 'synthetic'}"


def generate_ghost_name(rng: random.Random) -> str:
    return f"{rng.choice(_ADJECTIVES)}{rng.choice(_NOUNS)}{rng.randint(1, 999)}"


def outfit_hash(user_id: Optional[str], score: float, timestamp_ms: int) -> str:
    raw = f"{user_id}:{score}:{timestamp_ms}".encode()
    return hashlib.md5(raw).hexdigest()[:12]


def ghost_weight(ghost_score: float, target_score: float, ghost_mode: str,
                 prefer_mode: Optional[str]) -> int:
    """Selection weight: base 100, closer scores and a matching mode weigh more."""
    weight = 100
    diff = abs(ghost_score - target_score)
    if diff < 5:
        weight += 50
    elif diff < 10:
        weight += 30
    elif diff < 20:
        weight += 10
    if prefer_mode and ghost_mode == prefer_mode:
        weight += 20
    return weight


class GhostPool:

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time,
                 rng: Optional[random.Random] = None):
        self._store = store
        self._clock = clock
        self._rng = rng or random.Random()

    def add_to_ghost_pool(self, outfit: dict) -> Optional[GhostEntry]:
        """
        Snapshot an outfit into the pool.

        ``outfit`` carries ``user_id``, ``score``, ``thumbnail``, ``mode`` and an
        optional ``display_name``. Outfits without a score or thumbnail are
        ignored. The oldest entries are evicted once the pool exceeds
        ``MAX_POOL_SIZE``.
        """
        score = outfit.get("score")
        thumbnail = outfit.get("thumbnail")
        if score is None or not thumbnail:
            return None

        now = self._clock()
        entry = GhostEntry(
            score=round(float(score), 1),
            thumbnail=thumbnail,
            mode=outfit.get("mode") or "nice",
            display_name=outfit.get("display_name") or generate_ghost_name(self._rng),
            hash=outfit_hash(outfit.get("user_id"), score, int(now * 1000)),
            added_at=now,
        )

        data_key = f"{GHOST_DATA_PREFIX}{entry.hash}"
        self._store.zadd(GHOST_POOL_KEY, {entry.hash: now})
        self._store.hset(data_key, {
            "hash": entry.hash,
            "score": entry.score,
            "thumbnail": entry.thumbnail,
            "mode": entry.mode,
            "display_name": entry.display_name,
            "added_at": now,
            "owner": outfit.get("user_id") or "",
        })
        self._store.expire(data_key, GHOST_TTL_SECONDS)

        pool_size = self._store.zcard(GHOST_POOL_KEY)
        if pool_size > MAX_POOL_SIZE:
            evicted = self._store.zrange(GHOST_POOL_KEY, 0, pool_size - MAX_POOL_SIZE - 1)
            if evicted:
                self._store.zrem(GHOST_POOL_KEY, *evicted)
                self._store.delete(*[f"{GHOST_DATA_PREFIX}{h}" for h in evicted])

        logger.info("[GhostPool] Added outfit: score=%s, mode=%s", entry.score, entry.mode)
        return entry

    def _candidates(self, exclude_user_id: Optional[str]) -> list:
        cutoff = self._clock() - GHOST_TTL_SECONDS
        candidates = []
        for ghost_hash in self._store.zrangebyscore(GHOST_POOL_KEY, cutoff, "+inf"):
            data = self._store.hgetall(f"{GHOST_DATA_PREFIX}{ghost_hash}")
            if not data:
                # data expired ahead of the index entry
                self._store.zrem(GHOST_POOL_KEY, ghost_hash)
                continue
            if exclude_user_id and data.get("owner") == exclude_user_id:
                continue
            candidates.append(GhostEntry(
                score=float(data["score"]),
                thumbnail=data.get("thumbnail") or None,
                mode=data.get("mode") or "nice",
                display_name=data.get("display_name") or generate_ghost_name(self._rng),
                hash=ghost_hash,
                added_at=float(data.get("added_at") or 0),
            ))
        return candidates

    def get_ghost_opponent(self, target_score: Optional[float] = None,
                           exclude_user_id: Optional[str] = None,
                           prefer_mode: Optional[str] = None) -> GhostEntry:
        """Pick a ghost near ``target_score``; never returns None."""
        target = 50.0 if target_score is None else float(target_score)

        try:
            candidates = self._candidates(exclude_user_id)
        except Exception as exc:
            logger.error("[GhostPool] Get error: %s", exc)
            return self.generate_synthetic_ghost(target, prefer_mode)

        if not candidates:
            logger.info("[GhostPool] No ghosts available, generating synthetic")
            return self.generate_synthetic_ghost(target, prefer_mode)

        weights = [ghost_weight(g.score, target, g.mode, prefer_mode) for g in candidates]
        ghost = self._rng.choices(candidates, weights=weights, k=1)[0]
        logger.info("[GhostPool] Selected ghost: score=%s, mode=%s", ghost.score, ghost.mode)
        return ghost

    def generate_synthetic_ghost(self, target_score: float, mode: Optional[str] = None) -> GhostEntry:
        """A believable opponent within ±15 of the target, clamped to [10, 100]."""
        variation = (self._rng.random() - 0.5) * 2 * SYNTHETIC_SPREAD
        score = max(SYNTHETIC_MIN_SCORE, min(SYNTHETIC_MAX_SCORE, target_score + variation))
        return GhostEntry(
            score=round(score, 1),
            thumbnail=None,
            mode=mode or "nice",
            display_name=generate_ghost_name(self._rng),
            added_at=self._clock(),
            is_synthetic=True,
        )

    def get_pool_stats(self) -> dict:
        cutoff = self._clock() - GHOST_TTL_SECONDS
        return {
            "total_size": self._store.zcard(GHOST_POOL_KEY),
            "active_size": self._store.zcount(GHOST_POOL_KEY, cutoff, "+inf"),
        }
