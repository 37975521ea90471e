"""
Global Arena matchmaking queue.

Players join with an outfit score and the AI mode that produced it. Matching
prefers the same mode and a close score, then widens with wait time:

  wait ≤ 20s   same mode only          wait ≤ 30s   within 20 points
  wait ≤ 40s   the mode's group        wait ≤ 60s   within 50 points
  wait > 40s   every mode              wait > 60s   any score

There is no background scheduler: every join and every poll runs a matching
pass, so clients polling is what drives the queue forward. Entries live for
90 seconds and expiry is checked lazily on read. A player still alone once
``ghost_after`` seconds (default 60, after the last widening step) have
passed is matched against a ghost opponent instead.

Store layout:
  arena:queue:{mode}       sorted set, member = user id, score = joined_at (FIFO)
  arena:user:{user_id}     hash with the queue entry (90s TTL)
  arena:stats              hash, ``online`` counter
  arena:matches:{date}     daily completed-match counter
  arena:stats:cache        cached get_queue_stats() payload (5s TTL)
"""

import json
import logging
import math
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from arena_leaderboard import ArenaLeaderboard, generate_anonymous_name
from battles import outcome_for
from errors import ValidationError
from ghost_pool import GhostPool
from store import KeyValueStore

logger = logging.getLogger(__name__)

ALL_MODES = [
    "nice", "roast", "honest", "savage", "rizz", "celeb",
    "aura", "chaos", "y2k", "villain", "coquette", "hypebeast",
]

# Related modes searched once same-mode matching has had its chance
MODE_GROUPS = {
    "nice": ["nice", "honest", "aura"],
    "honest": ["honest", "nice", "aura"],
    "aura": ["aura", "nice", "honest"],
    "roast": ["roast", "savage", "chaos"],
    "savage": ["savage", "roast", "chaos"],
    "chaos": ["chaos", "roast", "savage"],
    "rizz": ["rizz", "y2k", "coquette", "hypebeast"],
    "y2k": ["y2k", "rizz", "coquette", "hypebeast"],
    "coquette": ["coquette", "rizz", "y2k", "hypebeast"],
    "hypebeast": ["hypebeast", "rizz", "y2k", "coquette"],
    "celeb": ["celeb", "villain"],
    "villain": ["villain", "celeb"],
}

QUEUE_TTL_SECONDS = 90
SAME_MODE_SECONDS = 20
MODE_GROUP_SECONDS = 40

# (max wait in seconds, score tolerance); beyond the last step any score matches
TOLERANCE_STEPS = [(30, 20), (60, 50)]
UNRESTRICTED_TOLERANCE = 100

# Ghost fallback starts once the widest search (any mode, any score) has had its turn
GHOST_FALLBACK_SECONDS = 60

STATS_CACHE_SECONDS = 5
MATCH_COUNTER_TTL = 48 * 60 * 60
BASE_WAIT_SECONDS = 30
MIN_WAIT_SECONDS = 3

QUEUE_PREFIX = "arena:queue:"
USER_PREFIX = "arena:user:"
STATS_KEY = "arena:stats"
STATS_CACHE_KEY = "arena:stats:cache"
MATCHES_PREFIX = "arena:matches:"


def is_expired(joined_at: float, now: float, ttl: float = QUEUE_TTL_SECONDS) -> bool:
    return now - joined_at > ttl


def modes_to_search(mode: str, wait_time: float) -> list:
    if wait_time <= SAME_MODE_SECONDS:
        return [mode]
    if wait_time <= MODE_GROUP_SECONDS:
        return list(MODE_GROUPS.get(mode, [mode]))
    return [mode] + [m for m in ALL_MODES if m != mode]


def score_tolerance(wait_time: float) -> int:
    for max_wait, tolerance in TOLERANCE_STEPS:
        if wait_time <= max_wait:
            return tolerance
    return UNRESTRICTED_TOLERANCE


@dataclass
class QueueEntry:
    user_id: str
    score: float
    thumbnail: Optional[str]
    mode: str
    joined_at: float
    status: str = "queued"
    battle_id: Optional[str] = None

    def to_hash(self) -> dict:
        data = {
            "score": self.score,
            "thumbnail": self.thumbnail or "",
            "mode": self.mode,
            "joined_at": self.joined_at,
            "status": self.status,
        }
        if self.battle_id:
            data["battle_id"] = self.battle_id
        return data

    @classmethod
    def from_hash(cls, user_id: str, data: dict) -> "QueueEntry":
        return cls(
            user_id=user_id,
            score=float(data["score"]),
            thumbnail=data.get("thumbnail") or None,
            mode=data["mode"],
            joined_at=float(data["joined_at"]),
            status=data.get("status", "queued"),
            battle_id=data.get("battle_id") or None,
        )


class MatchmakingQueue:
    """Per-mode FIFO queues with widening search and a ghost fallback."""

    def __init__(self, store: KeyValueStore, battles, ghost_pool: Optional[GhostPool] = None,
                 leaderboard: Optional[ArenaLeaderboard] = None,
                 clock: Callable[[], float] = time.time, rng: Optional[random.Random] = None,
                 ghost_after: Optional[float] = GHOST_FALLBACK_SECONDS, queue_ttl: float = QUEUE_TTL_SECONDS):
        self._store = store
        self._battles = battles
        self._ghost_pool = ghost_pool
        self._leaderboard = leaderboard
        self._clock = clock
        self._rng = rng or random.Random()
        self._ghost_after = ghost_after
        self._queue_ttl = queue_ttl

    # ── Keys / small helpers ─────────────────────────────────────

    @staticmethod
    def _queue_key(mode: str) -> str:
        return f"{QUEUE_PREFIX}{mode}"

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"{USER_PREFIX}{user_id}"

    def _matches_key(self) -> str:
        today = datetime.fromtimestamp(self._clock(), tz=timezone.utc).date().isoformat()
        return f"{MATCHES_PREFIX}{today}"

    def _position(self, user_id: str, mode: str) -> int:
        rank = self._store.zrank(self._queue_key(mode), user_id)
        return rank + 1 if rank is not None else 1

    def estimate_wait(self, depth: int) -> int:
        """Rough seconds-to-match for a queue holding ``depth`` other players."""
        wait = max(MIN_WAIT_SECONDS, round(BASE_WAIT_SECONDS / (max(depth, 0) + 1)))
        if self._ghost_pool is not None and self._ghost_after is not None:
            wait = min(wait, int(math.ceil(self._ghost_after)))
        return wait

    def _queue_depth(self) -> int:
        return sum(self._store.zcard(self._queue_key(mode)) for mode in ALL_MODES)

    def _evict(self, entry: QueueEntry):
        self._store.zrem(self._queue_key(entry.mode), entry.user_id)
        self._store.delete(self._user_key(entry.user_id))
        self._store.hincrby(STATS_KEY, "online", -1)

    # ── Public operations ────────────────────────────────────────

    def join(self, user_id: str, score, thumbnail: Optional[str] = None, mode: Optional[str] = "nice") -> dict:
        """Queue the player (replacing any earlier entry) and try to match at once."""
        if not user_id or not isinstance(user_id, str):
            raise ValidationError("user_id is required")
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
            raise ValidationError("score must be a number")
        if not 0 <= score <= 100:
            raise ValidationError("score must be between 0 and 100")
        mode = mode or "nice"
        if mode not in ALL_MODES:
            raise ValidationError(f"Unknown mode: {mode}")

        now = self._clock()
        user_key = self._user_key(user_id)

        previous = self._store.hgetall(user_key)
        was_queued = previous.get("status") == "queued"
        if previous.get("mode"):
            self._store.zrem(self._queue_key(previous["mode"]), user_id)
        self._store.delete(user_key)

        entry = QueueEntry(
            user_id=user_id,
            score=round(float(score), 1),
            thumbnail=thumbnail or None,
            mode=mode,
            joined_at=now,
        )
        self._store.hset(user_key, entry.to_hash())
        self._store.expire(user_key, int(self._queue_ttl))
        self._store.zadd(self._queue_key(mode), {user_id: now})
        self._store.expire(self._queue_key(mode), int(self._queue_ttl))
        if not was_queued:
            self._store.hincrby(STATS_KEY, "online", 1)

        battle = self.attempt_match(user_id, mode, entry)
        if battle is not None:
            return self._matched_response(user_id, battle)

        return {
            "status": "queued",
            "position": self._position(user_id, mode),
            "estimated_wait": self.estimate_wait(self._queue_depth() - 1),
        }

    def attempt_match(self, user_id: str, mode: str, entry: QueueEntry) -> Optional[dict]:
        """
        One matching pass for ``entry``.

        Modes are searched in order; within a mode the longest-waiting player
        inside the score tolerance wins, and the first mode that yields anyone
        ends the search. Returns the resolved battle, or None.
        """
        now = self._clock()
        wait_time = max(0.0, now - entry.joined_at)
        tolerance = score_tolerance(wait_time)

        for search_mode in modes_to_search(mode, wait_time):
            opponent = self._find_opponent(user_id, entry.score, search_mode, tolerance, now)
            if opponent is not None:
                return self._create_match(entry, opponent, search_mode)
        return None

    def _find_opponent(self, user_id: str, score: float, search_mode: str,
                       tolerance: float, now: float) -> Optional[QueueEntry]:
        queue_key = self._queue_key(search_mode)
        # zrange is ordered by joined_at, so the first eligible member has waited longest
        for member in self._store.zrange(queue_key, 0, -1):
            if member == user_id:
                continue
            try:
                data = self._store.hgetall(self._user_key(member))
                if not data:
                    self._store.zrem(queue_key, member)
                    continue
                candidate = QueueEntry.from_hash(member, data)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed queue entry %s: %s", member, exc)
                continue

            if candidate.status != "queued" or candidate.mode != search_mode:
                self._store.zrem(queue_key, member)
                continue
            if is_expired(candidate.joined_at, now, self._queue_ttl):
                self._evict(candidate)
                continue
            if abs(candidate.score - score) <= tolerance:
                return candidate
        return None

    def _create_match(self, entry: QueueEntry, opponent: QueueEntry, mode: str) -> dict:
        # Coin flip for who is the battle's creator
        if self._rng.random() > 0.5:
            creator, responder = entry, opponent
        else:
            creator, responder = opponent, entry

        battle_id = self._battles.create_match(creator.score, creator.user_id, mode, creator.thumbnail)
        battle = self._battles.resolve_match(battle_id, responder.score, responder.user_id, responder.thumbnail)

        for player, other in ((entry, opponent), (opponent, entry)):
            user_key = self._user_key(player.user_id)
            self._store.hset(user_key, {
                "status": "matched",
                "battle_id": battle_id,
                "opponent_name": self._display_name(other.user_id),
            })
            self._store.expire(user_key, int(self._queue_ttl))
            self._store.zrem(self._queue_key(player.mode), player.user_id)

        self._store.hincrby(STATS_KEY, "online", -2)
        matches_key = self._matches_key()
        self._store.incr(matches_key)
        self._store.expire(matches_key, MATCH_COUNTER_TTL)

        logger.info("🎯 Match %s: %s (%.1f) vs %s (%.1f) in %s",
                    battle_id, entry.user_id[:8], entry.score, opponent.user_id[:8], opponent.score, mode)
        self._after_match(battle, [entry, opponent])
        return battle

    def _ghost_match(self, entry: QueueEntry) -> dict:
        ghost = self._ghost_pool.get_ghost_opponent(
            target_score=entry.score,
            exclude_user_id=entry.user_id,
            prefer_mode=entry.mode,
        )
        battle_id = self._battles.create_match(entry.score, entry.user_id, entry.mode,
                                               entry.thumbnail, is_ghost=True)
        battle = self._battles.resolve_match(battle_id, ghost.score, ghost.opponent_id, ghost.thumbnail)

        user_key = self._user_key(entry.user_id)
        self._store.hset(user_key, {
            "status": "matched",
            "battle_id": battle_id,
            "opponent_name": ghost.display_name,
        })
        self._store.expire(user_key, int(self._queue_ttl))
        self._store.zrem(self._queue_key(entry.mode), entry.user_id)
        self._store.hincrby(STATS_KEY, "online", -1)

        logger.info("👻 Ghost match %s for %s (synthetic=%s)", battle_id, entry.user_id[:8], ghost.is_synthetic)
        self._after_match(battle, [entry])
        return self._matched_response(entry.user_id, battle, opponent_name=ghost.display_name)

    def _after_match(self, battle: dict, players: list):
        """Leaderboard points and ghost snapshots; failures never undo the match."""
        for player in players:
            try:
                outcome = outcome_for(battle, player.user_id)
                if self._leaderboard is not None and outcome:
                    self._leaderboard.record_outcome(player.user_id, outcome)
                if self._ghost_pool is not None and player.thumbnail:
                    self._ghost_pool.add_to_ghost_pool({
                        "user_id": player.user_id,
                        "score": player.score,
                        "thumbnail": player.thumbnail,
                        "mode": player.mode,
                        "display_name": self._profile_name(player.user_id),
                    })
            except Exception as exc:
                logger.error("Post-match update failed for %s: %s", player.user_id[:8], exc)

    def _profile_name(self, user_id: str) -> Optional[str]:
        if self._leaderboard is None:
            return None
        return self._leaderboard.get_user_profile(user_id).get("display_name")

    def _display_name(self, user_id: str) -> str:
        return self._profile_name(user_id) or generate_anonymous_name(user_id)

    def _matched_response(self, user_id: str, battle: Optional[dict], battle_id: Optional[str] = None,
                          opponent_name: Optional[str] = None) -> dict:
        if battle is None:
            return {"status": "matched", "battle_id": battle_id, "opponent_name": opponent_name}

        is_creator = battle["creator_id"] == user_id
        side, other = ("creator", "responder") if is_creator else ("responder", "creator")
        verdicts = {"creator": battle.get("outfit1_verdict"), "responder": battle.get("outfit2_verdict")}
        opponent_id = battle.get(f"{other}_id") or ""
        if opponent_name is None and not opponent_id.startswith("ghost:"):
            opponent_name = self._display_name(opponent_id)

        return {
            "status": "matched",
            "battle_id": battle["battle_id"],
            "mode": battle.get("mode"),
            "is_ghost": bool(battle.get("is_ghost")),
            "your_score": battle.get(f"{side}_score"),
            "opponent_score": battle.get(f"{other}_score"),
            "opponent_thumb": battle.get(f"{other}_thumb"),
            "opponent_name": opponent_name,
            "outcome": outcome_for(battle, user_id),
            "winner": battle.get("winner"),
            "battle_commentary": battle.get("battle_commentary"),
            "winning_factor": battle.get("winning_factor"),
            "your_verdict": verdicts[side],
            "opponent_verdict": verdicts[other],
        }

    def poll_for_match(self, user_id: str) -> dict:
        """
        Status check that also drives matching.

        ``expired`` when the entry is gone or older than the queue TTL;
        ``matched`` (consumed: the entry is deleted) once paired; otherwise a
        fresh matching pass runs and ``queued`` is returned with the wait time.
        """
        if not user_id:
            raise ValidationError("user_id is required")

        user_key = self._user_key(user_id)
        data = self._store.hgetall(user_key)
        if not data:
            return {"status": "expired"}

        try:
            entry = QueueEntry.from_hash(user_id, data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Dropping malformed queue entry for %s: %s", user_id[:8], exc)
            self._store.delete(user_key)
            return {"status": "expired"}

        if entry.status == "matched" and entry.battle_id:
            # Consume the entry only once the battle has been read
            battle = self._battles.get_match(entry.battle_id, include_expired=True)
            self._store.delete(user_key)
            return self._matched_response(user_id, battle, battle_id=entry.battle_id,
                                          opponent_name=data.get("opponent_name"))

        now = self._clock()
        if is_expired(entry.joined_at, now, self._queue_ttl):
            self._evict(entry)
            return {"status": "expired"}

        battle = self.attempt_match(user_id, entry.mode, entry)
        if battle is not None:
            return self._matched_response(user_id, battle)

        wait_time = now - entry.joined_at
        if self._ghost_pool is not None and self._ghost_after is not None and wait_time > self._ghost_after:
            return self._ghost_match(entry)

        return {
            "status": "queued",
            "wait_time": round(wait_time, 1),
            "position": self._position(user_id, entry.mode),
        }

    def leave_queue(self, user_id: str) -> dict:
        """Drop the player's entry; leaving twice is harmless."""
        if not user_id:
            raise ValidationError("user_id is required")

        user_key = self._user_key(user_id)
        data = self._store.hgetall(user_key)
        if data.get("mode"):
            self._store.zrem(self._queue_key(data["mode"]), user_id)
            if data.get("status") == "queued":
                self._store.hincrby(STATS_KEY, "online", -1)
        self._store.delete(user_key)
        return {"success": True}

    def get_queue_stats(self) -> dict:
        """Online count, today's matches and an average wait; cached for 5 seconds."""
        cached = self._store.get(STATS_CACHE_KEY)
        if cached:
            try:
                return json.loads(cached)
            except ValueError:
                pass

        depth = self._queue_depth()
        stats = {
            # never show an empty arena
            "online": max(1, depth),
            "matches_today": int(self._store.get(self._matches_key()) or 0),
            "avg_wait_seconds": self.estimate_wait(depth),
        }
        self._store.set(STATS_CACHE_KEY, json.dumps(stats), ttl=STATS_CACHE_SECONDS)
        return stats
