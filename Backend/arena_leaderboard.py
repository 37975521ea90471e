"""
Weekly Global Arena leaderboard and player display names.

Store layout:
  arena:leaderboard:{YYYY-Www}   sorted set, member = user id, score = points
  arena:profiles                 hash, user id → JSON {display_name, created_at, updated_at}

Ranks are never stored: they are read from the sorted order at query time,
so concurrent increments can't leave a stale rank behind.
"""

import json
import logging
import math
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from errors import ValidationError
from store import KeyValueStore

logger = logging.getLogger(__name__)

LEADERBOARD_PREFIX = "arena:leaderboard:"
PROFILES_KEY = "arena:profiles"

LEADERBOARD_RETENTION = timedelta(days=14)
PROFILE_TTL_SECONDS = 60 * 60 * 24 * 365

MAX_DISPLAY_NAME_LENGTH = 24
MAX_LIMIT = 100

# Points awarded per arena outcome
POINTS_WIN = 10
POINTS_TIE = 3
POINTS_LOSS = 1
OUTCOME_POINTS = {"win": POINTS_WIN, "tie": POINTS_TIE, "loss": POINTS_LOSS}

SEASON_TIERS = [
    {"name": "Bronze", "min_points": 0, "color": "#cd7f32", "emoji": "🥉"},
    {"name": "Silver", "min_points": 100, "color": "#c0c0c0", "emoji": "🥈"},
    {"name": "Gold", "min_points": 250, "color": "#ffd700", "emoji": "🥇"},
    {"name": "Platinum", "min_points": 500, "color": "#e5e4e2", "emoji": "💎"},
    {"name": "Diamond", "min_points": 1000, "color": "#b9f2ff", "emoji": "👑"},
]

_ANON_ADJECTIVES = ["Stylish", "Dripped", "Fresh", "Clean", "Bold", "Fierce", "Sleek", "Iconic"]
_ANON_NOUNS = ["Fox", "Tiger", "Eagle", "Wolf", "Falcon", "Phoenix", "Panther", "Hawk"]


def get_week_key(now: datetime) -> str:
    """ISO week id, e.g. ``2026-W07``."""
    year, week, _ = now.isocalendar()
    return f"{year}-W{week:02d}"


def week_end(now: datetime) -> datetime:
    """Midnight UTC at the start of the next ISO week."""
    monday = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    return monday + timedelta(days=7)


def get_tier_for_points(points: float) -> dict:
    tier = SEASON_TIERS[0]
    for candidate in SEASON_TIERS:
        if points >= candidate["min_points"]:
            tier = candidate
    return tier


def generate_anonymous_name(user_id: str) -> str:
    """Stable pseudonym derived from the user id."""
    code = sum(ord(ch) for ch in user_id)
    adjective = _ANON_ADJECTIVES[code % len(_ANON_ADJECTIVES)]
    noun = _ANON_NOUNS[(code * 7) % len(_ANON_NOUNS)]
    return f"{adjective} {noun}"


def _points(value) -> int:
    return int(round(float(value or 0)))


class ArenaLeaderboard:

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def current_week_key(self) -> str:
        return get_week_key(self._now())

    # ── Scores ───────────────────────────────────────────────────

    def record_arena_score(self, user_id: str, points) -> dict:
        """
        Add ``points`` to the user's total for the current week.

        Point magnitude is not bounded here; callers derive it from the match
        outcome (see OUTCOME_POINTS).
        """
        if not user_id or not isinstance(user_id, str):
            raise ValidationError("user_id is required")
        if isinstance(points, bool) or not isinstance(points, (int, float)) or not math.isfinite(points):
            raise ValidationError("points must be a number")

        now = self._now()
        key = f"{LEADERBOARD_PREFIX}{get_week_key(now)}"
        new_total = self._store.zincrby(key, points, user_id)
        retention = (week_end(now) - now) + LEADERBOARD_RETENTION
        self._store.expire(key, int(retention.total_seconds()))

        rank = self._store.zrevrank(key, user_id)
        logger.info("[ARENA] User %s +%spts, total: %s, rank: #%s",
                    user_id[:8], points, _points(new_total), rank + 1 if rank is not None else "?")
        return {
            "new_total": _points(new_total),
            "rank": rank + 1 if rank is not None else None,
        }

    def record_outcome(self, user_id: str, outcome: str) -> dict:
        """Award the fixed points for a win / tie / loss."""
        if outcome not in OUTCOME_POINTS:
            raise ValidationError(f"Unknown outcome: {outcome}")
        return self.record_arena_score(user_id, OUTCOME_POINTS[outcome])

    def get_weekly_leaderboard(self, user_id: Optional[str] = None, limit: int = 50) -> dict:
        """Top ``limit`` players this week, plus the caller's own standing."""
        limit = max(1, min(int(limit), MAX_LIMIT))
        week_key = self.current_week_key()
        key = f"{LEADERBOARD_PREFIX}{week_key}"

        entries = []
        for index, (entry_user_id, score) in enumerate(self._store.zrevrange(key, 0, limit - 1, withscores=True)):
            points = _points(score)
            tier = get_tier_for_points(points)
            profile = self.get_user_profile(entry_user_id)
            entries.append({
                "rank": index + 1,
                "user_tag": entry_user_id[-8:],
                "display_name": profile.get("display_name") or generate_anonymous_name(entry_user_id),
                "points": points,
                "tier": {"name": tier["name"], "emoji": tier["emoji"], "color": tier["color"]},
                "is_current_user": entry_user_id == user_id,
            })

        user_rank = None
        user_points = 0
        if user_id:
            rank = self._store.zrevrank(key, user_id)
            if rank is not None:
                user_rank = rank + 1
                user_points = _points(self._store.zscore(key, user_id))

        return {
            "entries": entries,
            "user_rank": user_rank,
            "user_points": user_points,
            "week_key": week_key,
            "total_entries": self._store.zcard(key),
        }

    # ── Profiles ─────────────────────────────────────────────────

    def get_user_profile(self, user_id: str) -> dict:
        if not user_id:
            return {"display_name": None}
        raw = self._store.hget(PROFILES_KEY, user_id)
        if not raw:
            return {"display_name": None}
        try:
            profile = json.loads(raw)
        except ValueError:
            profile = None
        if not isinstance(profile, dict):
            logger.warning("[ARENA] Corrupt profile for %s ignored", user_id[:8])
            return {"display_name": None}
        return profile

    def set_user_profile(self, user_id: str, display_name: str) -> dict:
        if not user_id:
            raise ValidationError("user_id is required")
        name = (display_name or "").strip()
        if not name:
            raise ValidationError("display_name is required")
        if len(name) > MAX_DISPLAY_NAME_LENGTH:
            raise ValidationError(f"display_name must be at most {MAX_DISPLAY_NAME_LENGTH} characters")

        now = self._now().isoformat()
        existing = self.get_user_profile(user_id)
        profile = {
            "display_name": name,
            "created_at": existing.get("created_at") or now,
            "updated_at": now,
        }
        self._store.hset(PROFILES_KEY, {user_id: json.dumps(profile)})
        self._store.expire(PROFILES_KEY, PROFILE_TTL_SECONDS)
        return profile
