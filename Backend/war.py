"""
Fashion Wars: six alliances competing with everyday outfit scans.

Every scan a member makes adds points to their alliance, with diminishing
returns after the fourth scan of the day. Each day three alliance pairings
battle on that day's totals (a fixed 15-pairing rotation), and a 14-day war
crowns the alliance with the most daily wins.

Store layout:
  war:membership:{user}             JSON membership for the current war
  war:contrib:{date}:{user}         hash: scans, total_points (48h TTL)
  war:score:{date}:{alliance}       alliance daily total (48h TTL)
  war:season:{war_id}:{alliance}    hash: wins, total_score
  war:members:{war_id}              hash: user → war-long contribution
  war:results:{date}                JSON list of finalized pairings, written once
"""

import json
import logging
import math
import time
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Union

from errors import AlreadyJoinedError, ValidationError
from store import KeyValueStore

logger = logging.getLogger(__name__)

ALLIANCES = ["north_america", "europe", "asia", "africa", "south_america", "oceania"]

# Three consecutive rows form one day's slate; every alliance fights once per day
BATTLE_ROTATION = [
    ("north_america", "europe"),
    ("asia", "oceania"),
    ("africa", "south_america"),
    ("north_america", "asia"),
    ("europe", "africa"),
    ("south_america", "oceania"),
    ("north_america", "africa"),
    ("europe", "oceania"),
    ("asia", "south_america"),
    ("north_america", "south_america"),
    ("europe", "asia"),
    ("africa", "oceania"),
    ("north_america", "oceania"),
    ("europe", "south_america"),
    ("asia", "africa"),
]
BATTLES_PER_DAY = 3

WAR_DURATION_DAYS = 14
WAR_EPOCH = date(2024, 1, 1)

DAILY_TTL_SECONDS = 48 * 60 * 60
SEASON_TTL_SECONDS = (WAR_DURATION_DAYS + 7) * 24 * 60 * 60
RESULTS_TTL_SECONDS = 30 * 24 * 60 * 60

# Scan ordinals where the anti-spam weighting changes
DIMINISH_FROM_SCAN = 5
SOFT_CAP_SCAN = 10
HARD_CAP_SCAN = 15
DIMINISH_FACTOR = 0.85
SOFT_CAP_FACTOR = 0.2
HARD_CAP_FACTOR = 0.1


def calculate_contribution(raw_score: float, scan_number: int) -> float:
    """
    Weight of the ``scan_number``-th scan of the day (1-based).

    Scans 1-4 count in full, 5-9 decay by 0.85 per scan past the fourth,
    10-14 count 20% and 15 onwards 10%.
    """
    if scan_number >= HARD_CAP_SCAN:
        factor = HARD_CAP_FACTOR
    elif scan_number >= SOFT_CAP_SCAN:
        factor = SOFT_CAP_FACTOR
    elif scan_number >= DIMINISH_FROM_SCAN:
        factor = DIMINISH_FACTOR ** (scan_number - (DIMINISH_FROM_SCAN - 1))
    else:
        factor = 1.0
    return round(raw_score * factor, 1)


def battles_for_day(day_of_year: int) -> list:
    start = (day_of_year % 5) * BATTLES_PER_DAY
    return [BATTLE_ROTATION[(start + i) % len(BATTLE_ROTATION)] for i in range(BATTLES_PER_DAY)]


def war_number(day: date) -> int:
    return (day - WAR_EPOCH).days // WAR_DURATION_DAYS


def war_id_for(day: date) -> str:
    return f"war_{war_number(day)}"


def war_day_number(day: date) -> int:
    return (day - WAR_EPOCH).days % WAR_DURATION_DAYS + 1


def _parse_day(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD") from None


def _round(value) -> float:
    return round(float(value or 0), 1)


class AllianceWar:

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _today(self) -> date:
        return self._now().date()

    def yesterday(self) -> str:
        """The previous UTC day as YYYY-MM-DD; the default day to finalize."""
        return (self._today() - timedelta(days=1)).isoformat()

    def get_current_war_id(self) -> str:
        return war_id_for(self._today())

    def get_war_day_number(self) -> int:
        return war_day_number(self._today())

    def get_today_battles(self, day: Optional[Union[str, date]] = None) -> list:
        """The three pairings fighting on ``day`` (default today); same answer for every caller."""
        target = self._today() if day is None else _parse_day(day)
        return battles_for_day(target.timetuple().tm_yday)

    # ── Membership ───────────────────────────────────────────────

    def join_alliance(self, user_id: str, alliance_id: str) -> dict:
        """Lock the user into an alliance until the current war ends."""
        if not user_id:
            raise ValidationError("user_id is required")
        if alliance_id not in ALLIANCES:
            raise ValidationError(f"Invalid alliance: {alliance_id}")

        now = self._now()
        today = now.date()
        war_id = war_id_for(today)
        key = f"war:membership:{user_id}"
        membership = {
            "alliance_id": alliance_id,
            "war_id": war_id,
            "joined_at": now.isoformat(),
            "joined_day": war_day_number(today),
        }

        war_end = datetime.combine(
            WAR_EPOCH + timedelta(days=(war_number(today) + 1) * WAR_DURATION_DAYS),
            datetime.min.time(),
            tzinfo=timezone.utc,
        )
        ttl = int((war_end - now + timedelta(days=1)).total_seconds())

        existing = self._store.get(key)
        if existing and json.loads(existing).get("war_id") == war_id:
            raise AlreadyJoinedError("Already joined an alliance this war")
        if existing:
            # leftover from a previous war
            self._store.set(key, json.dumps(membership), ttl=ttl)
        elif not self._store.set(key, json.dumps(membership), ttl=ttl, nx=True):
            raise AlreadyJoinedError("Already joined an alliance this war")

        logger.info("[WarService] User %s... joined %s", user_id[:12], alliance_id)
        return membership

    def get_user_alliance(self, user_id: str) -> Optional[dict]:
        """Membership for the current war, or None."""
        raw = self._store.get(f"war:membership:{user_id}")
        if not raw:
            return None
        membership = json.loads(raw)
        if membership.get("war_id") != self.get_current_war_id():
            return None
        return membership

    # ── Contributions ────────────────────────────────────────────

    def record_contribution(self, user_id: str, alliance_id: str, raw_score, mode: str = "nice") -> dict:
        if not user_id:
            raise ValidationError("user_id is required")
        if alliance_id not in ALLIANCES:
            raise ValidationError("Invalid alliance_id")
        if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)) \
                or not math.isfinite(raw_score) or not 0 <= raw_score <= 100:
            raise ValidationError("Score must be between 0 and 100")

        membership = self.get_user_alliance(user_id)
        if membership is None:
            raise ValidationError("User has not joined an alliance")
        if membership["alliance_id"] != alliance_id:
            raise ValidationError(f"User is in a different alliance: {membership['alliance_id']}")

        today = self._today().isoformat()
        war_id = self.get_current_war_id()

        user_key = f"war:contrib:{today}:{user_id}"
        scan_number = self._store.hincrby(user_key, "scans", 1)
        contribution = calculate_contribution(float(raw_score), scan_number)
        total_today = self._store.hincrbyfloat(user_key, "total_points", contribution)
        self._store.expire(user_key, DAILY_TTL_SECONDS)

        alliance_day_key = f"war:score:{today}:{alliance_id}"
        self._store.incrbyfloat(alliance_day_key, contribution)
        self._store.expire(alliance_day_key, DAILY_TTL_SECONDS)

        season_key = f"war:season:{war_id}:{alliance_id}"
        self._store.hincrbyfloat(season_key, "total_score", contribution)
        self._store.expire(season_key, SEASON_TTL_SECONDS)

        members_key = f"war:members:{war_id}"
        self._store.hincrbyfloat(members_key, user_id, contribution)
        self._store.expire(members_key, SEASON_TTL_SECONDS)

        logger.info("[WarService] Contribution: %s... +%spts to %s (scan #%d, mode=%s)",
                    user_id[:8], contribution, alliance_id, scan_number, mode)
        return {
            "contribution": contribution,
            "total_today": _round(total_today),
            "scans_today": scan_number,
            "alliance_id": alliance_id,
        }

    def get_user_daily_stats(self, user_id: str) -> dict:
        data = self._store.hgetall(f"war:contrib:{self._today().isoformat()}:{user_id}")
        return {
            "scans": int(data.get("scans", 0)),
            "total_points": _round(data.get("total_points")),
        }

    # ── Standings / results ──────────────────────────────────────

    def get_standings(self, user_id: Optional[str] = None) -> dict:
        now = self._now()
        today = now.date().isoformat()
        war_id = war_id_for(now.date())

        daily_scores = {}
        season = []
        for alliance in ALLIANCES:
            daily_scores[alliance] = _round(self._store.get(f"war:score:{today}:{alliance}"))
            data = self._store.hgetall(f"war:season:{war_id}:{alliance}")
            season.append({
                "alliance_id": alliance,
                "wins": int(data.get("wins", 0)),
                "total_score": _round(data.get("total_score")),
            })
        season.sort(key=lambda row: (row["wins"], row["total_score"]), reverse=True)

        ends_at = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
        today_battles = [
            {
                "alliance1": a1,
                "alliance2": a2,
                "score1": daily_scores[a1],
                "score2": daily_scores[a2],
                "ends_at": ends_at.isoformat(),
            }
            for a1, a2 in self.get_today_battles()
        ]

        user_stats = None
        if user_id:
            membership = self.get_user_alliance(user_id)
            if membership:
                daily = self.get_user_daily_stats(user_id)
                user_stats = {
                    "alliance_id": membership["alliance_id"],
                    "today_contribution": daily["total_points"],
                    "today_scans": daily["scans"],
                    "war_contribution": _round(self._store.hget(f"war:members:{war_id}", user_id)),
                }

        return {
            "war_id": war_id,
            "day_number": war_day_number(now.date()),
            "total_days": WAR_DURATION_DAYS,
            "today_battles": today_battles,
            "season_standings": season,
            "user_stats": user_stats,
        }

    def get_daily_results(self, day: Union[str, date]) -> Optional[list]:
        raw = self._store.get(f"war:results:{_parse_day(day).isoformat()}")
        return json.loads(raw) if raw else None

    def finalize_daily_battles(self, day: Union[str, date]) -> list:
        """
        Settle ``day``'s three pairings and credit the winners' season wins.

        Results are written once; finalizing the same day again returns the
        stored results and does not count wins twice.
        """
        target = _parse_day(day)
        day_key = target.isoformat()
        war_id = war_id_for(target)

        results = []
        for a1, a2 in self.get_today_battles(target):
            score1 = _round(self._store.get(f"war:score:{day_key}:{a1}"))
            score2 = _round(self._store.get(f"war:score:{day_key}:{a2}"))
            if score1 > score2:
                winner = a1
            elif score2 > score1:
                winner = a2
            else:
                winner = None
            results.append({"alliance1": a1, "alliance2": a2, "score1": score1, "score2": score2, "winner": winner})

        results_key = f"war:results:{day_key}"
        if not self._store.set(results_key, json.dumps(results), ttl=RESULTS_TTL_SECONDS, nx=True):
            logger.info("[WarService] Daily battles for %s already finalized", day_key)
            return json.loads(self._store.get(results_key))

        for result in results:
            if result["winner"]:
                season_key = f"war:season:{war_id}:{result['winner']}"
                self._store.hincrby(season_key, "wins", 1)
                self._store.expire(season_key, SEASON_TTL_SECONDS)

        logger.info("[WarService] Daily battles finalized for %s: %s", day_key, ", ".join(
            f"{r['alliance1']} vs {r['alliance2']}: {r['winner'] or 'tie'}" for r in results))
        return results
