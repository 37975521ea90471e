"""
Battle records: the collaborator the matchmaking queue hands paired players to.

A battle is created with the creator's score, then resolved with the
responder's score, which fixes the winner. Rows live in the ``battles`` table;
completed battles stay readable for one hour so both players can fetch the
result.
"""

import logging
import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from errors import BattleNotFoundError, UpstreamUnavailableError, ValidationError
from models import Battle

logger = logging.getLogger(__name__)

BATTLE_ID_PREFIX = "ch_"
BATTLE_TTL = timedelta(hours=24)
COMPLETED_BATTLE_TTL = timedelta(hours=1)

_ID_ALPHABET = string.ascii_letters + string.digits


def generate_battle_id() -> str:
    """``ch_`` followed by 10 random alphanumerics."""
    return BATTLE_ID_PREFIX + "".join(secrets.choice(_ID_ALPHABET) for _ in range(10))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _validate_score(score) -> float:
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 100:
        raise ValidationError("Score must be between 0 and 100")
    return round(float(score), 2)


def decide_winner(creator_score: float, responder_score: float) -> str:
    if creator_score > responder_score:
        return "creator"
    if responder_score > creator_score:
        return "responder"
    return "tie"


def outcome_for(battle: dict, user_id: str) -> Optional[str]:
    """'win' / 'loss' / 'tie' from ``user_id``'s side, None if unresolved or not a participant."""
    winner = battle.get("winner")
    if winner is None:
        return None
    if winner == "tie":
        return "tie"
    if user_id == battle.get("creator_id"):
        return "win" if winner == "creator" else "loss"
    if user_id == battle.get("responder_id"):
        return "win" if winner == "responder" else "loss"
    return None


def _to_dict(battle: Battle) -> dict:
    return {
        "battle_id": battle.id,
        "creator_id": battle.creator_id,
        "creator_score": battle.creator_score,
        "creator_thumb": battle.creator_thumb,
        "responder_id": battle.responder_id,
        "responder_score": battle.responder_score,
        "responder_thumb": battle.responder_thumb,
        "mode": battle.mode,
        "status": battle.status,
        "winner": battle.winner,
        "is_ghost": bool(battle.is_ghost),
        "battle_commentary": battle.battle_commentary,
        "winning_factor": battle.winning_factor,
        "outfit1_verdict": battle.outfit1_verdict,
        "outfit2_verdict": battle.outfit2_verdict,
        "created_at": _as_utc(battle.created_at).isoformat() if battle.created_at else None,
        "expires_at": _as_utc(battle.expires_at).isoformat() if battle.expires_at else None,
    }


class BattleService:
    """Create, resolve and read battles stored through SQLAlchemy."""

    def __init__(self, session_factory, clock: Callable[[], float] = time.time):
        self._session_factory = session_factory
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def create_match(self, score, user_id: str, mode: str = "nice", thumb: Optional[str] = None,
                     is_ghost: bool = False) -> str:
        """Open a battle for the creator and return its id."""
        creator_score = _validate_score(score)
        if not user_id or not isinstance(user_id, str):
            raise ValidationError("creator_id is required")

        now = self._now()
        battle = Battle(
            id=generate_battle_id(),
            creator_id=user_id,
            creator_score=creator_score,
            creator_thumb=thumb or None,
            mode=mode or "nice",
            status="waiting",
            is_ghost=is_ghost,
            created_at=now,
            expires_at=now + BATTLE_TTL,
        )

        db = self._session_factory()
        try:
            db.add(battle)
            db.commit()
            return battle.id
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("create_match failed: %s", exc)
            raise UpstreamUnavailableError("Battle store unavailable") from exc
        finally:
            db.close()

    def resolve_match(self, battle_id: str, score, user_id: str, thumb: Optional[str] = None) -> dict:
        """Record the responder's outfit, settle the winner, and return the full battle."""
        responder_score = _validate_score(score)
        if not user_id or not isinstance(user_id, str):
            raise ValidationError("responder_id is required")

        db = self._session_factory()
        try:
            battle = db.get(Battle, battle_id)
            if battle is None:
                raise BattleNotFoundError(f"Battle {battle_id} not found")

            now = self._now()
            expires_at = _as_utc(battle.expires_at)
            if battle.status == "expired" or (expires_at is not None and expires_at < now):
                raise ValidationError("Battle expired")
            if battle.status == "completed":
                raise ValidationError("Battle already completed")

            battle.responder_id = user_id
            battle.responder_score = responder_score
            battle.responder_thumb = thumb or None
            battle.status = "completed"
            battle.winner = decide_winner(battle.creator_score, responder_score)
            battle.completed_at = now
            battle.expires_at = now + COMPLETED_BATTLE_TTL
            db.commit()

            result = _to_dict(battle)
            logger.info("Battle %s resolved: %.1f vs %.1f → %s",
                        battle_id, battle.creator_score, responder_score, battle.winner)
            return result
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("resolve_match failed: %s", exc)
            raise UpstreamUnavailableError("Battle store unavailable") from exc
        finally:
            db.close()

    def get_match(self, battle_id: str, include_expired: bool = False) -> Optional[dict]:
        """Return the battle as a dict, or None when missing (or expired, unless asked for)."""
        if not battle_id or not battle_id.startswith(BATTLE_ID_PREFIX):
            return None

        db = self._session_factory()
        try:
            battle = db.get(Battle, battle_id)
            if battle is None:
                return None
            result = _to_dict(battle)
            expires_at = _as_utc(battle.expires_at)
        except SQLAlchemyError as exc:
            logger.error("get_match failed: %s", exc)
            raise UpstreamUnavailableError("Battle store unavailable") from exc
        finally:
            db.close()

        if expires_at is not None and expires_at < self._now():
            if not include_expired:
                return None
            result["status"] = "expired"
        return result
