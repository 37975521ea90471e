"""
Pydantic schemas for request validation and response serialization.
"""

from typing import Annotated, Literal, Optional

from pydantic import BaseModel, Field

Mode = Literal[
    "nice", "roast", "honest", "savage", "rizz", "celeb",
    "aura", "chaos", "y2k", "villain", "coquette", "hypebeast",
]
AllianceId = Literal["north_america", "europe", "asia", "africa", "south_america", "oceania"]

UserId = Annotated[str, Field(min_length=1, max_length=128, description="Anonymous app user id")]


# ── Arena requests ───────────────────────────────────────────────

class JoinQueueRequest(BaseModel):
    """Request body for joining the arena queue."""

    user_id: UserId
    score: float = Field(..., ge=0, le=100, allow_inf_nan=False, description="Outfit score (0-100)")
    thumbnail: Optional[str] = Field(default=None, description="Outfit thumbnail (data URL or CDN path)")
    mode: Mode = "nice"


class LeaveQueueRequest(BaseModel):
    user_id: UserId


class ProfileRequest(BaseModel):
    user_id: UserId
    display_name: str = Field(..., min_length=1, max_length=24)


# ── Arena responses ──────────────────────────────────────────────

class QueueStatusResponse(BaseModel):
    """Result of join / poll: queued, matched or expired."""

    status: Literal["queued", "matched", "expired"]
    position: Optional[int] = None
    estimated_wait: Optional[int] = None
    wait_time: Optional[float] = None
    battle_id: Optional[str] = None
    mode: Optional[str] = None
    is_ghost: Optional[bool] = None
    your_score: Optional[float] = None
    opponent_score: Optional[float] = None
    opponent_thumb: Optional[str] = None
    opponent_name: Optional[str] = None
    outcome: Optional[Literal["win", "loss", "tie"]] = None
    winner: Optional[str] = None
    battle_commentary: Optional[str] = None
    winning_factor: Optional[str] = None
    your_verdict: Optional[str] = None
    opponent_verdict: Optional[str] = None


class LeaveQueueResponse(BaseModel):
    success: bool


class GhostPoolStats(BaseModel):
    total_size: int
    active_size: int


class QueueStatsResponse(BaseModel):
    online: int
    matches_today: int
    avg_wait_seconds: int
    ghost_pool: Optional[GhostPoolStats] = None


class Tier(BaseModel):
    name: str
    emoji: str
    color: str


class LeaderboardEntry(BaseModel):
    """A single entry in the weekly leaderboard response."""

    rank: int
    user_tag: str
    display_name: str
    points: int
    tier: Tier
    is_current_user: bool


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
    user_rank: Optional[int] = None
    user_points: int = 0
    week_key: str
    total_entries: int


class ProfileResponse(BaseModel):
    display_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ── War requests ─────────────────────────────────────────────────

class JoinAllianceRequest(BaseModel):
    user_id: UserId
    alliance_id: AllianceId


class ContributeRequest(BaseModel):
    user_id: UserId
    alliance_id: AllianceId
    score: float = Field(..., ge=0, le=100, allow_inf_nan=False)
    mode: Mode = "nice"


# ── War responses ────────────────────────────────────────────────

class MembershipResponse(BaseModel):
    alliance: Optional[str] = None
    war_id: Optional[str] = None
    joined_at: Optional[str] = None
    joined_day: Optional[int] = None


class ContributionResponse(BaseModel):
    contribution: float
    total_today: float
    scans_today: int
    alliance_id: str


class TodayBattle(BaseModel):
    alliance1: str
    alliance2: str
    score1: float
    score2: float
    ends_at: str


class SeasonStanding(BaseModel):
    alliance_id: str
    wins: int
    total_score: float


class UserWarStats(BaseModel):
    alliance_id: str
    today_contribution: float
    today_scans: int
    war_contribution: float


class StandingsResponse(BaseModel):
    war_id: str
    day_number: int
    total_days: int
    today_battles: list[TodayBattle]
    season_standings: list[SeasonStanding]
    user_stats: Optional[UserWarStats] = None


class DailyBattleResult(BaseModel):
    alliance1: str
    alliance2: str
    score1: float
    score2: float
    winner: Optional[str] = None


class DailyResultsResponse(BaseModel):
    date: str
    battles: list[DailyBattleResult]


# ── Admin ────────────────────────────────────────────────────────

class GhostSeedRequest(BaseModel):
    """Seed outfit for the ghost pool (admin only)."""

    score: float = Field(..., ge=0, le=100)
    thumbnail: str = Field(..., min_length=1)
    mode: Mode = "nice"
    display_name: Optional[str] = Field(default=None, max_length=24)


class GhostSeedResponse(BaseModel):
    success: bool
    hash: Optional[str] = None
    pool: GhostPoolStats


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
