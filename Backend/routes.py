"""
Global Arena and Fashion Wars API routes.

Endpoints:
  POST /api/arena/join               — Join the matchmaking queue
  GET  /api/arena/poll               — Poll for match status
  POST /api/arena/leave              — Leave the queue
  GET  /api/arena/stats              — Online count, matches today, ghost pool size
  GET  /api/arena/leaderboard        — Weekly arena leaderboard
  GET  /api/arena/profile/{user_id}  — Read a display name
  PUT  /api/arena/profile            — Set a display name
  POST /api/war/join                 — Join an alliance for the current war
  POST /api/war/contribute           — Add a scan to the user's alliance
  GET  /api/war/standings            — Today's battles and season standings
  GET  /api/war/daily/{date}         — Finalized results for one day
  GET  /api/war/alliance/{user_id}   — The user's current alliance
  POST /api/admin/ghost-pool/seed    — Seed a ghost outfit (admin key)
  GET  /api/admin/ghost-pool/stats   — Ghost pool size (admin key)
  POST /api/admin/war/finalize       — Settle a day's alliance battles (admin key)

Services are built once in app.create_app() and read from app.state.
Domain errors (ValidationError, AlreadyJoinedError, …) are turned into HTTP
responses by the exception handler registered in app.py.
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request

from arena_leaderboard import ArenaLeaderboard
from ghost_pool import GhostPool
from limiter import limiter
from matchmaking import MatchmakingQueue
from schemas import (
    ContributeRequest,
    ContributionResponse,
    DailyResultsResponse,
    ErrorResponse,
    GhostPoolStats,
    GhostSeedRequest,
    GhostSeedResponse,
    JoinAllianceRequest,
    JoinQueueRequest,
    LeaderboardResponse,
    LeaveQueueRequest,
    LeaveQueueResponse,
    MembershipResponse,
    ProfileRequest,
    ProfileResponse,
    QueueStatsResponse,
    QueueStatusResponse,
    StandingsResponse,
)
from war import AllianceWar

logger = logging.getLogger(__name__)

arena_router = APIRouter(prefix="/api/arena", tags=["Arena"])
war_router = APIRouter(prefix="/api/war", tags=["War"])
admin_router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ── Dependencies ─────────────────────────────────────────────────

def get_matchmaking(request: Request) -> MatchmakingQueue:
    return request.app.state.matchmaking


def get_ghost_pool(request: Request) -> GhostPool:
    return request.app.state.ghost_pool


def get_leaderboard(request: Request) -> ArenaLeaderboard:
    return request.app.state.leaderboard


def get_war(request: Request) -> AllianceWar:
    return request.app.state.war


def require_admin(request: Request, key: Optional[str] = Query(default=None)):
    """Admin routes take ?key=<ADMIN_KEY>; no configured key means no access."""
    admin_key = request.app.state.admin_key
    if not admin_key or not key or not secrets.compare_digest(key, admin_key):
        raise HTTPException(status_code=403, detail="Unauthorized")


# ── 1. Arena queue ───────────────────────────────────────────────

@arena_router.post("/join", response_model=QueueStatusResponse, response_model_exclude_none=True)
@limiter.limit("10/minute")
def join_queue(request: Request, payload: JoinQueueRequest,
               matchmaking: MatchmakingQueue = Depends(get_matchmaking)):
    """Join the queue; pairs immediately when a compatible player is waiting."""
    result = matchmaking.join(payload.user_id, payload.score, payload.thumbnail, payload.mode)
    logger.info("User %s joined queue (%s, %.1f): %s",
                payload.user_id[:12], payload.mode, payload.score, result["status"])
    return QueueStatusResponse(**result)


@arena_router.get("/poll", response_model=QueueStatusResponse, response_model_exclude_none=True)
@limiter.limit("30 per 10 seconds")
def poll_for_match(request: Request, user_id: str = Query(..., min_length=1, max_length=128),
                   matchmaking: MatchmakingQueue = Depends(get_matchmaking)):
    """Poll for match status; every poll also runs a matching pass."""
    result = matchmaking.poll_for_match(user_id)

    # Only log matches, not every poll
    if result["status"] == "matched":
        logger.info("Match found for %s: %s", user_id[:12], result.get("battle_id"))
    return QueueStatusResponse(**result)


@arena_router.post("/leave", response_model=LeaveQueueResponse)
@limiter.limit("30/minute")
def leave_queue(request: Request, payload: LeaveQueueRequest,
                matchmaking: MatchmakingQueue = Depends(get_matchmaking)):
    result = matchmaking.leave_queue(payload.user_id)
    logger.info("User %s left queue", payload.user_id[:12])
    return LeaveQueueResponse(**result)


@arena_router.get("/stats", response_model=QueueStatsResponse)
@limiter.limit("60/minute")
def get_queue_stats(request: Request,
                    matchmaking: MatchmakingQueue = Depends(get_matchmaking),
                    ghost_pool: GhostPool = Depends(get_ghost_pool)):
    stats = matchmaking.get_queue_stats()
    return QueueStatsResponse(**stats, ghost_pool=ghost_pool.get_pool_stats())


# ── 2. Arena leaderboard & profiles ──────────────────────────────

@arena_router.get("/leaderboard", response_model=LeaderboardResponse)
@limiter.limit("60/minute")
def get_weekly_leaderboard(request: Request,
                           user_id: Optional[str] = Query(default=None, max_length=128),
                           limit: int = Query(default=50, ge=1, le=100),
                           leaderboard: ArenaLeaderboard = Depends(get_leaderboard)):
    """Top players this week, with the caller's own rank when user_id is given."""
    return LeaderboardResponse(**leaderboard.get_weekly_leaderboard(user_id, limit))


@arena_router.get("/profile/{user_id}", response_model=ProfileResponse)
@limiter.limit("60/minute")
def get_profile(request: Request, user_id: str,
                leaderboard: ArenaLeaderboard = Depends(get_leaderboard)):
    return ProfileResponse(**leaderboard.get_user_profile(user_id))


@arena_router.put("/profile", response_model=ProfileResponse)
@limiter.limit("10/minute")
def set_profile(request: Request, payload: ProfileRequest,
                leaderboard: ArenaLeaderboard = Depends(get_leaderboard)):
    profile = leaderboard.set_user_profile(payload.user_id, payload.display_name)
    logger.info("Profile updated for %s", payload.user_id[:12])
    return ProfileResponse(**profile)


# ── 3. Fashion Wars ──────────────────────────────────────────────

@war_router.post("/join", response_model=MembershipResponse, responses={409: {"model": ErrorResponse}})
@limiter.limit("5/minute")
def join_alliance(request: Request, payload: JoinAllianceRequest, war: AllianceWar = Depends(get_war)):
    """Join an alliance; locked until the current war ends (409 on a second join)."""
    membership = war.join_alliance(payload.user_id, payload.alliance_id)
    return MembershipResponse(alliance=membership["alliance_id"], **_membership_fields(membership))


@war_router.post("/contribute", response_model=ContributionResponse)
@limiter.limit("30/minute")
def contribute(request: Request, payload: ContributeRequest, war: AllianceWar = Depends(get_war)):
    result = war.record_contribution(payload.user_id, payload.alliance_id, round(payload.score, 1), payload.mode)
    return ContributionResponse(**result)


@war_router.get("/standings", response_model=StandingsResponse)
@limiter.limit("60/minute")
def get_standings(request: Request, user_id: Optional[str] = Query(default=None, max_length=128),
                  war: AllianceWar = Depends(get_war)):
    return StandingsResponse(**war.get_standings(user_id))


@war_router.get("/daily/{date}", response_model=DailyResultsResponse, responses={404: {"model": ErrorResponse}})
@limiter.limit("60/minute")
def get_daily_results(request: Request, date: str = Path(..., pattern=r"^\d{4}-\d{2}-\d{2}$"),
                      war: AllianceWar = Depends(get_war)):
    results = war.get_daily_results(date)
    if results is None:
        raise HTTPException(status_code=404, detail="No results for this date")
    return DailyResultsResponse(date=date, battles=results)


@war_router.get("/alliance/{user_id}", response_model=MembershipResponse)
@limiter.limit("60/minute")
def get_user_alliance(request: Request, user_id: str, war: AllianceWar = Depends(get_war)):
    membership = war.get_user_alliance(user_id)
    if membership is None:
        return MembershipResponse(alliance=None)
    return MembershipResponse(alliance=membership["alliance_id"], **_membership_fields(membership))


def _membership_fields(membership: dict) -> dict:
    return {
        "war_id": membership["war_id"],
        "joined_at": membership["joined_at"],
        "joined_day": membership.get("joined_day"),
    }


# ── 4. Admin ─────────────────────────────────────────────────────

@admin_router.post("/ghost-pool/seed", response_model=GhostSeedResponse, dependencies=[Depends(require_admin)])
def seed_ghost(payload: GhostSeedRequest, ghost_pool: GhostPool = Depends(get_ghost_pool)):
    """Add a hand-picked outfit to the ghost pool."""
    entry = ghost_pool.add_to_ghost_pool({
        "user_id": "seed",
        "score": payload.score,
        "thumbnail": payload.thumbnail,
        "mode": payload.mode,
        "display_name": payload.display_name,
    })
    return GhostSeedResponse(
        success=entry is not None,
        hash=entry.hash if entry else None,
        pool=ghost_pool.get_pool_stats(),
    )


@admin_router.get("/ghost-pool/stats", response_model=GhostPoolStats, dependencies=[Depends(require_admin)])
def ghost_pool_stats(ghost_pool: GhostPool = Depends(get_ghost_pool)):
    return GhostPoolStats(**ghost_pool.get_pool_stats())


@admin_router.post("/war/finalize", response_model=DailyResultsResponse, dependencies=[Depends(require_admin)])
def finalize_daily_battles(date: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
                           war: AllianceWar = Depends(get_war)):
    """Settle one day's battles (default: yesterday, UTC). Safe to call twice."""
    if date is None:
        date = war.yesterday()
    results = war.finalize_daily_battles(date)
    return DailyResultsResponse(date=date, battles=results)
