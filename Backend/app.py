"""
FitRate Global Arena — FastAPI Application Entry Point.

Provides the realtime social layer of the app:
  - 1v1 matchmaking queue with a ghost-opponent fallback
  - Weekly arena leaderboard with tiers and display names
  - Fashion Wars alliance battles
  - Redis-backed state with an in-memory fallback for local dev / outages
"""

import logging
import random
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

import settings
from arena_leaderboard import ArenaLeaderboard
from battles import BattleService
from database import check_connection, init_db, make_engine, make_session_factory
from errors import ArenaError
from ghost_pool import GhostPool
from limiter import limiter
from matchmaking import MatchmakingQueue
from routes import admin_router, arena_router, war_router
from store import build_store
from war import AllianceWar

# ── Logging ──────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s │ %(levelname)-7s │ %(name)s │ %(message)s",
)
logger = logging.getLogger(__name__)


# ── Error Handling ───────────────────────────────────────────────

def _arena_error_handler(request: Request, exc: ArenaError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ── New Relic (Monitoring) ───────────────────────────────────────

def _init_newrelic():
    try:
        import newrelic.agent
        newrelic.agent.initialize(settings.NEW_RELIC_CONFIG)
        logger.info("✓ New Relic agent initialized")
    except Exception:
        logger.warning("⚠ New Relic agent skipped (ensure %s exists and dependency installed)",
                       settings.NEW_RELIC_CONFIG)


# ── FastAPI App ──────────────────────────────────────────────────

def create_app(store=None, session_factory=None, engine=None, clock=time.time, rng=None,
               ghost_after=settings.GHOST_FALLBACK_SECONDS, admin_key=settings.ADMIN_KEY) -> FastAPI:
    """
    Build the API with its services wired onto ``app.state``.

    Tests pass their own store, session factory, clock and rng; production
    builds everything from settings.
    """
    if store is None:
        store = build_store(settings.REDIS_URL, clock=clock)
    if session_factory is None:
        engine = engine or make_engine(settings.DATABASE_URL)
        session_factory = make_session_factory(engine)
    rng = rng or random.Random()

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        """Startup / shutdown lifecycle handler."""
        # Startup
        if engine is not None:
            check_connection(engine)
            init_db(engine)
        logger.info("✓ Arena store ready (%s)", store.backend)

        yield  # ← app is running

        # Shutdown
        if engine is not None:
            engine.dispose()
            logger.info("Database connections closed")

    application = FastAPI(
        title="FitRate Global Arena API",
        description="Outfit battles, weekly arena leaderboard and Fashion Wars",
        version="1.0.0",
        lifespan=lifespan,
    )

    battles = BattleService(session_factory, clock=clock)
    ghost_pool = GhostPool(store, clock=clock, rng=rng)
    leaderboard = ArenaLeaderboard(store, clock=clock)
    application.state.store = store
    application.state.battles = battles
    application.state.ghost_pool = ghost_pool
    application.state.leaderboard = leaderboard
    application.state.matchmaking = MatchmakingQueue(
        store, battles,
        ghost_pool=ghost_pool,
        leaderboard=leaderboard,
        clock=clock,
        rng=rng,
        ghost_after=ghost_after,
    )
    application.state.war = AllianceWar(store, clock=clock)
    application.state.admin_key = admin_key

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_exception_handler(ArenaError, _arena_error_handler)
    application.include_router(arena_router)
    application.include_router(war_router)
    application.include_router(admin_router)

    # ── Health Check ─────────────────────────────────────────────

    @application.get("/health", tags=["Health"])
    def health_check():
        """Liveness probe; reports which store backend is serving state."""
        return {"status": "ok", "service": "fitrate-arena", "store": store.backend}

    return application


_init_newrelic()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    # Run the app with auto-reload enabled
    uvicorn.run("app:app", host="127.0.0.1", port=8000, reload=True)
