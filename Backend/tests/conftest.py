import random
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app import create_app
from arena_leaderboard import ArenaLeaderboard
from battles import BattleService
from database import init_db, make_session_factory
from ghost_pool import GhostPool
from limiter import limiter
from matchmaking import GHOST_FALLBACK_SECONDS, MatchmakingQueue
from store import MemoryStore
from war import AllianceWar

# Wednesday, mid ISO week and mid war
START = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc).timestamp()

ADMIN_KEY = "test-admin-key"


class FakeClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def battles(session_factory, clock):
    return BattleService(session_factory, clock=clock)


@pytest.fixture
def ghost_pool(store, clock):
    return GhostPool(store, clock=clock, rng=random.Random(42))


@pytest.fixture
def leaderboard(store, clock):
    return ArenaLeaderboard(store, clock=clock)


@pytest.fixture
def war(store, clock):
    return AllianceWar(store, clock=clock)


@pytest.fixture
def make_queue(store, battles, ghost_pool, leaderboard, clock):
    """Queue factory; the ghost fallback uses the production default unless overridden."""

    def _make(ghost_after=GHOST_FALLBACK_SECONDS, seed=7):
        return MatchmakingQueue(
            store, battles,
            ghost_pool=ghost_pool,
            leaderboard=leaderboard,
            clock=clock,
            rng=random.Random(seed),
            ghost_after=ghost_after,
        )

    return _make


@pytest.fixture
def queue(make_queue):
    return make_queue()


@pytest.fixture
def admin_key():
    return ADMIN_KEY


@pytest.fixture
def client(store, session_factory, engine, clock):
    app = create_app(
        store=store,
        session_factory=session_factory,
        engine=engine,
        clock=clock,
        rng=random.Random(3),
        ghost_after=GHOST_FALLBACK_SECONDS,
        admin_key=ADMIN_KEY,
    )
    previous, limiter.enabled = limiter.enabled, False
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        limiter.enabled = previous
