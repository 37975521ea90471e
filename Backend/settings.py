"""
Environment-driven configuration for the FitRate Arena API.

Values are read once at import time; a local ``.env`` file is honoured.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _optional_float(name: str, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    return float(raw) if raw else None


# ── Storage ──────────────────────────────────────────────────────

# Unset → in-process store (single instance / local dev only)
REDIS_URL = os.getenv("REDIS_URL") or None

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fitrate.db")

# ── HTTP ─────────────────────────────────────────────────────────

ADMIN_KEY = os.getenv("ADMIN_KEY") or None

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,https://fitrate.app",
    ).split(",")
    if origin.strip()
]

RATE_LIMIT_ENABLED = _bool("RATE_LIMIT_ENABLED", True)

# ── Arena ────────────────────────────────────────────────────────

# Seconds of waiting after which a poll falls back to a ghost opponent (blank disables).
# Keep it past the last widening step (60s) and under the 90s queue TTL.
GHOST_FALLBACK_SECONDS = _optional_float("GHOST_FALLBACK_SECONDS", 60.0)

# ── Observability ────────────────────────────────────────────────

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

NEW_RELIC_CONFIG = os.getenv("NEW_RELIC_CONFIG", "newrelic.ini")
