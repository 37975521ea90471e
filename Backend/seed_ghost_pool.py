"""
Ghost pool seeding script for the FitRate Arena.

Posts a fixed set of seed outfits to the admin seed endpoint so a fresh
deployment can hand out ghost opponents before real players have battled.
Images are read from ./seed-images when present (sent as data URLs);
otherwise the outfit's CDN path is used as the thumbnail.

Usage:
    ADMIN_KEY=... python seed_ghost_pool.py
"""

import base64
import os
import sys
from pathlib import Path

import requests

import settings

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000/api")
IMAGE_DIR = Path(__file__).parent / "seed-images"

SEED_OUTFITS = [
    {"file": "outfit_streetwear_1", "score": 87.5, "mode": "hypebeast", "display_name": "UrbanDrip247"},
    {"file": "outfit_casual_chic_2", "score": 82.3, "mode": "nice", "display_name": "ChicVibes99"},
    {"file": "outfit_smart_casual_3", "score": 79.8, "mode": "honest", "display_name": "DapperDan42"},
    {"file": "outfit_athleisure_4", "score": 84.1, "mode": "nice", "display_name": "FitQueen88"},
    {"file": "outfit_vintage_5", "score": 76.5, "mode": "chaos", "display_name": "RetroSoul33"},
    {"file": "outfit_minimalist_6", "score": 91.2, "mode": "honest", "display_name": "DarkAesthetic"},
]


def thumbnail_for(outfit: dict) -> str:
    """Data URL for a matching local image, or the outfit's CDN path."""
    if IMAGE_DIR.is_dir():
        for path in sorted(IMAGE_DIR.glob(f"{outfit['file']}*")):
            mime = "image/png" if path.suffix.lower() == ".png" else "image/jpeg"
            encoded = base64.b64encode(path.read_bytes()).decode()
            return f"data:{mime};base64,{encoded}"
    return f"/seed/{outfit['file']}.jpg"


def seed_outfit(outfit: dict, admin_key: str) -> dict:
    resp = requests.post(
        f"{API_BASE_URL}/admin/ghost-pool/seed",
        params={"key": admin_key},
        json={
            "score": outfit["score"],
            "thumbnail": thumbnail_for(outfit),
            "mode": outfit["mode"],
            "display_name": outfit["display_name"],
        },
        timeout=10,
    )
    resp.raise_for_status()
    return resp.json()


def seed(admin_key: str) -> int:
    """Seed every outfit; returns how many were added."""
    print("🌟 Seeding ghost pool …\n")
    seeded = 0
    for outfit in SEED_OUTFITS:
        print(f"📸 {outfit['display_name']}  score={outfit['score']}  mode={outfit['mode']}")
        try:
            result = seed_outfit(outfit, admin_key)
        except requests.RequestException as e:
            print(f"   ✗ failed: {e}")
            continue
        if result.get("success"):
            seeded += 1
            print(f"   ✓ added, active pool size={result['pool']['active_size']}")
        else:
            print("   ✗ rejected")

    print(f"\n🎉 Seeded {seeded} outfits")
    return seeded


if __name__ == "__main__":
    if not settings.ADMIN_KEY:
        print("✗ ADMIN_KEY environment variable required")
        sys.exit(1)
    seed(settings.ADMIN_KEY)
