"""
Load simulation script for the FitRate Arena API.

Simulated players join the arena queue with random outfit scores, poll until
they are matched (by a live player or a ghost) and occasionally check the
weekly leaderboard, to exercise matchmaking under concurrent load.

Usage:
    python simulate_load.py [players]
"""

import random
import sys
import threading
import time
import uuid

import requests

API_BASE_URL = "http://localhost:8000/api/arena"
MODES = ["nice", "roast", "honest", "savage", "rizz", "aura"]
POLL_INTERVAL = 2
MAX_POLLS = 45


def join_queue(user_id: str) -> dict:
    """POST a random outfit score into the queue."""
    score = round(random.uniform(30, 98), 1)
    mode = random.choice(MODES)
    try:
        resp = requests.post(
            f"{API_BASE_URL}/join",
            json={"user_id": user_id, "score": score, "mode": mode},
            timeout=10,
        )
        data = resp.json()
        print(f"  ↑ join    user={user_id[:8]}  score={score}  mode={mode}  status={data.get('status', resp.status_code)}")
        return data
    except requests.RequestException as e:
        print(f"  ✗ join failed: {e}")
        return {}


def poll_until_matched(user_id: str) -> dict:
    """GET /poll until matched or expired."""
    for _ in range(MAX_POLLS):
        try:
            resp = requests.get(f"{API_BASE_URL}/poll", params={"user_id": user_id}, timeout=10)
            data = resp.json()
        except requests.RequestException as e:
            print(f"  ✗ poll failed: {e}")
            return {}
        if data.get("status") in ("matched", "expired"):
            ghost = " (ghost)" if data.get("is_ghost") else ""
            print(f"  ↓ {data['status']:<7} user={user_id[:8]}  outcome={data.get('outcome', '-')}{ghost}")
            return data
        time.sleep(POLL_INTERVAL)
    return {}


def get_leaderboard(user_id: str):
    try:
        resp = requests.get(f"{API_BASE_URL}/leaderboard", params={"user_id": user_id, "limit": 10}, timeout=10)
        data = resp.json()
        print(f"  ↓ board   entries={len(data.get('entries', []))}  your_rank={data.get('user_rank', '?')}")
    except requests.RequestException as e:
        print(f"  ✗ leaderboard failed: {e}")


def play(user_id: str):
    result = join_queue(user_id)
    if result.get("status") == "queued":
        poll_until_matched(user_id)
    if random.random() < 0.3:
        get_leaderboard(user_id)


if __name__ == "__main__":
    players = int(sys.argv[1]) if len(sys.argv) > 1 else 4
    print(f"🚀 Arena load simulation ({players} players per wave) — press Ctrl+C to stop\n")
    wave = 0
    try:
        while True:
            wave += 1
            print(f"── Wave {wave} ──")
            threads = [threading.Thread(target=play, args=(f"sim-{uuid.uuid4().hex[:12]}",), daemon=True)
                       for _ in range(players)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            time.sleep(random.uniform(0.5, 2))
    except KeyboardInterrupt:
        print("\n⏹ Simulation stopped")
