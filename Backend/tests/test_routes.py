from errors import UpstreamUnavailableError

THUMB = "data:image/jpeg;base64,AAAA"


def _join(client, user_id, score, mode="nice", thumbnail=THUMB):
    return client.post("/api/arena/join", json={
        "user_id": user_id, "score": score, "mode": mode, "thumbnail": thumbnail,
    })


def test_health_reports_store(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "fitrate-arena", "store": "memory"}


# ── Arena ────────────────────────────────────────────────────────

def test_join_and_match_over_http(client, clock):
    first = _join(client, "A", 80, "roast")
    assert first.status_code == 200
    assert first.json() == {"status": "queued", "position": 1, "estimated_wait": 30}

    clock.advance(2)
    second = _join(client, "B", 82, "roast").json()
    assert second["status"] == "matched"
    assert second["outcome"] == "win"

    polled = client.get("/api/arena/poll", params={"user_id": "A"}).json()
    assert polled["status"] == "matched"
    assert polled["battle_id"] == second["battle_id"]
    assert polled["outcome"] == "loss"


def test_join_validation(client):
    assert _join(client, "A", 150).status_code == 422
    assert _join(client, "", 50).status_code == 422
    assert _join(client, "A", 50, mode="disco").status_code == 422


def test_poll_queued_and_expired(client, clock):
    _join(client, "A", 50)
    clock.advance(5)
    assert client.get("/api/arena/poll", params={"user_id": "A"}).json() == {
        "status": "queued", "wait_time": 5.0, "position": 1,
    }

    clock.advance(100)
    assert client.get("/api/arena/poll", params={"user_id": "A"}).json() == {"status": "expired"}


def test_poll_requires_user_id(client):
    assert client.get("/api/arena/poll").status_code == 422


def test_ghost_match_over_http(client, clock):
    _join(client, "A", 70, "roast")
    clock.advance(60)
    assert client.get("/api/arena/poll", params={"user_id": "A"}).json()["status"] == "queued"

    clock.advance(1)
    body = client.get("/api/arena/poll", params={"user_id": "A"}).json()
    assert body["status"] == "matched"
    assert body["is_ghost"] is True


def test_leave(client):
    _join(client, "A", 50)
    assert client.post("/api/arena/leave", json={"user_id": "A"}).json() == {"success": True}
    assert client.get("/api/arena/poll", params={"user_id": "A"}).json() == {"status": "expired"}


def test_stats_include_ghost_pool(client):
    body = client.get("/api/arena/stats").json()
    assert body == {
        "online": 1,
        "matches_today": 0,
        "avg_wait_seconds": 30,
        "ghost_pool": {"total_size": 0, "active_size": 0},
    }


def test_leaderboard_after_match(client):
    _join(client, "A", 60)
    _join(client, "B", 70)

    body = client.get("/api/arena/leaderboard", params={"user_id": "A"}).json()
    assert body["week_key"] == "2026-W10"
    assert body["total_entries"] == 2
    assert body["user_rank"] == 2
    assert body["user_points"] == 1
    assert body["entries"][0]["points"] == 10
    assert body["entries"][0]["tier"]["name"] == "Bronze"


def test_leaderboard_limit_bounds(client):
    assert client.get("/api/arena/leaderboard", params={"limit": 0}).status_code == 422
    assert client.get("/api/arena/leaderboard", params={"limit": 101}).status_code == 422


def test_profile(client):
    resp = client.put("/api/arena/profile", json={"user_id": "A", "display_name": "DripLord"})
    assert resp.status_code == 200
    assert client.get("/api/arena/profile/A").json()["display_name"] == "DripLord"
    assert client.get("/api/arena/profile/nobody").json() == {
        "display_name": None, "created_at": None, "updated_at": None,
    }


def test_profile_name_too_long(client):
    resp = client.put("/api/arena/profile", json={"user_id": "A", "display_name": "x" * 30})
    assert resp.status_code == 422


def test_battle_store_outage_is_503(client, monkeypatch):
    def unavailable(*args, **kwargs):
        raise UpstreamUnavailableError("Battle store unavailable")

    monkeypatch.setattr(client.app.state.battles, "create_match", unavailable)
    _join(client, "A", 50)
    resp = _join(client, "B", 50)

    assert resp.status_code == 503
    assert resp.json() == {"detail": "Battle store unavailable"}


# ── Fashion Wars ─────────────────────────────────────────────────

def test_join_alliance_once(client):
    resp = client.post("/api/war/join", json={"user_id": "u1", "alliance_id": "asia"})
    assert resp.status_code == 200
    assert resp.json()["alliance"] == "asia"
    assert resp.json()["war_id"] == "war_56"

    again = client.post("/api/war/join", json={"user_id": "u1", "alliance_id": "europe"})
    assert again.status_code == 409
    assert client.get("/api/war/alliance/u1").json()["alliance"] == "asia"


def test_alliance_for_unknown_user(client):
    assert client.get("/api/war/alliance/nobody").json() == {
        "alliance": None, "war_id": None, "joined_at": None, "joined_day": None,
    }


def test_contribute(client):
    client.post("/api/war/join", json={"user_id": "u1", "alliance_id": "europe"})

    resp = client.post("/api/war/contribute", json={"user_id": "u1", "alliance_id": "europe", "score": 81.26})
    assert resp.json() == {"contribution": 81.3, "total_today": 81.3, "scans_today": 1, "alliance_id": "europe"}

    standings = client.get("/api/war/standings", params={"user_id": "u1"}).json()
    assert standings["user_stats"]["today_scans"] == 1
    assert standings["today_battles"][1]["score1"] == 81.3


def test_contribute_without_membership_is_400(client):
    resp = client.post("/api/war/contribute", json={"user_id": "u1", "alliance_id": "europe", "score": 50})
    assert resp.status_code == 400
    assert resp.json() == {"detail": "User has not joined an alliance"}


def test_daily_results(client):
    assert client.get("/api/war/daily/2026-03-04").status_code == 404
    assert client.get("/api/war/daily/yesterday").status_code == 422


# ── Admin ────────────────────────────────────────────────────────

def test_admin_requires_key(client):
    seed = {"score": 87.5, "thumbnail": "/seed/outfit_streetwear_1.jpg", "mode": "hypebeast"}
    assert client.post("/api/admin/ghost-pool/seed", json=seed).status_code == 403
    assert client.post("/api/admin/ghost-pool/seed", params={"key": "wrong"}, json=seed).status_code == 403
    assert client.get("/api/admin/ghost-pool/stats").status_code == 403
    assert client.post("/api/admin/war/finalize", params={"date": "2026-03-04"}).status_code == 403


def test_seed_ghost(client, admin_key):
    resp = client.post(
        "/api/admin/ghost-pool/seed",
        params={"key": admin_key},
        json={"score": 87.5, "thumbnail": "/seed/outfit_streetwear_1.jpg",
              "mode": "hypebeast", "display_name": "UrbanDrip247"},
    )
    body = resp.json()
    assert body["success"] is True
    assert body["hash"]
    assert body["pool"] == {"total_size": 1, "active_size": 1}
    assert client.get("/api/admin/ghost-pool/stats", params={"key": admin_key}).json()["active_size"] == 1


def test_finalize_over_http(client, admin_key):
    client.post("/api/war/join", json={"user_id": "u1", "alliance_id": "asia"})
    client.post("/api/war/contribute", json={"user_id": "u1", "alliance_id": "asia", "score": 70})

    first = client.post("/api/admin/war/finalize", params={"key": admin_key, "date": "2026-03-04"})
    second = client.post("/api/admin/war/finalize", params={"key": admin_key, "date": "2026-03-04"})
    assert first.json() == second.json()
    assert first.json()["battles"][1]["winner"] == "asia"

    daily = client.get("/api/war/daily/2026-03-04").json()
    assert daily["battles"] == first.json()["battles"]

    season = client.get("/api/war/standings").json()["season_standings"]
    assert season[0] == {"alliance_id": "asia", "wins": 1, "total_score": 70.0}


def test_finalize_defaults_to_yesterday_on_the_app_clock(client, clock, admin_key):
    client.post("/api/war/join", json={"user_id": "u1", "alliance_id": "asia"})
    client.post("/api/war/contribute", json={"user_id": "u1", "alliance_id": "asia", "score": 70})
    clock.advance(24 * 60 * 60)

    body = client.post("/api/admin/war/finalize", params={"key": admin_key}).json()
    assert body["date"] == "2026-03-04"
    assert body["battles"][1]["winner"] == "asia"
