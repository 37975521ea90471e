from datetime import date

import pytest

from errors import AlreadyJoinedError, ValidationError
from war import (
    ALLIANCES,
    calculate_contribution,
    battles_for_day,
    war_day_number,
    war_id_for,
)

DAY = 24 * 60 * 60
TODAY = "2026-03-04"


# ── Pure helpers ─────────────────────────────────────────────────

@pytest.mark.parametrize("scan, expected", [
    (1, 100), (4, 100), (5, 85.0), (9, 44.4),
    (10, 20.0), (14, 20.0), (15, 10.0), (16, 10.0), (40, 10.0),
])
def test_contribution_weighting(scan, expected):
    assert calculate_contribution(100, scan) == expected


@pytest.mark.parametrize("raw", [12.5, 50, 99.9])
def test_returns_diminish(raw):
    assert calculate_contribution(raw, 5) < calculate_contribution(raw, 4)
    assert calculate_contribution(raw, 15) <= round(0.1 * raw, 1)


@pytest.mark.parametrize("day_of_year", range(1, 6))
def test_every_alliance_fights_once_a_day(day_of_year):
    fighters = [a for pairing in battles_for_day(day_of_year) for a in pairing]
    assert sorted(fighters) == sorted(ALLIANCES)


def test_war_calendar():
    assert war_id_for(date(2024, 1, 1)) == "war_0"
    assert war_day_number(date(2024, 1, 14)) == 14
    assert war_id_for(date(2024, 1, 15)) == "war_1"
    assert war_id_for(date(2026, 3, 4)) == "war_56"
    assert war_day_number(date(2026, 3, 4)) == 10


def test_current_war_helpers(war):
    assert war.get_current_war_id() == "war_56"
    assert war.get_war_day_number() == 10
    assert war.yesterday() == "2026-03-03"


def test_today_battles_are_the_same_for_everyone(war):
    assert war.get_today_battles() == war.get_today_battles(TODAY) == [
        ("north_america", "south_america"),
        ("europe", "asia"),
        ("africa", "oceania"),
    ]


# ── Membership ───────────────────────────────────────────────────

def test_second_join_in_same_war_fails(war):
    war.join_alliance("u1", "asia")

    with pytest.raises(AlreadyJoinedError):
        war.join_alliance("u1", "europe")
    assert war.get_user_alliance("u1")["alliance_id"] == "asia"


def test_join_returns_membership(war):
    membership = war.join_alliance("u1", "oceania")

    assert membership["war_id"] == "war_56"
    assert membership["joined_day"] == 10
    assert membership["joined_at"].startswith(TODAY)


def test_unknown_alliance_rejected(war):
    with pytest.raises(ValidationError):
        war.join_alliance("u1", "antarctica")
    assert war.get_user_alliance("u1") is None


@pytest.mark.parametrize("days", [5, 6])
def test_new_war_allows_switching(war, clock, days):
    war.join_alliance("u1", "asia")
    clock.advance(days * DAY)

    assert war.get_user_alliance("u1") is None
    assert war.join_alliance("u1", "europe")["war_id"] == "war_57"
    assert war.get_user_alliance("u1")["alliance_id"] == "europe"


# ── Contributions ────────────────────────────────────────────────

def test_contribution_requires_membership(war):
    with pytest.raises(ValidationError):
        war.record_contribution("u1", "asia", 80)


def test_contribution_must_match_alliance(war):
    war.join_alliance("u1", "asia")
    with pytest.raises(ValidationError):
        war.record_contribution("u1", "europe", 80)


@pytest.mark.parametrize("score", [-5, 100.1, float("nan"), "90", None])
def test_contribution_score_validated(war, score):
    war.join_alliance("u1", "asia")
    with pytest.raises(ValidationError):
        war.record_contribution("u1", "asia", score)
    assert war.get_user_daily_stats("u1") == {"scans": 0, "total_points": 0.0}


def test_sixteenth_scan_counts_ten_percent(war):
    war.join_alliance("u1", "asia")
    results = [war.record_contribution("u1", "asia", 100) for _ in range(16)]

    assert results[0]["contribution"] == 100
    assert results[-1]["contribution"] == 10.0
    assert results[-1]["scans_today"] == 16
    assert war.get_user_daily_stats("u1")["scans"] == 16


def test_scan_counter_resets_next_day(war, clock):
    war.join_alliance("u1", "asia")
    for _ in range(6):
        war.record_contribution("u1", "asia", 100)

    clock.advance(DAY)
    assert war.record_contribution("u1", "asia", 100)["contribution"] == 100


def test_standings_reflect_contributions(war):
    war.join_alliance("u1", "europe")
    war.join_alliance("u2", "asia")
    war.record_contribution("u1", "europe", 80)
    war.record_contribution("u1", "europe", 70.5)
    war.record_contribution("u2", "asia", 90)

    standings = war.get_standings("u1")
    assert standings["war_id"] == "war_56"
    assert standings["day_number"] == 10
    assert standings["total_days"] == 14

    europe_vs_asia = standings["today_battles"][1]
    assert (europe_vs_asia["alliance1"], europe_vs_asia["score1"]) == ("europe", 150.5)
    assert (europe_vs_asia["alliance2"], europe_vs_asia["score2"]) == ("asia", 90.0)
    assert europe_vs_asia["ends_at"].startswith("2026-03-05T00:00:00")

    assert standings["user_stats"] == {
        "alliance_id": "europe",
        "today_contribution": 150.5,
        "today_scans": 2,
        "war_contribution": 150.5,
    }
    assert len(standings["season_standings"]) == 6


def test_standings_without_user(war):
    assert war.get_standings()["user_stats"] is None
    assert war.get_standings("stranger")["user_stats"] is None


# ── Daily results ────────────────────────────────────────────────

def test_finalize_counts_wins_once(war):
    war.join_alliance("u1", "europe")
    war.join_alliance("u2", "asia")
    war.record_contribution("u1", "europe", 90)
    war.record_contribution("u2", "asia", 40)

    assert war.get_daily_results(TODAY) is None

    results = war.finalize_daily_battles(TODAY)
    assert results[1] == {"alliance1": "europe", "alliance2": "asia",
                          "score1": 90.0, "score2": 40.0, "winner": "europe"}
    # untouched pairings end level
    assert results[0]["winner"] is None

    assert war.finalize_daily_battles(TODAY) == results
    assert war.get_daily_results(TODAY) == results

    season = {row["alliance_id"]: row for row in war.get_standings()["season_standings"]}
    assert season["europe"]["wins"] == 1
    assert season["asia"]["wins"] == 0
    assert war.get_standings()["season_standings"][0]["alliance_id"] == "europe"


def test_finalize_yesterday_uses_that_days_scores(war, clock):
    war.join_alliance("u1", "europe")
    war.record_contribution("u1", "europe", 60)
    clock.advance(DAY)

    results = war.finalize_daily_battles(TODAY)
    assert {r["winner"] for r in results} == {"europe", None}


def test_bad_dates_rejected(war):
    with pytest.raises(ValidationError):
        war.get_daily_results("04/03/2026")
