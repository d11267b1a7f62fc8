"""
Tests for ranking computation and the persisted ranking snapshot.
"""

import pytest
from sqlmodel import Session, select

from stage_engine.models.match import Match, MatchStatus
from stage_engine.models.stage import Stage, StageType
from stage_engine.models.stage_ranking import StageRanking
from stage_engine.models.stage_team import StageTeam
from stage_engine.models.team import Team
from stage_engine.models.tournament import Tournament
from stage_engine.services.leaderboard_cache import (
    LeaderboardSyncEntry,
    read_stage_leaderboard_order,
    sync_stage_leaderboard,
)
from stage_engine.services.match_scheduler import build_match_schedule
from stage_engine.services.rankings import (
    RankingTeam,
    announce_rankings,
    compute_stage_rankings,
    fetch_stage_leaderboard,
    match_participants,
    recalculate_stage_rankings,
)


def _match(match_id, home, away, home_score, away_score, status=MatchStatus.completed, **kwargs) -> Match:
    return Match(
        id=match_id,
        tournament_id=1,
        stage_id=1,
        round="Round",
        match_number=1,
        status=status,
        home_team_id=home,
        away_team_id=away,
        home_score=home_score,
        away_score=away_score,
        **kwargs,
    )


THREE_TEAMS = [RankingTeam("x", "Xenon"), RankingTeam("y", "Yttrium"), RankingTeam("z", "Zinc")]


class TestThreeTeamStage:
    """X beat Y 50-20, Z beat X 30-10, Y and Z tied 40-40."""

    @pytest.fixture
    def ranked(self):
        matches = [
            _match("m1", "x", "y", 50, 20),
            _match("m2", "z", "x", 30, 10),
            _match("m3", "y", "z", 40, 40),
        ]
        return {entry.team_id: entry for entry in compute_stage_rankings(THREE_TEAMS, matches)}

    def test_ranking_points(self, ranked):
        assert ranked["x"].ranking_points == 2
        assert ranked["y"].ranking_points == 1
        assert ranked["z"].ranking_points == 3

    def test_records(self, ranked):
        assert (ranked["x"].wins, ranked["x"].losses, ranked["x"].ties) == (1, 1, 0)
        assert (ranked["y"].wins, ranked["y"].losses, ranked["y"].ties) == (0, 1, 1)
        assert (ranked["z"].wins, ranked["z"].losses, ranked["z"].ties) == (1, 0, 1)

    def test_totals_and_lose_rate(self, ranked):
        assert (ranked["x"].total_score, ranked["x"].total_against) == (60, 50)
        assert (ranked["y"].total_score, ranked["y"].total_against) == (60, 90)
        assert (ranked["z"].total_score, ranked["z"].total_against) == (70, 50)
        assert ranked["x"].lose_rate == 0.5
        assert ranked["z"].lose_rate == 0.0

    def test_order(self, ranked):
        assert [ranked[t].rank for t in ("z", "x", "y")] == [1, 2, 3]

    def test_match_history(self, ranked):
        history = ranked["y"].match_history
        assert [h["match_id"] for h in history] == ["m1", "m3"]
        assert history[0]["opponent_name"] == "Xenon"
        assert history[0]["outcome"] == "LOSS"
        assert history[1]["outcome"] == "TIE"
        assert ranked["y"].score_data()["total_for"] == 60


class TestTieBreaks:
    def test_total_score_breaks_points_tie(self):
        teams = [RankingTeam("a", "A"), RankingTeam("b", "B"), RankingTeam("c", "C"), RankingTeam("d", "D")]
        matches = [_match("m1", "a", "c", 10, 5), _match("m2", "b", "d", 30, 5)]
        ranked = compute_stage_rankings(teams, matches)
        assert [e.team_id for e in ranked] == ["b", "a", "c", "d"]

    def test_lose_rate_breaks_score_tie(self):
        teams = [RankingTeam("a", "A"), RankingTeam("b", "B"), RankingTeam("c", "C")]
        # a and b both end on 2 points and 20 scored; b lost once more
        matches = [
            _match("m1", "a", "c", 10, 10),
            _match("m2", "a", "c", 10, 10),
            _match("m3", "b", "c", 15, 0),
            _match("m4", "b", "c", 5, 30),
        ]
        ranked = compute_stage_rankings(teams, matches)
        assert ranked[0].team_id == "c"
        assert [e.team_id for e in ranked[1:]] == ["a", "b"]

    def test_seed_then_name(self):
        teams = [RankingTeam("a", "Alpha", seed=3), RankingTeam("b", "Bravo", seed=1), RankingTeam("c", "Charlie")]
        ranked = compute_stage_rankings(teams, [])
        # Seeds compare only when both present; Alpha < Charlie by name
        assert [e.team_id for e in ranked][:2] == ["b", "a"]
        assert ranked[0].rank == 1

    def test_team_id_breaks_name_collision(self):
        teams = [RankingTeam("t2", "Same"), RankingTeam("t1", "Same")]
        ranked = compute_stage_rankings(teams, [])
        assert [e.team_id for e in ranked] == ["t1", "t2"]


class TestSkippedMatches:
    def test_incomplete_and_placeholder_matches_ignored(self):
        teams = [RankingTeam("a", "A"), RankingTeam("b", "B")]
        matches = [
            _match("m1", "a", "b", 5, 3, status=MatchStatus.in_progress),
            _match("m2", "a", None, 5, 3, away_placeholder="Winner of Match 1"),
            _match("m3", "a", "b", None, 3),
            _match("m4", "a", "outsider", 9, 0),
        ]
        ranked = compute_stage_rankings(teams, matches)
        assert all(e.games_played == 0 for e in ranked)
        assert all(e.lose_rate == 0.0 for e in ranked)

    def test_opponent_name_falls_back_to_placeholder(self):
        teams = [RankingTeam("a", "A"), RankingTeam("b", None)]
        matches = [_match("m1", "a", "b", 2, 1, away_placeholder="Loser of Match 2")]
        ranked = {e.team_id: e for e in compute_stage_rankings(teams, matches)}
        assert ranked["a"].match_history[0]["opponent_name"] == "Loser of Match 2"


def _slot(team_id, station, surrogate=False):
    return {"team_id": team_id, "station": station, "color": station[:-1], "is_surrogate": surrogate}


def _alliance_match(match_id, slots, home_score, away_score) -> Match:
    red = [s for s in slots if s["color"] == "RED"]
    blue = [s for s in slots if s["color"] == "BLUE"]
    return _match(match_id, red[0]["team_id"], blue[0]["team_id"], home_score, away_score, slots=slots)


class TestAllianceCredit:
    def test_every_alliance_member_shares_result(self):
        teams = [RankingTeam(t, t.upper()) for t in ("a", "b", "c", "d")]
        slots = [_slot("a", "RED1"), _slot("b", "BLUE1"), _slot("c", "RED2"), _slot("d", "BLUE2")]
        ranked = {e.team_id: e for e in compute_stage_rankings(teams, [_alliance_match("m1", slots, 10, 5)])}

        assert all(ranked[t].games_played == 1 for t in "abcd")
        assert (ranked["c"].wins, ranked["c"].total_score, ranked["c"].total_against) == (1, 10, 5)
        assert (ranked["d"].losses, ranked["d"].total_score, ranked["d"].total_against) == (1, 5, 10)
        assert ranked["c"].match_history[0]["partner_ids"] == ["a"]
        assert ranked["c"].match_history[0]["opponent_ids"] == ["b", "d"]
        assert [ranked[t].rank for t in ("a", "c")] == [1, 2]

    def test_surrogate_slot_earns_nothing(self):
        teams = [RankingTeam(t, t.upper()) for t in ("a", "b", "c")]
        slots = [_slot("a", "RED1"), _slot("b", "BLUE1", surrogate=True)]
        ranked = {e.team_id: e for e in compute_stage_rankings(teams, [_alliance_match("m1", slots, 2, 9)])}

        assert ranked["a"].games_played == 1
        assert ranked["a"].losses == 1
        assert ranked["b"].games_played == 0
        assert ranked["b"].wins == 0
        assert ranked["b"].match_history == []

    def test_participants_without_slots(self):
        participants = match_participants(_match("m1", "x", "y", 1, 0))
        assert [(p.team_id, p.side.value, p.is_surrogate) for p in participants] == [
            ("x", "home", False),
            ("y", "away", False),
        ]

    def test_scheduled_surrogates_keep_official_game_counts(self):
        team_ids = ["a", "b", "c", "d", "e"]
        schedule = build_match_schedule(team_ids, rounds=2)
        matches = [
            _match(
                plan.id,
                plan.red_alliance[0].team_id,
                plan.blue_alliance[0].team_id,
                10,
                5,
                slots=[slot.to_dict() for slot in plan.slots],
            )
            for plan in schedule.matches
        ]
        ranked = compute_stage_rankings([RankingTeam(t, t) for t in team_ids], matches)
        assert {e.team_id: e.games_played for e in ranked} == {t: 2 for t in team_ids}


@pytest.mark.parametrize("team_count", [1, 2, 5, 9])
def test_ranks_are_one_to_n(team_count):
    teams = [RankingTeam(f"t{i}", f"Team {i % 3}") for i in range(team_count)]
    matches = [
        _match(f"m{i}", f"t{i}", f"t{(i + 1) % team_count}", i % 4, (i * 3) % 4)
        for i in range(team_count)
        if team_count > 1
    ]
    ranked = compute_stage_rankings(teams, matches)
    assert sorted(e.rank for e in ranked) == list(range(1, team_count + 1))
    assert len({e.team_id for e in ranked}) == team_count


# ============================================================================
# Persisted snapshot
# ============================================================================


@pytest.fixture
def stage(session: Session) -> Stage:
    tournament = Tournament(name="Ranking Test")
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    stage = Stage(tournament_id=tournament.id, name="First Round", stage_type=StageType.first_round)
    session.add(stage)
    session.commit()
    session.refresh(stage)
    return stage


def _add_team(session: Session, stage: Stage, team_id: str, name: str, seed=None):
    session.add(Team(id=team_id, name=name))
    session.add(StageTeam(stage_id=stage.id, team_id=team_id, seed=seed))
    session.commit()


def test_recalculate_replaces_snapshot(session: Session, stage: Stage):
    _add_team(session, stage, "x", "Xenon")
    _add_team(session, stage, "y", "Yttrium")
    session.add(
        Match(
            id="m1",
            tournament_id=stage.tournament_id,
            stage_id=stage.id,
            round="First Round - Round 1",
            match_number=1,
            status=MatchStatus.completed,
            home_team_id="x",
            away_team_id="y",
            home_score=3,
            away_score=1,
        )
    )
    session.commit()

    recalculate_stage_rankings(session, stage.id)
    session.commit()
    rows = recalculate_stage_rankings(session, stage.id)
    session.commit()

    stored = session.exec(select(StageRanking).where(StageRanking.stage_id == stage.id)).all()
    assert len(stored) == 2
    assert [r.team_id for r in rows] == ["x", "y"]
    assert rows[0].score_data["matches"][0]["opponent_id"] == "y"


def test_empty_stage_clears_snapshot_and_announces(session: Session, stage: Stage, events):
    session.add(StageRanking(stage_id=stage.id, team_id="ghost", rank=1))
    session.commit()
    events.watch(stage.id)

    rows = recalculate_stage_rankings(session, stage.id)
    session.commit()
    announce_rankings(stage.id, rows)

    assert rows == []
    assert session.exec(select(StageRanking).where(StageRanking.stage_id == stage.id)).all() == []
    assert events.types() == ["leaderboard.updated"]
    assert read_stage_leaderboard_order(stage.id) == []


def test_announce_syncs_leaderboard_order(session: Session, stage: Stage):
    for team_id, name in (("a", "Alpha"), ("b", "Bravo"), ("c", "Charlie")):
        _add_team(session, stage, team_id, name)
    session.add(
        Match(
            id="m1",
            tournament_id=stage.tournament_id,
            stage_id=stage.id,
            round="First Round - Round 1",
            match_number=1,
            status=MatchStatus.completed,
            home_team_id="a",
            away_team_id="c",
            home_score=0,
            away_score=4,
        )
    )
    session.commit()

    rows = recalculate_stage_rankings(session, stage.id)
    session.commit()
    announce_rankings(stage.id, rows)

    assert read_stage_leaderboard_order(stage.id) == ["c", "b", "a"]
    assert [r.team_id for r in fetch_stage_leaderboard(session, stage.id, limit=2)] == ["c", "b"]


def test_partial_cache_falls_back_to_rank_order(session: Session, stage: Stage):
    for team_id, name in (("a", "Alpha"), ("b", "Bravo"), ("c", "Charlie")):
        _add_team(session, stage, team_id, name)
    rows = recalculate_stage_rankings(session, stage.id)
    session.commit()

    # Cache only knows two of the three ranked teams
    sync_stage_leaderboard(stage.id, [LeaderboardSyncEntry(team_id="c", rank=1), LeaderboardSyncEntry("b", 2)])

    leaderboard = fetch_stage_leaderboard(session, stage.id)
    assert [r.team_id for r in leaderboard] == [r.team_id for r in rows]
    assert [r.rank for r in leaderboard] == [1, 2, 3]
    assert len(fetch_stage_leaderboard(session, stage.id, limit=2)) == 2
