"""
Ranking Engine: per-stage standings from completed matches.

compute_stage_rankings is pure. recalculate_stage_rankings replaces the persisted
snapshot (delete-then-insert) inside the caller's transaction; announce_rankings
syncs the leaderboard cache and publishes `leaderboard.updated` once committed.
"""

import logging
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlmodel import Session, select

from stage_engine.models.match import Match, MatchStatus
from stage_engine.models.match_dependency import MatchSide
from stage_engine.models.stage_ranking import StageRanking
from stage_engine.models.stage_team import StageTeam
from stage_engine.models.team import Team
from stage_engine.services.leaderboard_cache import (
    LeaderboardSyncEntry,
    read_stage_leaderboard_order,
    sync_stage_leaderboard,
)
from stage_engine.services.match_scheduler import RED
from stage_engine.services.stage_events import StageEventType, publish_stage_event

logger = logging.getLogger(__name__)

RANKING_WIN_POINTS = 2
RANKING_TIE_POINTS = 1

OUTCOME_WIN = "WIN"
OUTCOME_LOSS = "LOSS"
OUTCOME_TIE = "TIE"


@dataclass(frozen=True)
class RankingTeam:
    team_id: str
    name: Optional[str] = None
    seed: Optional[int] = None


@dataclass
class RankingEntry:
    team_id: str
    name: Optional[str]
    seed: Optional[int]
    rank: int = 0
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    ties: int = 0
    total_score: int = 0
    total_against: int = 0
    ranking_points: int = 0
    lose_rate: float = 0.0
    match_history: List[Dict[str, Any]] = field(default_factory=list)

    def score_data(self) -> Dict[str, Any]:
        return {
            "total_for": self.total_score,
            "total_against": self.total_against,
            "matches": list(self.match_history),
        }


def _is_rankable(match: Match) -> bool:
    return (
        MatchStatus(match.status) == MatchStatus.completed
        and match.home_score is not None
        and match.away_score is not None
        and match.home_team_id is not None
        and match.away_team_id is not None
    )


def _outcome(scored: int, conceded: int) -> str:
    if scored > conceded:
        return OUTCOME_WIN
    if scored < conceded:
        return OUTCOME_LOSS
    return OUTCOME_TIE


def _compare_entries(a: RankingEntry, b: RankingEntry) -> int:
    """
    Total order: ranking points desc, total score desc, lose rate asc,
    seed asc (only when both seeded), name asc, team id asc.
    """
    if a.ranking_points != b.ranking_points:
        return b.ranking_points - a.ranking_points
    if a.total_score != b.total_score:
        return b.total_score - a.total_score
    if a.lose_rate != b.lose_rate:
        return -1 if a.lose_rate < b.lose_rate else 1
    if a.seed is not None and b.seed is not None and a.seed != b.seed:
        return a.seed - b.seed
    name_a = a.name or ""
    name_b = b.name or ""
    if name_a != name_b:
        return -1 if name_a < name_b else 1
    if a.team_id != b.team_id:
        return -1 if a.team_id < b.team_id else 1
    return 0


@dataclass(frozen=True)
class MatchParticipant:
    team_id: str
    side: MatchSide
    is_surrogate: bool = False


def match_participants(match: Match) -> List[MatchParticipant]:
    """
    Every team that played in the match.

    Alliance matches list each slot: RED plays for the home score, BLUE for the away
    score. Bracket matches without slots have exactly the home and away team.
    """
    if match.slots:
        participants = []
        for slot in match.slots:
            if not isinstance(slot, dict) or not slot.get("team_id"):
                continue
            side = MatchSide.home if slot.get("color") == RED else MatchSide.away
            participants.append(MatchParticipant(slot["team_id"], side, bool(slot.get("is_surrogate"))))
        return participants
    return [
        MatchParticipant(match.home_team_id, MatchSide.home),
        MatchParticipant(match.away_team_id, MatchSide.away),
    ]


def compute_stage_rankings(teams: Sequence[RankingTeam], matches: Iterable[Match]) -> List[RankingEntry]:
    """
    Rank every stage team from its completed matches.

    Incomplete or placeholder-only matches are skipped. Matches involving a team
    that is not in the stage are ignored. Every official alliance member shares its
    alliance's result; surrogate appearances earn nothing. Ranks are 1..N with no
    gaps or ties.
    """
    entries: Dict[str, RankingEntry] = {}
    names: Dict[str, Optional[str]] = {}
    for team in teams:
        entries[team.team_id] = RankingEntry(team_id=team.team_id, name=team.name, seed=team.seed)
        names[team.team_id] = team.name

    def opponent_name(team_id: Optional[str], placeholder: Optional[str]) -> Optional[str]:
        if team_id:
            return names.get(team_id) or placeholder
        return placeholder

    for match in matches:
        if not _is_rankable(match):
            continue
        participants = match_participants(match)
        if any(p.team_id not in entries for p in participants):
            continue

        status = MatchStatus(match.status).value
        for participant in participants:
            if participant.is_surrogate:
                continue
            entry = entries[participant.team_id]
            if participant.side == MatchSide.home:
                scored, conceded = match.home_score, match.away_score
                opponent_id, opponent_placeholder = match.away_team_id, match.away_placeholder
            else:
                scored, conceded = match.away_score, match.home_score
                opponent_id, opponent_placeholder = match.home_team_id, match.home_placeholder

            outcome = _outcome(scored, conceded)
            entry.games_played += 1
            entry.total_score += scored
            entry.total_against += conceded
            if outcome == OUTCOME_WIN:
                entry.wins += 1
            elif outcome == OUTCOME_LOSS:
                entry.losses += 1
            else:
                entry.ties += 1
            entry.match_history.append(
                {
                    "match_id": match.id,
                    "opponent_id": opponent_id,
                    "opponent_name": opponent_name(opponent_id, opponent_placeholder),
                    "partner_ids": [
                        p.team_id
                        for p in participants
                        if p.side == participant.side and p.team_id != participant.team_id
                    ],
                    "opponent_ids": [p.team_id for p in participants if p.side != participant.side],
                    "scored": scored,
                    "conceded": conceded,
                    "status": status,
                    "outcome": outcome,
                }
            )

    for entry in entries.values():
        entry.ranking_points = entry.wins * RANKING_WIN_POINTS + entry.ties * RANKING_TIE_POINTS
        entry.lose_rate = 0.0 if entry.games_played == 0 else entry.losses / entry.games_played

    ranked = sorted(entries.values(), key=cmp_to_key(_compare_entries))
    for index, entry in enumerate(ranked, start=1):
        entry.rank = index
    return ranked


def load_ranking_teams(session: Session, stage_id: int) -> List[RankingTeam]:
    rows = session.exec(
        select(StageTeam, Team).join(Team, Team.id == StageTeam.team_id).where(StageTeam.stage_id == stage_id)
    ).all()
    return [RankingTeam(team_id=team.id, name=team.name, seed=stage_team.seed) for stage_team, team in rows]


def recalculate_stage_rankings(session: Session, stage_id: int) -> List[StageRanking]:
    """
    Replace the stage's ranking snapshot with a fresh computation.

    Does not commit. Call announce_rankings after the caller commits.
    Zero assigned teams empties the snapshot (a normal path, not an error).
    """
    teams = load_ranking_teams(session, stage_id)
    matches = session.exec(select(Match).where(Match.stage_id == stage_id).order_by(Match.match_number)).all()

    for existing in session.exec(select(StageRanking).where(StageRanking.stage_id == stage_id)).all():
        session.delete(existing)
    session.flush()

    if not teams:
        logger.info("Stage %s has no teams; ranking snapshot cleared", stage_id)
        return []

    entries = compute_stage_rankings(teams, matches)
    rows: List[StageRanking] = []
    for entry in entries:
        row = StageRanking(
            stage_id=stage_id,
            team_id=entry.team_id,
            rank=entry.rank,
            games_played=entry.games_played,
            wins=entry.wins,
            losses=entry.losses,
            ties=entry.ties,
            ranking_points=entry.ranking_points,
            total_score=entry.total_score,
            total_against=entry.total_against,
            lose_rate=entry.lose_rate,
            score_data=entry.score_data(),
        )
        session.add(row)
        rows.append(row)
    session.flush()

    logger.debug("Recalculated %d rankings for stage %s", len(rows), stage_id)
    return rows


def announce_rankings(stage_id: int, rankings: Sequence[StageRanking]) -> None:
    """Post-commit: sync leaderboard cache and notify subscribers. Never raises."""
    sync_stage_leaderboard(
        stage_id,
        [LeaderboardSyncEntry(team_id=row.team_id, rank=row.rank) for row in rankings],
    )
    publish_stage_event(stage_id, StageEventType.leaderboard_updated, {"count": len(rankings)})


def get_stage_rankings(session: Session, stage_id: int) -> List[StageRanking]:
    return list(
        session.exec(select(StageRanking).where(StageRanking.stage_id == stage_id).order_by(StageRanking.rank)).all()
    )


def fetch_stage_leaderboard(session: Session, stage_id: int, limit: int = 0) -> List[StageRanking]:
    """
    Ranking rows in leaderboard order.

    Uses the cached order only when it holds exactly the ranked teams; otherwise
    (cache disabled, cold, partial or stale) falls back to the persisted rank order.
    """
    rankings = get_stage_rankings(session, stage_id)
    by_team = {row.team_id: row for row in rankings}

    cached_order = read_stage_leaderboard_order(stage_id)
    if len(cached_order) == len(by_team) and set(cached_order) == set(by_team):
        ordered = [by_team[team_id] for team_id in cached_order]
    else:
        if cached_order:
            logger.warning("Stale leaderboard cache for stage %s; using persisted rank order", stage_id)
        ordered = rankings

    return ordered[:limit] if limit > 0 else ordered
