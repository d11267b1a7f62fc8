"""
Ranking and leaderboard read routes.
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from stage_engine.database import get_session
from stage_engine.routes.stages import RankingResponse, get_stage_or_404, rankings_to_response
from stage_engine.services.rankings import (
    announce_rankings,
    fetch_stage_leaderboard,
    get_stage_rankings,
    recalculate_stage_rankings,
)
from stage_engine.utils.stage_configuration import parse_stage_configuration

router = APIRouter()


class LeaderboardRow(BaseModel):
    team_id: str
    team_name: str = ""
    rank: int
    score: int
    tie_breaker: float
    wins: int
    losses: int
    draws: int
    matches_played: int
    ranking_points: int
    score_data: Dict[str, Any] = {}


class LeaderboardResponse(BaseModel):
    stage_id: int
    order: List[str]
    rows: List[LeaderboardRow]


@router.get("/tournaments/{tournament_id}/stages/{stage_id}/rankings", response_model=List[RankingResponse])
def list_stage_rankings(tournament_id: int, stage_id: int, session: Session = Depends(get_session)):
    """Persisted ranking snapshot in rank order"""
    stage = get_stage_or_404(session, tournament_id, stage_id)
    return rankings_to_response(session, get_stage_rankings(session, stage.id))


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_id}/rankings/recalculate",
    response_model=List[RankingResponse],
)
def recalculate_rankings(tournament_id: int, stage_id: int, session: Session = Depends(get_session)):
    """Recompute the stage's rankings from current match results"""
    stage = get_stage_or_404(session, tournament_id, stage_id)
    rankings = recalculate_stage_rankings(session, stage.id)
    session.commit()
    for row in rankings:
        session.refresh(row)

    announce_rankings(stage.id, rankings)
    return rankings_to_response(session, rankings)


@router.get("/tournaments/{tournament_id}/stages/{stage_id}/leaderboard", response_model=LeaderboardResponse)
def get_stage_leaderboard(
    tournament_id: int,
    stage_id: int,
    limit: int = Query(default=0, ge=0),
    session: Session = Depends(get_session),
):
    """
    Leaderboard rows in cached order (falls back to persisted rank order).

    `order` is the stage's configured column order.
    limit=0 returns every row.
    """
    stage = get_stage_or_404(session, tournament_id, stage_id)
    configuration = parse_stage_configuration(stage.configuration)

    rankings = fetch_stage_leaderboard(session, stage.id, limit)
    named = {item.team_id: item.team_name for item in rankings_to_response(session, rankings)}

    rows = [
        LeaderboardRow(
            team_id=row.team_id,
            team_name=named.get(row.team_id) or "",
            rank=row.rank,
            score=row.total_score,
            tie_breaker=row.lose_rate,
            wins=row.wins,
            losses=row.losses,
            draws=row.ties,
            matches_played=row.games_played,
            ranking_points=row.ranking_points,
            score_data=row.score_data or {},
        )
        for row in rankings
    ]
    return LeaderboardResponse(stage_id=stage.id, order=configuration["leaderboard_order"], rows=rows)
