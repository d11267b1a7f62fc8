"""
Stage API Routes
Stage CRUD, match generation, completion and deletion.

Each mutating endpoint commits once, then announces (leaderboard cache sync +
stage events). Domain errors roll the session back before becoming HTTP errors.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlmodel import Session, select

from stage_engine.database import get_session
from stage_engine.models.match import Match
from stage_engine.models.stage import Stage, StageStatus, StageType
from stage_engine.models.stage_team import StageTeam
from stage_engine.models.team import Team
from stage_engine.models.tournament import Tournament
from stage_engine.services.errors import ConfigurationError, SchedulingInvariantError
from stage_engine.services.leaderboard_cache import clear_stage_leaderboard
from stage_engine.services.rankings import announce_rankings, get_stage_rankings
from stage_engine.services.stage_events import StageEventType, publish_stage_event
from stage_engine.services.stage_service import (
    StageMutationResult,
    StageTeamInput,
    assign_stage_teams,
    complete_stage,
    default_stage_name,
    delete_stage,
    get_stage_team_ids,
    prepare_stage_matches,
    regenerate_stage_matches,
    stage_match_counts,
)
from stage_engine.utils.stage_configuration import parse_stage_configuration

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class StageTeamEntry(BaseModel):
    team_id: str
    seed: Optional[int] = None


class StageCreate(BaseModel):
    name: Optional[str] = None
    stage_type: StageType
    stage_order: int = 1
    rounds: Optional[int] = Field(default=None, ge=1)
    teams_per_alliance: int = Field(default=1, ge=1)
    min_match_gap: Optional[int] = Field(default=None, ge=0)
    allow_surrogates: bool = True
    teams: List[StageTeamEntry] = []
    generate: bool = True
    leaderboard_order: Optional[List[str]] = None


class StageGenerateRequest(BaseModel):
    team_order: Optional[List[str]] = None


class MatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    stage_id: int
    round: str
    round_number: int
    match_number: int
    status: str
    match_type: str
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    home_placeholder: Optional[str] = None
    away_placeholder: Optional[str] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    slots: Optional[List[Dict[str, Any]]] = None
    completed_at: Optional[datetime] = None

    @field_validator("status", "match_type", mode="before")
    @classmethod
    def enum_value(cls, v):
        return v.value if isinstance(v, Enum) else v


class RankingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    team_id: str
    team_name: Optional[str] = None
    rank: int
    games_played: int
    wins: int
    losses: int
    ties: int
    ranking_points: int
    total_score: int
    total_against: int
    lose_rate: float
    score_data: Optional[Dict[str, Any]] = None


class StageTeamResponse(BaseModel):
    team_id: str
    name: Optional[str] = None
    seed: Optional[int] = None


class StageSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    name: str
    stage_type: str
    status: str
    stage_order: int
    rounds: Optional[int] = None
    teams_per_alliance: int
    min_match_gap: Optional[int] = None
    allow_surrogates: bool
    generation: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @field_validator("status", "stage_type", mode="before")
    @classmethod
    def enum_value(cls, v):
        return v.value if isinstance(v, Enum) else v


class StageDetail(StageSummary):
    configuration: Dict[str, Any]
    warnings: List[str] = []
    teams: List[StageTeamResponse] = []
    matches: List[MatchResponse] = []
    rankings: List[RankingResponse] = []
    match_counts: Dict[str, int] = {}


class StageDeleteResponse(BaseModel):
    stage_id: int
    deleted: bool


# ============================================================================
# Helpers
# ============================================================================


def get_stage_or_404(session: Session, tournament_id: int, stage_id: int) -> Stage:
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")
    stage = session.get(Stage, stage_id)
    if not stage or stage.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Stage not found")
    return stage


def raise_for_stage_error(session: Session, exc: Exception) -> None:
    """Roll back and convert a domain error into an HTTPException."""
    session.rollback()
    if isinstance(exc, ConfigurationError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, SchedulingInvariantError):
        raise HTTPException(status_code=500, detail=f"Scheduling failed: {exc}")
    raise exc


def announce_stage_mutation(result: StageMutationResult, event_type: StageEventType) -> None:
    """Post-commit notifications. Never raises."""
    announce_rankings(result.stage_id, result.rankings)
    data: Dict[str, Any] = {}
    if result.generation is not None:
        data["match_count"] = len(result.generation.matches)
    if result.teams_advanced:
        data["teams_advanced"] = result.teams_advanced
    publish_stage_event(result.stage_id, event_type, data or None)


def match_to_response(m: Match) -> MatchResponse:
    return MatchResponse(
        id=m.id,
        stage_id=m.stage_id,
        round=m.round,
        round_number=m.round_number,
        match_number=m.match_number,
        status=m.status,
        match_type=m.match_type,
        home_team_id=m.home_team_id,
        away_team_id=m.away_team_id,
        home_placeholder=m.home_placeholder,
        away_placeholder=m.away_placeholder,
        home_score=m.home_score,
        away_score=m.away_score,
        metadata=m.match_metadata,
        slots=m.slots,
        completed_at=m.completed_at,
    )


def rankings_to_response(session: Session, rankings) -> List[RankingResponse]:
    team_ids = [row.team_id for row in rankings]
    names = {}
    if team_ids:
        names = {team.id: team.name for team in session.exec(select(Team).where(Team.id.in_(team_ids))).all()}
    return [
        RankingResponse(
            team_id=row.team_id,
            team_name=names.get(row.team_id),
            rank=row.rank,
            games_played=row.games_played,
            wins=row.wins,
            losses=row.losses,
            ties=row.ties,
            ranking_points=row.ranking_points,
            total_score=row.total_score,
            total_against=row.total_against,
            lose_rate=row.lose_rate,
            score_data=row.score_data,
        )
        for row in rankings
    ]


def build_stage_detail(session: Session, stage: Stage) -> StageDetail:
    configuration = parse_stage_configuration(stage.configuration)

    team_rows = {
        stage_team.team_id: (stage_team, team)
        for stage_team, team in session.exec(
            select(StageTeam, Team).join(Team, Team.id == StageTeam.team_id).where(StageTeam.stage_id == stage.id)
        ).all()
    }
    teams = [
        StageTeamResponse(team_id=team_id, name=team_rows[team_id][1].name, seed=team_rows[team_id][0].seed)
        for team_id in get_stage_team_ids(session, stage)
        if team_id in team_rows
    ]

    matches = session.exec(select(Match).where(Match.stage_id == stage.id).order_by(Match.match_number)).all()

    return StageDetail(
        **StageSummary.model_validate(stage).model_dump(),
        configuration=configuration,
        warnings=configuration["warnings"],
        teams=teams,
        matches=[match_to_response(m) for m in matches],
        rankings=rankings_to_response(session, get_stage_rankings(session, stage.id)),
        match_counts=stage_match_counts(session, stage.id),
    )


# ============================================================================
# Stage Endpoints
# ============================================================================


@router.get("/tournaments/{tournament_id}/stages", response_model=List[StageSummary])
def list_stages(tournament_id: int, session: Session = Depends(get_session)):
    """List stages of a tournament in stage order"""
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")
    return session.exec(
        select(Stage).where(Stage.tournament_id == tournament_id).order_by(Stage.stage_order, Stage.id)
    ).all()


@router.post("/tournaments/{tournament_id}/stages", response_model=StageDetail, status_code=201)
def create_stage(tournament_id: int, stage_data: StageCreate, session: Session = Depends(get_session)):
    """
    Create a stage, assign its teams, and (by default) generate its matches.

    Team list order is the seeding order used by the generators.
    """
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")

    try:
        stage = Stage(
            tournament_id=tournament_id,
            name=(stage_data.name or "").strip() or default_stage_name(stage_data.stage_type),
            stage_type=stage_data.stage_type,
            stage_order=stage_data.stage_order,
            rounds=stage_data.rounds,
            teams_per_alliance=stage_data.teams_per_alliance,
            min_match_gap=stage_data.min_match_gap,
            allow_surrogates=stage_data.allow_surrogates,
        )
        if stage_data.leaderboard_order:
            stage.configuration = {"leaderboard_order": list(stage_data.leaderboard_order)}
        session.add(stage)
        session.flush()

        assign_stage_teams(
            session, stage, [StageTeamInput(team_id=t.team_id, seed=t.seed) for t in stage_data.teams]
        )
        result = prepare_stage_matches(session, stage, stage_data.generate)
        session.commit()
    except (ConfigurationError, SchedulingInvariantError) as e:
        raise_for_stage_error(session, e)

    session.refresh(stage)
    announce_stage_mutation(result, StageEventType.matches_updated)
    return build_stage_detail(session, stage)


@router.get("/tournaments/{tournament_id}/stages/{stage_id}", response_model=StageDetail)
def get_stage(tournament_id: int, stage_id: int, session: Session = Depends(get_session)):
    """Stage with teams, matches and rankings"""
    stage = get_stage_or_404(session, tournament_id, stage_id)
    return build_stage_detail(session, stage)


@router.post("/tournaments/{tournament_id}/stages/{stage_id}/generate", response_model=StageDetail)
def generate_stage_matches(
    tournament_id: int,
    stage_id: int,
    request: Optional[StageGenerateRequest] = None,
    session: Session = Depends(get_session),
):
    """
    Regenerate all matches for the stage (discarding existing results).

    Optional team_order reorders the stage's teams before generation.
    """
    stage = get_stage_or_404(session, tournament_id, stage_id)
    if stage.status == StageStatus.completed:
        raise HTTPException(status_code=422, detail="Completed stages cannot be regenerated")

    try:
        result = regenerate_stage_matches(session, stage, request.team_order if request else None)
        session.commit()
    except (ConfigurationError, SchedulingInvariantError) as e:
        raise_for_stage_error(session, e)

    session.refresh(stage)
    announce_stage_mutation(result, StageEventType.matches_updated)
    return build_stage_detail(session, stage)


@router.post("/tournaments/{tournament_id}/stages/{stage_id}/complete", response_model=StageDetail)
def mark_stage_complete(tournament_id: int, stage_id: int, session: Session = Depends(get_session)):
    """Mark a stage COMPLETED. Refused (422) while any match is unfinished."""
    stage = get_stage_or_404(session, tournament_id, stage_id)
    try:
        complete_stage(session, stage)
        session.commit()
    except ConfigurationError as e:
        session.rollback()
        raise HTTPException(status_code=422, detail=str(e))

    session.refresh(stage)
    publish_stage_event(stage.id, StageEventType.stage_updated, {"status": stage.status})
    return build_stage_detail(session, stage)


@router.delete("/tournaments/{tournament_id}/stages/{stage_id}", response_model=StageDeleteResponse)
def remove_stage(tournament_id: int, stage_id: int, session: Session = Depends(get_session)):
    """Delete a stage with its matches, dependencies and rankings"""
    stage = get_stage_or_404(session, tournament_id, stage_id)
    deleted_id = delete_stage(session, stage)
    session.commit()

    clear_stage_leaderboard(deleted_id)
    publish_stage_event(deleted_id, StageEventType.stage_updated, {"deleted": True})
    return StageDeleteResponse(stage_id=deleted_id, deleted=True)
