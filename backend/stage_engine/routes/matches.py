"""
Match result routes.
Completing a match propagates its outcome into dependent bracket slots and
recomputes stage rankings, all in one commit.
"""
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session

from stage_engine.database import get_session
from stage_engine.models.match import Match, MatchStatus
from stage_engine.models.stage import StageStatus
from stage_engine.routes.stages import (
    MatchResponse,
    announce_stage_mutation,
    get_stage_or_404,
    match_to_response,
    raise_for_stage_error,
)
from stage_engine.services.advancement_service import resolve_all_dependencies
from stage_engine.services.errors import ConfigurationError
from stage_engine.services.rankings import announce_rankings, recalculate_stage_rankings
from stage_engine.services.stage_events import StageEventType, publish_stage_event
from stage_engine.services.stage_service import advance_match, update_match_result

router = APIRouter()


class MatchUpdate(BaseModel):
    status: Optional[MatchStatus] = None
    home_score: Optional[int] = Field(default=None, ge=0)
    away_score: Optional[int] = Field(default=None, ge=0)


class MatchUpdateResponse(BaseModel):
    match: MatchResponse
    teams_advanced: int = 0


class ResolveDependenciesResponse(BaseModel):
    matches_processed: int
    teams_advanced: int
    unknown_before: int
    unknown_after: int


def _get_match_or_404(session: Session, stage_id: int, match_id: str) -> Match:
    match = session.get(Match, match_id)
    if not match or match.stage_id != stage_id:
        raise HTTPException(status_code=404, detail="Match not found")
    return match


@router.patch(
    "/tournaments/{tournament_id}/stages/{stage_id}/matches/{match_id}",
    response_model=MatchUpdateResponse,
)
def patch_match(
    tournament_id: int,
    stage_id: int,
    match_id: str,
    body: MatchUpdate,
    session: Session = Depends(get_session),
):
    """
    Update scores and/or status.

    Omitted fields keep their stored values. Status COMPLETED requires both scores
    (from the body or already stored); elimination matches cannot end in a draw.
    """
    stage = get_stage_or_404(session, tournament_id, stage_id)
    if stage.status == StageStatus.completed:
        raise HTTPException(status_code=422, detail="Stage is completed; matches are read-only")
    match = _get_match_or_404(session, stage.id, match_id)

    updates = body.model_dump(exclude_unset=True)
    if not updates:
        return MatchUpdateResponse(match=match_to_response(match))

    try:
        result = update_match_result(session, stage, match, updates)
        session.commit()
    except ConfigurationError as e:
        raise_for_stage_error(session, e)

    session.refresh(match)
    announce_stage_mutation(result, StageEventType.matches_updated)
    return MatchUpdateResponse(match=match_to_response(match), teams_advanced=result.teams_advanced)


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_id}/matches/{match_id}/advance",
    response_model=MatchUpdateResponse,
)
def advance_completed_match(
    tournament_id: int,
    stage_id: int,
    match_id: str,
    session: Session = Depends(get_session),
):
    """Re-run outcome propagation for a completed match. Idempotent."""
    stage = get_stage_or_404(session, tournament_id, stage_id)
    match = _get_match_or_404(session, stage.id, match_id)

    try:
        result = advance_match(session, stage, match)
        session.commit()
    except ConfigurationError as e:
        session.rollback()
        raise HTTPException(status_code=422, detail=str(e))

    if result.teams_advanced:
        publish_stage_event(stage.id, StageEventType.matches_updated, {"teams_advanced": result.teams_advanced})
    return MatchUpdateResponse(match=match_to_response(match), teams_advanced=result.teams_advanced)


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_id}/resolve-dependencies",
    response_model=ResolveDependenciesResponse,
)
def resolve_stage_dependencies(
    tournament_id: int,
    stage_id: int,
    session: Session = Depends(get_session),
):
    """
    Bulk re-apply propagation for every completed match in the stage.
    Idempotent; safe to call repeatedly.
    """
    stage = get_stage_or_404(session, tournament_id, stage_id)
    try:
        counts: Dict = resolve_all_dependencies(session, stage.id)
        rankings = recalculate_stage_rankings(session, stage.id)
        session.commit()
    except ConfigurationError as e:
        raise_for_stage_error(session, e)

    announce_rankings(stage.id, rankings)
    if counts["teams_advanced"]:
        publish_stage_event(stage.id, StageEventType.matches_updated, counts)
    return ResolveDependenciesResponse(**counts)
