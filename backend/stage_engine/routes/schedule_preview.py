"""
Schedule preview: run the match scheduler on a team list without persisting anything.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from stage_engine.services.errors import ConfigurationError, SchedulingInvariantError
from stage_engine.services.match_scheduler import build_match_schedule

router = APIRouter()


class SchedulePreviewRequest(BaseModel):
    team_ids: List[str]
    rounds: int = Field(default=1, ge=1)
    teams_per_alliance: Optional[int] = Field(default=None, ge=1)
    min_match_gap: Optional[int] = Field(default=None, ge=0)
    allow_surrogates: Optional[bool] = None


class SchedulePreviewResponse(BaseModel):
    matches: List[Dict[str, Any]]
    warnings: List[str]
    metadata: Dict[str, Any]


@router.post("/schedule/preview", response_model=SchedulePreviewResponse)
def preview_schedule(request: SchedulePreviewRequest):
    """Deterministic: the same request always yields the same schedule."""
    try:
        result = build_match_schedule(
            request.team_ids,
            rounds=request.rounds,
            teams_per_alliance=request.teams_per_alliance,
            min_match_gap=request.min_match_gap,
            allow_surrogates=request.allow_surrogates,
            id_scope="preview",
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SchedulingInvariantError as e:
        raise HTTPException(status_code=500, detail=f"Scheduling failed: {e}")

    return SchedulePreviewResponse(
        matches=[match.to_dict() for match in result.matches],
        warnings=result.warnings,
        metadata=result.metadata.to_dict(),
    )
