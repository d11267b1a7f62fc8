"""
Team API Routes
Teams are global; stages reference them by id.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator
from sqlmodel import Session, select

from stage_engine.database import get_session
from stage_engine.models.team import Team

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class TeamCreateRequest(BaseModel):
    name: str
    location: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    location: Optional[str] = None
    created_at: datetime


# ============================================================================
# Team Endpoints
# ============================================================================


@router.get("/teams", response_model=List[TeamResponse])
def list_teams(session: Session = Depends(get_session)):
    """List all teams, ordered by name"""
    return session.exec(select(Team).order_by(Team.name)).all()


@router.post("/teams", response_model=TeamResponse, status_code=201)
def create_team(team_data: TeamCreateRequest, session: Session = Depends(get_session)):
    """
    Create a team.

    Team names are unique; a duplicate name returns 409.
    """
    existing = session.exec(select(Team).where(Team.name == team_data.name)).first()
    if existing:
        raise HTTPException(status_code=409, detail=f"Team '{team_data.name}' already exists")

    team = Team(name=team_data.name, location=team_data.location)
    session.add(team)
    session.commit()
    session.refresh(team)
    return team
