from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, String
from sqlmodel import Column, Field, SQLModel


class MatchStatus(str, Enum):
    scheduled = "SCHEDULED"
    ready = "READY"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    canceled = "CANCELED"


class MatchType(str, Enum):
    normal = "NORMAL"
    surrogate = "SURROGATE"  # At least one slot is a surrogate appearance


class Match(SQLModel, table=True):
    # Deterministic uuid5 assigned by the generator
    id: str = Field(primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id")
    stage_id: int = Field(foreign_key="stage.id", index=True)
    round: str  # Display label, e.g. "First Round - Round 2" or "Winners Final"
    round_number: int = Field(default=1)
    match_number: int  # Global sequence within the stage
    status: MatchStatus = Field(default=MatchStatus.scheduled, sa_column=Column(String, nullable=False))
    match_type: MatchType = Field(default=MatchType.normal, sa_column=Column(String, nullable=False))

    # Participants (nullable until bracket dependencies resolve)
    home_team_id: Optional[str] = Field(default=None, foreign_key="team.id")
    away_team_id: Optional[str] = Field(default=None, foreign_key="team.id")
    home_placeholder: Optional[str] = Field(default=None)
    away_placeholder: Optional[str] = Field(default=None)

    home_score: Optional[int] = Field(default=None)
    away_score: Optional[int] = Field(default=None)

    # format, label, bracket, round_index, match_index, field_number, sources
    match_metadata: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON, nullable=True))
    # Full alliance slot list from the scheduler (round robin only)
    slots: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = Field(default=None)
