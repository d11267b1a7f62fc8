from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON, String
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from stage_engine.models.stage_team import StageTeam
    from stage_engine.models.tournament import Tournament


class StageFormat(str, Enum):
    round_robin = "ROUND_ROBIN"
    double_elimination = "DOUBLE_ELIMINATION"


class StageType(str, Enum):
    first_round = "FIRST_ROUND"
    semi_final_round_robin = "SEMI_FINAL_ROUND_ROBIN"
    final_double_elimination = "FINAL_DOUBLE_ELIMINATION"


class StageStatus(str, Enum):
    pending = "PENDING"
    active = "ACTIVE"
    completed = "COMPLETED"


class Stage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    stage_type: StageType = Field(sa_column=Column(String, nullable=False))
    status: StageStatus = Field(default=StageStatus.pending, sa_column=Column(String, nullable=False))
    stage_order: int = Field(default=1)

    # Scheduling parameters (None = stage type default)
    rounds: Optional[int] = Field(default=None)
    teams_per_alliance: int = Field(default=1)
    min_match_gap: Optional[int] = Field(default=None)
    allow_surrogates: bool = Field(default=True)

    # team_order, schedule metadata, warnings, leaderboard_order
    configuration: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    # Bumped on every regeneration; part of the deterministic match id scope
    generation: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})
    completed_at: Optional[datetime] = Field(default=None)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="stages")
    teams: List["StageTeam"] = Relationship(back_populates="stage")
