from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel


class StageRanking(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("stage_id", "team_id", name="uq_stage_ranking_team"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    team_id: str = Field(foreign_key="team.id")
    rank: int
    games_played: int = Field(default=0)
    wins: int = Field(default=0)
    losses: int = Field(default=0)
    ties: int = Field(default=0)
    ranking_points: int = Field(default=0)
    total_score: int = Field(default=0)
    total_against: int = Field(default=0)
    lose_rate: float = Field(default=0.0)
    # {"total_for", "total_against", "matches": [per-match summaries]}
    score_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=datetime.utcnow)
