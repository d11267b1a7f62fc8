from enum import Enum
from typing import Optional

from sqlalchemy import String
from sqlmodel import Column, Field, SQLModel


class DependencyOutcome(str, Enum):
    winner = "WINNER"
    loser = "LOSER"


class MatchSide(str, Enum):
    home = "home"
    away = "away"


class StageMatchDependency(SQLModel, table=True):
    """Target match side is filled by the named outcome of the source match."""

    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    target_match_id: str = Field(foreign_key="match.id")
    target_side: MatchSide = Field(sa_column=Column(String, nullable=False))
    source_match_id: str = Field(foreign_key="match.id", index=True)
    source_outcome: DependencyOutcome = Field(sa_column=Column(String, nullable=False))
    placeholder: str
