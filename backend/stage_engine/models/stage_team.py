from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from stage_engine.models.stage import Stage


class StageTeam(SQLModel, table=True):
    stage_id: int = Field(foreign_key="stage.id", primary_key=True)
    team_id: str = Field(foreign_key="team.id", primary_key=True)
    seed: Optional[int] = Field(default=None)  # Tie-break only, never a scheduling weight
    created_at: datetime = Field(default_factory=datetime.utcnow)

    stage: "Stage" = Relationship(back_populates="teams")
