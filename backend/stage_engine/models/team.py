import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


def _new_team_id() -> str:
    return str(uuid.uuid4())


class Team(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("name", name="uq_team_name"),)

    # Opaque identifier; the scheduler treats teams as interchangeable tokens
    id: str = Field(default_factory=_new_team_id, primary_key=True)
    name: str
    location: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
