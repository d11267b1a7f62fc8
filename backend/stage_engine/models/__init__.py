from stage_engine.models.match import Match, MatchStatus, MatchType
from stage_engine.models.match_dependency import DependencyOutcome, MatchSide, StageMatchDependency
from stage_engine.models.stage import Stage, StageFormat, StageStatus, StageType
from stage_engine.models.stage_ranking import StageRanking
from stage_engine.models.stage_team import StageTeam
from stage_engine.models.team import Team
from stage_engine.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Team",
    "Stage",
    "StageFormat",
    "StageStatus",
    "StageType",
    "StageTeam",
    "Match",
    "MatchStatus",
    "MatchType",
    "StageMatchDependency",
    "DependencyOutcome",
    "MatchSide",
    "StageRanking",
]
