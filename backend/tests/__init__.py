# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from stage_engine.models.match import Match  # noqa: F401
from stage_engine.models.match_dependency import StageMatchDependency  # noqa: F401
from stage_engine.models.stage import Stage  # noqa: F401
from stage_engine.models.stage_ranking import StageRanking  # noqa: F401
from stage_engine.models.stage_team import StageTeam  # noqa: F401
from stage_engine.models.team import Team  # noqa: F401
from stage_engine.models.tournament import Tournament  # noqa: F401
