"""
Canonical parser for Stage.configuration JSON.

Stored configuration may predate the current shape or be hand-edited, so parsing is tolerant:
unknown keys are dropped and malformed values fall back to defaults instead of raising.
"""
from typing import Any, Dict, List, Optional

from stage_engine.services.match_scheduler import parse_schedule_metadata

DEFAULT_LEADERBOARD_ORDER = ["rank", "score", "tie_breaker", "wins", "losses", "draws"]


def create_default_stage_configuration(
    team_order: Optional[List[str]] = None,
    schedule: Optional[Dict[str, Any]] = None,
    warnings: Optional[List[str]] = None,
    leaderboard_order: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "team_order": list(team_order or []),
        "schedule": schedule,
        "warnings": list(warnings or []),
        "leaderboard_order": list(leaderboard_order or DEFAULT_LEADERBOARD_ORDER),
    }


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def parse_stage_configuration(value: Any) -> Dict[str, Any]:
    """
    Normalize a stored configuration value.

    - None / non-dict -> defaults
    - team_order, warnings -> non-string entries dropped
    - schedule -> kept only if it parses as complete schedule metadata
    - leaderboard_order -> default when missing or empty
    """
    if not isinstance(value, dict):
        return create_default_stage_configuration()

    schedule = value.get("schedule")
    parsed_schedule = parse_schedule_metadata(schedule)

    return create_default_stage_configuration(
        team_order=_string_list(value.get("team_order")),
        schedule=parsed_schedule.to_dict() if parsed_schedule else None,
        warnings=_string_list(value.get("warnings")),
        leaderboard_order=_string_list(value.get("leaderboard_order")) or None,
    )
